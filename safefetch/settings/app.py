"""Engine settings powered by Pydantic BaseSettings."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from safefetch.fetch.config import CacheConfig, FetchConfig, RetryConfig
from safefetch.fetch.constants import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT_SECONDS


_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class EngineSettings(BaseSettings):
    """Environment configuration, read from SAFEFETCH_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="SAFEFETCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0.0, le=300.0)
    max_redirects: int = Field(default=DEFAULT_MAX_REDIRECTS, ge=0, le=20)
    user_agent: str = Field(default="safefetch/0.1", min_length=1, max_length=500)
    default_retries: int = Field(default=3, ge=1, le=10)
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=3600, ge=60, le=86400)
    cache_max_keys: int = Field(default=100, ge=1, le=100_000)
    log_level: str = "INFO"
    log_json: bool = True
    development: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard level names, case-insensitively."""
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            msg = f"Invalid log level: {v}. Must be one of {sorted(_LOG_LEVELS)}"
            raise ValueError(msg)
        return level

    @property
    def log_level_value(self) -> int:
        """Get the numeric logging level."""
        return _LOG_LEVELS[self.log_level]

    def to_fetch_config(self) -> FetchConfig:
        """Build the engine configuration from these settings."""
        return FetchConfig(
            user_agent=self.user_agent,
            timeout_seconds=self.timeout_seconds,
            max_redirects=self.max_redirects,
            cache=CacheConfig(
                enabled=self.cache_enabled,
                ttl_seconds=self.cache_ttl_seconds,
                max_keys=self.cache_max_keys,
            ),
            retry=RetryConfig(default_retries=self.default_retries),
        )


def get_settings() -> EngineSettings:
    """Get a settings instance."""
    return EngineSettings()
