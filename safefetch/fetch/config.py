"""Configuration models for the fetch engine."""

import ipaddress
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from safefetch.fetch.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MAX_RESPONSE_SIZE_BYTES,
    DEFAULT_MAX_URL_LENGTH,
    DEFAULT_RETRY_AFTER_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    MAX_RETRIES,
    MAX_RETRY_AFTER_SECONDS,
    MIN_RETRIES,
)


DEFAULT_BLOCKED_HOSTS: frozenset[str] = frozenset(
    {
        "localhost",
        "metadata.google.internal",
        "metadata.azure.com",
        "instance-data",
    }
)

DEFAULT_BLOCKED_HOST_SUFFIXES: tuple[str, ...] = (".local", ".internal", ".localhost")

DEFAULT_BLOCKED_IP_NETWORKS: tuple[str, ...] = (
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "224.0.0.0/4",
    "240.0.0.0/4",
    "::/128",
    "::1/128",
    "::/96",
    "64:ff9b::/96",
    "64:ff9b:1::/48",
    "2001::/32",
    "2002::/16",
    "fc00::/7",
    "fe80::/10",
    "ff00::/8",
)

DEFAULT_BLOCKED_HEADERS: frozenset[str] = frozenset(
    {
        "host",
        "authorization",
        "cookie",
        "x-forwarded-for",
        "x-real-ip",
        "proxy-authorization",
    }
)


class SecurityConfig(BaseModel):
    """SSRF policy: which URLs, hosts, addresses and headers are refused."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_url_length: Annotated[int, Field(ge=16, le=65536)] = DEFAULT_MAX_URL_LENGTH
    blocked_hosts: frozenset[str] = DEFAULT_BLOCKED_HOSTS
    blocked_host_suffixes: tuple[str, ...] = DEFAULT_BLOCKED_HOST_SUFFIXES
    blocked_ip_networks: tuple[str, ...] = DEFAULT_BLOCKED_IP_NETWORKS
    blocked_headers: frozenset[str] = DEFAULT_BLOCKED_HEADERS

    @field_validator("blocked_hosts", "blocked_headers")
    @classmethod
    def lowercase_names(cls, v: frozenset[str]) -> frozenset[str]:
        """Store host and header names lowercased."""
        return frozenset(name.strip().lower() for name in v)

    @field_validator("blocked_host_suffixes")
    @classmethod
    def validate_suffixes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Ensure suffixes are lowercase and dot-prefixed."""
        suffixes = []
        for suffix in v:
            normalized = suffix.strip().lower()
            if not normalized.startswith("."):
                normalized = f".{normalized}"
            suffixes.append(normalized)
        return tuple(suffixes)

    @field_validator("blocked_ip_networks")
    @classmethod
    def validate_networks(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Validate that every entry is a CIDR network."""
        for network in v:
            try:
                ipaddress.ip_network(network, strict=False)
            except ValueError as e:
                msg = f"Invalid network: {network}"
                raise ValueError(msg) from e
        return v


class CacheConfig(BaseModel):
    """Settings for the in-memory result cache."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    ttl_seconds: Annotated[int, Field(ge=60, le=86400)] = 3600
    max_keys: Annotated[int, Field(ge=1, le=100_000)] = 100
    max_content_size: Annotated[int, Field(ge=1, le=100 * 1024 * 1024)] = (
        DEFAULT_MAX_RESPONSE_SIZE_BYTES
    )


class RetryConfig(BaseModel):
    """Configuration for retry behavior.

    Uses exponential backoff: delay = base_delay_ms * 2 ^ (attempt - 1),
    capped at max_delay_ms, with symmetric jitter of +/- jitter_factor.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    default_retries: Annotated[int, Field(ge=MIN_RETRIES, le=MAX_RETRIES)] = 3
    base_delay_ms: Annotated[int, Field(ge=0, le=60000)] = 1000
    max_delay_ms: Annotated[int, Field(ge=0, le=300000)] = 10000
    jitter_factor: Annotated[float, Field(ge=0.0, le=1.0)] = 0.25
    rate_limit_default_seconds: Annotated[int, Field(ge=0, le=3600)] = (
        DEFAULT_RETRY_AFTER_SECONDS
    )
    rate_limit_max_seconds: Annotated[int, Field(ge=0, le=3600)] = (
        MAX_RETRY_AFTER_SECONDS
    )


class FetchConfig(BaseModel):
    """Configuration for the fetch engine.

    Central configuration for timeouts, redirect and size limits, SSRF
    policy, caching, and retry behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_agent: Annotated[str, Field(min_length=1, max_length=500)] = (
        "safefetch/0.1"
    )
    timeout_seconds: Annotated[float, Field(gt=0.0, le=300.0)] = (
        DEFAULT_TIMEOUT_SECONDS
    )
    max_redirects: Annotated[int, Field(ge=0, le=20)] = DEFAULT_MAX_REDIRECTS
    max_content_length: Annotated[int, Field(ge=1, le=100 * 1024 * 1024)] = (
        DEFAULT_MAX_RESPONSE_SIZE_BYTES
    )
    chunk_size: Annotated[int, Field(ge=512, le=1024 * 1024)] = DEFAULT_CHUNK_SIZE
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
