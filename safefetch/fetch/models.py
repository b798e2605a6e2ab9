"""Data models for the fetch engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from safefetch.fetch.cancellation import CancellationToken


T = TypeVar("T")


class FetchRequest(BaseModel):
    """A single caller request to the pipeline.

    Timeout and retry count fall back to the engine configuration when
    unset. Retry counts outside [1, 10] are clamped by the retry policy, so
    they are accepted here.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    url: Annotated[str, Field(min_length=1)]
    headers: dict[str, str] | None = None
    timeout_seconds: Annotated[float | None, Field(gt=0.0)] = None
    max_retries: int | None = None
    cancel_token: CancellationToken | None = None
    cache_namespace: Annotated[str, Field(min_length=1)] = "fetch"
    cache_vary: dict[str, Any] | str | None = None


class CacheEntry(BaseModel):
    """Serialized result stored under a cache key."""

    model_config = ConfigDict(frozen=True)

    key: str
    content: str
    fetched_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if the entry is past its expiry time."""
        return now >= self.expires_at


@dataclass(frozen=True)
class PipelineResult(Generic[T]):
    """Outcome of FetchPipeline.execute_fetch.

    Attributes:
        data: Transformed (or cache-deserialized) value.
        from_cache: True if served from the cache without network I/O.
        url: Normalized request URL.
        fetched_at: When the underlying content was fetched (UTC).
    """

    data: T
    from_cache: bool
    url: str
    fetched_at: datetime


@dataclass
class RawFetchResult:
    """Body and metadata of one successful network fetch."""

    text: str
    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    size: int = 0
