"""Metrics collection for the fetch engine."""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock

from safefetch.fetch.errors import FetchErrorKind


@dataclass
class FetchMetrics:
    """Thread-safe metrics for fetch operations.

    One instance per engine; the pipeline, fetcher and retry policy of the
    same engine share it.
    """

    # Instance-level lock for thread-safe operations
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    # Responses by status code
    requests_by_status: Counter[int] = field(default_factory=Counter)

    # Failures by error kind
    failures_by_kind: Counter[str] = field(default_factory=Counter)

    # Durations of completed fetches in milliseconds
    durations_ms: list[float] = field(default_factory=list)

    total_requests: int = 0
    total_bytes: int = 0
    total_retries: int = 0
    total_failures: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    dedupe_hits: int = 0

    def record_request(self, status_code: int, body_size: int) -> None:
        """Record a completed HTTP response.

        Args:
            status_code: HTTP status code.
            body_size: Decoded body size in bytes.
        """
        with self._lock:
            self.requests_by_status[status_code] += 1
            self.total_requests += 1
            self.total_bytes += body_size

    def record_failure(self, kind: FetchErrorKind) -> None:
        """Record a failed fetch.

        Args:
            kind: Classification of the error.
        """
        with self._lock:
            self.failures_by_kind[kind.value] += 1
            self.total_failures += 1

    def record_retry(self) -> None:
        """Record a retry attempt."""
        with self._lock:
            self.total_retries += 1

    def record_duration(self, duration_ms: float) -> None:
        """Record fetch duration.

        Args:
            duration_ms: Duration in milliseconds.
        """
        with self._lock:
            self.durations_ms.append(duration_ms)

    def record_cache_hit(self) -> None:
        """Record a result served from cache."""
        with self._lock:
            self.cache_hits += 1

    def record_cache_miss(self) -> None:
        """Record a cache lookup that missed."""
        with self._lock:
            self.cache_misses += 1

    def record_dedupe_hit(self) -> None:
        """Record a caller that joined an in-flight fetch."""
        with self._lock:
            self.dedupe_hits += 1

    @property
    def avg_duration_ms(self) -> float:
        """Average fetch duration, 0.0 when nothing was recorded."""
        with self._lock:
            if not self.durations_ms:
                return 0.0
            return sum(self.durations_ms) / len(self.durations_ms)

    def to_dict(self) -> dict[str, object]:
        """Snapshot metrics as a plain dictionary.

        Returns:
            Dictionary suitable for logging or JSON serialization.
        """
        avg = self.avg_duration_ms
        with self._lock:
            return {
                "total_requests": self.total_requests,
                "total_bytes": self.total_bytes,
                "total_retries": self.total_retries,
                "total_failures": self.total_failures,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "dedupe_hits": self.dedupe_hits,
                "requests_by_status": dict(self.requests_by_status),
                "failures_by_kind": dict(self.failures_by_kind),
                "avg_duration_ms": round(avg, 2),
            }
