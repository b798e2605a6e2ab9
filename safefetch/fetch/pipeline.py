"""Fetch pipeline: validation, cache, in-flight deduplication, and retries.

Control flow for one call:

1. Validate and normalize the URL
2. Serve from cache if a live entry exists
3. Join an in-flight fetch for the same namespace and URL, if any
4. Otherwise fetch with retries, transform, serialize, and cache the result
"""

import json
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

import structlog

from safefetch.fetch.cache import Clock, RequestCache, utc_now
from safefetch.fetch.cache_keys import create_cache_key
from safefetch.fetch.cancellation import CancellationToken
from safefetch.fetch.client import HttpFetcher
from safefetch.fetch.config import FetchConfig
from safefetch.fetch.errors import FetchError, FetchErrorKind
from safefetch.fetch.headers import append_header_vary
from safefetch.fetch.metrics import FetchMetrics
from safefetch.fetch.models import FetchRequest, PipelineResult, RawFetchResult
from safefetch.fetch.retry import RetryPolicy
from safefetch.fetch.url_validator import UrlSafetyValidator


logger = structlog.get_logger()

T = TypeVar("T")

Transform = Callable[[str, str], T]
Serializer = Callable[[Any], str]
Deserializer = Callable[[str], Any]


class JoinRole(str, Enum):
    """How a caller participates in an in-flight fetch.

    - OWNER: Performs the network fetch, transform, and cache write
    - TRANSFORMER: Shares the owner's network fetch but has its own cache key,
      so it runs its own transform and cache write
    - WAITER: Shares both the network fetch and the final result
    """

    OWNER = "OWNER"
    TRANSFORMER = "TRANSFORMER"
    WAITER = "WAITER"


@dataclass
class InFlightFetch:
    """Shared handles for one in-flight network fetch."""

    raw: "Future[RawFetchResult]" = field(default_factory=Future)
    results: "dict[str, Future[PipelineResult[Any]]]" = field(default_factory=dict)


class PendingRequestRegistry:
    """Maps dedupe keys to in-flight fetches.

    Check-and-insert is atomic, so at most one owner exists per key.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, InFlightFetch] = {}

    def join(
        self, dedupe_key: str, result_key: str
    ) -> tuple[InFlightFetch, "Future[PipelineResult[Any]]", JoinRole]:
        """Join or start the in-flight fetch for a dedupe key.

        Args:
            dedupe_key: ``namespace:normalizedUrl``.
            result_key: Cache key of the caller's result.

        Returns:
            Tuple of (in-flight fetch, result future for result_key, role).
        """
        with self._lock:
            entry = self._entries.get(dedupe_key)
            if entry is None:
                entry = InFlightFetch()
                result: Future[PipelineResult[Any]] = Future()
                entry.results[result_key] = result
                self._entries[dedupe_key] = entry
                return entry, result, JoinRole.OWNER

            existing = entry.results.get(result_key)
            if existing is not None:
                return entry, existing, JoinRole.WAITER

            result = Future()
            entry.results[result_key] = result
            return entry, result, JoinRole.TRANSFORMER

    def release(self, dedupe_key: str, entry: InFlightFetch) -> None:
        """Remove an entry if it is still the registered one."""
        with self._lock:
            if self._entries.get(dedupe_key) is entry:
                del self._entries[dedupe_key]

    def __contains__(self, dedupe_key: object) -> bool:
        with self._lock:
            return dedupe_key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _wait_for(future: "Future[T]", cancel_token: CancellationToken | None, url: str) -> T:
    """Wait on a shared future, honoring only the caller's own token.

    Cancelling the token stops this caller's wait; the shared fetch goes on.
    """
    if cancel_token is None:
        return future.result()

    done = threading.Event()
    future.add_done_callback(lambda _: done.set())
    unregister = cancel_token.on_cancel(done.set)
    try:
        done.wait()
    finally:
        unregister()

    if future.done():
        return future.result()
    raise cancel_token.to_error(url, "while waiting for in-flight request")


class FetchPipeline:
    """Safe fetch engine entry point.

    Owns one HttpFetcher, RequestCache, RetryPolicy, and registry. All state
    is per instance; create one pipeline per engine.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: FetchConfig | None = None,
        fetcher: HttpFetcher | None = None,
        cache: RequestCache | None = None,
        retry_policy: RetryPolicy | None = None,
        metrics: FetchMetrics | None = None,
        validator: UrlSafetyValidator | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Engine configuration.
            fetcher: HTTP fetcher; built from config if omitted.
            cache: Result cache; built from config if omitted.
            retry_policy: Retry policy; built from config if omitted.
            metrics: Shared metrics sink.
            validator: URL validator.
            clock: Returns the current aware datetime.
        """
        self._config = config or FetchConfig()
        self._metrics = metrics or FetchMetrics()
        self._validator = validator or UrlSafetyValidator(self._config.security)
        self._clock = clock or utc_now
        self._fetcher = fetcher or HttpFetcher(
            self._config, metrics=self._metrics, validator=self._validator
        )
        self._cache = cache or RequestCache(self._config.cache, clock=self._clock)
        self._retry = retry_policy or RetryPolicy(self._config.retry, metrics=self._metrics)
        self._registry = PendingRequestRegistry()
        self._log = logger.bind(component="pipeline")

    @property
    def cache(self) -> RequestCache:
        """Get the result cache."""
        return self._cache

    @property
    def metrics(self) -> FetchMetrics:
        """Get the metrics sink."""
        return self._metrics

    @property
    def registry(self) -> PendingRequestRegistry:
        """Get the in-flight request registry."""
        return self._registry

    def validate_url(self, url: str) -> str:
        """Validate and normalize a URL without fetching it.

        Raises:
            FetchError: INVALID_URL, BLOCKED_HOST, or BLOCKED_IP.
        """
        return self._validator.validate(url)

    def execute_fetch(
        self,
        request: FetchRequest,
        transform: Transform[T],
        serialize: Serializer = json.dumps,
        deserialize: Deserializer = json.loads,
    ) -> PipelineResult[T]:
        """Fetch a URL and transform its body, with caching and deduplication.

        Args:
            request: What to fetch and how.
            transform: Called as ``transform(text, url)`` on the fetched body.
            serialize: Converts transformed data to a cacheable string.
            deserialize: Restores data from a cached string.

        Returns:
            PipelineResult with the transformed data.

        Raises:
            FetchError: Validation, network, or retry-exhaustion failure.
            Exception: Whatever the transform raises.
        """
        url = self._validator.validate(request.url)
        vary = append_header_vary(
            request.cache_vary,
            request.headers,
            self._config.security.blocked_headers,
        )
        cache_key = create_cache_key(request.cache_namespace, url, vary)
        if cache_key is None:
            raise FetchError(
                FetchErrorKind.INVALID_URL,
                "Cache namespace must not be empty",
                url=url,
            )
        log = self._log.bind(url=url, namespace=request.cache_namespace)

        cached = self._from_cache(cache_key, url, deserialize, log)
        if cached is not None:
            return cached

        dedupe_key = f"{request.cache_namespace}:{url}"
        entry, result, role = self._registry.join(dedupe_key, cache_key)

        if role == JoinRole.WAITER:
            self._metrics.record_dedupe_hit()
            log.debug("dedupe_hit", shared="result")
            return _wait_for(result, request.cancel_token, url)

        if role == JoinRole.TRANSFORMER:
            self._metrics.record_dedupe_hit()
            log.debug("dedupe_hit", shared="network")
            return self._settle(
                result,
                lambda: self._transform_and_store(
                    _wait_for(entry.raw, request.cancel_token, url),
                    url,
                    cache_key,
                    transform,
                    serialize,
                ),
            )

        try:
            return self._settle(
                result,
                lambda: self._transform_and_store(
                    self._fetch_raw(entry, request, url),
                    url,
                    cache_key,
                    transform,
                    serialize,
                ),
            )
        finally:
            self._registry.release(dedupe_key, entry)

    def _from_cache(
        self,
        cache_key: str,
        url: str,
        deserialize: Deserializer,
        log: structlog.stdlib.BoundLogger,
    ) -> PipelineResult[Any] | None:
        entry = self._cache.get(cache_key)
        if entry is None:
            if self._cache.enabled:
                self._metrics.record_cache_miss()
            return None

        try:
            data = deserialize(entry.content)
        except (TypeError, ValueError) as e:
            log.warning("cache_entry_unreadable", key=cache_key, error=str(e))
            self._cache.delete(cache_key)
            self._metrics.record_cache_miss()
            return None

        self._metrics.record_cache_hit()
        log.debug("cache_hit", key=cache_key)
        return PipelineResult(data=data, from_cache=True, url=url, fetched_at=entry.fetched_at)

    def _fetch_raw(
        self,
        entry: InFlightFetch,
        request: FetchRequest,
        url: str,
    ) -> RawFetchResult:
        """Run the network fetch with retries and publish it to joiners."""
        try:
            raw = self._retry.execute(
                lambda _attempt: self._fetcher.fetch(
                    url,
                    headers=request.headers,
                    timeout=request.timeout_seconds,
                    cancel_token=request.cancel_token,
                ),
                url,
                max_retries=request.max_retries,
                cancel_token=request.cancel_token,
            )
        except BaseException as e:
            entry.raw.set_exception(e)
            kind = e.kind if isinstance(e, FetchError) else FetchErrorKind.UNKNOWN
            self._metrics.record_failure(kind)
            self._log.warning(
                "fetch_failed",
                url=url,
                kind=kind.value,
                error=str(e),
                attempts=getattr(e, "attempts", None),
            )
            raise
        entry.raw.set_result(raw)
        return raw

    def _transform_and_store(
        self,
        raw: RawFetchResult,
        url: str,
        cache_key: str,
        transform: Transform[T],
        serialize: Serializer,
    ) -> PipelineResult[T]:
        data = transform(raw.text, url)
        fetched_at = self._clock()

        if self._cache.enabled:
            try:
                self._cache.set(cache_key, serialize(data), fetched_at=fetched_at)
            except (TypeError, ValueError) as e:
                self._log.warning("cache_write_failed", key=cache_key, error=str(e))

        return PipelineResult(data=data, from_cache=False, url=url, fetched_at=fetched_at)

    @staticmethod
    def _settle(
        result: "Future[PipelineResult[Any]]",
        produce: Callable[[], PipelineResult[T]],
    ) -> PipelineResult[T]:
        """Run produce() and publish its outcome to callers sharing the result."""
        try:
            value = produce()
        except BaseException as e:
            result.set_exception(e)
            raise
        result.set_result(value)
        return value

    def close(self) -> None:
        """Close the underlying HTTP fetcher."""
        self._fetcher.close()

    def __enter__(self) -> "FetchPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
