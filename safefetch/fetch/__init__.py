"""HTTP fetch layer with SSRF protection, retries, caching, and coalescing.

This module provides safe outbound fetch operations with:
- URL validation and connection-time DNS vetting
- Manual redirect following with per-hop re-validation
- Bounded retries with exponential backoff and Retry-After support
- Streaming response size enforcement
- In-memory result caching and in-flight request deduplication
- Cooperative cancellation and bounded concurrency
"""

from safefetch.fetch.cache import CacheStats, CacheUpdateEvent, RequestCache
from safefetch.fetch.cache_keys import (
    CacheKeyParts,
    create_cache_key,
    parse_cache_key,
    stable_stringify,
)
from safefetch.fetch.cancellation import CancellationToken, CancelReason
from safefetch.fetch.client import HttpFetcher, parse_retry_after
from safefetch.fetch.concurrency import (
    ConcurrencyLimiter,
    Settled,
    run_with_concurrency,
)
from safefetch.fetch.config import (
    CacheConfig,
    FetchConfig,
    RetryConfig,
    SecurityConfig,
)
from safefetch.fetch.dns import (
    DnsSafetyResolver,
    ResolvedAddress,
    Resolver,
    SystemResolver,
)
from safefetch.fetch.errors import FetchError, FetchErrorKind
from safefetch.fetch.metrics import FetchMetrics
from safefetch.fetch.models import (
    CacheEntry,
    FetchRequest,
    PipelineResult,
    RawFetchResult,
)
from safefetch.fetch.pipeline import FetchPipeline, PendingRequestRegistry
from safefetch.fetch.redact import redact_headers, redact_url_credentials
from safefetch.fetch.redirects import RedirectGuard
from safefetch.fetch.response import ReadResult, ResponseReader
from safefetch.fetch.retry import RetryPolicy
from safefetch.fetch.state_machine import RetryPhase, RetryStateMachine
from safefetch.fetch.transport import GuardedNetworkBackend, SafeHTTPTransport
from safefetch.fetch.url_validator import UrlSafetyValidator, validate_url


__all__ = [
    # Pipeline
    "FetchPipeline",
    "PendingRequestRegistry",
    "ConcurrencyLimiter",
    "Settled",
    "run_with_concurrency",
    # Client
    "HttpFetcher",
    "parse_retry_after",
    "SafeHTTPTransport",
    "GuardedNetworkBackend",
    "RedirectGuard",
    "ResponseReader",
    "ReadResult",
    # Security
    "UrlSafetyValidator",
    "validate_url",
    "DnsSafetyResolver",
    "Resolver",
    "SystemResolver",
    "ResolvedAddress",
    # Retry
    "RetryPolicy",
    "RetryPhase",
    "RetryStateMachine",
    # Cache
    "RequestCache",
    "CacheStats",
    "CacheUpdateEvent",
    "CacheKeyParts",
    "create_cache_key",
    "parse_cache_key",
    "stable_stringify",
    # Config
    "FetchConfig",
    "SecurityConfig",
    "CacheConfig",
    "RetryConfig",
    # Models
    "FetchRequest",
    "PipelineResult",
    "RawFetchResult",
    "CacheEntry",
    "FetchError",
    "FetchErrorKind",
    # Cancellation
    "CancellationToken",
    "CancelReason",
    # Metrics
    "FetchMetrics",
    # Redaction
    "redact_headers",
    "redact_url_credentials",
]
