"""HTTP client performing one guarded network attempt."""

import time
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx
import structlog

from safefetch.fetch.cancellation import CancellationToken
from safefetch.fetch.config import FetchConfig
from safefetch.fetch.constants import (
    HTTP_STATUS_OK_MAX,
    HTTP_STATUS_OK_MIN,
    HTTP_STATUS_TOO_MANY_REQUESTS,
)
from safefetch.fetch.dns import DnsSafetyResolver, Resolver
from safefetch.fetch.errors import FetchError, FetchErrorKind
from safefetch.fetch.headers import build_default_headers, sanitize_headers
from safefetch.fetch.metrics import FetchMetrics
from safefetch.fetch.models import RawFetchResult
from safefetch.fetch.redact import redact_headers, redact_url_credentials
from safefetch.fetch.redirects import RedirectGuard, is_redirect_status
from safefetch.fetch.response import ResponseReader
from safefetch.fetch.transport import SafeHTTPTransport
from safefetch.fetch.url_validator import UrlSafetyValidator


logger = structlog.get_logger()


def parse_retry_after(value: str | None) -> int | None:
    """Parse Retry-After header value.

    Args:
        value: Header value (seconds or HTTP date).

    Returns:
        Seconds to wait, or None if not parseable.
    """
    if not value:
        return None

    # Try parsing as integer seconds
    try:
        return max(0, int(value.strip()))
    except ValueError:
        pass

    # Try parsing as HTTP date
    try:
        dt = parsedate_to_datetime(value)
        delta = dt - datetime.now(UTC)
        return max(0, int(delta.total_seconds()))
    except (ValueError, TypeError):
        pass

    return None


class HttpFetcher:
    """HTTP client for a single fetch attempt.

    Provides guarded HTTP GET operations with:
    - Connection-time DNS vetting (via SafeHTTPTransport)
    - Manual redirect following with per-hop re-validation
    - Status classification (429 vs other non-2xx)
    - Bounded, cancellable body reading
    - Header sanitization and redaction for logging

    Retries are not handled here; RetryPolicy calls fetch() once per attempt.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        resolver: Resolver | None = None,
        transport: httpx.BaseTransport | None = None,
        metrics: FetchMetrics | None = None,
        validator: UrlSafetyValidator | None = None,
    ) -> None:
        """Initialize the HTTP fetcher.

        Args:
            config: Fetch configuration.
            resolver: DNS resolver used by the default transport.
            transport: Transport override (tests use httpx.MockTransport).
            metrics: Metrics sink.
            validator: URL validator for redirect targets.
        """
        self._config = config or FetchConfig()
        self._metrics = metrics or FetchMetrics()
        self._validator = validator or UrlSafetyValidator(self._config.security)
        self._redirects = RedirectGuard(self._validator, self._config.max_redirects)
        self._reader = ResponseReader(
            max_bytes=self._config.max_content_length,
            chunk_size=self._config.chunk_size,
        )
        if transport is None:
            transport = SafeHTTPTransport(DnsSafetyResolver(resolver, self._validator))
        self._client = httpx.Client(
            transport=transport,
            follow_redirects=False,
            trust_env=False,
            timeout=self._config.timeout_seconds,
        )
        self._log = logger.bind(component="fetch")

    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RawFetchResult:
        """Fetch a validated URL once.

        Args:
            url: Normalized URL (already validated).
            headers: Caller headers; blocked names are dropped.
            timeout: Deadline for the whole attempt in seconds.
            cancel_token: Caller cancellation.

        Returns:
            RawFetchResult with decoded body and final URL.

        Raises:
            FetchError: Classified failure for this attempt.
        """
        start_time_ns = time.perf_counter_ns()
        timeout = timeout or self._config.timeout_seconds
        request_headers = self._build_headers(headers)
        token = cancel_token or CancellationToken()

        log = self._log.bind(url=redact_url_credentials(url))
        log.debug("fetch_start", timeout=timeout, headers=redact_headers(request_headers))

        with token.child(timeout=timeout) as attempt_token:
            try:
                result = self._fetch_following_redirects(
                    url, request_headers, timeout, attempt_token
                )
            except FetchError:
                raise
            except Exception as e:  # noqa: BLE001
                if attempt_token.cancelled:
                    raise attempt_token.to_error(url, "during request") from e
                raise FetchError(
                    FetchErrorKind.UNKNOWN,
                    f"Unexpected error: {e}",
                    url=url,
                ) from e

        duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
        self._metrics.record_request(result.status_code, result.size)
        self._metrics.record_duration(duration_ms)
        log.info(
            "fetch_complete",
            status_code=result.status_code,
            final_url=result.url,
            bytes=result.size,
            duration_ms=round(duration_ms, 2),
        )
        return result

    def _build_headers(self, extra_headers: Mapping[str, str] | None) -> httpx.Headers:
        """Merge default headers with sanitized caller headers.

        Args:
            extra_headers: Additional headers from caller.

        Returns:
            Complete headers.
        """
        headers = httpx.Headers(build_default_headers(self._config.user_agent))
        for key, value in sanitize_headers(
            extra_headers, self._config.security.blocked_headers
        ).items():
            headers[key] = value
        return headers

    def _fetch_following_redirects(
        self,
        url: str,
        headers: httpx.Headers,
        timeout: float,
        token: CancellationToken,
    ) -> RawFetchResult:
        current_url = url
        redirect_count = 0

        while True:
            token.raise_if_cancelled(current_url, "before request")
            response = self._send(current_url, headers, timeout, token)
            try:
                if is_redirect_status(response.status_code):
                    location = response.headers.get("location")
                    response.close()
                    current_url = self._redirects.next_hop(
                        current_url, location, redirect_count
                    )
                    redirect_count += 1
                    continue

                return self._handle_response(response, current_url, token)
            finally:
                response.close()

    def _send(
        self,
        url: str,
        headers: httpx.Headers,
        timeout: float,
        token: CancellationToken,
    ) -> httpx.Response:
        request = self._client.build_request("GET", url, headers=headers, timeout=timeout)
        try:
            return self._client.send(request, stream=True)
        except FetchError as e:
            # Raised by the DNS guard inside the transport
            e.url = e.url or url
            raise
        except httpx.TimeoutException as e:
            if token.cancelled:
                raise token.to_error(url, "during request") from e
            raise FetchError(
                FetchErrorKind.TIMEOUT,
                f"Request timed out after {timeout}s",
                url=url,
            ) from e
        except httpx.TransportError as e:
            if token.cancelled:
                raise token.to_error(url, "during request") from e
            raise FetchError(
                FetchErrorKind.NETWORK_ERROR,
                f"Network error: {e}",
                url=url,
            ) from e

    def _handle_response(
        self,
        response: httpx.Response,
        url: str,
        token: CancellationToken,
    ) -> RawFetchResult:
        status_code = response.status_code

        if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            raise FetchError(
                FetchErrorKind.RATE_LIMITED,
                "Rate limited (429 Too Many Requests)",
                url=url,
                status_code=status_code,
                retry_after=retry_after,
            )

        if not HTTP_STATUS_OK_MIN <= status_code < HTTP_STATUS_OK_MAX:
            raise FetchError(
                FetchErrorKind.HTTP_STATUS,
                f"HTTP {status_code}: {response.reason_phrase}",
                url=url,
                status_code=status_code,
            )

        body = self._reader.read_text(response, url, token)
        return RawFetchResult(
            text=body.text,
            url=url,
            status_code=status_code,
            headers=dict(response.headers),
            size=body.size,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "HttpFetcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
