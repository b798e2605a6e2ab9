"""Retry policy with exponential backoff and Retry-After support."""

import random
import time
from collections.abc import Callable
from typing import TypeVar

import structlog

from safefetch.fetch.cancellation import CancellationToken
from safefetch.fetch.config import RetryConfig
from safefetch.fetch.constants import (
    HTTP_STATUS_BAD_REQUEST,
    HTTP_STATUS_SERVER_ERROR_MIN,
    MAX_RETRIES,
    MIN_RETRIES,
)
from safefetch.fetch.errors import FetchError, FetchErrorKind
from safefetch.fetch.metrics import FetchMetrics
from safefetch.fetch.state_machine import RetryStateMachine


logger = structlog.get_logger()

T = TypeVar("T")

# (seconds, token) -> True if the wait was interrupted by cancellation
Waiter = Callable[[float, CancellationToken | None], bool]


def wait_for(seconds: float, cancel_token: CancellationToken | None) -> bool:
    """Sleep for `seconds`, returning early if the token is cancelled.

    Returns:
        True if cancelled during the wait.
    """
    if cancel_token is None:
        time.sleep(seconds)
        return False
    return cancel_token.wait(seconds)


def normalize_retries(max_retries: int) -> int:
    """Clamp a retry count into the supported range."""
    return min(max(MIN_RETRIES, max_retries), MAX_RETRIES)


class RetryPolicy:
    """Drives bounded, cancellable retry attempts for one operation.

    Classification:
    - ABORTED and validation-class errors are terminal
    - HTTP 4xx is terminal except 429
    - 429 waits Retry-After (capped) instead of normal backoff
    - Network errors, timeouts, 5xx and unknown errors are retried until
      the attempt limit is reached
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        wait: Waiter | None = None,
        rng: random.Random | None = None,
        metrics: FetchMetrics | None = None,
    ) -> None:
        """Initialize the retry policy.

        Args:
            config: Backoff and rate-limit settings.
            wait: Cancellable sleep; injectable for tests.
            rng: Random source for jitter.
            metrics: Metrics sink for retry counts.
        """
        self._config = config or RetryConfig()
        self._wait = wait or wait_for
        self._rng = rng or random.Random()  # noqa: S311
        self._metrics = metrics
        self._log = logger.bind(component="retry")

    @property
    def config(self) -> RetryConfig:
        """Get the retry configuration."""
        return self._config

    def is_retryable(self, error: BaseException) -> bool:
        """Check if an error kind may be retried at all.

        Args:
            error: The error raised by an attempt.

        Returns:
            True if another attempt could succeed.
        """
        if not isinstance(error, FetchError):
            return True

        if error.kind == FetchErrorKind.ABORTED or error.is_validation_error:
            return False

        if error.kind == FetchErrorKind.RATE_LIMITED:
            return True

        status = error.status_code
        if status is not None and HTTP_STATUS_BAD_REQUEST <= status < HTTP_STATUS_SERVER_ERROR_MIN:
            return False

        return True

    def should_retry(self, error: BaseException, attempt: int, max_attempts: int) -> bool:
        """Determine if a failed attempt should be retried.

        Args:
            error: The error that occurred.
            attempt: Attempt number that failed (1-based).
            max_attempts: Normalized attempt limit.

        Returns:
            True if the request should be retried.
        """
        if attempt >= max_attempts:
            return False
        return self.is_retryable(error)

    def get_delay_ms(self, attempt: int, error: BaseException | None = None) -> int:
        """Calculate delay before the next attempt.

        Rate-limited failures wait the server's Retry-After (default and cap
        from config) with no jitter. Everything else uses exponential backoff
        with symmetric jitter.

        Args:
            attempt: Attempt number that failed (1-based).
            error: The error that occurred.

        Returns:
            Delay in milliseconds.
        """
        if isinstance(error, FetchError) and error.kind == FetchErrorKind.RATE_LIMITED:
            retry_after = error.retry_after
            if retry_after is None:
                retry_after = self._config.rate_limit_default_seconds
            return min(retry_after, self._config.rate_limit_max_seconds) * 1000

        delay = min(
            self._config.base_delay_ms * (2 ** (attempt - 1)),
            self._config.max_delay_ms,
        )
        jitter = delay * self._config.jitter_factor * (self._rng.random() * 2 - 1)
        return max(0, round(delay + jitter))

    def execute(
        self,
        operation: Callable[[int], T],
        url: str,
        max_retries: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        """Run an operation with retries.

        Args:
            operation: Callable receiving the 1-based attempt number.
            url: URL being fetched (for errors and logging).
            max_retries: Total attempt budget; clamped to [1, 10].
            cancel_token: Caller cancellation.

        Returns:
            The operation's result.

        Raises:
            FetchError: ABORTED if cancelled before an attempt or during a
                wait; the terminal error itself; or an exhaustion error
                mentioning the attempt count.
        """
        if max_retries is None:
            max_retries = self._config.default_retries
        state = RetryStateMachine(url, normalize_retries(max_retries))
        log = self._log.bind(url=url)

        while True:
            if cancel_token is not None and cancel_token.cancelled:
                aborted = cancel_token.to_error(url, "before execution")
                state.fail(aborted)
                raise aborted

            attempt = state.start_attempt()
            try:
                result = operation(attempt)
            except Exception as error:
                if not self.should_retry(error, attempt, state.max_attempts):
                    state.fail(error)
                    if state.has_attempts_left or not self.is_retryable(error):
                        raise
                    raise self._exhausted(error, attempt, url) from error

                delay_ms = self.get_delay_ms(attempt, error)
                state.wait(error, delay_ms)
                if self._metrics is not None:
                    self._metrics.record_retry()

                if isinstance(error, FetchError) and error.kind == FetchErrorKind.RATE_LIMITED:
                    log.warning("rate_limited", attempt=attempt, wait_ms=delay_ms)
                else:
                    log.debug(
                        "retry_scheduled",
                        attempt=attempt,
                        delay_ms=delay_ms,
                        max_attempts=state.max_attempts,
                        error=str(error),
                    )

                if self._wait(delay_ms / 1000.0, cancel_token) and cancel_token is not None:
                    aborted = cancel_token.to_error(url, "during retry wait")
                    state.fail(aborted)
                    raise aborted from error
                continue

            state.succeed()
            return result

    def _exhausted(self, error: BaseException, attempts: int, url: str) -> FetchError:
        message = error.message if isinstance(error, FetchError) else str(error)
        exhausted = FetchError(
            error.kind if isinstance(error, FetchError) else FetchErrorKind.UNKNOWN,
            f"Failed after {attempts} attempts: {message}",
            url=url,
            status_code=error.status_code if isinstance(error, FetchError) else None,
            retry_after=error.retry_after if isinstance(error, FetchError) else None,
            attempts=attempts,
        )
        self._log.warning(
            "retries_exhausted",
            url=url,
            attempts=attempts,
            kind=exhausted.kind.value,
        )
        return exhausted
