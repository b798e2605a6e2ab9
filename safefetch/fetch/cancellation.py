"""Cooperative cancellation tokens.

A token is threaded through every call that can block: attempts, retry
waits, and streamed reads. Caller cancellation and deadline expiry share the
same event but record different reasons, so a derived time-bounded token
resolves to TIMEOUT while caller cancellation resolves to ABORTED.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum

import structlog

from safefetch.fetch.errors import FetchError, FetchErrorKind


logger = structlog.get_logger()


class CancelReason(str, Enum):
    """Why a token was cancelled."""

    ABORTED = "ABORTED"
    TIMEOUT = "TIMEOUT"


class CancellationToken:
    """Thread-safe, single-shot cancellation signal with callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: CancelReason | None = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        """Check if the token has been cancelled."""
        return self._event.is_set()

    @property
    def reason(self) -> CancelReason | None:
        """Get the cancellation reason, or None while active."""
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.ABORTED) -> None:
        """Cancel the token and run registered callbacks.

        Only the first call has any effect.

        Args:
            reason: Why the token is being cancelled.
        """
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:  # noqa: BLE001
                logger.warning(
                    "cancel_callback_failed",
                    component="cancellation",
                    error=str(e),
                )

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run when the token is cancelled.

        The callback runs immediately if the token is already cancelled.

        Args:
            callback: Zero-argument callable.

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)

        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, seconds: float) -> bool:
        """Block for up to `seconds` or until cancelled.

        Args:
            seconds: Maximum time to wait.

        Returns:
            True if the token was cancelled during (or before) the wait.
        """
        return self._event.wait(max(0.0, seconds))

    @contextmanager
    def child(self, timeout: float | None = None) -> Iterator["CancellationToken"]:
        """Derive a token cancelled by this token or by a deadline.

        The child records TIMEOUT when its deadline fires and inherits the
        parent's reason when the parent is cancelled. The timer and the
        parent registration are released on exit.

        Args:
            timeout: Seconds until the child expires; None for no deadline.

        Yields:
            The derived token.
        """
        child = CancellationToken()
        unregister = self.on_cancel(
            lambda: child.cancel(self._reason or CancelReason.ABORTED)
        )
        timer: threading.Timer | None = None
        if timeout is not None:
            timer = threading.Timer(timeout, child.cancel, args=(CancelReason.TIMEOUT,))
            timer.daemon = True
            timer.start()
        try:
            yield child
        finally:
            if timer is not None:
                timer.cancel()
            unregister()

    def to_error(self, url: str | None, stage: str) -> FetchError:
        """Build the error matching this token's cancellation reason.

        Args:
            url: URL being fetched.
            stage: Human-readable stage, e.g. "during response read".

        Returns:
            ABORTED or TIMEOUT FetchError.
        """
        if self._reason == CancelReason.TIMEOUT:
            return FetchError(
                FetchErrorKind.TIMEOUT,
                f"Request timed out {stage}",
                url=url,
            )
        return FetchError(
            FetchErrorKind.ABORTED,
            f"Request was aborted {stage}",
            url=url,
            details={"reason": "aborted"},
        )

    def raise_if_cancelled(self, url: str | None, stage: str) -> None:
        """Raise the matching error if the token is cancelled.

        Raises:
            FetchError: ABORTED or TIMEOUT when cancelled.
        """
        if self.cancelled:
            raise self.to_error(url, stage)
