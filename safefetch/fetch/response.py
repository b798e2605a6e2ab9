"""Bounded, cancellable response body reading."""

import codecs
from dataclasses import dataclass

import httpx
import structlog

from safefetch.fetch.cancellation import CancellationToken
from safefetch.fetch.constants import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_RESPONSE_SIZE_BYTES
from safefetch.fetch.errors import FetchError, FetchErrorKind


logger = structlog.get_logger()

_READ_STAGE = "during response read"


@dataclass(frozen=True)
class ReadResult:
    """Decoded body and the number of bytes read."""

    text: str
    size: int


class ResponseReader:
    """Reads a response body as UTF-8 text under a byte budget.

    The budget is checked against Content-Length before reading and against
    the running byte count while streaming. Exceeding it closes the response
    and raises SIZE_EXCEEDED.
    """

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_RESPONSE_SIZE_BYTES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the reader.

        Args:
            max_bytes: Maximum body size in bytes.
            chunk_size: Streaming chunk size in bytes.
        """
        self._max_bytes = max_bytes
        self._chunk_size = chunk_size
        self._log = logger.bind(component="response")

    @property
    def max_bytes(self) -> int:
        """Get the byte budget."""
        return self._max_bytes

    def read_text(
        self,
        response: httpx.Response,
        url: str,
        cancel_token: CancellationToken | None = None,
    ) -> ReadResult:
        """Read and decode the body of a response.

        Args:
            response: Response to read (streamed or already loaded).
            url: URL for error reporting.
            cancel_token: Token that aborts the read when cancelled.

        Returns:
            ReadResult with decoded text and byte count.

        Raises:
            FetchError: SIZE_EXCEEDED, ABORTED/TIMEOUT on cancellation, or
                TIMEOUT/NETWORK_ERROR when the body stream fails.
        """
        self._check_declared_length(response, url)

        if response.is_stream_consumed:
            body = response.content
            if len(body) > self._max_bytes:
                raise self._size_error(url, len(body))
            return ReadResult(text=body.decode("utf-8", errors="replace"), size=len(body))

        unregister = (
            cancel_token.on_cancel(response.close) if cancel_token is not None else None
        )
        try:
            return self._read_stream(response, url, cancel_token)
        except FetchError:
            raise
        except Exception as e:
            # Closing the response from a cancel callback surfaces as a read error.
            if cancel_token is not None and cancel_token.cancelled:
                raise cancel_token.to_error(url, _READ_STAGE) from e
            if isinstance(e, httpx.TimeoutException):
                raise FetchError(
                    FetchErrorKind.TIMEOUT,
                    f"Request timed out {_READ_STAGE}",
                    url=url,
                ) from e
            if isinstance(e, httpx.TransportError):
                raise FetchError(
                    FetchErrorKind.NETWORK_ERROR,
                    f"Network error {_READ_STAGE}: {e}",
                    url=url,
                ) from e
            raise
        finally:
            if unregister is not None:
                unregister()

    def _read_stream(
        self,
        response: httpx.Response,
        url: str,
        cancel_token: CancellationToken | None,
    ) -> ReadResult:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        parts: list[str] = []
        total = 0

        for chunk in response.iter_bytes(chunk_size=self._chunk_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(url, _READ_STAGE)

            total += len(chunk)
            if total > self._max_bytes:
                response.close()
                raise self._size_error(url, total)
            parts.append(decoder.decode(chunk))

        if cancel_token is not None:
            cancel_token.raise_if_cancelled(url, _READ_STAGE)

        parts.append(decoder.decode(b"", final=True))
        return ReadResult(text="".join(parts), size=total)

    def _check_declared_length(self, response: httpx.Response, url: str) -> None:
        content_length = response.headers.get("content-length")
        if not content_length:
            return

        try:
            declared = int(content_length)
        except ValueError:
            return

        if declared > self._max_bytes:
            response.close()
            self._log.warning(
                "response_too_large",
                url=url,
                content_length=declared,
                max_bytes=self._max_bytes,
            )
            raise self._size_error(url, declared)

    def _size_error(self, url: str, size: int) -> FetchError:
        return FetchError(
            FetchErrorKind.SIZE_EXCEEDED,
            f"Response exceeds maximum size of {self._max_bytes} bytes",
            url=url,
            details={"max_bytes": self._max_bytes, "size": size},
        )
