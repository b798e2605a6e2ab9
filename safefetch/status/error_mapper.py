"""Error mapping for caller-facing error responses.

Maps fetch errors to machine-readable error codes. Extend by adding new
mappings, not by modifying existing code.
"""

import traceback
from typing import Any

from pydantic import BaseModel, ConfigDict

from safefetch.fetch.errors import FetchError, FetchErrorKind


UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"

_KIND_TO_CODE: dict[FetchErrorKind, str] = {
    FetchErrorKind.INVALID_URL: "INVALID_URL",
    FetchErrorKind.BLOCKED_HOST: "BLOCKED_HOST",
    FetchErrorKind.BLOCKED_IP: "BLOCKED_IP",
    FetchErrorKind.TOO_MANY_REDIRECTS: "TOO_MANY_REDIRECTS",
    FetchErrorKind.TIMEOUT: "TIMEOUT",
    FetchErrorKind.ABORTED: "ABORTED",
    FetchErrorKind.RATE_LIMITED: "RATE_LIMITED",
    FetchErrorKind.SIZE_EXCEEDED: "SIZE_EXCEEDED",
    FetchErrorKind.NETWORK_ERROR: "NETWORK_ERROR",
    FetchErrorKind.UNKNOWN: UNKNOWN_ERROR_CODE,
}


class ErrorResponse(BaseModel):
    """Serializable error returned to callers."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    url: str
    status_code: int | None = None
    details: dict[str, Any] | None = None


def map_error_code(error: BaseException) -> str:
    """Map an error to its caller-facing code.

    Args:
        error: Any exception raised by the fetch engine or a transform.

    Returns:
        Error code string, e.g. "BLOCKED_IP" or "HTTP_404".
    """
    if not isinstance(error, FetchError):
        return UNKNOWN_ERROR_CODE

    if error.kind == FetchErrorKind.HTTP_STATUS:
        if error.status_code is None:
            return UNKNOWN_ERROR_CODE
        return f"HTTP_{error.status_code}"

    return _KIND_TO_CODE.get(error.kind, UNKNOWN_ERROR_CODE)


def to_error_response(
    error: BaseException,
    url: str,
    development: bool = False,
) -> ErrorResponse:
    """Build the caller-facing response for an error.

    Args:
        error: Exception to map.
        url: URL the caller asked for.
        development: Append the traceback to the message.

    Returns:
        ErrorResponse with code, message, and details.
    """
    if isinstance(error, FetchError):
        message = error.message
        status_code = error.status_code
        details: dict[str, Any] = dict(error.details)
        if error.kind == FetchErrorKind.RATE_LIMITED:
            details["retry_after"] = error.retry_after
        if error.attempts is not None:
            details["attempts"] = error.attempts
    else:
        message = f"Operation failed: {error}"
        status_code = None
        details = {}

    if development:
        message = f"{message}\n{''.join(traceback.format_exception(error))}"

    return ErrorResponse(
        code=map_error_code(error),
        message=message,
        url=url,
        status_code=status_code,
        details=details or None,
    )
