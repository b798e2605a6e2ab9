"""Error types for the fetch engine."""

from enum import Enum


class FetchErrorKind(str, Enum):
    """Classification of fetch errors for retry decisions and reporting.

    - INVALID_URL: URL is malformed, uses a forbidden scheme, or carries credentials
    - BLOCKED_HOST: Hostname is on the blocklist or uses an internal suffix
    - BLOCKED_IP: Hostname is, or resolves to, a private/loopback/link-local address
    - TOO_MANY_REDIRECTS: Redirect chain exceeded the configured maximum
    - TIMEOUT: Per-attempt deadline expired
    - ABORTED: Caller cancelled the request
    - RATE_LIMITED: 429 Too Many Requests
    - HTTP_STATUS: Non-2xx response other than 429
    - SIZE_EXCEEDED: Response body exceeded the byte budget
    - NETWORK_ERROR: DNS, connect, or transport failure
    - UNKNOWN: Unclassified error
    """

    INVALID_URL = "INVALID_URL"
    BLOCKED_HOST = "BLOCKED_HOST"
    BLOCKED_IP = "BLOCKED_IP"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    TIMEOUT = "TIMEOUT"
    ABORTED = "ABORTED"
    RATE_LIMITED = "RATE_LIMITED"
    HTTP_STATUS = "HTTP_STATUS"
    SIZE_EXCEEDED = "SIZE_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"


# Failures caused by the URL or response shape; retrying cannot change them.
VALIDATION_KINDS = frozenset(
    {
        FetchErrorKind.INVALID_URL,
        FetchErrorKind.BLOCKED_HOST,
        FetchErrorKind.BLOCKED_IP,
        FetchErrorKind.TOO_MANY_REDIRECTS,
        FetchErrorKind.SIZE_EXCEEDED,
    }
)


class FetchError(Exception):
    """Structured failure raised by every stage of the fetch engine.

    Carries exactly one kind, which drives retry eligibility and the
    caller-facing error code.
    """

    def __init__(  # noqa: PLR0913
        self,
        kind: FetchErrorKind,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        retry_after: int | None = None,
        attempts: int | None = None,
        details: dict[str, str | int | bool | None] | None = None,
    ) -> None:
        """Initialize the fetch error.

        Args:
            kind: Classification of the error.
            message: Human-readable error message.
            url: URL being fetched when the error occurred.
            status_code: HTTP status code if available.
            retry_after: Retry-After seconds (for RATE_LIMITED).
            attempts: Number of attempts made (set on retry exhaustion).
            details: Additional structured error details.
        """
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.url = url
        self.status_code = status_code
        self.retry_after = retry_after
        self.attempts = attempts
        self.details = details or {}

    @property
    def is_validation_error(self) -> bool:
        """Check if the error stems from URL or response validation."""
        return self.kind in VALIDATION_KINDS

    def to_dict(
        self,
    ) -> dict[str, str | int | None | dict[str, str | int | bool | None]]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "kind": self.kind.value,
            "message": self.message,
            "url": self.url,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
            "attempts": self.attempts,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"FetchError(kind={self.kind.value}, message={self.message!r})"


def invalid_url(message: str, url: str | None = None) -> FetchError:
    """Build an INVALID_URL error."""
    return FetchError(FetchErrorKind.INVALID_URL, message, url=url)


def blocked_host(hostname: str, url: str | None = None) -> FetchError:
    """Build a BLOCKED_HOST error."""
    return FetchError(
        FetchErrorKind.BLOCKED_HOST,
        f"Blocked host: {hostname}. Internal hosts are not allowed",
        url=url,
        details={"hostname": hostname},
    )


def blocked_ip(address: str, url: str | None = None) -> FetchError:
    """Build a BLOCKED_IP error."""
    return FetchError(
        FetchErrorKind.BLOCKED_IP,
        f"Blocked IP range: {address}. Private IPs are not allowed",
        url=url,
        details={"address": address},
    )
