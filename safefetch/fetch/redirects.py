"""Redirect re-validation."""

from urllib.parse import urljoin, urlsplit

import structlog

from safefetch.fetch.constants import REDIRECT_STATUSES
from safefetch.fetch.errors import FetchError, FetchErrorKind, invalid_url
from safefetch.fetch.redact import redact_url_credentials
from safefetch.fetch.url_validator import UrlSafetyValidator


logger = structlog.get_logger()


def is_redirect_status(status_code: int) -> bool:
    """Check if a status code is a followable redirect."""
    return status_code in REDIRECT_STATUSES


class RedirectGuard:
    """Validates every redirect hop before it is followed.

    A hop that fails validation aborts the entire fetch with the validator's
    error; hops are never dropped silently.
    """

    def __init__(self, validator: UrlSafetyValidator, max_redirects: int) -> None:
        """Initialize the redirect guard.

        Args:
            validator: Validator re-run against every target.
            max_redirects: Maximum number of hops to follow.
        """
        self._validator = validator
        self._max_redirects = max(0, max_redirects)
        self._log = logger.bind(component="redirects")

    @property
    def max_redirects(self) -> int:
        """Get the hop limit."""
        return self._max_redirects

    def next_hop(
        self,
        current_url: str,
        location: str | None,
        redirect_count: int,
    ) -> str:
        """Compute and validate the next URL in a redirect chain.

        Args:
            current_url: URL that returned the redirect.
            location: Raw Location header value.
            redirect_count: Hops already followed.

        Returns:
            Normalized absolute target URL.

        Raises:
            FetchError: TOO_MANY_REDIRECTS, INVALID_URL, BLOCKED_HOST, or
                BLOCKED_IP.
        """
        if redirect_count >= self._max_redirects:
            raise FetchError(
                FetchErrorKind.TOO_MANY_REDIRECTS,
                f"Too many redirects (limit {self._max_redirects})",
                url=current_url,
                details={"max_redirects": self._max_redirects},
            )

        if not location or not location.strip():
            raise invalid_url("Redirect response missing Location header", current_url)

        target = urljoin(current_url, location.strip())
        try:
            parts = urlsplit(target)
        except ValueError as e:
            raise invalid_url("Invalid redirect target", current_url) from e

        if parts.username is not None or parts.password is not None:
            raise invalid_url("Redirect target includes credentials", current_url)

        try:
            next_url = self._validator.validate(target)
        except FetchError as e:
            self._log.warning(
                "redirect_rejected",
                from_url=current_url,
                to_url=redact_url_credentials(target),
                kind=e.kind.value,
            )
            e.url = e.url or current_url
            raise

        self._log.debug(
            "redirect_followed",
            from_url=current_url,
            to_url=next_url,
            hop=redirect_count + 1,
        )
        return next_url
