"""Request header handling: defaults, sanitization, and cache vary."""

from collections.abc import Mapping
from typing import Any

from safefetch.fetch.config import DEFAULT_BLOCKED_HEADERS


def _has_crlf(value: str) -> bool:
    return "\r" in value or "\n" in value


def build_default_headers(user_agent: str) -> dict[str, str]:
    """Build the headers sent with every request.

    Args:
        user_agent: User-Agent string.

    Returns:
        Default headers dictionary.
    """
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
    }


def sanitize_headers(
    headers: Mapping[str, str] | None,
    blocked: frozenset[str] = DEFAULT_BLOCKED_HEADERS,
) -> dict[str, str]:
    """Drop caller headers that could spoof identity or smuggle requests.

    Removes blocked names (Host, Authorization, Cookie, forwarding headers)
    and any name or value containing CR/LF.

    Args:
        headers: Caller-supplied headers.
        blocked: Lowercase header names to drop.

    Returns:
        Sanitized headers (possibly empty).
    """
    if not headers:
        return {}

    return {
        key: value.strip()
        for key, value in headers.items()
        if key.lower() not in blocked and not _has_crlf(key) and not _has_crlf(value)
    }


def normalize_headers_for_cache(
    headers: Mapping[str, str] | None,
    blocked: frozenset[str] = DEFAULT_BLOCKED_HEADERS,
) -> dict[str, str] | None:
    """Normalize headers into a stable form for cache-key vary hashing.

    Args:
        headers: Caller-supplied headers.
        blocked: Lowercase header names to drop.

    Returns:
        Lowercased, trimmed headers, or None if nothing remains.
    """
    sanitized = sanitize_headers(headers, blocked)
    if not sanitized:
        return None
    return {key.lower(): value for key, value in sanitized.items()}


def append_header_vary(
    cache_vary: Mapping[str, Any] | str | None,
    headers: Mapping[str, str] | None,
    blocked: frozenset[str] = DEFAULT_BLOCKED_HEADERS,
) -> dict[str, Any] | None:
    """Fold request headers into a cache vary object.

    Args:
        cache_vary: Caller's vary object or string.
        headers: Caller-supplied request headers.
        blocked: Lowercase header names to drop.

    Returns:
        Combined vary, or None if there is nothing to vary on.
    """
    header_vary = normalize_headers_for_cache(headers, blocked)

    if not cache_vary and not header_vary:
        return None

    if isinstance(cache_vary, str):
        vary: dict[str, Any] = {"key": cache_vary}
    else:
        vary = dict(cache_vary or {})

    if header_vary:
        vary["headers"] = header_vary
    return vary
