"""Cache key construction.

Keys have the form ``namespace:urlHash`` or ``namespace:urlHash.varyHash``.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from safefetch.fetch.constants import URL_HASH_LENGTH, VARY_HASH_LENGTH


MAX_VARY_DEPTH = 20


@dataclass(frozen=True)
class CacheKeyParts:
    """Namespace and hash portion of a cache key."""

    namespace: str
    url_hash: str


def _hash_fragment(value: str, length: int) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def _drop_none(value: Any, depth: int = 0) -> Any:
    if depth > MAX_VARY_DEPTH:
        msg = f"Vary object exceeds max depth of {MAX_VARY_DEPTH}"
        raise ValueError(msg)

    if isinstance(value, Mapping):
        return {
            str(key): _drop_none(item, depth + 1)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, list | tuple):
        return [_drop_none(item, depth + 1) for item in value]
    return value


def stable_stringify(value: Any) -> str:
    """Serialize a value to canonical JSON.

    Object keys are sorted and ``None`` members are dropped, so two vary
    objects with the same content always produce the same string.

    Args:
        value: JSON-compatible value.

    Returns:
        Compact canonical JSON string.

    Raises:
        ValueError: If the value is nested too deeply.
    """
    return json.dumps(
        _drop_none(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def _vary_hash(vary: Mapping[str, Any] | str | None) -> str | None:
    if not vary:
        return None
    vary_string = vary if isinstance(vary, str) else stable_stringify(vary)
    return _hash_fragment(vary_string, VARY_HASH_LENGTH)


def create_cache_key(
    namespace: str,
    url: str,
    vary: Mapping[str, Any] | str | None = None,
) -> str | None:
    """Build the cache key for a normalized URL.

    Args:
        namespace: Logical cache partition, e.g. "fetch".
        url: Normalized URL.
        vary: Optional vary object or string.

    Returns:
        Cache key, or None if namespace or URL is empty.
    """
    if not namespace or not url:
        return None

    url_hash = _hash_fragment(url, URL_HASH_LENGTH)
    vary_hash = _vary_hash(vary)
    if vary_hash:
        return f"{namespace}:{url_hash}.{vary_hash}"
    return f"{namespace}:{url_hash}"


def parse_cache_key(cache_key: str) -> CacheKeyParts | None:
    """Split a cache key into namespace and hash.

    Args:
        cache_key: Key produced by create_cache_key.

    Returns:
        Parsed parts, or None if the key is malformed.
    """
    if not cache_key:
        return None
    namespace, _, url_hash = cache_key.partition(":")
    if not namespace or not url_hash:
        return None
    return CacheKeyParts(namespace=namespace, url_hash=url_hash)
