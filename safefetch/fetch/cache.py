"""In-memory result cache with TTL and bounded key count."""

import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from safefetch.fetch.cache_keys import parse_cache_key
from safefetch.fetch.config import CacheConfig
from safefetch.fetch.models import CacheEntry


logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get the current UTC time."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheUpdateEvent:
    """Emitted after an entry is written."""

    cache_key: str
    namespace: str
    url_hash: str


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache counters."""

    hits: int
    misses: int
    sets: int
    evictions: int
    size: int


CacheUpdateListener = Callable[[CacheUpdateEvent], None]


class RequestCache:
    """Thread-safe TTL cache keyed by cache key strings.

    Entries are kept in least-recently-read order; once the key count
    exceeds ``max_keys`` the oldest entries are evicted. Expired entries are
    purged on access.
    """

    def __init__(self, config: CacheConfig | None = None, clock: Clock | None = None) -> None:
        """Initialize the cache.

        Args:
            config: TTL, size and capacity settings.
            clock: Returns the current aware datetime; injectable for tests.
        """
        self._config = config or CacheConfig()
        self._clock = clock or utc_now
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._listeners: list[CacheUpdateListener] = []
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0
        self._log = logger.bind(component="cache")

    @property
    def enabled(self) -> bool:
        """Check if caching is enabled."""
        return self._config.enabled

    def get(self, key: str | None) -> CacheEntry | None:
        """Look up a live entry.

        Args:
            key: Cache key.

        Returns:
            The entry, or None on miss, expiry, or when disabled.
        """
        if not self._config.enabled or not key:
            return None

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry

    def set(
        self,
        key: str | None,
        content: str,
        fetched_at: datetime | None = None,
    ) -> CacheEntry | None:
        """Store serialized content.

        Empty content and content larger than ``max_content_size`` bytes are
        not cached.

        Args:
            key: Cache key.
            content: Serialized result.
            fetched_at: Fetch time; defaults to now.

        Returns:
            The stored entry, or None if nothing was stored.
        """
        if not self._config.enabled or not key or not content:
            return None

        size = len(content.encode("utf-8"))
        if size > self._config.max_content_size:
            self._log.debug(
                "cache_skip_oversized",
                key=key,
                size=size,
                max_size=self._config.max_content_size,
            )
            return None

        now = self._clock()
        entry = CacheEntry(
            key=key,
            content=content,
            fetched_at=fetched_at or now,
            expires_at=now + timedelta(seconds=self._config.ttl_seconds),
        )

        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            self._sets += 1
            while len(self._entries) > self._config.max_keys:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                self._log.debug("cache_evicted", key=evicted)
            listeners = list(self._listeners)

        self._emit_update(key, listeners)
        return entry

    def delete(self, key: str) -> bool:
        """Remove an entry.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries. Counters are kept."""
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        """List keys of live entries, oldest first."""
        now = self._clock()
        with self._lock:
            return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        """Get a snapshot of the cache counters."""
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                sets=self._sets,
                evictions=self._evictions,
                size=len(self._entries),
            )

    def on_update(self, listener: CacheUpdateListener) -> Callable[[], None]:
        """Subscribe to entry writes.

        Args:
            listener: Called with a CacheUpdateEvent after each write.

        Returns:
            Function that unsubscribes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _emit_update(self, key: str, listeners: list[CacheUpdateListener]) -> None:
        parts = parse_cache_key(key)
        if parts is None:
            return
        event = CacheUpdateEvent(cache_key=key, namespace=parts.namespace, url_hash=parts.url_hash)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:  # noqa: BLE001
                self._log.warning("cache_listener_failed", key=key, error=str(e))
