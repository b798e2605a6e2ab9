"""Unit tests for the in-memory request cache."""

import pytest

from safefetch.fetch.cache import CacheUpdateEvent, RequestCache
from safefetch.fetch.cache_keys import create_cache_key
from safefetch.fetch.config import CacheConfig
from tests.helpers.time import FIXED_NOW, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Create a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> RequestCache:
    """Create a cache with a one-minute TTL."""
    return RequestCache(CacheConfig(ttl_seconds=60, max_keys=3), clock=clock)


class TestGetSet:
    """Tests for basic cache reads and writes."""

    def test_miss_then_hit(self, cache: RequestCache) -> None:
        """Test that a written entry is returned."""
        assert cache.get("fetch:abc") is None

        entry = cache.set("fetch:abc", '{"a": 1}')

        assert entry is not None
        assert cache.get("fetch:abc") == entry
        assert entry.fetched_at == FIXED_NOW

    def test_explicit_fetched_at(self, cache: RequestCache, clock: FakeClock) -> None:
        """Test that the caller's fetch time is preserved."""
        clock.advance(30)

        entry = cache.set("fetch:abc", "x", fetched_at=FIXED_NOW)

        assert entry is not None
        assert entry.fetched_at == FIXED_NOW

    def test_empty_content_not_cached(self, cache: RequestCache) -> None:
        """Test that empty content is skipped."""
        assert cache.set("fetch:abc", "") is None
        assert len(cache) == 0

    def test_oversized_content_not_cached(self, clock: FakeClock) -> None:
        """Test that content over the byte limit is skipped."""
        cache = RequestCache(CacheConfig(max_content_size=4), clock=clock)

        assert cache.set("fetch:abc", "ééé") is None
        assert cache.set("fetch:def", "abcd") is not None

    def test_disabled_cache(self, clock: FakeClock) -> None:
        """Test that a disabled cache never stores or returns."""
        cache = RequestCache(CacheConfig(enabled=False), clock=clock)

        assert cache.set("fetch:abc", "x") is None
        assert cache.get("fetch:abc") is None

    def test_delete_and_clear(self, cache: RequestCache) -> None:
        """Test explicit removal."""
        cache.set("fetch:a", "1")
        cache.set("fetch:b", "2")

        assert cache.delete("fetch:a") is True
        assert cache.delete("fetch:a") is False
        cache.clear()
        assert cache.keys() == []


class TestExpiry:
    """Tests for TTL handling."""

    def test_expired_entry_is_miss(self, cache: RequestCache, clock: FakeClock) -> None:
        """Test that entries vanish after the TTL."""
        cache.set("fetch:abc", "x")

        clock.advance(59)
        assert cache.get("fetch:abc") is not None

        clock.advance(1)
        assert cache.get("fetch:abc") is None
        assert len(cache) == 0

    def test_keys_skip_expired(self, cache: RequestCache, clock: FakeClock) -> None:
        """Test that keys() lists only live entries."""
        cache.set("fetch:old", "x")
        clock.advance(45)
        cache.set("fetch:new", "y")
        clock.advance(30)

        assert cache.keys() == ["fetch:new"]


class TestEviction:
    """Tests for bounded capacity."""

    def test_evicts_least_recently_read(self, cache: RequestCache) -> None:
        """Test that the oldest unread entry is evicted first."""
        cache.set("fetch:a", "1")
        cache.set("fetch:b", "2")
        cache.set("fetch:c", "3")
        cache.get("fetch:a")

        cache.set("fetch:d", "4")

        assert cache.get("fetch:b") is None
        assert cache.get("fetch:a") is not None
        assert len(cache) == 3
        assert cache.stats().evictions == 1

    def test_stats_counters(self, cache: RequestCache) -> None:
        """Test hit, miss and set counters."""
        cache.get("fetch:a")
        cache.set("fetch:a", "1")
        cache.get("fetch:a")

        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.sets, stats.size) == (1, 1, 1, 1)


class TestUpdateListeners:
    """Tests for cache update notifications."""

    def test_listener_receives_parsed_key(self, cache: RequestCache) -> None:
        """Test that listeners get namespace and hash."""
        events: list[CacheUpdateEvent] = []
        cache.on_update(events.append)
        key = create_cache_key("markdown", "https://example.com/")
        assert key is not None

        cache.set(key, "content")

        assert len(events) == 1
        assert events[0].cache_key == key
        assert events[0].namespace == "markdown"
        assert events[0].url_hash == key.split(":", 1)[1]

    def test_unsubscribe(self, cache: RequestCache) -> None:
        """Test that unsubscribed listeners are not called."""
        events: list[CacheUpdateEvent] = []
        unsubscribe = cache.on_update(events.append)

        unsubscribe()
        cache.set("fetch:abc", "x")

        assert events == []

    def test_failing_listener_does_not_break_set(self, cache: RequestCache) -> None:
        """Test that a listener error is contained."""

        def broken(event: CacheUpdateEvent) -> None:
            raise RuntimeError("listener failed")

        cache.on_update(broken)

        assert cache.set("fetch:abc", "x") is not None
