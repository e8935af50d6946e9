"""
Tests for IdentityCache.
"""

import threading

import pytest

from src.common.exceptions import NotFoundError
from src.nobl9_sync.resolution import CacheEntry, IdentityCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheEntry:
    """Tests for CacheEntry invariants."""

    def test_positive_entry(self):
        entry = CacheEntry.positive("a@example.com", "u-1")
        assert entry.found
        assert entry.value == "u-1"
        assert entry.error is None

    def test_negative_entry(self):
        error = NotFoundError("user not found")
        entry = CacheEntry.negative("a@example.com", error)
        assert not entry.found
        assert entry.value is None
        assert entry.error is error

    def test_positive_without_value_rejected(self):
        with pytest.raises(ValueError):
            CacheEntry(key="a@example.com", found=True)

    def test_negative_without_error_rejected(self):
        with pytest.raises(ValueError):
            CacheEntry(key="a@example.com", found=False)

    def test_negative_with_value_rejected(self):
        with pytest.raises(ValueError):
            CacheEntry(key="a", value="u-1", found=False, error=NotFoundError("x"))


class TestIdentityCache:
    """Tests for IdentityCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        return IdentityCache(ttl=60.0, clock=clock)

    def test_get_missing_returns_none(self, cache):
        assert cache.get("nobody@example.com") is None

    def test_set_then_get(self, cache):
        """Stored entries are returned."""
        cache.set("alice@example.com", CacheEntry.positive("alice@example.com", "u-1"))
        entry = cache.get("alice@example.com")
        assert entry is not None
        assert entry.value == "u-1"

    def test_keys_are_normalized(self, cache):
        """Case and surrounding whitespace do not matter."""
        cache.set("  Alice@Example.COM ", CacheEntry.positive("x", "u-1"))
        entry = cache.get("alice@example.com")
        assert entry is not None
        assert entry.key == "alice@example.com"
        assert "ALICE@EXAMPLE.COM" in cache

    def test_set_overwrites(self, cache):
        """Last writer wins."""
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-2"))
        assert cache.get("a@example.com").value == "u-2"
        assert len(cache) == 1

    def test_negative_entries_are_cached(self, cache):
        cache.set("ghost@example.com", CacheEntry.negative("ghost@example.com", NotFoundError("nope")))
        entry = cache.get("ghost@example.com")
        assert entry is not None
        assert not entry.found

    def test_entries_expire_on_read(self, cache, clock):
        """Entries older than the TTL are treated as absent and evicted."""
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        clock.advance(59.0)
        assert cache.get("a@example.com") is not None

        clock.advance(1.0)
        assert cache.get("a@example.com") is None
        assert len(cache) == 0

    def test_overwrite_refreshes_ttl(self, cache, clock):
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        clock.advance(50.0)
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        clock.advance(50.0)
        assert cache.get("a@example.com") is not None

    def test_no_ttl_never_expires(self, clock):
        cache = IdentityCache(ttl=None, clock=clock)
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        clock.advance(10**9)
        assert cache.get("a@example.com") is not None
        assert cache.purge_expired() == 0

    def test_purge_expired(self, cache, clock):
        cache.set("old@example.com", CacheEntry.positive("old@example.com", "u-1"))
        clock.advance(30.0)
        cache.set("new@example.com", CacheEntry.positive("new@example.com", "u-2"))
        clock.advance(40.0)

        assert cache.purge_expired() == 1
        assert "new@example.com" in cache
        assert "old@example.com" not in cache

    def test_clear(self, cache):
        for i in range(5):
            cache.set(f"u{i}@example.com", CacheEntry.positive(f"u{i}@example.com", str(i)))
        cache.clear()
        assert len(cache) == 0
        assert cache.get("u0@example.com") is None

    def test_stats(self, cache):
        cache.set("a@example.com", CacheEntry.positive("a@example.com", "u-1"))
        assert cache.stats() == {"size": 1, "ttl": 60.0}

    def test_default_ttl_is_thirty_minutes(self):
        assert IdentityCache().ttl == 1800.0

    def test_invalid_ttl_rejected(self):
        with pytest.raises(ValueError):
            IdentityCache(ttl=0)

    def test_concurrent_access(self):
        """Concurrent readers and writers never corrupt the store."""
        cache = IdentityCache(ttl=None)
        errors = []

        def writer(n: int) -> None:
            try:
                for i in range(200):
                    key = f"user{i % 20}@example.com"
                    cache.set(key, CacheEntry.positive(key, f"{n}-{i}"))
            except Exception as e:  # pragma: no cover
                errors.append(e)

        def reader() -> None:
            try:
                for i in range(500):
                    entry = cache.get(f"user{i % 20}@example.com")
                    assert entry is None or entry.found
                    cache.stats()
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert not errors
        assert len(cache) == 20
