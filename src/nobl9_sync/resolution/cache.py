"""
Identity Cache

In-memory, thread-safe cache of lookup results, positive and negative,
with a time-to-live enforced on read.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from src.nobl9_sync.resolution.models import CacheEntry, normalize_identity

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60.0


class _ReadWriteLock:
    """Many concurrent readers or one writer. Writers are not starved."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class IdentityCache:
    """
    Key-value store for identity lookups.

    Keys are normalized on every operation, so "Alice@Example.com " and
    "alice@example.com" share an entry. Entries older than ttl seconds are
    treated as absent by get() and evicted; ttl=None keeps entries for the
    life of the process.

    Example:
        cache = IdentityCache(ttl=600)
        cache.set("alice@example.com", CacheEntry.positive("alice@example.com", "u-1"))
        entry = cache.get("ALICE@example.com")
    """

    def __init__(
        self,
        ttl: float | None = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl: Entry lifetime in seconds, or None for no expiry
            clock: Monotonic time source (injectable for tests)
        """
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive or None")
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = _ReadWriteLock()

    @property
    def ttl(self) -> float | None:
        return self._ttl

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return self._ttl is not None and now - entry.inserted_at >= self._ttl

    def get(self, key: str) -> CacheEntry | None:
        """Return the live entry for key, or None if absent or expired."""
        key = normalize_identity(key)
        with self._lock.read():
            entry = self._entries.get(key)
        if entry is None:
            return None

        if self._expired(entry, self._clock()):
            with self._lock.write():
                # Another writer may have refreshed the entry meanwhile
                current = self._entries.get(key)
                if current is entry:
                    del self._entries[key]
            logger.debug(f"Cache entry expired for {key}")
            return None
        return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        """Store entry under key, replacing any existing one."""
        key = normalize_identity(key)
        entry = replace(entry, key=key, inserted_at=self._clock())
        with self._lock.write():
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock.write():
            self._entries.clear()

    def purge_expired(self) -> int:
        """Evict every expired entry. Returns the number evicted."""
        if self._ttl is None:
            return 0
        now = self._clock()
        with self._lock.write():
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        """Snapshot of cache size and configured TTL."""
        with self._lock.read():
            size = len(self._entries)
        return {"size": size, "ttl": self._ttl}

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
