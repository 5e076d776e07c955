"""Process-local TTL cache.

Bounds the rate of outbound provider calls. Entries are owned by the cache;
callers only ever receive the cached values.
"""

import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, Protocol, TypeVar

from billing_sync.logging_config import get_logger

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class Clock(Protocol):
    def now(self) -> datetime: ...


@dataclass
class CacheEntry(Generic[K, V]):
    """Cached value with the time it was stored."""

    key: K
    value: V
    last_updated: datetime


class TTLCache(Generic[K, V]):
    """Time-bounded key/value cache.

    An entry written at time t is served for any read before t + ttl; the
    first read at or after t + ttl calls the loader again. Concurrent misses
    may call the loader more than once.
    """

    def __init__(self, name: str, ttl_seconds: float, clock: Clock):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got: {ttl_seconds}")
        self.name = name
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[K, CacheEntry[K, V]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def _is_fresh(self, entry: CacheEntry[K, V], now: datetime) -> bool:
        return (now - entry.last_updated).total_seconds() < self.ttl_seconds

    def get(self, key: K) -> Optional[V]:
        """Return the cached value if fresh, None otherwise."""
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry, now):
                return entry.value
            return None

    def put(self, key: K, value: V) -> None:
        """Store a value stamped with the current time."""
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, last_updated=self._clock.now())

    def get_or_load(self, key: K, loader: Callable[[], V]) -> V:
        """Return the fresh cached value, or call loader, store and return its result.

        Loader exceptions propagate and leave the cache unchanged.
        """
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_fresh(entry, now):
                self._hits += 1
                logger.debug("cache_hit", cache=self.name, key=str(key))
                return entry.value
            self._misses += 1

        logger.debug("cache_miss", cache=self.name, key=str(key))
        value = loader()
        self.put(key, value)
        return value

    def invalidate(self, key: K) -> bool:
        """Drop one entry; returns True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        """Hit/miss counters and the number of fresh entries."""
        now = self._clock.now()
        with self._lock:
            fresh = sum(1 for entry in self._entries.values() if self._is_fresh(entry, now))
            return {
                "entries": len(self._entries),
                "fresh_entries": fresh,
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:
        return f"TTLCache(name={self.name!r}, ttl_seconds={self.ttl_seconds}, entries={len(self)})"
