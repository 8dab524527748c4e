"""Bounded in-memory TTL cache."""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from core.logging_config import get_logger

LOGGER = get_logger(__name__)


@dataclass
class CacheEntry:
    """A single cache entry with TTL support."""

    value: Any
    created_at: float
    ttl_seconds: float

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired."""
        return now - self.created_at >= self.ttl_seconds


class TTLCache:
    """
    In-memory cache with TTL and a maximum size.

    When full, the least recently written entry is evicted. All operations
    hold a lock so the cache can be shared by request threads. Contents are
    lost on restart.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 3600,
        max_size: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl_seconds: Default TTL for entries (1 hour).
            max_size: Maximum number of live entries.
            clock: Monotonic time source, injectable for tests.
        """
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._default_ttl = default_ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Returns:
            Cached value or None if not found/expired.
        """
        with self._lock:
            return self._get_locked(key)

    def _get_locked(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """
        Set a value in the cache, restarting its TTL.

        Args:
            key: Cache key.
            value: Value to cache.
            ttl_seconds: TTL in seconds (uses default if not specified).
        """
        with self._lock:
            self._set_locked(key, value, ttl_seconds)

    def _set_locked(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        self._cache.pop(key, None)
        self._cache[key] = CacheEntry(value=value, created_at=self._clock(), ttl_seconds=ttl)
        while len(self._cache) > self._max_size:
            evicted, _ = self._cache.popitem(last=False)
            LOGGER.debug(f"Evicted cache key {evicted!r}")

    def increment(self, key: str) -> int:
        """
        Atomically increment an integer counter and return the new value.

        A missing or expired key starts at 1. Every increment restarts the
        entry TTL.
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or entry.is_expired(self._clock()):
                self._set_locked(key, 1)
                return 1
            count = int(entry.value) + 1
            self._set_locked(key, count)
            return count

    def delete(self, key: str) -> bool:
        """Delete a value from the cache. Returns True if it existed."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all entries from the cache."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    @property
    def size(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        return {
            "size": self.size,
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total else 0.0,
        }
