"""
Time-bounded memoization used by the router and the inference engine.

Expired or unreadable entries are treated as a miss, never as an error.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A memoized value and when it was stored."""
    value: T
    created_at: float


class TTLCache(Generic[T]):
    """
    Thread-safe cache whose entries expire after a fixed age.

    When max_entries is set and exceeded, the evict_count oldest entries
    are dropped in one go.

    Example:
        >>> cache = TTLCache[str](ttl=60.0)
        >>> cache.set("k", "v")
        >>> cache.get("k")
        'v'
    """

    def __init__(
        self,
        ttl: float,
        max_entries: Optional[int] = None,
        evict_count: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.evict_count = max(1, evict_count)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[T]:
        """Return the live value for key, or None."""
        with self._lock:
            entry = self._entries.get(key)
            if not isinstance(entry, CacheEntry):
                self._entries.pop(key, None)
                self.misses += 1
                return None
            if self._clock() - entry.created_at > self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, created_at=self._clock())
            if self.max_entries is not None and len(self._entries) > self.max_entries:
                oldest = sorted(self._entries.items(), key=lambda kv: kv[1].created_at)
                for old_key, _ in oldest[: self.evict_count]:
                    del self._entries[old_key]

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now - e.created_at > self.ttl]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttl": self.ttl,
            }
