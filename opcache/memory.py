# ABOUTME: In-memory LRU cache tier bounded by entry count with strict least-recently-used eviction
# ABOUTME: Holds CacheEntry records; freshness is judged by the caller against its own TTL policy

import sys
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Iterator, List, Optional, Tuple

from cachemodels import CacheEntry


class MemoryCache:
    """In-memory LRU cache of CacheEntry records."""

    def __init__(self, max_entries: int, default_ttl: float = 300.0):
        """Initialize memory cache with an entry bound and default TTL."""
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.total_requests = 0
        self._lock = threading.RLock()

    def put(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        timestamp: Optional[float] = None,
    ) -> CacheEntry:
        """Store value as the most recently used entry."""
        with self._lock:
            # Remove key if it already exists
            previous = self.cache.pop(key, None)

            entry = CacheEntry(
                key=key,
                data=value,
                timestamp=time.time() if timestamp is None else timestamp,
                ttl=self.default_ttl if ttl is None else ttl,
                access_count=previous.access_count if previous else 0,
                size_bytes=sys.getsizeof(key) + sys.getsizeof(str(value)),
            )
            self.cache[key] = entry

            self._evict_if_needed()
            return entry

    def get(self, key: str) -> Optional[CacheEntry]:
        """Retrieve an entry and mark it most recently used."""
        with self._lock:
            self.total_requests += 1

            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                return None

            # Move to end (most recently used)
            self.cache.move_to_end(key)
            entry.access_count += 1

            self.hits += 1
            return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Retrieve an entry without touching recency or statistics."""
        with self._lock:
            return self.cache.get(key)

    def remove(self, key: str) -> bool:
        with self._lock:
            return self.cache.pop(key, None) is not None

    def _evict_if_needed(self) -> None:
        """Evict least recently used entries while over the entry bound."""
        while len(self.cache) > self.max_entries:
            self.cache.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        """Clear all cached items."""
        with self._lock:
            self.cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self.cache)

    def keys(self) -> List[str]:
        """Snapshot of keys, least recently used first."""
        with self._lock:
            return list(self.cache.keys())

    def items(self) -> List[Tuple[str, CacheEntry]]:
        with self._lock:
            return list(self.cache.items())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self.cache

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return self.size()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            hit_rate = self.hits / max(self.total_requests, 1)
            return {
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "total_requests": self.total_requests,
                "hit_rate": hit_rate,
                "current_entries": len(self.cache),
                "current_size_bytes": sum(e.size_bytes for e in self.cache.values()),
                "max_entries": self.max_entries,
            }
