from typing import Dict, Any, List, Optional
from collections import OrderedDict
import asyncio
import hashlib


def content_hash(text: str) -> str:
    """Stable cache key for a text"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """
    Bounded in-memory text -> vector cache with FIFO eviction.

    Entries are evicted in insertion order, oldest first. Re-setting an
    existing key replaces its vector but keeps its position, and reads do not
    refresh position. The cache is process-local and owned by one adapter.
    """

    def __init__(self, max_entries: int = 200):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self._lock = asyncio.Lock()

    async def get(self, text: str) -> Optional[List[float]]:
        """Get the cached vector for a text"""

        async with self._lock:
            vector = self.cache.get(content_hash(text))
            if vector is None:
                self.misses += 1
                return None
            self.hits += 1
            return vector

    async def set(self, text: str, vector: List[float]) -> None:
        """Cache a vector, evicting the oldest entry when full"""

        key = content_hash(text)
        async with self._lock:
            if key in self.cache:
                self.cache[key] = vector
                return

            while len(self.cache) >= self.max_entries:
                self.cache.popitem(last=False)
                self.evictions += 1

            self.cache[key] = vector

    async def contains(self, text: str) -> bool:
        async with self._lock:
            return content_hash(text) in self.cache

    async def clear(self) -> int:
        """Drop all entries and return how many were dropped"""

        async with self._lock:
            count = len(self.cache)
            self.cache.clear()
            return count

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            return {
                "size": len(self.cache),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions
            }
