"""Bounded in-memory caches for embeddings and search results.

Both caches keep entries in an OrderedDict (a hash index over a doubly
linked list), so eviction order is the insertion order by construction.
Reads never reorder entries: eviction is oldest-inserted-first (FIFO).

- EmbeddingCache: key -> vector memo in front of the embedding provider
- ResultCache: key -> payload memo of finished searches, with a TTL

All mutation happens under a lock so a size check and the insert (or a read,
TTL check and evict) are one atomic step even with concurrent callers.
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """Bounded FIFO memo of provider output.

    Example:
        cache = EmbeddingCache(max_size=1000)
        cache.put("text-embedding-004:ab12...", vector)
        cache.get("text-embedding-004:ab12...")  # -> vector
    """

    def __init__(self, max_size: int = 1000):
        """Initialize EmbeddingCache.

        Args:
            max_size: Maximum number of cached vectors (>= 1).
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")

        self.max_size = max_size
        self._entries: OrderedDict[str, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> np.ndarray | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, vector: np.ndarray) -> None:
        """Insert a vector, evicting the oldest entries if at capacity.

        The stored array is made read-only so callers cannot corrupt it.
        """
        stored = np.array(vector, dtype=np.float32, copy=True)
        stored.setflags(write=False)

        with self._lock:
            if key in self._entries:
                # Re-insert moves the key to the newest position
                del self._entries[key]
            while len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted embedding cache entry %s", evicted)
            self._entries[key] = stored

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        """Keys in insertion order, oldest first."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


def build_search_cache_key(
    search_type: str,
    query: str,
    filters: Mapping[str, Any] | None = None,
    limit: int = 10,
    threshold: float = 0.5,
) -> str:
    """Canonical cache key for a search request.

    Filters are serialized with sorted keys so semantically identical queries
    collide regardless of dict ordering.
    """
    filter_str = json.dumps(dict(filters or {}), sort_keys=True, separators=(",", ":"), default=str)
    return f"{search_type}:{query}:{filter_str}:{limit}:{threshold}"


class ResultCache:
    """Short-lived memo of finished search results.

    Entries expire ``ttl_seconds`` after insertion and are evicted lazily when
    read. When full, the oldest-inserted entry is evicted first.

    ``None`` is the miss value of get(), so it cannot be cached; set()
    rejects it.

    Example:
        cache = ResultCache(max_size=500, ttl_seconds=300)
        key = build_search_cache_key("vector", "tax law", {"language": "en"})
        if (hit := cache.get(key)) is None:
            hit = run_search()
            cache.set(key, hit)
    """

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize ResultCache.

        Args:
            max_size: Maximum number of cached results (>= 1).
            ttl_seconds: Lifetime of an entry from insertion (> 0).
            clock: Monotonic time source in seconds (injectable for tests).
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        """Return the cached payload, or None on a miss or expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            payload, inserted_at = entry
            if self._clock() - inserted_at > self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                logger.debug("Search cache entry expired: %s", key)
                return None

            self._hits += 1
            return payload

    def set(self, key: str, payload: Any) -> None:
        if payload is None:
            raise ValueError("cannot cache None; get() returns None for a miss")
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = (payload, self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Search cache cleared")

    def stats(self) -> dict[str, int | float]:
        """Return cache statistics: size, max_size, ttl_seconds, hits, misses."""
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
