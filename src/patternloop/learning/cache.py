"""Bounded TTL + LRU cache for decoded embedding vectors."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import numpy as np


@dataclass
class _Entry:
    vector: np.ndarray
    expires_at: float


class EmbeddingCache:
    """Thread-safe cache of float32 vectors keyed by pattern id.

    Entries expire ``ttl_seconds`` after insertion. When full, the least
    recently used entry is evicted.

    Args:
        capacity: Maximum number of entries.
        ttl_seconds: Lifetime of an entry.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        capacity: int = 1000,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, pattern_id: str) -> np.ndarray | None:
        with self._lock:
            entry = self._entries.get(pattern_id)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[pattern_id]
                self._misses += 1
                return None
            self._entries.move_to_end(pattern_id)
            self._hits += 1
            return entry.vector

    def put(self, pattern_id: str, vector: np.ndarray) -> None:
        with self._lock:
            self._entries[pattern_id] = _Entry(vector, self._clock() + self.ttl_seconds)
            self._entries.move_to_end(pattern_id)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self._evictions += 1

    def evict(self, pattern_id: str) -> None:
        with self._lock:
            self._entries.pop(pattern_id, None)

    def clear_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": self._hits / lookups if lookups else 0.0,
            }
