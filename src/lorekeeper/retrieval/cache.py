"""Bounded LRU + TTL cache for retrieval bundles.

Keys combine the agent role, the work item and a short hash of the task
text, so the same agent asking about the same task reuses its bundle for
up to ``ttl_seconds``. When full, inserting a new key evicts the single
least recently accessed entry.
"""

from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from lorekeeper.core.config import CacheConfig
from lorekeeper.core.logging import get_logger

_logger = get_logger("retrieval.cache")

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    key: str
    value: V
    timestamp: float
    last_accessed: float


@dataclass
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int
    max_size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ContextCache(Generic[V]):
    """Thread-safe bounded cache with per-entry expiry.

    Args:
        config: Size and expiry settings. Uses defaults if None.
        clock: Monotonic time source in seconds, injectable for tests.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @staticmethod
    def generate_key(agent_role: str, work_item_id: str | None, task: str) -> str:
        """``agentRole:workItemId:sha256(task)[:8]``."""
        digest = hashlib.sha256(task.encode("utf-8")).hexdigest()[:8]
        return f"{agent_role}:{work_item_id or ''}:{digest}"

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.timestamp > self.config.ttl_seconds

    def get(self, key: str) -> V | None:
        """Return the cached value, or None on a miss or an expired entry."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None:
                self._record_miss()
                return None
            if self._expired(entry, now):
                del self._entries[key]
                self._record_miss()
                return None
            entry.last_accessed = now
            if self.config.enable_stats:
                self._hits += 1
            return entry.value

    def _record_miss(self) -> None:
        if self.config.enable_stats:
            self._misses += 1

    def set(self, key: str, value: V) -> None:
        """Store a value. Only a new key at capacity triggers an eviction."""
        with self._lock:
            now = self._clock()
            existing = self._entries.get(key)
            if existing is not None:
                existing.value = value
                existing.timestamp = now
                existing.last_accessed = now
                return
            if len(self._entries) >= self.config.max_size:
                self._evict_lru()
            self._entries[key] = CacheEntry(key=key, value=value, timestamp=now, last_accessed=now)

    def _evict_lru(self) -> None:
        victim = min(self._entries.values(), key=lambda e: e.last_accessed)
        del self._entries[victim.key]
        if self.config.enable_stats:
            self._evictions += 1
        _logger.debug("cache.evicted", key=victim.key)

    def clear(self) -> None:
        """Drop all entries and reset the counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                max_size=self.config.max_size,
            )

    def warmup(self, entries: Iterable[tuple[str, V]]) -> int:
        """Bulk-load entries through ``set``. Returns the number loaded."""
        loaded = 0
        for key, value in entries:
            self.set(key, value)
            loaded += 1
        _logger.info("cache.warmed_up", entries=loaded)
        return loaded

    def cleanup(self) -> int:
        """Remove every expired entry, leaving the others untouched.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            _logger.debug("cache.expired_removed", count=len(expired))
        return len(expired)
