"""Tests for lorekeeper.retrieval.cache module."""

from __future__ import annotations

import threading

import pytest

from lorekeeper.core.config import CacheConfig
from lorekeeper.retrieval.cache import ContextCache


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_cache(clock: FakeClock, max_size: int = 500, ttl: float = 900.0) -> ContextCache[str]:
    return ContextCache(CacheConfig(max_size=max_size, ttl_seconds=ttl), clock=clock)


# ─── Keys ─────────────────────────────────────────────────────────────


class TestKeys:
    def test_key_format(self):
        key = ContextCache.generate_key("developer", "wi-7", "Add login")
        role, item, digest = key.split(":")
        assert (role, item) == ("developer", "wi-7")
        assert len(digest) == 8

    def test_key_is_stable(self):
        assert ContextCache.generate_key("a", "b", "task") == ContextCache.generate_key(
            "a", "b", "task"
        )

    def test_task_text_changes_key(self):
        assert ContextCache.generate_key("a", "b", "one") != ContextCache.generate_key(
            "a", "b", "two"
        )

    def test_missing_work_item(self):
        assert ContextCache.generate_key("a", None, "t").startswith("a::")


# ─── Get / Set ────────────────────────────────────────────────────────


class TestGetSet:
    """Tests for basic storage and statistics."""

    def test_round_trip(self, clock: FakeClock):
        cache = make_cache(clock)
        cache.set("k", "bundle")
        assert cache.get("k") == "bundle"

    def test_miss(self, clock: FakeClock):
        cache = make_cache(clock)
        assert cache.get("nope") is None
        assert cache.get_stats().misses == 1

    def test_stats(self, clock: FakeClock):
        cache = make_cache(clock, max_size=10)
        cache.set("k", "v")
        cache.get("k")
        cache.get("k")
        cache.get("x")
        stats = cache.get_stats()
        assert (stats.hits, stats.misses, stats.size, stats.max_size) == (2, 1, 1, 10)
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_hit_rate_without_lookups(self, clock: FakeClock):
        assert make_cache(clock).get_stats().hit_rate == 0.0

    def test_stats_disabled(self, clock: FakeClock):
        cache = ContextCache(CacheConfig(enable_stats=False), clock=clock)
        cache.set("k", "v")
        cache.get("k")
        cache.get("x")
        stats = cache.get_stats()
        assert (stats.hits, stats.misses) == (0, 0)

    def test_clear_resets_entries_and_counters(self, clock: FakeClock):
        cache = make_cache(clock)
        cache.set("k", "v")
        cache.get("k")
        cache.clear()
        stats = cache.get_stats()
        assert (stats.hits, stats.misses, stats.evictions, stats.size) == (0, 0, 0, 0)
        assert "k" not in cache


# ─── Eviction ─────────────────────────────────────────────────────────


class TestEviction:
    """Tests for LRU eviction at capacity."""

    def test_least_recently_accessed_is_evicted(self, clock: FakeClock):
        """maxSize 3: set a, b, c; read a; set d evicts b."""
        cache = make_cache(clock, max_size=3)
        for key in ("a", "b", "c"):
            cache.set(key, key.upper())
            clock.advance(1)
        cache.get("a")
        clock.advance(1)

        cache.set("d", "D")

        assert "b" not in cache
        assert all(key in cache for key in ("a", "c", "d"))
        assert cache.get_stats().evictions == 1

    def test_size_never_exceeds_capacity(self, clock: FakeClock):
        cache = make_cache(clock, max_size=3)
        for i in range(20):
            cache.set(f"k{i}", "v")
            clock.advance(1)
            assert cache.size() <= 3
        assert cache.get_stats().evictions == 17

    def test_updating_existing_key_does_not_evict(self, clock: FakeClock):
        cache = make_cache(clock, max_size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("a", "updated")
        assert cache.size() == 2
        assert cache.get("a") == "updated"
        assert cache.get_stats().evictions == 0


# ─── Expiry ───────────────────────────────────────────────────────────


class TestExpiry:
    """Tests for TTL handling."""

    def test_valid_at_exact_ttl(self, clock: FakeClock):
        cache = make_cache(clock, ttl=60)
        cache.set("k", "v")
        clock.advance(60)
        assert cache.get("k") == "v"

    def test_expired_just_after_ttl(self, clock: FakeClock):
        cache = make_cache(clock, ttl=60)
        cache.set("k", "v")
        clock.advance(60.001)
        assert cache.get("k") is None
        assert "k" not in cache
        assert cache.get_stats().misses == 1

    def test_access_does_not_extend_ttl(self, clock: FakeClock):
        cache = make_cache(clock, ttl=60)
        cache.set("k", "v")
        clock.advance(50)
        cache.get("k")
        clock.advance(20)
        assert cache.get("k") is None

    def test_set_refreshes_timestamp(self, clock: FakeClock):
        cache = make_cache(clock, ttl=60)
        cache.set("k", "v1")
        clock.advance(50)
        cache.set("k", "v2")
        clock.advance(50)
        assert cache.get("k") == "v2"

    def test_cleanup_removes_only_expired(self, clock: FakeClock):
        cache = make_cache(clock, ttl=60)
        cache.set("old", "1")
        clock.advance(45)
        cache.set("new", "2")
        clock.advance(30)

        assert cache.cleanup() == 1
        assert "old" not in cache
        assert "new" in cache


# ─── Bulk & Concurrency ───────────────────────────────────────────────


class TestWarmupAndThreads:
    def test_warmup_respects_capacity(self, clock: FakeClock):
        cache = make_cache(clock, max_size=2)
        loaded = cache.warmup([("a", "1"), ("b", "2"), ("c", "3")])
        assert loaded == 3
        assert cache.size() == 2

    def test_concurrent_access(self, clock: FakeClock):
        cache = make_cache(clock, max_size=50)

        def worker(offset: int) -> None:
            for i in range(200):
                key = f"k{(i + offset) % 80}"
                cache.set(key, key)
                cache.get(key)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.size() <= 50
        stats = cache.get_stats()
        assert stats.hits + stats.misses == 8 * 200
