"""Tests for the bounded TTL cache."""

import pytest

from growthsync.config import CacheConfig
from growthsync.core.cache import TTLCache, make_cache_key


class Counter:
    """Async fetch function that counts its calls."""

    def __init__(self, value="fresh"):
        self.calls = 0
        self.value = value

    async def __call__(self):
        self.calls += 1
        return f"{self.value}-{self.calls}"


# ── Keys ─────────────────────────────────────────────────────────────────────

class TestMakeCacheKey:
    def test_params_sorted(self):
        a = make_cache_key("op", start="2024-01-01", end="2024-01-31")
        b = make_cache_key("op", end="2024-01-31", start="2024-01-01")
        assert a == b
        assert a == "op:end=2024-01-31|start=2024-01-01"

    def test_dates_and_lists_formatted(self):
        from datetime import date

        key = make_cache_key("op", day=date(2024, 3, 5), tabs=["A", "B"])
        assert key == "op:day=2024-03-05|tabs=A,B"


# ── get_or_fetch ─────────────────────────────────────────────────────────────

class TestGetOrFetch:
    async def test_hit_skips_fetch(self, cache):
        fetch = Counter()
        first = await cache.get_or_fetch("k", fetch)
        second = await cache.get_or_fetch("k", fetch)
        assert first == second == "fresh-1"
        assert fetch.calls == 1
        assert cache.hits == 1
        assert cache.misses == 1

    async def test_expired_entry_refetched_once(self, cache, clock):
        fetch = Counter()
        await cache.get_or_fetch("k", fetch, ttl=60)
        clock.advance(61)
        value = await cache.get_or_fetch("k", fetch, ttl=60)
        assert value == "fresh-2"
        assert fetch.calls == 2
        # Fresh again after the refetch
        await cache.get_or_fetch("k", fetch, ttl=60)
        assert fetch.calls == 2

    async def test_failure_not_cached(self, cache):
        calls = []

        async def failing():
            calls.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("k", failing)
        assert "k" not in cache

        fetch = Counter()
        assert await cache.get_or_fetch("k", fetch) == "fresh-1"
        assert len(calls) == 1

    async def test_default_ttl_from_config(self, clock):
        cache = TTLCache(CacheConfig(max_entries=10, ttl_seconds=30), clock=clock)
        fetch = Counter()
        await cache.get_or_fetch("k", fetch)
        clock.advance(29)
        assert "k" in cache
        clock.advance(1)
        assert "k" not in cache


# ── Bound and eviction ───────────────────────────────────────────────────────

class TestEviction:
    def test_never_exceeds_max_entries(self, clock):
        cache = TTLCache(CacheConfig(max_entries=10, ttl_seconds=900), clock=clock)
        for i in range(25):
            cache.set(f"k{i}", i)
            clock.advance(1)
            assert len(cache) <= 10

    def test_oldest_twenty_percent_dropped(self, clock):
        cache = TTLCache(CacheConfig(max_entries=10, ttl_seconds=900), clock=clock)
        for i in range(11):
            cache.set(f"k{i}", i)
            clock.advance(1)
        assert len(cache) == 9
        assert cache.get("k0") is None
        assert cache.get("k1") is None
        assert cache.get("k2") == 2
        assert cache.get("k10") == 10

    def test_expired_purged_before_oldest(self, clock):
        cache = TTLCache(CacheConfig(max_entries=5, ttl_seconds=900), clock=clock)
        for i in range(5):
            cache.set(f"short{i}", i, ttl=1)
        clock.advance(2)
        # Sixth entry triggers eviction; only the expired ones go
        cache.set("keep1", "a")
        assert len(cache) == 1
        cache.set("keep2", "b")
        assert cache.get("keep1") == "a"
        assert cache.get("keep2") == "b"
        assert len(cache) == 2


# ── Invalidation and stats ───────────────────────────────────────────────────

class TestInvalidation:
    def test_invalidate_prefix_only_matching(self, cache):
        cache.set("fetch_range:sheet:s1:end=b|start=a", 1)
        cache.set("fetch_range:sheet:s1:end=d|start=c", 2)
        cache.set("fetch_range:sheet:s10:end=b|start=a", 3)
        removed = cache.invalidate_prefix("fetch_range:sheet:s1:")
        assert removed == 2
        assert len(cache) == 1

    def test_invalidate_single_key(self, cache):
        cache.set("a", 1)
        assert cache.invalidate("a") is True
        assert cache.invalidate("a") is False

    def test_clear_all(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear_all()
        assert len(cache) == 0

    def test_stats(self, cache, clock):
        cache.set("a", 1, ttl=10)
        clock.advance(5)
        cache.set("b", 2, ttl=1)
        clock.advance(2)
        stats = cache.stats()
        assert stats["total_entries"] == 2
        assert stats["valid_entries"] == 1
        assert stats["expired_entries"] == 1
        assert stats["max_entries"] == 100
        assert stats["oldest_entry_age_s"] == 7

    def test_stats_empty(self, cache):
        stats = cache.stats()
        assert stats["total_entries"] == 0
        assert stats["oldest_entry_age_s"] is None
