"""Tests for the TTL cache used for table schemas."""

import asyncio

import pytest

from dbvault.utils.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_get_set(self):
        cache = TTLCache(default_ttl=10)
        cache.set("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("a", 1)
        clock.now += 11
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_per_key_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("short", 1, ttl=1)
        cache.set("long", 2)
        clock.now += 5
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_eviction_keeps_size_bounded(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=100, max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("a") is None
        assert cache.get("c") == 3

    def test_invalidate_and_clear(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_get_or_compute_runs_once_for_concurrent_callers(self):
        cache = TTLCache()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0)
            return ["id", "name"]

        results = await asyncio.gather(*(cache.get_or_compute("users", compute) for _ in range(5)))
        assert all(r == ["id", "name"] for r in results)
        assert calls == 1
