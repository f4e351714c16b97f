"""TTL cache and read-through coalescing."""

import asyncio

import pytest

from soundings.services.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTL:

    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("k", 1, ttl_seconds=10)
        assert cache.get("k") == (True, 1)
        clock.now = 10.5
        assert cache.get("k") == (False, None)

    def test_cleanup_drops_stale_entries(self):
        clock = FakeClock()
        cache = TTLCache(clock=clock)
        cache.set("a", 1, 5)
        cache.set("b", 2, 50)
        clock.now = 6
        assert cache.cleanup() == 1
        assert cache.stats()["size"] == 1

    def test_oldest_entry_evicted_past_capacity(self):
        cache = TTLCache(max_entries=2)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.get("a")
        cache.set("c", 3, 60)
        assert cache.get("b") == (False, None)
        assert cache.get("a") == (True, 1)

    def test_invalidate(self):
        cache = TTLCache()
        cache.set("a", 1, 60)
        cache.invalidate("a")
        assert cache.get("a") == (False, None)


class TestGetOrLoad:

    async def test_concurrent_misses_share_one_load(self):
        cache = TTLCache()
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "table"

        results = await asyncio.gather(*(cache.get_or_load("k", loader, 60) for _ in range(5)))
        assert results == ["table"] * 5
        assert calls == 1
        assert cache.stats()["loads"] == 1

    async def test_failed_load_is_not_cached(self):
        cache = TTLCache()
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("upstream hiccup")
            return 42

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", loader, 60)
        assert await cache.get_or_load("k", loader, 60) == 42
        assert calls == 2

    async def test_waiters_see_the_failure(self):
        cache = TTLCache()

        async def loader():
            await asyncio.sleep(0.02)
            raise RuntimeError("down")

        results = await asyncio.gather(
            cache.get_or_load("k", loader, 60),
            cache.get_or_load("k", loader, 60),
            return_exceptions=True,
        )
        assert all(isinstance(r, RuntimeError) for r in results)

    async def test_should_cache_rejects_value(self):
        cache = TTLCache()
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            return None

        await cache.get_or_load("k", loader, 60, should_cache=lambda v: v is not None)
        await cache.get_or_load("k", loader, 60, should_cache=lambda v: v is not None)
        assert calls == 2
