import asyncio
from datetime import timedelta

import pytest

from dashboard.errors import FallbackFailed, ProductionAndFallbackFailed, StoreUnavailable
from dashboard.services.cache import CacheEntry, TemporalCache
from dashboard.services.stores import MemoryCacheStore


class Counter:
    """Producer that returns queued values and counts calls."""

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        value = self.values.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


def no_fallback():
    raise AssertionError("fallback should not be called")


async def test_weather_scenario_fresh_then_cached_then_refreshed(cache, clock):
    producer = Counter({"temp": 12}, {"temp": 14})

    assert await cache.get_or_produce("w", 900, producer, no_fallback) == ({"temp": 12}, False)

    clock.advance(500)
    assert await cache.get_or_produce("w", 900, producer, no_fallback) == ({"temp": 12}, True)
    assert producer.calls == 1

    clock.advance(401)
    assert await cache.get_or_produce("w", 900, producer, no_fallback) == ({"temp": 14}, False)
    assert producer.calls == 2


async def test_entry_is_stale_exactly_at_expiry(cache, clock):
    producer = Counter("a", "b")
    await cache.get_or_produce("k", timedelta(seconds=60), producer, no_fallback)

    clock.advance(60)
    value, cached = await cache.get_or_produce("k", 60, producer, no_fallback)

    assert (value, cached) == ("b", False)


async def test_successful_production_sets_expiry_from_now(cache, clock, memory_store):
    await cache.get_or_produce("k", 300, lambda: {"v": 1}, no_fallback)

    entry = await memory_store.get("k")
    assert entry.created_at == clock.now
    assert entry.expires_at == clock.now + timedelta(seconds=300)


async def test_failing_producer_is_retried_and_fallback_never_cached(cache, clock, memory_store):
    producer = Counter(RuntimeError("boom"), RuntimeError("boom"))
    fallback = {"source": "fallback"}

    first = await cache.get_or_produce("w", 900, producer, lambda: fallback)
    clock.advance(10)
    second = await cache.get_or_produce("w", 900, producer, lambda: fallback)

    assert first == (fallback, False)
    assert second == (fallback, False)
    assert producer.calls == 2
    assert await memory_store.get("w") is None


async def test_fallback_does_not_replace_stale_entry(cache, clock, memory_store):
    producer = Counter({"temp": 12}, RuntimeError("boom"))
    await cache.get_or_produce("w", 60, producer, no_fallback)
    clock.advance(120)

    value, cached = await cache.get_or_produce("w", 60, producer, lambda: {"temp": None})

    assert (value, cached) == ({"temp": None}, False)
    entry = await memory_store.get("w")
    assert entry.value == {"temp": 12}


async def test_failing_fallback_raises(cache):
    def producer():
        raise RuntimeError("upstream")

    def fallback():
        raise KeyError("nothing")

    with pytest.raises(ProductionAndFallbackFailed) as excinfo:
        await cache.get_or_produce("w", 60, producer, fallback)

    assert excinfo.value.key == "w"
    assert isinstance(excinfo.value.__cause__, KeyError)
    assert ProductionAndFallbackFailed is FallbackFailed


async def test_fresh_hit_does_not_touch_fallback_or_producer(cache):
    await cache.get_or_produce("k", 60, lambda: [1, 2, 3], no_fallback)

    value, cached = await cache.get_or_produce("k", 60, no_fallback, no_fallback)

    assert (value, cached) == ([1, 2, 3], True)


async def test_coroutine_producer_and_fallback_are_awaited(cache):
    async def producer():
        return {"ok": True}

    async def failing():
        raise RuntimeError("down")

    async def fallback():
        return {"ok": False}

    assert await cache.get_or_produce("a", 60, producer, fallback) == ({"ok": True}, False)
    assert await cache.get_or_produce("b", 60, failing, fallback) == ({"ok": False}, False)


async def test_keys_are_independent(cache, clock, memory_store):
    await cache.get_or_produce("A", 60, lambda: "a1", no_fallback)
    before = await memory_store.get("A")

    clock.advance(30)
    await cache.get_or_produce("B", 600, lambda: "b1", no_fallback)

    assert await memory_store.get("A") == before
    assert await cache.get_or_produce("A", 60, no_fallback, no_fallback) == ("a1", True)


@pytest.mark.parametrize("key", ["", None, 42])
async def test_rejects_bad_keys(cache, key):
    with pytest.raises(ValueError):
        await cache.get_or_produce(key, 60, lambda: 1, lambda: 0)


@pytest.mark.parametrize("ttl", [0, -5, timedelta(0), "60", float("inf"), float("nan"), 10**20])
async def test_rejects_bad_ttl(cache, ttl):
    with pytest.raises(ValueError):
        await cache.get_or_produce("k", ttl, lambda: 1, lambda: 0)


class BrokenStore:
    name = "broken"

    def __init__(self, fail_reads=True, fail_writes=True):
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.inner = MemoryCacheStore()

    async def get(self, key):
        if self.fail_reads:
            raise StoreUnavailable("read down")
        return await self.inner.get(key)

    async def put(self, entry):
        if self.fail_writes:
            raise StoreUnavailable("write down")
        await self.inner.put(entry)

    async def close(self):
        pass


async def test_store_read_failure_is_a_miss(clock):
    store = BrokenStore(fail_reads=True, fail_writes=False)
    cache = TemporalCache(store, clock=clock)
    producer = Counter("v1", "v2")

    assert await cache.get_or_produce("k", 60, producer, no_fallback) == ("v1", False)
    assert await cache.get_or_produce("k", 60, producer, no_fallback) == ("v2", False)
    assert producer.calls == 2


async def test_store_write_failure_still_returns_value(clock):
    cache = TemporalCache(BrokenStore(fail_reads=False, fail_writes=True), clock=clock)

    assert await cache.get_or_produce("k", 60, lambda: {"x": 1}, no_fallback) == ({"x": 1}, False)
    assert await cache.peek("k") is None


async def test_hits_and_misses_return_the_same_json_shape(cache):
    producer = Counter({"ids": (1, 2), 7: "x"})

    first, first_cached = await cache.get_or_produce("k", 60, producer, no_fallback)
    second, second_cached = await cache.get_or_produce("k", 60, producer, no_fallback)

    assert (first_cached, second_cached) == (False, True)
    assert first == second == {"ids": [1, 2], "7": "x"}


async def test_non_json_value_is_returned_but_not_stored(cache):
    value = {"when": object()}

    result, cached = await cache.get_or_produce("k", 60, lambda: value, no_fallback)

    assert result is value
    assert cached is False
    assert await cache.peek("k") is None


async def test_peek_returns_stale_entries(cache, clock):
    await cache.get_or_produce("k", 60, lambda: "v", no_fallback)
    clock.advance(3600)

    entry = await cache.peek("k")

    assert isinstance(entry, CacheEntry)
    assert entry.value == "v"
    assert not entry.is_fresh(clock.now)


async def test_concurrent_misses_leave_a_consistent_entry(cache, memory_store):
    release = asyncio.Event()

    def make_producer(n):
        async def produce():
            await release.wait()
            return {"attempt": n}
        return produce

    tasks = [
        asyncio.create_task(cache.get_or_produce("k", 60, make_producer(n), no_fallback))
        for n in (1, 2)
    ]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)

    assert {r[0]["attempt"] for r in results} == {1, 2}
    assert all(cached is False for _, cached in results)
    entry = await memory_store.get("k")
    assert entry.value in ({"attempt": 1}, {"attempt": 2})
    assert entry.expires_at == entry.created_at + timedelta(seconds=60)


async def test_single_flight_produces_once_per_key(memory_store, clock):
    cache = TemporalCache(memory_store, clock=clock, single_flight=True)
    release = asyncio.Event()
    calls = []

    async def producer():
        calls.append(1)
        await release.wait()
        return {"temp": 12}

    tasks = [
        asyncio.create_task(cache.get_or_produce("w", 60, producer, no_fallback))
        for _ in range(3)
    ]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)

    assert len(calls) == 1
    assert sorted(cached for _, cached in results) == [False, True, True]
    assert all(value == {"temp": 12} for value, _ in results)


async def test_single_flight_does_not_block_other_keys(memory_store, clock):
    cache = TemporalCache(memory_store, clock=clock, single_flight=True)
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "slow"

    slow_task = asyncio.create_task(cache.get_or_produce("slow", 60, slow, no_fallback))
    await asyncio.sleep(0)

    assert await cache.get_or_produce("fast", 60, lambda: "fast", no_fallback) == ("fast", False)
    assert not slow_task.done()

    release.set()
    assert await slow_task == ("slow", False)
