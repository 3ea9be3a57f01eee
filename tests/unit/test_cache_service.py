"""Tests unitaires pour services/cache_service.py - TTL, single-flight, fallback périmé, miroir."""
import asyncio

import pytest

from config.ttl_config import CACHE_CONFIGS, CacheOptions
from constants.app_constants import PERSIST_KEY_PREFIX
from services.cache_service import CacheKeys, CacheService
from services.durable_store import MemoryKeyValueStore, dumps, loads
from shared.exceptions import ErrorCode, TransientFetchError, UpstreamStalenessError

ORACLE = CacheOptions(ttl=15, allow_stale_fallback=True, max_stale_age=300, persist=True)
NO_STALE = CacheOptions(ttl=10, allow_stale_fallback=False, max_stale_age=60)


def counter_fetch(values):
    """Fetch function returning successive values (exceptions are raised)."""
    calls = []

    async def fetch():
        value = values[min(len(calls), len(values) - 1)]
        calls.append(1)
        if isinstance(value, BaseException):
            raise value
        return value

    fetch.calls = calls
    return fetch


@pytest.fixture
def cache(manual_clock):
    return CacheService(clock=manual_clock)


class TestFreshness:
    @pytest.mark.asyncio
    async def test_fresh_hit_skips_fetch(self, cache, manual_clock):
        fetch = counter_fetch([1, 2])
        assert await cache.get_or_fetch("k", fetch, ORACLE) == 1
        await manual_clock.advance(14)
        assert await cache.get_or_fetch("k", fetch, ORACLE) == 1
        assert len(fetch.calls) == 1
        assert cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_expired_refetches(self, cache, manual_clock):
        fetch = counter_fetch([1, 2])
        await cache.get_or_fetch("k", fetch, ORACLE)
        await manual_clock.advance(15)
        assert await cache.get_or_fetch("k", fetch, ORACLE) == 2
        assert cache.is_stale("k") is False

    @pytest.mark.asyncio
    async def test_default_options(self, cache):
        assert await cache.get_or_fetch("k", counter_fetch([5])) == 5
        assert cache.peek("k").ttl == CACHE_CONFIGS["ORACLE_PRICE"].ttl


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, cache):
        gate = asyncio.Event()
        calls = []

        async def fetch():
            calls.append(1)
            await gate.wait()
            return "value"

        waiters = [asyncio.create_task(cache.get_or_fetch("k", fetch, ORACLE)) for _ in range(10)]
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert cache.get_stats()["pending"] == 1
        gate.set()
        assert await asyncio.gather(*waiters) == ["value"] * 10
        assert len(calls) == 1
        assert cache.get_stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_shared_failure_reaches_every_caller(self, cache):
        fetch = counter_fetch([TransientFetchError("down")])
        results = await asyncio.gather(
            *(cache.get_or_fetch("k", fetch, NO_STALE) for _ in range(3)), return_exceptions=True
        )
        assert all(isinstance(r, TransientFetchError) for r in results)
        assert len(fetch.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(self, cache):
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return 7

        first = asyncio.create_task(cache.get_or_fetch("k", fetch, ORACLE))
        second = asyncio.create_task(cache.get_or_fetch("k", fetch, ORACLE))
        await asyncio.sleep(0)
        first.cancel()
        gate.set()
        assert await second == 7
        assert cache.peek("k").data == 7

    @pytest.mark.asyncio
    async def test_different_keys_fetch_independently(self, cache):
        fetch = counter_fetch([1])
        await asyncio.gather(cache.get_or_fetch("a", fetch, ORACLE), cache.get_or_fetch("b", fetch, ORACLE))
        assert len(fetch.calls) == 2


class TestStaleFallback:
    @pytest.mark.asyncio
    async def test_stale_value_served_after_failure(self, cache, manual_clock):
        fetch = counter_fetch([100, TransientFetchError("timeout")])
        await cache.get_or_fetch("oracle-x", fetch, ORACLE)
        seeded_at = cache.peek("oracle-x").fetched_at

        await manual_clock.advance(20)
        assert await cache.get_or_fetch("oracle-x", fetch, ORACLE) == 100
        assert cache.is_stale("oracle-x") is True
        # the stale entry keeps its original timestamp
        assert cache.peek("oracle-x").fetched_at == seeded_at
        assert cache.last_failure("oracle-x").code == ErrorCode.TRANSIENT_FETCH

    @pytest.mark.asyncio
    async def test_too_old_entry_propagates(self, cache, manual_clock):
        fetch = counter_fetch([100, TransientFetchError("timeout")])
        await cache.get_or_fetch("k", fetch, ORACLE)
        await manual_clock.advance(301)
        with pytest.raises(TransientFetchError):
            await cache.get_or_fetch("k", fetch, ORACLE)

    @pytest.mark.asyncio
    async def test_no_entry_propagates(self, cache):
        with pytest.raises(TransientFetchError):
            await cache.get_or_fetch("k", counter_fetch([TransientFetchError("x")]), ORACLE)

    @pytest.mark.asyncio
    async def test_category_without_fallback_propagates(self, cache, manual_clock):
        fetch = counter_fetch([5, TransientFetchError("timeout")])
        await cache.get_or_fetch(CacheKeys.balances("0xabc"), fetch, CACHE_CONFIGS["USER_BALANCES"])
        await manual_clock.advance(11)
        with pytest.raises(TransientFetchError):
            await cache.get_or_fetch(CacheKeys.balances("0xabc"), fetch, CACHE_CONFIGS["USER_BALANCES"])

    @pytest.mark.asyncio
    async def test_oracle_looking_error_follows_category_policy(self, cache, manual_clock):
        # an upstream staleness error on an AMM quote is still not served stale
        fetch = counter_fetch([5, UpstreamStalenessError("Stale oracle price")])
        await cache.get_or_fetch("amm", fetch, CACHE_CONFIGS["AMM_QUOTE"])
        await manual_clock.advance(11)
        with pytest.raises(UpstreamStalenessError):
            await cache.get_or_fetch("amm", fetch, CACHE_CONFIGS["AMM_QUOTE"])
        assert cache.last_failure("amm").is_upstream_stale

    @pytest.mark.asyncio
    async def test_success_clears_stale_flag(self, cache, manual_clock):
        fetch = counter_fetch([1, TransientFetchError("x"), 2])
        await cache.get_or_fetch("k", fetch, ORACLE)
        await manual_clock.advance(20)
        await cache.get_or_fetch("k", fetch, ORACLE)
        assert cache.is_stale("k")
        assert await cache.get_or_fetch("k", fetch, ORACLE) == 2
        assert cache.is_stale("k") is False
        assert cache.last_failure("k") is None


class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache):
        for key in ("amm-quote:p:0:1:1", "amm-quote:p:1:0:1", "collateral-ratio"):
            await cache.put(key, 1, ORACLE)
        assert await cache.invalidate_pattern("amm-quote") == 2
        assert cache.peek("collateral-ratio") is not None
        assert cache.peek("amm-quote:p:0:1:1") is None

    @pytest.mark.asyncio
    async def test_clear(self, cache):
        await cache.put("a", 1, ORACLE)
        await cache.clear()
        assert cache.get_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_invalidate_does_not_cancel_in_flight(self, cache):
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return "late"

        task = asyncio.create_task(cache.get_or_fetch("k", fetch, ORACLE))
        await asyncio.sleep(0)
        await cache.invalidate("k")
        gate.set()
        assert await task == "late"
        assert cache.peek("k").data == "late"


class TestSweep:
    @pytest.mark.asyncio
    async def test_sweep_on_capacity(self, manual_clock):
        cache = CacheService(clock=manual_clock, max_entries=2, sweep_age=60)
        await cache.put("old", 1, ORACLE)
        await manual_clock.advance(61)
        await cache.put("recent", 2, ORACLE)
        await cache.put("new", 3, ORACLE)
        assert cache.peek("old") is None
        assert cache.peek("new").data == 3
        assert cache.get_stats()["swept"] == 1


class TestDurableMirror:
    @pytest.mark.asyncio
    async def test_persisted_and_hydrated(self, manual_clock):
        store = MemoryKeyValueStore()
        first = CacheService(clock=manual_clock, store=store)
        await first.get_or_fetch("ratio", counter_fetch([10 ** 24]), ORACLE)
        assert PERSIST_KEY_PREFIX + "ratio" in await store.keys()

        second = CacheService(clock=manual_clock, store=store)
        fetch = counter_fetch([0])
        assert await second.get_or_fetch("ratio", fetch, ORACLE) == 10 ** 24
        assert fetch.calls == []
        assert second.get_stats()["hydrated"] == 1

    @pytest.mark.asyncio
    async def test_hydrated_stale_entry_used_as_fallback(self, manual_clock):
        store = MemoryKeyValueStore()
        await CacheService(clock=manual_clock, store=store).put("k", {"a": 1}, ORACLE)
        await manual_clock.advance(60)

        cache = CacheService(clock=manual_clock, store=store)
        assert await cache.get_or_fetch("k", counter_fetch([TransientFetchError("x")]), ORACLE) == {"a": 1}
        assert cache.is_stale("k")

    @pytest.mark.asyncio
    async def test_non_persistent_category_not_mirrored(self, manual_clock):
        store = MemoryKeyValueStore()
        cache = CacheService(clock=manual_clock, store=store)
        await cache.put("amm", 1, CACHE_CONFIGS["AMM_QUOTE"])
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_expired_persisted_entry_dropped(self, manual_clock):
        store = MemoryKeyValueStore()
        await CacheService(clock=manual_clock, store=store).put("k", 1, ORACLE)
        await manual_clock.advance(8 * 24 * 3600)
        cache = CacheService(clock=manual_clock, store=store)
        assert await cache.purge_persisted() == 1
        assert await store.keys() == []

    @pytest.mark.asyncio
    async def test_store_full_evicts_oldest_quarter(self, manual_clock):
        sample = dumps({"data": 1, "fetched_at": manual_clock.now(), "ttl": 15, "is_stale": False})
        store = MemoryKeyValueStore(max_bytes=(len(sample) + 16) * 4)
        cache = CacheService(clock=manual_clock, store=store)
        for name in ("k1", "k2", "k3", "k4"):
            await cache.put(name, 1, ORACLE)
            await manual_clock.advance(1)
        await cache.put("k5", 1, ORACLE)

        keys = await store.keys()
        assert PERSIST_KEY_PREFIX + "k1" not in keys
        assert PERSIST_KEY_PREFIX + "k5" in keys
        assert len(keys) == 4

    @pytest.mark.asyncio
    async def test_unreadable_record_removed(self, manual_clock):
        store = MemoryKeyValueStore()
        await store.set(PERSIST_KEY_PREFIX + "k", "garbage")
        cache = CacheService(clock=manual_clock, store=store)
        assert await cache.get_or_fetch("k", counter_fetch([3]), ORACLE) == 3
        assert loads(await store.get(PERSIST_KEY_PREFIX + "k"))["data"] == 3


class TestWarm:
    @pytest.mark.asyncio
    async def test_warm_counts_successes(self, cache):
        ok = await cache.warm([
            ("a", counter_fetch([1]), ORACLE),
            ("b", counter_fetch([TransientFetchError("x")]), ORACLE),
        ])
        assert ok == 1
        assert cache.peek("a").data == 1
