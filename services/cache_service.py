"""
Keyed TTL cache for on-chain reads.

- fresh hits never touch the network
- one in-flight fetch per key, shared by every concurrent caller
- failed refetches can serve the previous value, marked stale, within the
  category's max stale age
- optional durable mirror, hydrated lazily on a memory miss
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from config.ttl_config import CACHE_CONFIGS, CacheOptions
from constants.app_constants import PERSIST_KEY_PREFIX
from services.durable_store import KeyValueStore, dumps, loads
from services.scheduling import Clock, SystemClock
from shared.exceptions import ErrorCode, StoreFullError, classify_fetch_error

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


class CacheKeys:
    """Clés de cache partagées entre lecteurs et scheduler."""
    COLLATERAL_RATIO = "collateral-ratio"
    DOLLAR_ORACLE_PRICE = "dollar-oracle-price"
    GOVERNANCE_PRICE = "governance-price"
    DOLLAR_MARKET_PRICE = "dollar-market-price"
    COLLATERAL_ADDRESSES = "collateral-addresses"
    PRICE_THRESHOLDS = "price-thresholds"
    BLOCK_NUMBER = "block-number"

    @staticmethod
    def collateral_info(address: str) -> str:
        return f"collateral-info:{address.lower()}"

    @staticmethod
    def balances(account: str) -> str:
        return f"balances:{account.lower()}"

    @staticmethod
    def amm_quote(pool: str, i: int, j: int, amount: int) -> str:
        return f"amm-quote:{pool.lower()}:{i}:{j}:{amount}"

    @staticmethod
    def price_point(pool: str, block_number: int) -> str:
        return f"price-point:{pool.lower()}:{block_number}"


@dataclass
class CacheEntry:
    data: Any
    fetched_at: float
    ttl: float
    is_stale: bool = False

    def age(self, now: float) -> float:
        return now - self.fetched_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "fetched_at": self.fetched_at,
            "ttl": self.ttl,
            "is_stale": self.is_stale,
        }


@dataclass
class FetchFailure:
    """Dernier échec de lecture d'une clé (diagnostic)."""
    code: ErrorCode
    message: str
    at: float

    @property
    def is_upstream_stale(self) -> bool:
        return self.code == ErrorCode.UPSTREAM_STALE


@dataclass
class _CacheCounters:
    hits: int = 0
    misses: int = 0
    hydrated: int = 0
    fetches: int = 0
    failures: int = 0
    stale_served: int = 0
    swept: int = 0
    store_errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class CacheService:
    """In-memory keyed TTL cache with single-flight fetches and a durable mirror."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        store: Optional[KeyValueStore] = None,
        max_entries: int = 1000,
        sweep_age: float = 60 * 60,
        persist_max_age: float = 7 * 24 * 60 * 60,
    ):
        self._clock = clock or SystemClock()
        self._store = store
        self.max_entries = max_entries
        self.sweep_age = sweep_age
        self.persist_max_age = persist_max_age

        self._entries: Dict[str, CacheEntry] = {}
        self._pending: Dict[str, asyncio.Task] = {}
        self._failures: Dict[str, FetchFailure] = {}
        self._counters = _CacheCounters()

    # ---------------- Lecture ----------------

    async def get_or_fetch(self, key: str, fetch_fn: FetchFn, options: Optional[CacheOptions] = None) -> Any:
        """Return fresh cached data or fetch it, sharing any in-flight fetch for ``key``."""
        options = options or CACHE_CONFIGS["ORACLE_PRICE"]
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock.now()):
            self._counters.hits += 1
            return entry.data

        task = self._pending.get(key)
        if task is None:
            self._counters.misses += 1
            task = asyncio.create_task(self._fetch(key, fetch_fn, options), name=f"cache-fetch:{key}")
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._on_fetch_done(k, t))
        # a cancelled waiter must not cancel the shared fetch
        return await asyncio.shield(task)

    def _on_fetch_done(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            # mark retrieved even when every waiter went away
            task.exception()

    async def _fetch(self, key: str, fetch_fn: FetchFn, options: CacheOptions) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            entry = await self._hydrate(key, options)
            if entry is not None and entry.is_fresh(self._clock.now()):
                self._counters.hydrated += 1
                return entry.data

        self._counters.fetches += 1
        try:
            data = await fetch_fn()
        except Exception as exc:
            now = self._clock.now()
            self._counters.failures += 1
            code = classify_fetch_error(exc)
            self._failures[key] = FetchFailure(code, str(exc), now)

            if (
                options.allow_stale_fallback
                and entry is not None
                and entry.age(now) < options.max_stale_age
            ):
                entry.is_stale = True
                self._counters.stale_served += 1
                logger.warning(
                    f"Fetch failed for {key} ({code.value}), serving stale data "
                    f"aged {entry.age(now):.0f}s: {exc}",
                    extra={"cache_key": key},
                )
                if self._entries.get(key) is entry:
                    await self._mirror(key, entry, options)
                return entry.data

            logger.warning(f"Fetch failed for {key} ({code.value}): {exc}", extra={"cache_key": key})
            raise

        await self._store_value(key, data, options)
        return data

    # ---------------- Écriture ----------------

    async def put(self, key: str, data: Any, options: CacheOptions) -> None:
        """Prime ``key`` with a value obtained elsewhere (e.g. a scheduler snapshot)."""
        await self._store_value(key, data, options)

    async def _store_value(self, key: str, data: Any, options: CacheOptions) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._sweep()
        entry = CacheEntry(data=data, fetched_at=self._clock.now(), ttl=options.ttl, is_stale=False)
        self._entries[key] = entry
        self._failures.pop(key, None)
        await self._mirror(key, entry, options)

    def _sweep(self) -> None:
        now = self._clock.now()
        expired = [k for k, e in self._entries.items() if e.age(now) > self.sweep_age]
        for k in expired:
            del self._entries[k]
        self._counters.swept += len(expired)
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} entries older than {self.sweep_age}s")

    # ---------------- Miroir persistant ----------------

    async def _mirror(self, key: str, entry: CacheEntry, options: CacheOptions) -> None:
        if self._store is None or not options.persist:
            return
        try:
            payload = dumps(entry.to_dict())
        except TypeError as e:
            self._counters.store_errors += 1
            logger.warning(f"Cache entry {key} not persistable: {e}", extra={"cache_key": key})
            return

        store_key = PERSIST_KEY_PREFIX + key
        try:
            await self._store.set(store_key, payload)
            return
        except StoreFullError:
            evicted = await self._evict_oldest_quarter()
            logger.info(f"Durable store full, evicted {evicted} oldest entries", extra={"cache_key": key})
        except OSError as e:
            self._counters.store_errors += 1
            logger.warning(f"Durable store write failed for {key}: {e}", extra={"cache_key": key})
            return

        try:
            await self._store.set(store_key, payload)
        except (StoreFullError, OSError) as e:
            self._counters.store_errors += 1
            logger.warning(f"Durable store write failed after eviction for {key}: {e}", extra={"cache_key": key})

    async def _read_persisted(self, store_key: str) -> Optional[Dict[str, Any]]:
        text = await self._store.get(store_key)
        if text is None:
            return None
        try:
            record = loads(text)
            float(record["fetched_at"])
            return record
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Dropping unreadable persisted entry {store_key}: {e}")
            await self._store.remove(store_key)
            return None

    async def _persisted_ages(self) -> List[Tuple[float, str]]:
        result = []
        for store_key in await self._store.keys():
            if not store_key.startswith(PERSIST_KEY_PREFIX):
                continue
            record = await self._read_persisted(store_key)
            if record is not None:
                result.append((float(record["fetched_at"]), store_key))
        return result

    async def _evict_oldest_quarter(self) -> int:
        mirrored = sorted(await self._persisted_ages())
        count = math.ceil(len(mirrored) / 4)
        for _, store_key in mirrored[:count]:
            await self._store.remove(store_key)
        return count

    async def _hydrate(self, key: str, options: CacheOptions) -> Optional[CacheEntry]:
        if self._store is None or not options.persist:
            return None
        store_key = PERSIST_KEY_PREFIX + key
        try:
            record = await self._read_persisted(store_key)
        except OSError as e:
            logger.warning(f"Durable store read failed for {key}: {e}", extra={"cache_key": key})
            return None
        if record is None:
            return None

        fetched_at = float(record["fetched_at"])
        if self._clock.now() - fetched_at > self.persist_max_age:
            await self._store.remove(store_key)
            return None

        entry = CacheEntry(
            data=record["data"],
            fetched_at=fetched_at,
            ttl=options.ttl,
            is_stale=bool(record.get("is_stale", False)),
        )
        if len(self._entries) >= self.max_entries:
            self._sweep()
        self._entries[key] = entry
        logger.debug(f"Hydrated {key} from durable store", extra={"cache_key": key})
        return entry

    async def purge_persisted(self) -> int:
        """Remove mirrored entries older than the persisted max age."""
        if self._store is None:
            return 0
        now = self._clock.now()
        purged = 0
        for fetched_at, store_key in await self._persisted_ages():
            if now - fetched_at > self.persist_max_age:
                await self._store.remove(store_key)
                purged += 1
        if purged:
            logger.info(f"Purged {purged} expired persisted cache entries")
        return purged

    # ---------------- Invalidation ----------------

    async def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        if self._store is not None:
            await self._store.remove(PERSIST_KEY_PREFIX + key)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern``, in memory and in the mirror."""
        keys = [k for k in self._entries if pattern in k]
        for k in keys:
            del self._entries[k]
        removed = set(keys)
        if self._store is not None:
            for store_key in await self._store.keys():
                if store_key.startswith(PERSIST_KEY_PREFIX) and pattern in store_key[len(PERSIST_KEY_PREFIX):]:
                    await self._store.remove(store_key)
                    removed.add(store_key[len(PERSIST_KEY_PREFIX):])
        return len(removed)

    async def clear(self) -> None:
        self._entries.clear()
        self._failures.clear()
        if self._store is not None:
            for store_key in await self._store.keys():
                if store_key.startswith(PERSIST_KEY_PREFIX):
                    await self._store.remove(store_key)

    # ---------------- Introspection ----------------

    def is_stale(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_stale

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Entrée mémoire courante sans déclencher de lecture."""
        return self._entries.get(key)

    def last_failure(self, key: str) -> Optional[FetchFailure]:
        return self._failures.get(key)

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._counters.hits + self._counters.misses
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "stale_keys": [k for k, e in self._entries.items() if e.is_stale],
            "pending": len(self._pending),
            "hit_rate": round(self._counters.hits / lookups, 4) if lookups else None,
            **self._counters.to_dict(),
        }

    async def warm(self, tasks: Iterable[Tuple[str, FetchFn, CacheOptions]]) -> int:
        """Run warm-up fetches in parallel; failures are logged, never raised."""
        tasks = list(tasks)
        results = await asyncio.gather(
            *(self.get_or_fetch(key, fn, options) for key, fn, options in tasks),
            return_exceptions=True,
        )
        succeeded = 0
        for (key, _, _), result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.warning(f"Warmup failed for {key}: {result}", extra={"cache_key": key})
            else:
                succeeded += 1
        return succeeded

    async def close(self) -> None:
        pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
