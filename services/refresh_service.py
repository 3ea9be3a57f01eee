"""
Centralized refresh scheduler.

One poller keeps a consistent snapshot of protocol, venue and balance data
and pushes it to subscribers. Each tick runs three read phases
concurrently; the snapshot is replaced only when all of them succeed,
and never by a tick older than the one last published. Ticks are driven
by an APScheduler interval job.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config.ttl_config import CACHE_CONFIGS
from constants.app_constants import ONE_TOKEN
from constants.tokens import COLLATERAL_SYMBOL, DOLLAR_SYMBOL, GOVERNANCE_SYMBOL, TokenMetadata
from services.cache_service import CacheKeys, CacheService
from services.calculations import usd_value
from services.contract_service import (
    CollateralInfo,
    ContractService,
    ProtocolData,
    VenueData,
    validate_thresholds,
)
from services.scheduling import Clock, SystemClock
from shared.exceptions import InvalidDataError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[["RefreshSnapshot"], Any]

REFRESH_JOB_ID = "centralized_refresh"


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    address: str
    balance: int
    decimals: int
    usd_value: int  # 1e6 units

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "balance": str(self.balance),
            "decimals": self.decimals,
            "usd_value": str(self.usd_value),
        }


@dataclass(frozen=True)
class RefreshSnapshot:
    """Immutable bundle of one tick's on-chain reads."""
    collateral_ratio: int
    collateral_price: int
    dollar_price: int
    governance_price: int
    dollar_market_price: int
    collateral_addresses: Tuple[str, ...]
    collateral: CollateralInfo
    curve_exchange_rate: int
    mint_threshold: int
    redeem_threshold: int
    fetched_at: float
    account: Optional[str] = None
    token_balances: Optional[Tuple[TokenBalance, ...]] = None

    def balance_of(self, symbol: str) -> Optional[TokenBalance]:
        for balance in self.token_balances or ():
            if balance.symbol == symbol:
                return balance
        return None

    def to_dict(self) -> Dict[str, Any]:
        collateral = {k: (str(v) if isinstance(v, int) and not isinstance(v, bool) else v)
                      for k, v in self.collateral.to_dict().items()}
        return {
            "collateral_ratio": str(self.collateral_ratio),
            "collateral_price": str(self.collateral_price),
            "dollar_price": str(self.dollar_price),
            "governance_price": str(self.governance_price),
            "dollar_market_price": str(self.dollar_market_price),
            "collateral_addresses": list(self.collateral_addresses),
            "collateral": collateral,
            "curve_exchange_rate": str(self.curve_exchange_rate),
            "mint_threshold": str(self.mint_threshold),
            "redeem_threshold": str(self.redeem_threshold),
            "fetched_at": self.fetched_at,
            "account": self.account,
            "token_balances": [b.to_dict() for b in self.token_balances] if self.token_balances is not None else None,
        }


class RefreshScheduler:
    """Poller centralisé: un seul snapshot cohérent publié par tick réussi."""

    def __init__(
        self,
        contracts: ContractService,
        clock: Optional[Clock] = None,
        interval: float = 15.0,
        tokens: Sequence[TokenMetadata] = (),
        cache: Optional[CacheService] = None,
        prime_cache: bool = True,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self._contracts = contracts
        self._clock = clock or SystemClock()
        self.interval = interval
        self.tokens = tuple(tokens)
        self._cache = cache
        self.prime_cache = prime_cache

        # An injected scheduler belongs to the caller and is never shut down here
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._job: Optional[Job] = None
        self._in_flight: Set[asyncio.Task] = set()

        self._account: Optional[str] = None
        self._last_snapshot: Optional[RefreshSnapshot] = None
        self._subscribers: List[SnapshotCallback] = []
        self._generation = 0
        self._tick_count = 0
        self._published_tick = 0
        self.last_error: Optional[str] = None

    # ---------------- Cycle de vie ----------------

    @property
    def is_running(self) -> bool:
        return self._job is not None

    def start(self) -> None:
        """Refresh immediately, then every ``interval`` seconds."""
        if self.is_running:
            return
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        if not self._scheduler.running:
            self._scheduler.start()

        self._job = self._scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self.interval, timezone="UTC"),
            id=REFRESH_JOB_ID,
            name="Centralized refresh",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, int(self.interval)),
            replace_existing=True,
        )
        logger.info(f"Refresh scheduler started (interval={self.interval}s)")

    def stop(self) -> None:
        """Remove the job. Ticks already in flight finish but are not published."""
        self._generation += 1
        if self._job is not None:
            try:
                self._job.remove()
            except JobLookupError:
                logger.debug("Refresh job already removed")
            self._job = None
        logger.info("Refresh scheduler stopped")

    async def close(self) -> None:
        self.stop()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        if self._owns_scheduler and self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._subscribers.clear()

    # ---------------- Compte suivi ----------------

    @property
    def account(self) -> Optional[str]:
        return self._account

    def set_account(self, account: Optional[str]) -> None:
        self._account = account

    # ---------------- Abonnements ----------------

    def subscribe(self, callback: SnapshotCallback) -> None:
        """Register ``callback``; the last snapshot, if any, is replayed at once."""
        if callback not in self._subscribers:
            self._subscribers.append(callback)
        if self._last_snapshot is not None:
            self._deliver(callback, self._last_snapshot)

    def unsubscribe(self, callback: SnapshotCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def get_last_snapshot(self) -> Optional[RefreshSnapshot]:
        return self._last_snapshot

    def _deliver(self, callback: SnapshotCallback, snapshot: RefreshSnapshot) -> None:
        try:
            callback(snapshot)
        except Exception as e:
            logger.error(f"Refresh subscriber {getattr(callback, '__name__', callback)!r} failed: {e}", exc_info=True)

    # ---------------- Rafraîchissement ----------------

    async def force_refresh(self) -> Optional[RefreshSnapshot]:
        """Run one tick now; returns the latest published snapshot or None on failure."""
        return await self._refresh(self._generation)

    async def _tick(self) -> None:
        task = asyncio.current_task()
        self._in_flight.add(task)
        try:
            await self._refresh(self._generation)
        finally:
            self._in_flight.discard(task)

    async def _refresh(self, generation: int) -> Optional[RefreshSnapshot]:
        self._tick_count += 1
        tick = self._tick_count
        account = self._account
        try:
            protocol, balances, venue = await asyncio.gather(
                self._contracts.fetch_protocol_data(),
                self._fetch_balances(account),
                self._contracts.fetch_venue_data(),
            )
            snapshot = self._build_snapshot(protocol, balances, venue, account)
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"Refresh tick {tick} failed, keeping previous snapshot: {e}", extra={"tick": tick})
            return None

        if generation != self._generation:
            logger.debug(f"Refresh tick {tick} discarded (scheduler stopped)", extra={"tick": tick})
            return None

        if tick < self._published_tick:
            logger.debug(
                f"Refresh tick {tick} discarded (tick {self._published_tick} already published)",
                extra={"tick": tick},
            )
            return self._last_snapshot

        self._published_tick = tick
        self._last_snapshot = snapshot
        self.last_error = None
        for callback in list(self._subscribers):
            self._deliver(callback, snapshot)
        logger.debug(f"Refresh tick {tick} published", extra={"tick": tick})

        if self._cache is not None and self.prime_cache:
            await self._prime(snapshot)
        return snapshot

    async def _fetch_balances(self, account: Optional[str]) -> Optional[List[Tuple[TokenMetadata, int]]]:
        if account is None or not self.tokens:
            return None
        return await self._contracts.fetch_token_balances(account, self.tokens)

    def _build_snapshot(
        self,
        protocol: ProtocolData,
        balances: Optional[List[Tuple[TokenMetadata, int]]],
        venue: VenueData,
        account: Optional[str],
    ) -> RefreshSnapshot:
        collateral_price = protocol.collateral.price
        if venue.curve_exchange_rate == 0:
            raise InvalidDataError("Curve exchange rate is zero", field="curve_exchange_rate")
        dollar_market_price = collateral_price * ONE_TOKEN // venue.curve_exchange_rate

        token_balances = None
        if balances is not None:
            prices = {
                COLLATERAL_SYMBOL: collateral_price,
                DOLLAR_SYMBOL: dollar_market_price,
                GOVERNANCE_SYMBOL: protocol.governance_price,
            }
            token_balances = tuple(
                TokenBalance(
                    symbol=token.symbol,
                    address=token.address,
                    balance=balance,
                    decimals=token.decimals,
                    usd_value=usd_value(balance, token.decimals, prices.get(token.symbol, 0)),
                )
                for token, balance in balances
            )

        return RefreshSnapshot(
            collateral_ratio=protocol.collateral_ratio,
            collateral_price=collateral_price,
            dollar_price=protocol.dollar_price,
            governance_price=protocol.governance_price,
            dollar_market_price=dollar_market_price,
            collateral_addresses=protocol.collateral_addresses,
            collateral=protocol.collateral,
            curve_exchange_rate=venue.curve_exchange_rate,
            mint_threshold=venue.mint_threshold,
            redeem_threshold=venue.redeem_threshold,
            fetched_at=self._clock.now(),
            account=account,
            token_balances=token_balances,
        )

    async def _prime(self, snapshot: RefreshSnapshot) -> None:
        """Seed the route engine's cache with what this tick just read."""
        cache = self._cache
        try:
            await cache.put(CacheKeys.COLLATERAL_RATIO, snapshot.collateral_ratio, CACHE_CONFIGS["COLLATERAL_RATIO"])
            await cache.put(CacheKeys.DOLLAR_ORACLE_PRICE, snapshot.dollar_price, CACHE_CONFIGS["ORACLE_PRICE"])
            await cache.put(CacheKeys.GOVERNANCE_PRICE, snapshot.governance_price, CACHE_CONFIGS["GOVERNANCE_PRICE"])
            await cache.put(
                CacheKeys.collateral_info(snapshot.collateral.collateral_address),
                snapshot.collateral.to_dict(),
                CACHE_CONFIGS["PROTOCOL_SETTINGS"],
            )
            try:
                thresholds = validate_thresholds(snapshot.mint_threshold, snapshot.redeem_threshold)
            except InvalidDataError as e:
                logger.debug(f"Not priming thresholds: {e}")
            else:
                await cache.put(
                    CacheKeys.PRICE_THRESHOLDS,
                    [thresholds.mint_threshold, thresholds.redeem_threshold],
                    CACHE_CONFIGS["PRICE_THRESHOLDS"],
                )
        except Exception as e:
            logger.warning(f"Cache priming failed: {e}")
