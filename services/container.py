"""
Composition root: builds every service explicitly from a Settings object.

Nothing here is a module-level singleton, so tests can build as many
independent containers as they need (with a ManualClock, an in-memory
store and an httpx MockTransport).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
import httpx

from config.settings import Settings
from constants.tokens import tracked_tokens
from services.batch_aggregator import BatchRequestAggregator
from services.cache_service import CacheService
from services.contract_service import ContractService
from services.curve_service import CurveService
from services.durable_store import JsonFileKeyValueStore, KeyValueStore
from services.price_history import PriceHistoryService
from services.refresh_service import RefreshScheduler
from services.route_service import RouteDecisionEngine
from services.rpc.client import JsonRpcClient
from services.scheduling import Clock, SystemClock
from shared.circuit_breaker import CircuitBreaker
from shared.exceptions import ExchangeRouterException, TransientFetchError

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    clock: Clock
    store: Optional[KeyValueStore]
    breaker: CircuitBreaker
    client: JsonRpcClient
    cache: CacheService
    contracts: ContractService
    curve: CurveService
    aggregator: BatchRequestAggregator
    scheduler: RefreshScheduler
    routes: RouteDecisionEngine
    history: PriceHistoryService

    async def startup(self) -> None:
        """Purge expired persisted entries, check the pool and start the poller."""
        if self.store is not None:
            try:
                await self.cache.purge_persisted()
            except OSError as e:
                logger.warning(f"Could not purge persisted cache: {e}")

        c = self.settings.contracts
        try:
            await self.curve.verify_pool_configuration(c.collateral_token, c.dollar_token)
        except ExchangeRouterException as e:
            logger.warning(f"Curve pool verification skipped: {e}")

        if self.settings.refresh.enabled:
            self.scheduler.start()
        logger.info("Exchange router services started")

    async def shutdown(self) -> None:
        await self.scheduler.close()
        self.aggregator.close()
        await self.cache.close()
        await self.client.aclose()
        logger.info("Exchange router services stopped")


def build_container(
    settings: Settings,
    clock: Optional[Clock] = None,
    store: Optional[KeyValueStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    job_scheduler: Optional[AsyncIOScheduler] = None,
) -> ServiceContainer:
    clock = clock or SystemClock()
    if store is None and settings.cache.persist_enabled:
        store = JsonFileKeyValueStore(settings.cache.persist_path, settings.cache.persist_max_bytes)

    breaker = CircuitBreaker(
        "rpc",
        failure_threshold=settings.rpc.circuit_failure_threshold,
        recovery_timeout=settings.rpc.circuit_recovery_sec,
        clock=clock,
        tracked_exceptions=(TransientFetchError,),
    )
    client = JsonRpcClient(settings.rpc.url, settings.rpc.timeout_sec, transport=transport, breaker=breaker)
    cache = CacheService(
        clock=clock,
        store=store,
        max_entries=settings.cache.max_entries,
        sweep_age=settings.cache.sweep_age_sec,
        persist_max_age=settings.cache.persist_max_age_sec,
    )
    contracts = ContractService(client, cache, settings.contracts)
    curve = CurveService(client, cache, settings.contracts)
    aggregator = BatchRequestAggregator(client, clock, settings.aggregator.debounce_sec)
    c = settings.contracts
    scheduler = RefreshScheduler(
        contracts,
        clock=clock,
        interval=settings.refresh.interval_sec,
        tokens=tracked_tokens(c.collateral_token, c.dollar_token, c.governance_token),
        cache=cache,
        prime_cache=settings.refresh.prime_cache,
        scheduler=job_scheduler,
    )
    routes = RouteDecisionEngine(contracts, curve, settings.route)
    history = PriceHistoryService(client, cache, aggregator, curve, clock)

    return ServiceContainer(
        settings=settings,
        clock=clock,
        store=store,
        breaker=breaker,
        client=client,
        cache=cache,
        contracts=contracts,
        curve=curve,
        aggregator=aggregator,
        scheduler=scheduler,
        routes=routes,
        history=history,
    )
