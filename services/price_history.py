"""
Historique du prix UUSD - échantillonnage on-chain pour les sparklines.

Points are sampled at hour boundaries (blocks quantized to multiples of
300) so the same keys are reused across requests. Each point is cached
individually; missing points are fetched through the batch aggregator,
which coalesces them into a single JSON-RPC batch.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from config.ttl_config import CACHE_CONFIGS
from constants.app_constants import (
    BLOCKS_PER_HOUR,
    DEFAULT_HISTORY_HOURS,
    DEFAULT_HISTORY_POINTS,
    HISTORY_QUANTIZE_BLOCKS,
)
from services.batch_aggregator import BatchRequestAggregator, DataPoint, VenueParams
from services.cache_service import CacheKeys, CacheService
from services.curve_service import CurveService
from services.rpc.client import JsonRpcClient
from services.scheduling import Clock, SystemClock
from shared.exceptions import InvalidDataError

logger = logging.getLogger(__name__)


def quantize_block(block_number: int, boundary: int = HISTORY_QUANTIZE_BLOCKS) -> int:
    return (block_number // boundary) * boundary


def target_blocks(current_block: int, hours: float, points: int) -> List[int]:
    """Quantized sample blocks covering the last ``hours``, oldest first, without duplicates."""
    span = int(hours * BLOCKS_PER_HOUR)
    from_block = max(current_block - span, 1)
    step = (current_block - from_block) // points
    blocks = []
    for i in range(points):
        block = quantize_block(from_block + step * i)
        if block not in blocks:
            blocks.append(block)
    return blocks


class PriceHistoryService:
    """Échantillonneur d'historique de prix (cache par point, agrégation batch)."""

    def __init__(
        self,
        client: JsonRpcClient,
        cache: CacheService,
        aggregator: BatchRequestAggregator,
        curve: CurveService,
        clock: Optional[Clock] = None,
    ):
        self._client = client
        self._cache = cache
        self._aggregator = aggregator
        self._curve = curve
        self._clock = clock or SystemClock()

    async def get_current_block(self) -> int:
        return await self._cache.get_or_fetch(
            CacheKeys.BLOCK_NUMBER, self._client.block_number, CACHE_CONFIGS["BLOCK_NUMBER"]
        )

    async def get_price_history(
        self, hours: float = DEFAULT_HISTORY_HOURS, points: int = DEFAULT_HISTORY_POINTS
    ) -> List[DataPoint]:
        """
        Sample the dollar market price over the last ``hours``.

        Points that cannot be read are left out; the result is sorted by
        block number.
        """
        if hours <= 0 or points <= 0:
            raise ValueError("hours and points must be positive")

        current = await self.get_current_block()
        blocks = target_blocks(current, hours, points)
        venue = self._curve.history_venue()

        results = await asyncio.gather(*(self._point(b, venue) for b in blocks), return_exceptions=True)
        history = []
        failures = []
        for block, result in zip(blocks, results):
            if isinstance(result, Exception):
                failures.append(f"{block}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                history.append(result)

        if failures:
            logger.warning(f"{len(failures)}/{len(blocks)} history points unavailable: {failures[:3]}")
        logger.debug(f"Price history: {len(history)} points over {hours}h")
        return sorted(history, key=lambda p: p.block_number)

    async def _point(self, block: int, venue: VenueParams) -> DataPoint:
        data = await self._cache.get_or_fetch(
            CacheKeys.price_point(venue.pool, block),
            lambda: self._fetch_point(block, venue),
            CACHE_CONFIGS["PRICE_POINTS"],
        )
        return self._to_point(data)

    async def _fetch_point(self, block: int, venue: VenueParams) -> Dict[str, int]:
        result = await self._aggregator.request([block], venue)
        point = result.points[0]
        if result.errors or point.price == 0:
            raise InvalidDataError("; ".join(result.errors) or f"No price at block {block}", field="price_point")
        return {"block_number": point.block_number, "timestamp": point.timestamp, "price": point.price}

    @staticmethod
    def _to_point(data: Dict[str, Any]) -> DataPoint:
        return DataPoint(int(data["block_number"]), int(data["timestamp"]), int(data["price"]))

    def get_cached_history(
        self, hours: float = DEFAULT_HISTORY_HOURS, points: int = DEFAULT_HISTORY_POINTS
    ) -> List[DataPoint]:
        """Best effort synchronous history built from points already in memory."""
        block_entry = self._cache.peek(CacheKeys.BLOCK_NUMBER)
        if block_entry is None:
            return []
        now = self._clock.now()
        ttl = CACHE_CONFIGS["PRICE_POINTS"].ttl
        pool = self._curve.contracts.curve_pool

        history = []
        for block in target_blocks(int(block_entry.data), hours, points):
            entry = self._cache.peek(CacheKeys.price_point(pool, block))
            if entry is not None and entry.age(now) < ttl:
                history.append(self._to_point(entry.data))
        return sorted(history, key=lambda p: p.block_number)
