"""
Batch request aggregator for historical venue prices.

Callers enqueue block numbers; after a short debounce window every queued
request is served by ONE JSON-RPC batch covering the union of blocks
(eth_getBlockByNumber + get_dy eth_call per block). Each caller only sees
the points it asked for.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from constants.app_constants import PRICE_PRECISION
from services.rpc.abi import encode_call
from services.rpc.client import JsonRpcClient, RpcCall, RpcResponse
from services.scheduling import Clock, DebounceTimer, SystemClock
from shared.exceptions import AggregationFailure, PolicyViolationError

logger = logging.getLogger(__name__)

GET_DY_SIGNATURE = "get_dy(int128,int128,uint256)"


@dataclass(frozen=True)
class VenueParams:
    """AMM venue probed at each block: pool, coin indexes and probe amount."""
    pool: str
    i: int
    j: int
    probe_amount: int
    reference_price: int = PRICE_PRECISION

    @property
    def key(self) -> Tuple[str, int, int, int, int]:
        return (self.pool.lower(), self.i, self.j, self.probe_amount, self.reference_price)

    def calldata(self) -> str:
        return encode_call(GET_DY_SIGNATURE, self.i, self.j, self.probe_amount)


@dataclass(frozen=True)
class DataPoint:
    block_number: int
    timestamp: int
    price: int

    def to_dict(self) -> Dict[str, Any]:
        return {"block_number": self.block_number, "timestamp": self.timestamp, "price": str(self.price)}


@dataclass
class BatchRequestResult:
    points: List[DataPoint] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class _PendingRequest:
    blocks: List[int]
    future: asyncio.Future


class BatchRequestAggregator:
    """Coalesce concurrent history requests into one wire batch per debounce window."""

    def __init__(self, client: JsonRpcClient, clock: Optional[Clock] = None, debounce: float = 0.05):
        self._client = client
        self._clock = clock or SystemClock()
        self._queue: List[_PendingRequest] = []
        self._venue: Optional[VenueParams] = None
        self._timer = DebounceTimer(debounce, self._flush, self._clock)
        self.flushes = 0

    @property
    def pending_requests(self) -> int:
        return len(self._queue)

    def request(self, block_numbers: Iterable[int], venue: VenueParams) -> asyncio.Future:
        """Enqueue ``block_numbers``; the returned future resolves to a BatchRequestResult."""
        blocks = [int(b) for b in block_numbers]
        if self._queue and self._venue is not None and self._venue.key != venue.key:
            raise PolicyViolationError(
                f"Incompatible venue parameters for pending batch: {venue.key} != {self._venue.key}",
                operation="batch_request",
            )

        future = asyncio.get_running_loop().create_future()
        if not blocks:
            future.set_result(BatchRequestResult())
            return future

        self._queue.append(_PendingRequest(blocks, future))
        self._venue = venue
        self._timer.reset()
        return future

    async def _flush(self) -> None:
        queue, venue = self._queue, self._venue
        self._queue, self._venue = [], None
        if not queue:
            return

        blocks = sorted({b for req in queue for b in req.blocks})
        calls = [RpcCall("eth_getBlockByNumber", [hex(b), False]) for b in blocks]
        calldata = venue.calldata()
        calls += [RpcCall("eth_call", [{"to": venue.pool, "data": calldata}, hex(b)]) for b in blocks]
        self.flushes += 1
        logger.debug(
            f"Flushing {len(queue)} history requests as one batch over {len(blocks)} blocks",
            extra={"batch_size": len(calls)},
        )

        try:
            responses = await self._client.batch(calls)
        except asyncio.CancelledError:
            self._reject(queue, AggregationFailure("Batch request cancelled", batch_size=len(calls)))
            raise
        except Exception as exc:
            logger.warning(f"Batch RPC request failed: {exc}", extra={"batch_size": len(calls)})
            self._reject(queue, AggregationFailure(f"Batch RPC request failed: {exc}", batch_size=len(calls), cause=exc))
            return

        try:
            per_block = self._parse(blocks, responses[:len(blocks)], responses[len(blocks):], venue)
            for req in queue:
                if req.future.done():
                    continue
                result = BatchRequestResult()
                for block in req.blocks:
                    point, errors = per_block[block]
                    result.points.append(point)
                    result.errors.extend(errors)
                req.future.set_result(result)
        except Exception as exc:
            logger.warning(f"Batch RPC response unusable: {exc!r}", extra={"batch_size": len(calls)})
            self._reject(queue, AggregationFailure(f"Batch RPC response unusable: {exc!r}", batch_size=len(calls), cause=exc))

    @staticmethod
    def _reject(queue: List[_PendingRequest], failure: AggregationFailure) -> None:
        for req in queue:
            if not req.future.done():
                req.future.set_exception(failure)

    @staticmethod
    def _parse(
        blocks: List[int],
        block_responses: List[RpcResponse],
        price_responses: List[RpcResponse],
        venue: VenueParams,
    ) -> Dict[int, Tuple[DataPoint, List[str]]]:
        parsed = {}
        for block, block_resp, price_resp in zip(blocks, block_responses, price_responses):
            errors = []

            timestamp = 0
            if block_resp.error is not None:
                errors.append(f"Block {block}: {block_resp.error_message}")
            elif not block_resp.result:
                errors.append(f"Block {block}: No response")
            else:
                try:
                    timestamp = int(block_resp.result["timestamp"], 16)
                except (KeyError, TypeError, ValueError):
                    errors.append(f"Block {block}: Failed to parse timestamp")

            price = 0
            if price_resp.error is not None:
                errors.append(f"Price {block}: {price_resp.error_message}")
            elif not price_resp.result or price_resp.result == "0x":
                errors.append(f"Price {block}: Empty result")
            else:
                try:
                    dy = int(price_resp.result, 16)
                    if dy == 0:
                        errors.append(f"Price {block}: Zero output")
                    else:
                        price = venue.reference_price * venue.probe_amount // dy
                except (TypeError, ValueError):
                    errors.append(f"Price {block}: Failed to parse result")

            parsed[block] = (DataPoint(block, timestamp, price), errors)
        return parsed

    def close(self) -> None:
        """Cancel the pending flush and reject queued callers."""
        self._timer.cancel()
        queue, self._queue, self._venue = self._queue, [], None
        self._reject(queue, AggregationFailure("Aggregator closed", batch_size=0))
