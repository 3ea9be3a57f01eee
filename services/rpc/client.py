"""
JSON-RPC client over httpx.AsyncClient.

Transport failures (connection, timeout, HTTP status, unparsable body)
become TransientFetchError and feed the circuit breaker. JSON-RPC error
objects are a healthy node answering and are raised per call as
RpcResponseError / UpstreamStalenessError.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.exceptions import TransientFetchError, rpc_error_from_payload

logger = logging.getLogger(__name__)


@dataclass
class RpcCall:
    method: str
    params: List[Any] = field(default_factory=list)


@dataclass
class RpcResponse:
    result: Any = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            return str(self.error.get("message") or "Unknown error")
        return str(self.error)

    def unwrap(self, method: str = None) -> Any:
        if self.error is not None:
            raise rpc_error_from_payload(self.error, method)
        return self.result


class JsonRpcClient:
    """Client JSON-RPC minimal (requêtes simples et batch)."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.url = url
        self._breaker = breaker
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)
        self.requests_sent = 0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: Any) -> Any:
        async def send():
            self.requests_sent += 1
            try:
                response = await self._client.post(self.url, json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                raise TransientFetchError(f"RPC transport error: {e}", url=self.url, cause=e) from e
            except ValueError as e:
                raise TransientFetchError(f"RPC returned invalid JSON: {e}", url=self.url, cause=e) from e

        if self._breaker is not None:
            return await self._breaker.call(send)
        return await send()

    def _envelope(self, method: str, params: Sequence[Any]) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": list(params)}

    async def request(self, method: str, params: Sequence[Any] = ()) -> Any:
        body = await self._post(self._envelope(method, params))
        if not isinstance(body, dict):
            raise TransientFetchError(f"Unexpected RPC body for {method}", url=self.url)
        return RpcResponse(body.get("result"), body.get("error")).unwrap(method)

    async def batch(self, calls: Sequence[RpcCall]) -> List[RpcResponse]:
        """Send ``calls`` in one HTTP round trip; responses come back in call order."""
        if not calls:
            return []
        envelopes = [self._envelope(c.method, c.params) for c in calls]
        body = await self._post(envelopes)
        if not isinstance(body, list):
            message = RpcResponse(error=body.get("error")).error_message if isinstance(body, dict) else None
            raise TransientFetchError(
                f"Batch of {len(calls)} calls rejected: {message or 'response is not a list'}",
                url=self.url,
            )

        by_id = {item.get("id"): item for item in body if isinstance(item, dict)}
        responses = []
        for envelope in envelopes:
            item = by_id.get(envelope["id"])
            if item is None:
                responses.append(RpcResponse(error={"message": f"No response for request {envelope['id']}"}))
            else:
                responses.append(RpcResponse(item.get("result"), item.get("error")))
        logger.debug(f"RPC batch of {len(calls)} calls completed", extra={"batch_size": len(calls)})
        return responses

    # ---------------- Helpers Ethereum ----------------

    @staticmethod
    def block_tag(block: Any) -> str:
        return hex(block) if isinstance(block, int) else block

    async def eth_call(self, to: str, data: str, block: Any = "latest") -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, self.block_tag(block)])

    async def get_storage_at(self, address: str, slot: int, block: Any = "latest") -> str:
        return await self.request("eth_getStorageAt", [address, hex(slot), self.block_tag(block)])

    async def block_number(self) -> int:
        return int(await self.request("eth_blockNumber"), 16)

    async def get_block(self, number: Any = "latest", full: bool = False) -> Dict[str, Any]:
        block = await self.request("eth_getBlockByNumber", [self.block_tag(number), full])
        if block is None:
            raise TransientFetchError(f"Block {number} not found", url=self.url)
        return block

    async def multicall(self, calls: Sequence[Tuple[str, str]], block: Any = "latest") -> List[str]:
        """
        Read several contracts in one round trip. Strict: the first failed
        sub-call raises, so a caller never sees a partial result.
        """
        tag = self.block_tag(block)
        responses = await self.batch([RpcCall("eth_call", [{"to": to, "data": data}, tag]) for to, data in calls])
        return [response.unwrap("eth_call") for response in responses]
