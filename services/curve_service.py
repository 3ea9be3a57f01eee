"""
Curve LUSD/UUSD pool reader: get_dy quotes and the implied dollar price.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Tuple

from config.settings import ContractsConfig
from config.ttl_config import CACHE_CONFIGS
from constants.app_constants import ONE_TOKEN
from services.batch_aggregator import GET_DY_SIGNATURE, VenueParams
from services.cache_service import CacheKeys, CacheService
from services.calculations import derive_market_price
from services.rpc.abi import decode_address, decode_uint, encode_call
from services.rpc.client import JsonRpcClient
from shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

COINS_SIGNATURE = "coins(uint256)"


class CurveService:
    """Cotations du pool Curve (cache AMM_QUOTE, jamais resservies périmées)."""

    def __init__(self, client: JsonRpcClient, cache: CacheService, contracts: ContractsConfig):
        self._client = client
        self._cache = cache
        self.contracts = contracts

    @property
    def collateral_index(self) -> int:
        return self.contracts.curve_collateral_index

    @property
    def dollar_index(self) -> int:
        return self.contracts.curve_dollar_index

    def history_venue(self, probe_amount: int = ONE_TOKEN) -> VenueParams:
        """Venue probed by the price history sampler (collateral -> dollar)."""
        return VenueParams(self.contracts.curve_pool, self.collateral_index, self.dollar_index, probe_amount)

    async def _get_dy(self, i: int, j: int, amount: int) -> int:
        result = await self._client.eth_call(self.contracts.curve_pool, encode_call(GET_DY_SIGNATURE, i, j, amount))
        return decode_uint(result, field="get_dy")

    async def quote(self, i: int, j: int, amount: int) -> int:
        """Output of swapping ``amount`` of coin ``i`` into coin ``j``."""
        if i == j:
            raise ValueError("Cannot swap same token")
        if amount <= 0:
            return 0
        return await self._cache.get_or_fetch(
            CacheKeys.amm_quote(self.contracts.curve_pool, i, j, amount),
            lambda: self._get_dy(i, j, amount),
            CACHE_CONFIGS["AMM_QUOTE"],
        )

    async def quote_deposit(self, collateral_amount: int) -> int:
        """Collateral -> dollar."""
        return await self.quote(self.collateral_index, self.dollar_index, collateral_amount)

    async def quote_withdraw(self, dollar_amount: int) -> int:
        """Dollar -> collateral."""
        return await self.quote(self.dollar_index, self.collateral_index, dollar_amount)

    async def get_dollar_market_price(self, collateral_price: int) -> int:
        """
        Dollar token price implied by the pool:
        collateral_price * probe / dollar_out.

        A drained pool (zero output) yields a price of 0 so the route engine
        can report the swap as unavailable.
        """
        async def fetch():
            dollar_out = await self.quote_deposit(ONE_TOKEN)
            if dollar_out == 0:
                logger.warning("Curve pool returned no output for the one-token price quote")
                return 0
            return derive_market_price(collateral_price, ONE_TOKEN, dollar_out)

        return await self._cache.get_or_fetch(
            f"{CacheKeys.DOLLAR_MARKET_PRICE}:{collateral_price}", fetch, CACHE_CONFIGS["DOLLAR_MARKET_PRICE"]
        )

    async def verify_pool_configuration(self, collateral_token: str, dollar_token: str) -> Tuple[str, str]:
        """Check that the pool coin indexes point at the configured tokens."""
        async def coin(index: int) -> str:
            result = await self._client.eth_call(self.contracts.curve_pool, encode_call(COINS_SIGNATURE, index))
            return decode_address(result, field=COINS_SIGNATURE)

        collateral, dollar = await asyncio.gather(coin(self.collateral_index), coin(self.dollar_index))
        if collateral.lower() != collateral_token.lower() or dollar.lower() != dollar_token.lower():
            raise ConfigurationError(
                f"Curve pool coins mismatch: index {self.collateral_index}={collateral}, "
                f"index {self.dollar_index}={dollar}",
                config_key="contracts.curve_pool",
            )
        logger.info(f"Curve pool configuration verified: {collateral} / {dollar}")
        return collateral, dollar
