"""
Lecteur on-chain du diamond Ubiquity (pool de collatéral).

Cached accessors go through CacheService with the per-category policy
from config.ttl_config. The ``fetch_*`` methods are uncached single
round-trip reads used by the refresh scheduler phases.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.settings import ContractsConfig
from config.ttl_config import CACHE_CONFIGS
from constants.app_constants import MAX_VALID_THRESHOLD, MIN_VALID_THRESHOLD, ONE_TOKEN
from constants.tokens import TokenMetadata
from services.batch_aggregator import GET_DY_SIGNATURE
from services.cache_service import CacheKeys, CacheService
from services.calculations import is_fractional
from services.rpc.abi import (
    decode_address_list,
    decode_collateral_info,
    decode_uint,
    decode_word,
    encode_call,
)
from services.rpc.client import JsonRpcClient, RpcCall
from shared.exceptions import InvalidDataError

logger = logging.getLogger(__name__)

COLLATERAL_RATIO_SIG = "collateralRatio()"
DOLLAR_PRICE_SIG = "getDollarPriceUsd()"
GOVERNANCE_PRICE_SIG = "getGovernancePriceUsd()"
ALL_COLLATERALS_SIG = "allCollaterals()"
COLLATERAL_INFO_SIG = "collateralInformation(address)"
BALANCE_OF_SIG = "balanceOf(address)"


@dataclass(frozen=True)
class CollateralInfo:
    """Paramètres d'un collatéral tels que retournés par le diamond."""
    index: int
    symbol: str
    collateral_address: str
    price_feed: str
    staleness_threshold: int
    is_enabled: bool
    missing_decimals: int
    price: int
    pool_ceiling: int
    is_mint_paused: bool
    is_redeem_paused: bool
    is_borrow_paused: bool
    minting_fee: int
    redemption_fee: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollateralInfo":
        return cls(**{name: data[name] for name in cls.__dataclass_fields__})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PriceThresholds:
    mint_threshold: int
    redeem_threshold: int

    def to_dict(self) -> Dict[str, str]:
        return {"mint_threshold": str(self.mint_threshold), "redeem_threshold": str(self.redeem_threshold)}


@dataclass(frozen=True)
class ProtocolState:
    """Vue cohérente des paramètres du protocole utilisée par le moteur de routage."""
    collateral_ratio: int
    dollar_price: int
    governance_price: int
    collateral: CollateralInfo
    thresholds: PriceThresholds

    @property
    def is_fractional(self) -> bool:
        return is_fractional(self.collateral_ratio)

    @property
    def minting_allowed(self) -> bool:
        return self.dollar_price >= self.thresholds.mint_threshold

    @property
    def redeeming_allowed(self) -> bool:
        return self.dollar_price <= self.thresholds.redeem_threshold


@dataclass(frozen=True)
class ProtocolData:
    """Phase 1 du scheduler: lecture groupée du diamond."""
    collateral_ratio: int
    dollar_price: int
    governance_price: int
    collateral_addresses: Tuple[str, ...]
    collateral: CollateralInfo


@dataclass(frozen=True)
class VenueData:
    """Phase 3 du scheduler: taux Curve + seuils bruts."""
    curve_exchange_rate: int
    mint_threshold: int
    redeem_threshold: int


def validate_thresholds(mint_threshold: int, redeem_threshold: int) -> PriceThresholds:
    if mint_threshold == 0 or redeem_threshold == 0:
        raise InvalidDataError(
            f"Invalid price thresholds read from storage: mint={mint_threshold}, redeem={redeem_threshold}",
            field="price_thresholds",
        )
    for value in (mint_threshold, redeem_threshold):
        if not MIN_VALID_THRESHOLD <= value <= MAX_VALID_THRESHOLD:
            raise InvalidDataError(
                f"Price thresholds out of valid range: mint={mint_threshold}, redeem={redeem_threshold}",
                field="price_thresholds",
            )
    return PriceThresholds(mint_threshold, redeem_threshold)


class ContractService:
    """Accès en lecture au diamond et aux tokens ERC20 suivis."""

    def __init__(self, client: JsonRpcClient, cache: CacheService, contracts: ContractsConfig):
        self._client = client
        self._cache = cache
        self.contracts = contracts

    # ---------------- Lectures simples ----------------

    async def _read_uint(self, to: str, signature: str, *args: Any) -> int:
        return decode_uint(await self._client.eth_call(to, encode_call(signature, *args)), field=signature)

    async def get_collateral_ratio(self) -> int:
        return await self._cache.get_or_fetch(
            CacheKeys.COLLATERAL_RATIO,
            lambda: self._read_uint(self.contracts.diamond, COLLATERAL_RATIO_SIG),
            CACHE_CONFIGS["COLLATERAL_RATIO"],
        )

    async def get_dollar_price(self) -> int:
        """Oracle price of the dollar token (6 decimals)."""
        return await self._cache.get_or_fetch(
            CacheKeys.DOLLAR_ORACLE_PRICE,
            lambda: self._read_uint(self.contracts.diamond, DOLLAR_PRICE_SIG),
            CACHE_CONFIGS["ORACLE_PRICE"],
        )

    async def get_governance_price(self) -> int:
        return await self._cache.get_or_fetch(
            CacheKeys.GOVERNANCE_PRICE,
            lambda: self._read_uint(self.contracts.diamond, GOVERNANCE_PRICE_SIG),
            CACHE_CONFIGS["GOVERNANCE_PRICE"],
        )

    async def get_collateral_addresses(self) -> List[str]:
        async def fetch():
            result = await self._client.eth_call(self.contracts.diamond, encode_call(ALL_COLLATERALS_SIG))
            return decode_address_list(result, field=ALL_COLLATERALS_SIG)

        return list(await self._cache.get_or_fetch(
            CacheKeys.COLLATERAL_ADDRESSES, fetch, CACHE_CONFIGS["COLLATERAL_OPTIONS"]
        ))

    async def _read_collateral_info(self, address: str) -> Dict[str, Any]:
        result = await self._client.eth_call(self.contracts.diamond, encode_call(COLLATERAL_INFO_SIG, address))
        return decode_collateral_info(result)

    async def get_collateral_info(self, address: Optional[str] = None) -> CollateralInfo:
        address = address or self.contracts.collateral_token
        # cached as a plain map so the durable mirror can hold it
        data = await self._cache.get_or_fetch(
            CacheKeys.collateral_info(address),
            lambda: self._read_collateral_info(address),
            CACHE_CONFIGS["PROTOCOL_SETTINGS"],
        )
        return CollateralInfo.from_dict(data)

    async def _read_thresholds(self) -> List[int]:
        mint_raw, redeem_raw = await asyncio.gather(
            self._client.get_storage_at(self.contracts.diamond, self.contracts.mint_threshold_slot),
            self._client.get_storage_at(self.contracts.diamond, self.contracts.redeem_threshold_slot),
        )
        thresholds = validate_thresholds(decode_word(mint_raw), decode_word(redeem_raw))
        return [thresholds.mint_threshold, thresholds.redeem_threshold]

    async def get_price_thresholds(self) -> PriceThresholds:
        mint_threshold, redeem_threshold = await self._cache.get_or_fetch(
            CacheKeys.PRICE_THRESHOLDS, self._read_thresholds, CACHE_CONFIGS["PRICE_THRESHOLDS"]
        )
        return PriceThresholds(mint_threshold, redeem_threshold)

    async def get_token_balances(self, account: str, tokens: Sequence[TokenMetadata]) -> Dict[str, int]:
        """Balances de ``account`` par symbole (jamais resservies périmées)."""
        async def fetch():
            balances = await self.fetch_token_balances(account, tokens)
            return {token.symbol: balance for token, balance in balances}

        return await self._cache.get_or_fetch(
            CacheKeys.balances(account), fetch, CACHE_CONFIGS["USER_BALANCES"]
        )

    async def get_protocol_state(self) -> ProtocolState:
        ratio, dollar_price, governance_price, collateral, thresholds = await asyncio.gather(
            self.get_collateral_ratio(),
            self.get_dollar_price(),
            self.get_governance_price(),
            self.get_collateral_info(),
            self.get_price_thresholds(),
        )
        return ProtocolState(ratio, dollar_price, governance_price, collateral, thresholds)

    # ---------------- Phases du scheduler (non cachées) ----------------

    async def fetch_protocol_data(self) -> ProtocolData:
        diamond = self.contracts.diamond
        ratio, dollar_price, governance_price, addresses, info = await self._client.multicall([
            (diamond, encode_call(COLLATERAL_RATIO_SIG)),
            (diamond, encode_call(DOLLAR_PRICE_SIG)),
            (diamond, encode_call(GOVERNANCE_PRICE_SIG)),
            (diamond, encode_call(ALL_COLLATERALS_SIG)),
            (diamond, encode_call(COLLATERAL_INFO_SIG, self.contracts.collateral_token)),
        ])
        return ProtocolData(
            collateral_ratio=decode_uint(ratio, field=COLLATERAL_RATIO_SIG),
            dollar_price=decode_uint(dollar_price, field=DOLLAR_PRICE_SIG),
            governance_price=decode_uint(governance_price, field=GOVERNANCE_PRICE_SIG),
            collateral_addresses=tuple(decode_address_list(addresses, field=ALL_COLLATERALS_SIG)),
            collateral=CollateralInfo.from_dict(decode_collateral_info(info)),
        )

    async def fetch_token_balances(
        self, account: str, tokens: Sequence[TokenMetadata]
    ) -> List[Tuple[TokenMetadata, int]]:
        results = await self._client.multicall(
            [(token.address, encode_call(BALANCE_OF_SIG, account)) for token in tokens]
        )
        return [
            (token, decode_uint(result, field=f"{token.symbol}.balanceOf"))
            for token, result in zip(tokens, results)
        ]

    async def fetch_venue_data(self) -> VenueData:
        c = self.contracts
        get_dy = encode_call(GET_DY_SIGNATURE, c.curve_collateral_index, c.curve_dollar_index, ONE_TOKEN)
        rate, mint_raw, redeem_raw = await self._client.batch([
            RpcCall("eth_call", [{"to": c.curve_pool, "data": get_dy}, "latest"]),
            RpcCall("eth_getStorageAt", [c.diamond, hex(c.mint_threshold_slot), "latest"]),
            RpcCall("eth_getStorageAt", [c.diamond, hex(c.redeem_threshold_slot), "latest"]),
        ])
        return VenueData(
            curve_exchange_rate=decode_uint(rate.unwrap("get_dy"), field="get_dy"),
            mint_threshold=decode_word(mint_raw.unwrap("eth_getStorageAt")),
            redeem_threshold=decode_word(redeem_raw.unwrap("eth_getStorageAt")),
        )
