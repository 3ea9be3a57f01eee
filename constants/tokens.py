"""
Tracked tokens for balances and USD valuation.

Addresses come from the contracts section of the settings at composition
time.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .app_constants import TOKEN_DECIMALS


@dataclass(frozen=True)
class TokenMetadata:
    symbol: str
    address: str
    decimals: int = TOKEN_DECIMALS
    display_name: str = ""


COLLATERAL_SYMBOL = "LUSD"
DOLLAR_SYMBOL = "UUSD"
GOVERNANCE_SYMBOL = "UBQ"


def tracked_tokens(collateral: str, dollar: str, governance: str) -> Tuple[TokenMetadata, ...]:
    """Token registry with addresses taken from configuration."""
    return (
        TokenMetadata(COLLATERAL_SYMBOL, collateral, display_name="LUSD"),
        TokenMetadata(DOLLAR_SYMBOL, dollar, display_name="UUSD"),
        TokenMetadata(GOVERNANCE_SYMBOL, governance, display_name="UBQ"),
    )
