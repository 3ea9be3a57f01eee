"""
Calculs mint / redeem en virgule fixe.

All amounts are integers: token amounts in 18 decimals, prices, ratios and
fees in 1e6 precision (0.2% fee = 2000). No float is used before the
display layer.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Union

from constants.app_constants import PRICE_PRECISION


@dataclass(frozen=True)
class MintAmounts:
    total_dollar_mint: int
    collateral_needed: int
    governance_needed: int


@dataclass(frozen=True)
class RedeemAmounts:
    dollar_after_fee: int
    collateral_redeemed: int
    governance_redeemed: int


@dataclass(frozen=True)
class Savings:
    """Écart signé entre la route retenue et l'alternative."""
    amount: int
    percentage: float

    def to_dict(self) -> Dict[str, Union[str, float]]:
        return {"amount": str(self.amount), "percentage": self.percentage}


def apply_fee(amount: int, fee: int) -> int:
    """Amount left after a 1e6-scaled fee."""
    return amount * (PRICE_PRECISION - fee) // PRICE_PRECISION


def is_full_collateral(collateral_ratio: int) -> bool:
    return collateral_ratio >= PRICE_PRECISION


def is_fractional(collateral_ratio: int) -> bool:
    return collateral_ratio < PRICE_PRECISION


def dollar_for_collateral(dollar_amount: int, collateral_ratio: int) -> int:
    return dollar_amount * collateral_ratio // PRICE_PRECISION


def dollar_for_governance(dollar_amount: int, collateral_ratio: int) -> int:
    return dollar_amount - dollar_for_collateral(dollar_amount, collateral_ratio)


def dollar_in_collateral(dollar_amount: int, collateral_price: int, missing_decimals: int = 0) -> int:
    """Collateral units worth ``dollar_amount`` at ``collateral_price``."""
    if collateral_price <= 0:
        raise ValueError("collateral price must be positive")
    return dollar_amount * PRICE_PRECISION // collateral_price // (10 ** missing_decimals)


def collateral_in_dollar(collateral_amount: int, collateral_price: int, missing_decimals: int = 0) -> int:
    return collateral_amount * (10 ** missing_decimals) * collateral_price // PRICE_PRECISION


def calculate_mint_amounts(
    dollar_amount: int,
    collateral_ratio: int,
    governance_price: int,
    collateral_amount: int,
    minting_fee: int,
    force_collateral_only: bool = False,
) -> MintAmounts:
    """
    Split of a mint of ``dollar_amount`` between collateral and governance.

    ``collateral_amount`` is the collateral the caller supplies for the
    collateral share of the mint.
    """
    if force_collateral_only or is_full_collateral(collateral_ratio):
        collateral_needed, governance_needed = collateral_amount, 0
    else:
        if governance_price <= 0:
            raise ValueError("governance price must be positive")
        if collateral_ratio == 0:
            collateral_needed = 0
            governance_needed = dollar_amount * PRICE_PRECISION // governance_price
        else:
            collateral_needed = collateral_amount
            governance_needed = (
                dollar_for_governance(dollar_amount, collateral_ratio) * PRICE_PRECISION // governance_price
            )
    return MintAmounts(apply_fee(dollar_amount, minting_fee), collateral_needed, governance_needed)


def calculate_redeem_amounts(
    dollar_amount: int,
    collateral_ratio: int,
    governance_price: int,
    collateral_price: int,
    redemption_fee: int,
    missing_decimals: int = 0,
) -> RedeemAmounts:
    """Collateral and governance received for redeeming ``dollar_amount``."""
    after_fee = apply_fee(dollar_amount, redemption_fee)
    full_collateral = dollar_in_collateral(after_fee, collateral_price, missing_decimals)

    if is_full_collateral(collateral_ratio):
        return RedeemAmounts(after_fee, full_collateral, 0)
    if governance_price <= 0:
        raise ValueError("governance price must be positive")
    if collateral_ratio == 0:
        return RedeemAmounts(after_fee, 0, after_fee * PRICE_PRECISION // governance_price)
    return RedeemAmounts(
        after_fee,
        full_collateral * collateral_ratio // PRICE_PRECISION,
        after_fee * (PRICE_PRECISION - collateral_ratio) // governance_price,
    )


def calculate_savings(selected: int, other: int) -> Savings:
    """(selected - other) / other, en pourcentage. Zero when ``other`` is zero."""
    if other == 0:
        return Savings(0, 0.0)
    diff = selected - other
    return Savings(diff, float(Decimal(diff) * 100 / Decimal(other)))


def derive_market_price(reference_price: int, probe_amount: int, quote_output: int) -> int:
    """Price of the output asset implied by an AMM quote of ``probe_amount``."""
    if quote_output <= 0:
        raise ValueError("quote output must be positive")
    return reference_price * probe_amount // quote_output


def format_units(value: int, decimals: int = 18, places: int = 6) -> str:
    """Affichage décimal tronqué, sans passer par float."""
    quantum = Decimal(1).scaleb(-places)
    return str((Decimal(value).scaleb(-decimals)).quantize(quantum, rounding=ROUND_DOWN))


def usd_value(balance: int, decimals: int, price: int) -> int:
    """USD value in 1e6 units of ``balance`` priced at ``price`` (1e6 units)."""
    return balance * price // (10 ** decimals)
