"""
Route decision engine: protocol mint/redeem versus Curve swap.

Deposit = collateral (LUSD) -> dollar (UUSD), mint vs swap.
Withdraw = dollar (UUSD) -> collateral (LUSD), redeem vs swap.

Amount math is integer fixed-point; floats only appear in the savings
percentage and display strings. Dependency failures propagate unchanged.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from config.settings import RouteConfig
from constants.app_constants import PEG_PRICE
from constants.tokens import COLLATERAL_SYMBOL, DOLLAR_SYMBOL
from services.calculations import (
    Savings,
    calculate_mint_amounts,
    calculate_redeem_amounts,
    calculate_savings,
    collateral_in_dollar,
    format_units,
)
from services.contract_service import ContractService, ProtocolState
from services.curve_service import CurveService
from shared.exceptions import InvalidDataError

logger = logging.getLogger(__name__)


class RouteType(str, Enum):
    MINT = "mint"
    REDEEM = "redeem"
    SWAP = "swap"


class Direction(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class RoutePolicy:
    """Options de routage, une seule valeur explicite par requête."""
    direction: Direction
    force_collateral_only: bool = False
    use_bonus_discount: bool = True
    force_swap_only: bool = False
    accept_fractional_redemption: bool = False

    def __post_init__(self):
        if self.direction == Direction.DEPOSIT and (self.force_swap_only or self.accept_fractional_redemption):
            raise ValueError("force_swap_only / accept_fractional_redemption only apply to withdrawals")
        if self.direction == Direction.WITHDRAW and self.force_collateral_only:
            raise ValueError("force_collateral_only only applies to deposits")

    @classmethod
    def deposit(cls, force_collateral_only: bool = False, use_bonus_discount: bool = True) -> "RoutePolicy":
        return cls(Direction.DEPOSIT, force_collateral_only=force_collateral_only, use_bonus_discount=use_bonus_discount)

    @classmethod
    def withdraw(cls, force_swap_only: bool = False, accept_fractional_redemption: bool = False) -> "RoutePolicy":
        return cls(
            Direction.WITHDRAW,
            use_bonus_discount=False,
            force_swap_only=force_swap_only,
            accept_fractional_redemption=accept_fractional_redemption,
        )


@dataclass(frozen=True)
class OptimalRouteResult:
    route_type: RouteType
    direction: Direction
    input_amount: int
    expected_output: int
    market_price: int
    peg_price: int
    savings: Savings
    reason: str
    is_enabled: bool = True
    disabled_reason: Optional[str] = None
    is_ubq_operation: bool = False
    bonus_amount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_type": self.route_type.value,
            "direction": self.direction.value,
            "input_amount": str(self.input_amount),
            "expected_output": str(self.expected_output),
            "market_price": str(self.market_price),
            "peg_price": str(self.peg_price),
            "savings": self.savings.to_dict(),
            "reason": self.reason,
            "is_enabled": self.is_enabled,
            "disabled_reason": self.disabled_reason,
            "is_ubq_operation": self.is_ubq_operation,
            "bonus_amount": str(self.bonus_amount),
        }


@dataclass(frozen=True)
class _ProtocolQuote:
    output: int
    bonus_amount: int = 0
    is_ubq_operation: bool = False


@dataclass
class _Choice:
    route_type: RouteType
    output: int
    reason: str
    savings: Savings = field(default_factory=lambda: Savings(0, 0.0))
    disabled_reason: Optional[str] = None


class RouteDecisionEngine:
    """Choisit la route la moins chère pour un dépôt ou un retrait."""

    def __init__(self, contracts: ContractService, curve: CurveService, defaults: Optional[RouteConfig] = None):
        self._contracts = contracts
        self._curve = curve
        self.defaults = defaults or RouteConfig()

    async def get_optimal_deposit_route(self, amount: int, force_collateral_only: bool = False) -> OptimalRouteResult:
        policy = RoutePolicy.deposit(force_collateral_only, self.defaults.use_bonus_discount)
        return await self.get_optimal_route(Direction.DEPOSIT, amount, policy)

    async def get_optimal_withdraw_route(self, amount: int, force_swap_only: bool = False) -> OptimalRouteResult:
        policy = RoutePolicy.withdraw(force_swap_only, self.defaults.accept_fractional_redemption)
        return await self.get_optimal_route(Direction.WITHDRAW, amount, policy)

    async def get_optimal_route(
        self, direction: Direction, amount: int, policy: Optional[RoutePolicy] = None
    ) -> OptimalRouteResult:
        direction = Direction(direction)
        if amount <= 0:
            raise ValueError("amount must be positive")
        if policy is None:
            policy = (RoutePolicy.deposit(use_bonus_discount=self.defaults.use_bonus_discount)
                      if direction == Direction.DEPOSIT
                      else RoutePolicy.withdraw(accept_fractional_redemption=self.defaults.accept_fractional_redemption))
        if policy.direction != direction:
            raise ValueError(f"policy direction {policy.direction.value} does not match {direction.value}")

        if direction == Direction.DEPOSIT:
            result = await self._deposit(amount, policy)
        else:
            result = await self._withdraw(amount, policy)
        logger.debug(
            f"{direction.value} {amount}: {result.route_type.value} -> {result.expected_output}",
            extra={"route_type": result.route_type.value},
        )
        return result

    # ---------------- Dépôt ----------------

    async def _deposit(self, amount: int, policy: RoutePolicy) -> OptimalRouteResult:
        state, swap_output = await asyncio.gather(
            self._contracts.get_protocol_state(),
            self._curve.quote_deposit(amount),
        )
        market_price = await self._curve.get_dollar_market_price(state.collateral.price)
        mint = self._quote_mint(amount, state, policy)
        price_text = format_units(market_price, 6)

        if policy.force_collateral_only:
            choice = _Choice(RouteType.MINT, mint.output, "Collateral-only mint requested.",
                             calculate_savings(mint.output, swap_output))
            if not state.minting_allowed:
                choice.disabled_reason = "Minting disabled: dollar price below mint threshold."
        elif not state.minting_allowed:
            choice = _Choice(RouteType.SWAP, swap_output,
                             "Minting disabled due to price conditions. Using Curve swap.")
        elif mint.output >= swap_output:
            choice = _Choice(RouteType.MINT, mint.output,
                             f"UUSD at ${price_text}. Minting gives more UUSD.",
                             calculate_savings(mint.output, swap_output))
        else:
            choice = _Choice(RouteType.SWAP, swap_output,
                             f"UUSD at ${price_text}. Curve swap gives more UUSD.",
                             calculate_savings(swap_output, mint.output))

        if choice.route_type == RouteType.MINT and choice.disabled_reason is None:
            choice.disabled_reason = self._collateral_disabled(state, "mint")
        if choice.route_type == RouteType.SWAP and swap_output == 0:
            choice.disabled_reason = "Curve pool quote returned no output."

        ubq = choice.route_type == RouteType.MINT and mint.is_ubq_operation
        return self._result(choice, Direction.DEPOSIT, amount, market_price, ubq, mint.bonus_amount if ubq else 0)

    def _quote_mint(self, amount: int, state: ProtocolState, policy: RoutePolicy) -> _ProtocolQuote:
        c = state.collateral
        try:
            collateral_dollar = collateral_in_dollar(amount, c.price, c.missing_decimals)
            use_discount = (
                state.is_fractional
                and policy.use_bonus_discount
                and not policy.force_collateral_only
                and state.collateral_ratio > 0
            )
            if use_discount:
                # output stays tied to the deposited collateral, the UBQ needed is reported apart
                amounts = calculate_mint_amounts(
                    collateral_dollar, state.collateral_ratio, state.governance_price, amount, c.minting_fee
                )
                return _ProtocolQuote(amounts.total_dollar_mint, amounts.governance_needed, True)

            amounts = calculate_mint_amounts(
                collateral_dollar, state.collateral_ratio, state.governance_price, amount, c.minting_fee,
                force_collateral_only=True,
            )
            return _ProtocolQuote(amounts.total_dollar_mint)
        except ValueError as e:
            raise InvalidDataError(f"Cannot compute mint output: {e}", field="mint") from e

    # ---------------- Retrait ----------------

    async def _withdraw(self, amount: int, policy: RoutePolicy) -> OptimalRouteResult:
        state, swap_output = await asyncio.gather(
            self._contracts.get_protocol_state(),
            self._curve.quote_withdraw(amount),
        )
        market_price = await self._curve.get_dollar_market_price(state.collateral.price)
        c = state.collateral
        try:
            redeem = calculate_redeem_amounts(
                amount, state.collateral_ratio, state.governance_price, c.price, c.redemption_fee, c.missing_decimals
            )
        except ValueError as e:
            raise InvalidDataError(f"Cannot compute redeem output: {e}", field="redeem") from e
        price_text = format_units(market_price, 6)

        excluded = None
        if policy.force_swap_only:
            excluded = "Swap-only requested. Using Curve swap."
        elif not state.redeeming_allowed:
            excluded = "Redeeming disabled due to price conditions. Using Curve swap."
        elif state.is_fractional and not policy.accept_fractional_redemption:
            excluded = "Redemption would pay part in UBQ (fractional mode). Using Curve swap."

        if excluded:
            choice = _Choice(RouteType.SWAP, swap_output, excluded)
        elif redeem.collateral_redeemed >= swap_output:
            choice = _Choice(RouteType.REDEEM, redeem.collateral_redeemed,
                             f"UUSD at ${price_text}. Redeeming gives more LUSD.",
                             calculate_savings(redeem.collateral_redeemed, swap_output))
        else:
            choice = _Choice(RouteType.SWAP, swap_output,
                             f"UUSD at ${price_text}. Curve swap gives more LUSD.",
                             calculate_savings(swap_output, redeem.collateral_redeemed))

        if choice.route_type == RouteType.REDEEM:
            choice.disabled_reason = self._collateral_disabled(state, "redeem")
        elif swap_output == 0:
            choice.disabled_reason = "Curve pool quote returned no output."

        ubq = choice.route_type == RouteType.REDEEM and redeem.governance_redeemed > 0
        return self._result(choice, Direction.WITHDRAW, amount, market_price, ubq,
                            redeem.governance_redeemed if ubq else 0)

    # ---------------- Commun ----------------

    @staticmethod
    def _collateral_disabled(state: ProtocolState, operation: str) -> Optional[str]:
        c = state.collateral
        if not c.is_enabled:
            return f"Collateral {c.symbol} is disabled."
        if operation == "mint" and c.is_mint_paused:
            return f"Minting with {c.symbol} is paused."
        if operation == "redeem" and c.is_redeem_paused:
            return f"Redeeming for {c.symbol} is paused."
        return None

    @staticmethod
    def _result(
        choice: _Choice, direction: Direction, amount: int, market_price: int, ubq: bool, bonus: int
    ) -> OptimalRouteResult:
        return OptimalRouteResult(
            route_type=choice.route_type,
            direction=direction,
            input_amount=amount,
            expected_output=choice.output,
            market_price=market_price,
            peg_price=PEG_PRICE,
            savings=choice.savings,
            reason=choice.reason,
            is_enabled=choice.disabled_reason is None,
            disabled_reason=choice.disabled_reason,
            is_ubq_operation=ubq,
            bonus_amount=bonus,
        )


def format_route_display(result: OptimalRouteResult) -> str:
    """Ligne lisible, ex: 'Deposit: Swapping via Curve 1000.000000 LUSD → 1005.000000 UUSD (Save 0.70%)'."""
    if result.direction == Direction.DEPOSIT:
        label, input_token, output_token = "Deposit", COLLATERAL_SYMBOL, DOLLAR_SYMBOL
    else:
        label, input_token, output_token = "Withdraw", DOLLAR_SYMBOL, COLLATERAL_SYMBOL
    action = {
        RouteType.MINT: "Minting",
        RouteType.REDEEM: "Redeeming",
        RouteType.SWAP: "Swapping via Curve",
    }[result.route_type]
    savings = f" (Save {result.savings.percentage:.2f}%)" if result.savings.percentage > 0 else ""
    disabled = f" [disabled: {result.disabled_reason}]" if not result.is_enabled else ""
    return (
        f"{label}: {action} {format_units(result.input_amount)} {input_token} → "
        f"{format_units(result.expected_output)} {output_token}{savings}{disabled}"
    )
