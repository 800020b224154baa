"""Leverage overlay - Two-leg leveraged position built with a flash loan.

Wraps a lending-market adapter. Staking the primary leg runs in two phases:

1. Request phase: record a pending loan, then ask the loan provider for
   `loan = amount × L / 100` of the primary token.
2. Callback phase (`on_flash_loan`, accepted only from the expected
   provider for the pending loan): supply the loan as collateral, borrow
   the secondary leg
       debt = value(loan) × (L - 100) / L, minus haircut
   swap the debt back into the primary token and leave `loan + fee` for
   the provider to pull. A short balance aborts the whole operation.

Unstaking mirrors it: flash-borrow the secondary leg, repay the matching
share of debt, redeem collateral, sell enough primary (plus haircut) to
repay the loan.

Dust policy:
- Open: whatever of the staked amount is left after repaying the loan is
  supplied as extra collateral.
- Close: secondary tokens left after repaying the loan repay remaining
  debt; anything beyond that is carried (valued at oracle price) and
  swapped in on the next open.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from ..config.schema import InputConfig
from ..engine import events
from ..engine.fees import BPS, add_bps, mul_div_up, sub_bps
from ..engine.state import Stateful
from ..errors import AmountTooLow, InsufficientLiquidity, InvalidData, Unauthorized
from ..markets.swapper import Instruction, Swapper
from .base import Adapter, AdapterContext
from .lending import LendingMarketAdapter

logger = logging.getLogger(__name__)

OPEN = "open"
CLOSE = "close"


def max_leverage_for(collateral_factor_bps: int) -> int:
    """Maximum leverage (base 100) a collateral factor allows: 100 / (1 - LTV)."""
    return 100 * BPS // (BPS - collateral_factor_bps)


@dataclass(frozen=True)
class LeverageParams:
    """Leverage bounds, checked once when set."""
    target_leverage: int  # Base 100 (400 = 4x)
    haircut_bps: int
    collateral_factor_bps: int

    @property
    def max_leverage(self) -> int:
        return max_leverage_for(self.collateral_factor_bps)

    def check(self) -> None:
        """
        Validate the parameters.

        Raises:
            InvalidData: If leverage is not above 1x or the haircut is out of range
            Unauthorized: If target leverage reaches the venue-implied maximum
        """
        if self.target_leverage <= 100:
            raise InvalidData(f"Target leverage must exceed 100, got {self.target_leverage}")
        # exact form of target >= 100 / (1 - LTV)
        if self.target_leverage * (BPS - self.collateral_factor_bps) >= 100 * BPS:
            raise Unauthorized(
                f"Target leverage {self.target_leverage} reaches the maximum "
                f"{self.max_leverage} allowed by collateral factor {self.collateral_factor_bps} bps"
            )
        if not 0 <= self.haircut_bps < self.target_leverage * 100:
            raise InvalidData(
                f"Haircut {self.haircut_bps} bps must be in [0, {self.target_leverage * 100})"
            )


@dataclass
class PendingLoan:
    """Loan requested from the provider and not yet seen in the callback."""
    mode: str  # OPEN or CLOSE
    token: str
    amount: int
    instruction: Instruction
    stake_amount: int = 0  # OPEN: primary amount being staked
    native: int = 0  # CLOSE: collateral native units to redeem


class LeverageOverlay(Adapter, Stateful):
    """Primary leg supplied with leverage, secondary leg borrowed against it."""

    _state_fields = ("params", "secondary_dust", "_pending")

    def __init__(
        self,
        inner: LendingMarketAdapter,
        loan_provider: Any,
        swapper: Swapper,
        target_leverage: int,
        haircut_bps: int,
        primary_index: int = 0,
        short_index: int = 1
    ):
        """
        Initialize leverage overlay.

        Args:
            inner: Lending adapter holding the collateral and debt
            loan_provider: Flash loan provider (`flash_borrow(token, amount, receiver, data)`)
            swapper: Swap facade between the two legs
            target_leverage: Target leverage, base 100
            haircut_bps: Margin taken off the theoretical debt
            primary_index: Input index of the collateral leg
            short_index: Input index of the borrowed leg (weight 0)
        """
        super().__init__()
        if primary_index == short_index:
            raise InvalidData("Primary and short leg must be different inputs")
        self.inner = inner
        self.loan_provider = loan_provider
        self.swapper = swapper
        self.primary_index = primary_index
        self.short_index = short_index
        self._requested = (target_leverage, haircut_bps)
        self.params: Optional[LeverageParams] = None
        self.secondary_dust = 0
        self._pending: Optional[PendingLoan] = None

    @property
    def venue(self) -> Any:
        return self.inner.venue

    def bind(self, context: AdapterContext) -> None:
        super().bind(context)
        self.inner.bind(context)
        self.set_params(*self._requested)

    def set_params(self, target_leverage: int, haircut_bps: int) -> LeverageParams:
        """Validate and apply leverage bounds against the venue's collateral factor."""
        params = LeverageParams(
            target_leverage=target_leverage,
            haircut_bps=haircut_bps,
            collateral_factor_bps=self.venue.collateral_factor_bps(self.primary_token),
        )
        params.check()
        self.params = params
        return params

    @property
    def primary_token(self) -> str:
        return self.input_token(self.primary_index)

    @property
    def secondary_token(self) -> str:
        return self.input_token(self.short_index)

    def check_inputs(self, inputs: Sequence[InputConfig]) -> None:
        """Both legs must keep their token and index."""
        self.inner.check_inputs(inputs)
        for index, token in ((self.primary_index, self.primary_token), (self.short_index, self.secondary_token)):
            if index >= len(inputs) or inputs[index].token != token:
                raise InvalidData(f"Leveraged leg {index} ({token}) cannot be moved or removed")

    def release(self, token: str, amount: int) -> None:
        if token == self.secondary_token and self.secondary_dust:
            self.secondary_dust -= min(amount, self.secondary_dust)

    def _leg_instruction(self, swap_instructions: Optional[Sequence[Instruction]]) -> Instruction:
        if not swap_instructions or len(swap_instructions) <= self.short_index:
            raise InvalidData(f"Missing swap instruction for leveraged leg {self.short_index}")
        instruction = swap_instructions[self.short_index]
        if not instruction:
            raise InvalidData(f"Missing swap instruction for leveraged leg {self.short_index}")
        return instruction

    # --- valuation ---

    def collateral(self) -> int:
        return self.venue.underlying_balance(self.holder, self.primary_token)

    def debt(self) -> int:
        return self.venue.borrow_balance(self.holder, self.secondary_token)

    def equity(self) -> int:
        """Collateral minus debt plus carried dust, in primary units."""
        oracle = self._ctx().oracle
        p, s = self.primary_token, self.secondary_token
        value = self.collateral()
        debt = self.debt()
        if debt:
            value -= oracle.convert(s, debt, p)
        if self.secondary_dust:
            value += oracle.convert(s, self.secondary_dust, p)
        return max(0, value)

    def position(self, index: int) -> int:
        if index == self.short_index:
            return 0
        return self.inner.position(index)

    def native_to_input(self, amount: int, index: int) -> int:
        if index == self.short_index:
            return 0
        if index != self.primary_index:
            return self.inner.native_to_input(amount, index)
        total = self.inner.position(index)
        if total == 0:
            return self.inner.native_to_input(amount, index)
        return self.equity() * amount // total

    def input_to_native(self, amount: int, index: int) -> int:
        if index == self.short_index:
            return 0
        if index != self.primary_index:
            return self.inner.input_to_native(amount, index)
        total = self.inner.position(index)
        equity = self.equity()
        if total == 0 or equity == 0:
            return self.inner.input_to_native(amount, index)
        return mul_div_up(amount, total, equity)

    def invested_value(self, index: int) -> int:
        if index == self.short_index:
            return 0
        if index != self.primary_index:
            return self.inner.invested_value(index)
        ctx = self._ctx()
        equity = self.equity()
        if equity == 0:
            return 0
        return ctx.oracle.convert(self.primary_token, equity, ctx.asset)

    # --- request phase ---

    def stake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        if index == self.short_index:
            raise InvalidData(f"Input {index} is the short leg and cannot be staked on its own")
        if index != self.primary_index:
            return self.inner.stake(index, amount, swap_instructions)

        ctx = self._ctx()
        instruction = self._leg_instruction(swap_instructions)
        native_before = self.inner.position(index)
        collateral_before, debt_before = self.collateral(), self.debt()
        loan = amount * self.params.target_leverage // 100

        self._pending = PendingLoan(
            mode=OPEN, token=self.primary_token, amount=loan,
            instruction=instruction, stake_amount=amount,
        )
        fee = self.loan_provider.flash_borrow(self.primary_token, loan, self, OPEN)
        if self._pending is not None:
            raise Unauthorized("Loan provider returned without invoking the callback")

        native = self.inner.position(index) - native_before
        ctx.events.emit(
            events.LEVERAGE_OPENED, ctx.clock(),
            amount=amount, loan=loan, fee=fee,
            collateral_before=collateral_before, collateral_after=self.collateral(),
            debt_before=debt_before, debt_after=self.debt(),
        )
        logger.info(
            "Opened leverage: staked %d %s with %d loan, debt now %d %s",
            amount, self.primary_token, loan, self.debt(), self.secondary_token
        )
        return native

    def unstake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        if index == self.short_index:
            raise InvalidData(f"Input {index} is the short leg and cannot be unstaked on its own")
        if index != self.primary_index:
            return self.inner.unstake(index, amount, swap_instructions)

        ctx = self._ctx()
        total = self.inner.position(index)
        if amount > total:
            raise InsufficientLiquidity(f"Position holds {total} native units, unstaking {amount}")
        collateral_before, debt_before = self.collateral(), self.debt()
        debt_share = debt_before if amount == total else mul_div_up(debt_before, amount, total)
        primary_before = ctx.tokens.balance_of(self.primary_token, self.holder)

        if debt_share == 0:
            self.inner.unstake(index, amount)
            fee = 0
        else:
            self._pending = PendingLoan(
                mode=CLOSE, token=self.secondary_token, amount=debt_share,
                instruction=self._leg_instruction(swap_instructions), native=amount,
            )
            fee = self.loan_provider.flash_borrow(self.secondary_token, debt_share, self, CLOSE)
            if self._pending is not None:
                raise Unauthorized("Loan provider returned without invoking the callback")

        released = ctx.tokens.balance_of(self.primary_token, self.holder) - primary_before
        if released < 0:
            raise AmountTooLow(f"Unwinding cost {-released} {self.primary_token} more than it released")
        ctx.events.emit(
            events.LEVERAGE_CLOSED, ctx.clock(),
            native=amount, repaid=debt_share, fee=fee, released=released,
            collateral_before=collateral_before, collateral_after=self.collateral(),
            debt_before=debt_before, debt_after=self.debt(),
        )
        logger.info(
            "Closed leverage: repaid %d %s, released %d %s",
            debt_share, self.secondary_token, released, self.primary_token
        )
        return released

    # --- callback phase ---

    def on_flash_loan(self, provider: Any, token: str, amount: int, fee: int, data: Any) -> None:
        """
        Loan provider callback.

        Raises:
            Unauthorized: If the caller is not the expected provider or no
                matching loan is pending
        """
        pending = self._pending
        if (
            provider is not self.loan_provider
            or pending is None
            or token != pending.token
            or amount != pending.amount
        ):
            raise Unauthorized("Unexpected flash loan callback")
        self._pending = None
        if pending.mode == OPEN:
            self._open_leg(pending, fee)
        else:
            self._close_leg(pending, fee)

    def _open_leg(self, pending: PendingLoan, fee: int) -> None:
        ctx = self._ctx()
        p, s = self.primary_token, self.secondary_token
        leverage = self.params.target_leverage

        self.venue.supply(self.holder, p, pending.amount)
        collateral_value = ctx.oracle.convert(p, pending.amount, s)
        debt = sub_bps(collateral_value * (leverage - 100) // leverage, self.params.haircut_bps)
        if debt:
            self.venue.borrow(self.holder, s, debt)

        to_swap = debt + self.secondary_dust
        self.secondary_dust = 0
        received = 0
        if to_swap:
            received, _ = self.swapper.swap(s, p, to_swap, pending.instruction, self.holder)

        owed = pending.amount + fee
        balance = ctx.tokens.balance_of(p, self.holder)
        if balance < owed:
            raise AmountTooLow(f"Cannot repay flash loan: hold {balance} {p}, owe {owed}")
        surplus = pending.stake_amount + received - owed
        if surplus > 0:
            self.venue.supply(self.holder, p, surplus)
            logger.debug("Redeposited %d %s of open dust", surplus, p)

    def _close_leg(self, pending: PendingLoan, fee: int) -> None:
        ctx = self._ctx()
        p, s = self.primary_token, self.secondary_token

        self.venue.repay(self.holder, s, pending.amount)
        self.venue.redeem(self.holder, p, pending.native)

        owed = pending.amount + fee
        carried = self.secondary_dust
        need = max(0, owed - carried)
        received = 0
        if need:
            sell = add_bps(ctx.oracle.convert(s, need, p), self.params.haircut_bps)
            received, _ = self.swapper.swap(p, s, sell, pending.instruction, self.holder)
        if carried + received < owed:
            raise AmountTooLow(f"Cannot repay flash loan: hold {carried + received} {s}, owe {owed}")

        leftover = carried + received - owed
        remaining_debt = self.debt()
        if leftover and remaining_debt:
            leftover -= self.venue.repay(self.holder, s, min(leftover, remaining_debt))
        self.secondary_dust = leftover
        if leftover:
            logger.debug("Carrying %d %s of close dust", leftover, s)

    # --- rewards ---

    def reward_tokens(self) -> List[str]:
        return self.inner.reward_tokens()

    def rewards_available(self) -> List[int]:
        return self.inner.rewards_available()

    def claim_rewards(self) -> List[int]:
        return self.inner.claim_rewards()

    def stateful_components(self) -> List[Stateful]:
        return self.inner.stateful_components() + [self, self.loan_provider]
