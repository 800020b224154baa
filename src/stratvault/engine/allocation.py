"""Allocation router - Weighted entry into and exit from inputs.

Entry (invest):
- target_i = amount × weight_i / 10000 for every input with weight > 0
- Swap base → input token when they differ, then stake
- Unified slippage check: the position's base-denominated value increase,
  less any base spent beyond target_i (loan fees, haircut gaps), must reach
  target_i × (1 - max_slippage); swap, stake and loan losses share one budget

Exit (liquidate):
- Amount capped at total invested
- Taken from inputs in proportion to their excess over the post-exit
  weight targets, which moves the book back toward its weights
- Unstake, swap input → base, then check base received against the
  position value removed with the same budget (waived in panic mode)

Per-input amounts under the dust threshold are skipped, not failed.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from ..adapters.base import Adapter
from ..config.schema import InputConfig, VaultConfig
from ..errors import AmountTooLow, InvalidData, MissingOracle
from ..markets.oracle import PriceOracle
from ..markets.swapper import Instruction, Swapper
from .fees import BPS, sub_bps
from .tokens import TokenLedger

logger = logging.getLogger(__name__)


@dataclass
class InputAllocation:
    """What happened to one input during invest or liquidate."""
    index: int
    token: str
    target: int  # Base units routed to (or requested from) the input
    value_before: int  # Position value in base units
    value_after: int
    native: int = 0  # Native units staked or unstaked
    swapped: int = 0  # Token amount received from the swap leg, if any
    received: int = 0  # Liquidate: base units returned to the vault
    spent: int = 0  # Invest: base units that left idle cash
    skipped: bool = False

    @property
    def value_delta(self) -> int:
        return self.value_after - self.value_before

    @property
    def net_value(self) -> int:
        """Value gained less whatever base was spent beyond the target."""
        return self.value_delta - (self.spent - self.target)


@dataclass
class AllocationResult:
    """Outcome of a router call."""
    requested: int
    amount: int  # After caps
    allocations: List[InputAllocation] = field(default_factory=list)

    @property
    def invested_value(self) -> int:
        return sum(a.value_delta for a in self.allocations if not a.skipped)

    @property
    def received(self) -> int:
        return sum(a.received for a in self.allocations)


class AllocationRouter:
    """Splits idle capital across inputs and unwinds it on demand."""

    def __init__(
        self,
        config: Callable[[], VaultConfig],
        adapter: Adapter,
        swapper: Swapper,
        oracle: PriceOracle,
        tokens: TokenLedger
    ):
        """
        Initialize router.

        Args:
            config: Returns the live vault configuration
            adapter: Adapter owning every input position
            swapper: Swap facade
            oracle: Price facade
            tokens: Token ledger holding the vault's idle cash
        """
        self._config = config
        self.adapter = adapter
        self.swapper = swapper
        self.oracle = oracle
        self.tokens = tokens

    @property
    def config(self) -> VaultConfig:
        return self._config()

    @property
    def holder(self) -> str:
        return self.config.address

    @property
    def asset(self) -> str:
        return self.config.asset

    def invested_values(self) -> List[int]:
        return [self.adapter.invested_value(i) for i in range(len(self.config.inputs))]

    def total_invested(self) -> int:
        return sum(self.invested_values())

    def idle(self) -> int:
        return self.tokens.balance_of(self.asset, self.holder)

    # --- previews ---

    def preview_invest(self, amount: int) -> List[int]:
        """Base amount routed to each input; 0 for zero weights and dust."""
        dust = self.config.dust_threshold
        targets = []
        for inp in self.config.inputs:
            target = amount * inp.weight_bps // BPS
            targets.append(target if inp.weight_bps > 0 and target >= dust else 0)
        return targets

    def preview_liquidate(self, amount: int) -> List[int]:
        """
        Base amount taken from each input.

        Args:
            amount: Requested base amount (capped at total invested)

        Returns:
            Amounts per input, summing to the capped request
        """
        values = self.invested_values()
        total = sum(values)
        amount = min(amount, total)
        if amount <= 0:
            return [0] * len(values)

        weights = self.config.weights
        weight_sum = sum(weights)
        remaining = total - amount
        excess = []
        for value, weight in zip(values, weights):
            target_after = remaining * weight // weight_sum if weight_sum else 0
            excess.append(max(0, value - target_after))
        excess_sum = sum(excess)

        takes = [amount * e // excess_sum for e in excess]
        shortfall = amount - sum(takes)
        # rounding remainder goes to inputs that still have room
        for i in sorted(range(len(takes)), key=lambda k: excess[k] - takes[k], reverse=True):
            if shortfall == 0:
                break
            room = min(excess[i], values[i]) - takes[i]
            step = min(room, shortfall)
            if step > 0:
                takes[i] += step
                shortfall -= step
        return takes

    # --- helpers ---

    def _instruction(self, swap_instructions: Optional[Sequence[Instruction]], index: int) -> Instruction:
        if not swap_instructions or len(swap_instructions) <= index or not swap_instructions[index]:
            raise InvalidData(f"Missing swap instruction for input {index}")
        return swap_instructions[index]

    def _require_feed(self, token: str) -> None:
        if token != self.asset and not self.oracle.has_feed(token):
            raise MissingOracle(f"No fresh price feed for input token {token}")

    # --- entry / exit ---

    def invest(self, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> AllocationResult:
        """
        Stake `amount` of idle base across inputs by weight.

        Raises:
            InvalidData: If an input needing a swap has no instruction
            MissingOracle: If an input token has no fresh price
            AmountTooLow: If an input fails the unified slippage check
        """
        config = self.config
        result = AllocationResult(requested=amount, amount=amount)
        for index, target in enumerate(self.preview_invest(amount)):
            inp = config.inputs[index]
            before = self.adapter.invested_value(index) if target else 0
            entry = InputAllocation(
                index=index, token=inp.token, target=target,
                value_before=before, value_after=before,
            )
            result.allocations.append(entry)
            if target == 0:
                entry.skipped = True
                if inp.weight_bps > 0:
                    logger.debug("Input %d: %d below dust threshold, skipped", index, amount * inp.weight_bps // BPS)
                continue

            idle_before = self.idle()
            stake_amount = target
            if inp.token != self.asset:
                self._require_feed(inp.token)
                instruction = self._instruction(swap_instructions, index)
                stake_amount, _ = self.swapper.swap(self.asset, inp.token, target, instruction, self.holder)
                entry.swapped = stake_amount

            entry.native = self.adapter.stake(index, stake_amount, swap_instructions)
            entry.value_after = self.adapter.invested_value(index)
            entry.spent = idle_before - self.idle()
            floor = sub_bps(target, config.max_slippage_bps)
            if entry.net_value < floor:
                raise AmountTooLow(
                    f"Input {index} ({inp.token}): position gained {entry.value_delta} "
                    f"for {entry.spent} spent, minimum {floor} net for {target} invested"
                )
            logger.debug("Input %d: invested %d, position +%d", index, target, entry.value_delta)
        return result

    def liquidate(
        self,
        amount: int,
        panic: bool = False,
        swap_instructions: Optional[Sequence[Instruction]] = None
    ) -> AllocationResult:
        """
        Unwind positions to return about `amount` base to idle cash.

        Args:
            amount: Base amount wanted (capped at total invested)
            panic: Waive slippage checks for an emergency exit
            swap_instructions: One per input; needed where input != base

        Raises:
            InvalidData: If an input needing a swap has no instruction
            AmountTooLow: If base received falls short of value removed
        """
        takes = self.preview_liquidate(amount)
        result = AllocationResult(requested=amount, amount=sum(takes))
        for index, take in enumerate(takes):
            result.allocations.append(self._exit(index, take, panic, swap_instructions))
        return result

    def unwind(
        self,
        indexes: Sequence[int],
        panic: bool = False,
        swap_instructions: Optional[Sequence[Instruction]] = None
    ) -> AllocationResult:
        """Exit the whole position of each input in `indexes`, dust included."""
        values = self.invested_values()
        amount = sum(values[i] for i in indexes)
        result = AllocationResult(requested=amount, amount=amount)
        for index in indexes:
            result.allocations.append(
                self._exit(index, values[index], panic, swap_instructions, skip_dust=False)
            )
        return result

    def check_inputs(self, inputs: Sequence[InputConfig]) -> None:
        """
        Check that a new input list can be priced and served.

        Raises:
            MissingOracle: If a non-base input token has no fresh price
            InvalidData: If the adapter cannot hold one of the inputs
        """
        for inp in inputs:
            self._require_feed(inp.token)
        self.adapter.check_inputs(inputs)

    def _exit(
        self,
        index: int,
        take: int,
        panic: bool,
        swap_instructions: Optional[Sequence[Instruction]],
        skip_dust: bool = True
    ) -> InputAllocation:
        config = self.config
        inp = config.inputs[index]
        position = self.adapter.position(index)
        before = self.adapter.invested_value(index) if take or not skip_dust else 0
        entry = InputAllocation(
            index=index, token=inp.token, target=take,
            value_before=before, value_after=before,
        )
        too_small = skip_dust and (take < config.dust_threshold or take == 0)
        if too_small or position == 0:
            entry.skipped = True
            if take:
                logger.debug("Input %d: %d below dust threshold or no position, skipped", index, take)
            return entry

        self._require_feed(inp.token)
        if take >= before:
            native = position
        else:
            input_amount = self.oracle.convert(self.asset, take, inp.token)
            native = min(self.adapter.input_to_native(input_amount, index), position)
        entry.native = native
        got = self.adapter.unstake(index, native, swap_instructions)

        received = got
        if inp.token != self.asset and got > 0:
            instruction = self._instruction(swap_instructions, index)
            received, _ = self.swapper.swap(inp.token, self.asset, got, instruction, self.holder)
            entry.swapped = received
        entry.received = received
        entry.value_after = self.adapter.invested_value(index)

        removed = entry.value_before - entry.value_after
        floor = sub_bps(removed, config.max_slippage_bps)
        if not panic and received < floor:
            raise AmountTooLow(
                f"Input {index} ({inp.token}): received {received} for "
                f"{removed} of position value, minimum {floor}"
            )
        logger.debug("Input %d: liquidated %d native, received %d", index, native, received)
        return entry
