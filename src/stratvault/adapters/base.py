"""Adapter interface - capability contract of every external position.

An adapter translates stake/unstake/valuation calls into one venue's calls.
It keeps no accounting of its own: positions live on the venue, and every
conversion is a pure function of venue state (never of a caller balance),
so valuation has no side effects.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..config.schema import InputConfig
from ..engine.events import EventLog
from ..engine.state import Stateful
from ..engine.tokens import TokenLedger
from ..errors import InvalidData
from ..markets.oracle import PriceOracle
from ..markets.swapper import Instruction


@dataclass
class AdapterContext:
    """Everything an adapter needs from the vault it serves."""
    holder: str  # Account owning the positions (the vault)
    asset: str  # Base denomination
    tokens: TokenLedger
    oracle: PriceOracle
    inputs: Callable[[], List[InputConfig]]  # Live input list
    events: EventLog
    clock: Callable[[], float]


class Adapter(ABC):
    """Base class for external-position adapters."""

    def __init__(self):
        self.context: Optional[AdapterContext] = None

    def bind(self, context: AdapterContext) -> None:
        """Attach the adapter to a vault. Called once at vault construction."""
        self.context = context

    @property
    def holder(self) -> str:
        return self._ctx().holder

    def _ctx(self) -> AdapterContext:
        if self.context is None:
            raise InvalidData(f"{type(self).__name__} is not bound to a vault")
        return self.context

    def input_token(self, index: int) -> str:
        inputs = self._ctx().inputs()
        if not 0 <= index < len(inputs):
            raise InvalidData(f"No input at index {index}")
        return inputs[index].token

    def input_count(self) -> int:
        return len(self._ctx().inputs())

    def check_inputs(self, inputs: Sequence[InputConfig]) -> None:
        """Raise InvalidData if the adapter cannot hold one of `inputs`."""

    def release(self, token: str, amount: int) -> None:
        """Stop counting `amount` of `token` the vault no longer holds."""

    # --- positions ---

    @abstractmethod
    def stake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        """Stake `amount` input units held by the vault; returns native units gained."""

    @abstractmethod
    def unstake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        """Unstake `amount` native units; returns input units paid to the vault."""

    @abstractmethod
    def native_to_input(self, amount: int, index: int) -> int:
        ...

    @abstractmethod
    def input_to_native(self, amount: int, index: int) -> int:
        ...

    @abstractmethod
    def position(self, index: int) -> int:
        """Current position size in native units."""

    def invested_value(self, index: int) -> int:
        """Current position size in base denomination."""
        ctx = self._ctx()
        amount = self.native_to_input(self.position(index), index)
        if amount == 0:
            return 0
        return ctx.oracle.convert(self.input_token(index), amount, ctx.asset)

    def total_invested(self) -> int:
        return sum(self.invested_value(i) for i in range(self.input_count()))

    # --- rewards ---

    def reward_tokens(self) -> List[str]:
        return []

    def rewards_available(self) -> List[int]:
        return [0 for _ in self.reward_tokens()]

    def claim_rewards(self) -> List[int]:
        """Claim rewards into the vault; amounts align with `reward_tokens()`."""
        return [0 for _ in self.reward_tokens()]

    def stateful_components(self) -> List[Stateful]:
        """Venue-side state that must roll back with a failed vault operation."""
        return []
