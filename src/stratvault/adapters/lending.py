"""Generic lending-market adapter.

Works with any venue exposing the supply/redeem/borrow/repay call shape of
`SimulatedLendingMarket`. Venues differ in how they pay rewards: current
venues expose `claimable_rewards(account) -> {token: amount}`, legacy ones
a single reward token through `reward_accrued`/`claim_reward`. The shape is
detected once when the adapter is bound.
"""

import logging
from typing import Any, List, Optional, Sequence

from ..config.schema import InputConfig
from ..markets.lending import SCALE
from ..markets.swapper import Instruction
from .base import Adapter, AdapterContext

logger = logging.getLogger(__name__)


class LendingMarketAdapter(Adapter):
    """Supplies each input token to its lending market."""

    def __init__(self, venue: Any):
        super().__init__()
        self.venue = venue
        self.dict_rewards = True

    def bind(self, context: AdapterContext) -> None:
        super().bind(context)
        self.dict_rewards = callable(getattr(self.venue, "claimable_rewards", None))
        logger.debug(
            "Bound lending adapter to %s (%s reward API)",
            getattr(self.venue, "address", self.venue),
            "dict" if self.dict_rewards else "legacy",
        )

    def check_inputs(self, inputs: Sequence[InputConfig]) -> None:
        for inp in inputs:
            self.venue.market(inp.token)

    def stake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        return self.venue.supply(self.holder, self.input_token(index), amount)

    def unstake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        return self.venue.redeem(self.holder, self.input_token(index), amount)

    def native_to_input(self, amount: int, index: int) -> int:
        return amount * self.venue.exchange_rate(self.input_token(index)) // SCALE

    def input_to_native(self, amount: int, index: int) -> int:
        return amount * SCALE // self.venue.exchange_rate(self.input_token(index))

    def position(self, index: int) -> int:
        return self.venue.balance_of(self.holder, self.input_token(index))

    def reward_tokens(self) -> List[str]:
        return list(self.venue.reward_tokens())

    def rewards_available(self) -> List[int]:
        if not self.reward_tokens():
            return []
        if self.dict_rewards:
            pending = self.venue.claimable_rewards(self.holder)
            return [pending.get(token, 0) for token in self.reward_tokens()]
        return [self.venue.reward_accrued(self.holder)]

    def claim_rewards(self) -> List[int]:
        if not self.reward_tokens():
            return []
        if self.dict_rewards:
            claimed = self.venue.claim_rewards(self.holder)
            return [claimed.get(token, 0) for token in self.reward_tokens()]
        return [self.venue.claim_reward(self.holder)]

    def stateful_components(self):
        return [self.venue]
