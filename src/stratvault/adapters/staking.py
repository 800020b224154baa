"""Rebasing staking-pool adapter; native units already denote value."""

from typing import Optional, Sequence

from ..markets.staking import SimulatedStakingPool
from ..markets.swapper import Instruction
from .base import Adapter


class StakingPoolAdapter(Adapter):
    """Stakes each input token in a rebasing pool, converting 1:1."""

    def __init__(self, pool: SimulatedStakingPool):
        super().__init__()
        self.pool = pool

    def stake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        return self.pool.stake(self.holder, self.input_token(index), amount)

    def unstake(self, index: int, amount: int, swap_instructions: Optional[Sequence[Instruction]] = None) -> int:
        return self.pool.unstake(self.holder, self.input_token(index), amount)

    def native_to_input(self, amount: int, index: int) -> int:
        return amount

    def input_to_native(self, amount: int, index: int) -> int:
        return amount

    def position(self, index: int) -> int:
        return self.pool.balance_of(self.holder, self.input_token(index))

    def stateful_components(self):
        return [self.pool]
