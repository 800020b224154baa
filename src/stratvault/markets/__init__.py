"""External collaborators consumed by the vault, with in-memory venues."""

from .flash import FlashBorrower, SimulatedFlashLender
from .lending import LegacyLendingMarket, LendingMarketState, SimulatedLendingMarket
from .oracle import PRICE_DECIMALS, PriceFeed, PriceOracle, StaticPriceOracle
from .staking import SimulatedStakingPool
from .swapper import Instruction, SimulatedSwapper, SwapInstruction, Swapper

__all__ = [
    "FlashBorrower",
    "SimulatedFlashLender",
    "LegacyLendingMarket",
    "LendingMarketState",
    "SimulatedLendingMarket",
    "PRICE_DECIMALS",
    "PriceFeed",
    "PriceOracle",
    "StaticPriceOracle",
    "SimulatedStakingPool",
    "Instruction",
    "SimulatedSwapper",
    "SwapInstruction",
    "Swapper",
]
