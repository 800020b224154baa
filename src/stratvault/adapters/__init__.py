"""Adapters translating vault calls into external venue calls."""

from .base import Adapter, AdapterContext
from .lending import LendingMarketAdapter
from .leverage import LeverageOverlay, LeverageParams, PendingLoan, max_leverage_for
from .staking import StakingPoolAdapter

__all__ = [
    "Adapter",
    "AdapterContext",
    "LendingMarketAdapter",
    "LeverageOverlay",
    "LeverageParams",
    "PendingLoan",
    "StakingPoolAdapter",
    "max_leverage_for",
]
