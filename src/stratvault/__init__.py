"""stratvault: capital-allocation vault engine with adapters and leverage overlay."""

from .config import VaultConfig, load_config
from .engine.vault import StrategyVault
from .errors import (
    AmountTooHigh,
    AmountTooLow,
    InsufficientLiquidity,
    InvalidData,
    MissingOracle,
    NotYetClaimable,
    Unauthorized,
    VaultError,
)

__version__ = "0.1.0"

__all__ = [
    "StrategyVault",
    "VaultConfig",
    "load_config",
    "AmountTooHigh",
    "AmountTooLow",
    "InsufficientLiquidity",
    "InvalidData",
    "MissingOracle",
    "NotYetClaimable",
    "Unauthorized",
    "VaultError",
]
