"""Vault configuration."""

from .loader import config_from_dict, load_config, merge_layers, save_config
from .schema import BPS, Fees, InputConfig, LeverageConfig, VaultConfig, validate_weights

__all__ = [
    "BPS",
    "Fees",
    "InputConfig",
    "LeverageConfig",
    "VaultConfig",
    "config_from_dict",
    "load_config",
    "merge_layers",
    "save_config",
    "validate_weights",
]
