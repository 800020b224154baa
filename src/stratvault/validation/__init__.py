"""Validation and sanity checks for strategy vaults."""

from .sanity_checks import SanityChecker, ValidationWarning, validate_vault

__all__ = [
    "SanityChecker",
    "ValidationWarning",
    "validate_vault"
]
