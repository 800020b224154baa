"""Vault engine: ledger, allocation, redemption and the vault facade."""
