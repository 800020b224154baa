"""Pydantic schema for vault configuration validation."""

import hashlib
import json
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator, model_validator

from ..errors import InvalidData

BPS = 10_000


def validate_weights(weights: Sequence[int]) -> List[int]:
    """
    Check an input weight vector.

    Args:
        weights: Weights in basis points, one per input

    Returns:
        The weights as a list of ints

    Raises:
        InvalidData: If a weight is negative or the sum exceeds 100%
    """
    weights = [int(w) for w in weights]
    if any(w < 0 for w in weights):
        raise InvalidData(f"Input weights must be non-negative, got {weights}")
    total = sum(weights)
    if total > BPS:
        raise InvalidData(f"Input weights sum to {total} bps, max is {BPS}")
    return weights


class Fees(BaseModel):
    """Fee schedule in basis points."""
    perf: int = Field(default=0, ge=0, le=5_000, description="Performance fee on share price gains")
    mgmt: int = Field(default=0, ge=0, le=500, description="Annual management fee on assets")
    entry: int = Field(default=0, ge=0, le=200, description="Haircut on deposits")
    exit: int = Field(default=0, ge=0, le=200, description="Haircut on withdrawals")
    flash: int = Field(default=0, ge=0, le=200, description="Fee on vault flash loans")


class InputConfig(BaseModel):
    """One external position the vault allocates to."""
    token: str = Field(min_length=1, description="Token the position is denominated in")
    weight_bps: int = Field(ge=0, le=BPS, description="Target allocation weight")
    decimals: int = Field(default=18, ge=0, le=36, description="Token decimals")


class LeverageConfig(BaseModel):
    """Leverage overlay parameters (arbitrage variant)."""
    target_leverage: int = Field(gt=100, description="Target leverage in base 100 (400 = 4x)")
    haircut_bps: int = Field(ge=0, description="Safety margin taken off the theoretical max debt")

    @model_validator(mode='after')
    def validate_haircut(self):
        """Haircut must stay below the leverage expressed in bps."""
        if self.haircut_bps >= self.target_leverage * 100:
            raise ValueError(
                f"haircut_bps ({self.haircut_bps}) must be below "
                f"target_leverage*100 ({self.target_leverage * 100})"
            )
        return self


class VaultConfig(BaseModel):
    """Complete configuration for a strategy vault."""
    name: str = Field(description="Vault display name")
    symbol: str = Field(description="Share token symbol")
    address: str = Field(default="vault", description="Account holding the vault's balances")
    asset: str = Field(description="Base denomination token")
    decimals: int = Field(default=18, ge=0, le=36, description="Base token (and share) decimals")
    inputs: List[InputConfig] = Field(min_length=1, description="Allocation inputs")
    fees: Fees = Field(default_factory=Fees)
    fee_collector: str = Field(default="fee-collector", description="Receiver of collected fee shares")
    exemption_list: List[str] = Field(default_factory=list, description="Accounts bypassing all fees")
    min_liquidity: int = Field(default=0, ge=0, description="Minimum seed liquidity of an empty vault")
    max_total_assets: Optional[int] = Field(default=None, ge=0, description="Deposit cap, None = unbounded")
    max_slippage_bps: int = Field(default=100, ge=0, le=BPS, description="Unified slippage budget")
    dust_threshold: int = Field(default=10, ge=0, description="Per-input amounts below this are skipped")
    withdrawal_cooldown_seconds: float = Field(default=0.0, ge=0, description="Delay before a request can be claimed")
    rescue_timelock_seconds: float = Field(default=172_800.0, ge=0, description="Delay between a rescue request and the rescue")
    leverage: Optional[LeverageConfig] = Field(default=None)

    @field_validator("inputs")
    @classmethod
    def validate_input_weights(cls, v):
        """Ensure Σ weight_bps ≤ 10000 and one input per token."""
        total = sum(i.weight_bps for i in v)
        if total > BPS:
            raise ValueError(f"Input weights sum to {total} bps, max is {BPS}")
        tokens = [i.token for i in v]
        if len(set(tokens)) != len(tokens):
            raise ValueError(f"Input tokens must be unique, got {tokens}")
        return v

    @property
    def weights(self) -> List[int]:
        return [i.weight_bps for i in self.inputs]

    def compute_hash(self) -> str:
        """Compute config hash for reproducibility."""
        config_dict = self.model_dump()
        config_str = json.dumps(config_dict, sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VaultConfig':
        """Create config from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return self.model_dump()
