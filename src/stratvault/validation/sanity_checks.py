"""Sanity checks for vault configuration and state."""

from dataclasses import dataclass
from typing import List, Optional

from ..config.schema import BPS, VaultConfig
from ..engine.ledger import LedgerState


@dataclass
class ValidationWarning:
    """A validation warning with severity and message."""
    severity: str  # "warning" or "error"
    category: str  # e.g., "input", "conservation", "bounds", "liquidity"
    message: str
    details: Optional[str] = None


class SanityChecker:
    """Run sanity checks on configuration and vault state."""

    def __init__(self, config: VaultConfig):
        """Initialize with configuration."""
        self.config = config

    def check_config_inputs(self) -> List[ValidationWarning]:
        """
        Check configuration for implausible values.

        Returns:
            List of validation warnings
        """
        warnings = []
        config = self.config

        # Check weight sum
        total_weight = sum(config.weights)
        if total_weight > BPS:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message=f"Input weights sum to {total_weight} bps",
                details=f"Maximum is {BPS} bps"
            ))
        elif total_weight < BPS and config.leverage is None:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message=f"Input weights sum to {total_weight} bps; {BPS - total_weight} bps stays idle",
            ))

        # A zero-weight input only makes sense as the short leg of a leverage pair
        zero_weight = [i.token for i in config.inputs if i.weight_bps == 0]
        if zero_weight and config.leverage is None:
            warnings.append(ValidationWarning(
                severity="error",
                category="input",
                message="Zero-weight inputs without a leverage pair are never allocated",
                details=f"Inputs: {', '.join(zero_weight)}"
            ))

        if config.fees.perf > 3_000:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message=f"Performance fee of {config.fees.perf / 100:.1f}% is unusually high",
            ))

        if config.fees.mgmt > 200:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message=f"Management fee of {config.fees.mgmt / 100:.2f}%/yr is unusually high",
            ))

        if config.max_slippage_bps > 500:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message=f"Slippage budget of {config.max_slippage_bps / 100:.1f}% leaves depositors exposed",
                details="Swap and stake losses up to this budget pass the unified check"
            ))
        elif config.max_slippage_bps == 0:
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message="Zero slippage budget: any swap fee makes invest and liquidate fail",
            ))

        if config.leverage is not None:
            if config.leverage.target_leverage > 1_000:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message=f"Target leverage {config.leverage.target_leverage / 100:.1f}x is aggressive",
                ))
            if config.leverage.haircut_bps == 0:
                warnings.append(ValidationWarning(
                    severity="warning",
                    category="bounds",
                    message="Zero leverage haircut leaves no margin for price moves during the loan",
                ))

        if config.fee_collector not in config.exemption_list:
            warnings.append(ValidationWarning(
                severity="warning",
                category="input",
                message=f"Fee collector {config.fee_collector} is not fee-exempt",
                details="Collected fee shares will be charged fees again"
            ))

        return warnings

    def check_state(self, state: LedgerState) -> List[ValidationWarning]:
        """
        Check ledger state for issues.

        Args:
            state: Ledger snapshot

        Returns:
            List of validation warnings
        """
        warnings = []

        is_valid, error_msg = state.validate_non_negative()
        if not is_valid:
            warnings.append(ValidationWarning(
                severity="error",
                category="bounds",
                message="Negative balance detected",
                details=error_msg
            ))

        is_valid, error_msg = state.validate_supply()
        if not is_valid:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message="Share supply not conserved",
                details=error_msg
            ))

        if state.total_supply and state.share_price < state.high_water_mark:
            drawdown = 1 - state.share_price / state.high_water_mark
            warnings.append(ValidationWarning(
                severity="warning",
                category="bounds",
                message=f"Share price {drawdown * 100:.2f}% below its high-water mark at t={state.t:.0f}",
            ))

        return warnings

    def check_vault(self, vault) -> List[ValidationWarning]:
        """
        Check live vault state: accounting identity and claim reserve.

        Args:
            vault: StrategyVault

        Returns:
            List of validation warnings
        """
        warnings = []

        live = vault.live_total_assets()
        accounted = vault.total_assets()
        if live != accounted:
            warnings.append(ValidationWarning(
                severity="error",
                category="conservation",
                message="Accounted assets differ from idle cash + invested value",
                details=f"Accounted: {accounted:,}, live: {live:,} (prices moved since last accrual?)"
            ))

        reserve = vault.redemptions.claimable_assets()
        idle = vault.idle_cash()
        if reserve > idle:
            warnings.append(ValidationWarning(
                severity="error",
                category="liquidity",
                message="Claimable requests exceed idle cash",
                details=f"Reserved: {reserve:,}, idle: {idle:,}"
            ))

        pending = vault.redemptions.pending_assets()
        if pending > idle:
            warnings.append(ValidationWarning(
                severity="warning",
                category="liquidity",
                message="Withdrawal requests await liquidation",
                details=f"Owed: {pending:,}, idle: {idle:,}"
            ))

        return warnings


def validate_vault(vault) -> List[ValidationWarning]:
    """
    Validate a vault's configuration, ledger and live state.

    Args:
        vault: StrategyVault

    Returns:
        List of all validation warnings
    """
    checker = SanityChecker(vault.config)
    warnings = []
    warnings.extend(checker.check_config_inputs())
    warnings.extend(checker.check_state(vault.ledger_state()))
    warnings.extend(checker.check_vault(vault))
    return warnings
