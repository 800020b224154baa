"""Share ledger & fee accrual - Deterministic tracking of vault shares.

The ledger owns the share supply, per-account balances, shares escrowed by
withdrawal requests, the unclaimed fee bucket and the total accounted
assets marked at the last accrual point. Share price is always
`total_accounted_assets / total_supply`.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set

from ..config.schema import Fees
from ..errors import AmountTooLow, InvalidData, Unauthorized
from .fees import (
    FeeAccrual,
    entry_fee_shares,
    exit_fee_shares,
    management_fee,
    mul_div,
    mul_div_up,
    performance_fee,
)
from .state import Stateful

logger = logging.getLogger(__name__)


@dataclass
class LedgerState:
    """Ledger state at a point in time.

    Supply Identity:
    total_supply = Σ balances + Σ escrowed + unclaimed_fee_shares
    """
    t: float
    total_supply: int
    total_accounted_assets: int
    share_price: int
    high_water_mark: int
    unclaimed_fee_shares: int
    balances: Dict[str, int] = field(default_factory=dict)
    escrowed: Dict[str, int] = field(default_factory=dict)

    def validate_supply(self) -> tuple[bool, Optional[str]]:
        """
        Validate that every share is accounted for exactly once.

        Returns:
            (is_valid, error_message)
        """
        held = sum(self.balances.values())
        locked = sum(self.escrowed.values())
        computed = held + locked + self.unclaimed_fee_shares
        if computed != self.total_supply:
            return False, (
                f"Supply mismatch at t={self.t}: "
                f"supply={self.total_supply}, sum={computed} "
                f"(balances={held}, escrowed={locked}, fees={self.unclaimed_fee_shares})"
            )
        return True, None

    def validate_non_negative(self) -> tuple[bool, Optional[str]]:
        """Validate no balance, escrow or total is negative."""
        for name, book in (("balance", self.balances), ("escrow", self.escrowed)):
            for account, value in book.items():
                if value < 0:
                    return False, f"Negative {name} at t={self.t}: {account}={value}"
        if self.total_supply < 0 or self.total_accounted_assets < 0:
            return False, f"Negative totals at t={self.t}"
        return True, None


class ShareLedger(Stateful):
    """Share accounting core with continuous fee accrual."""

    _state_fields = (
        "total_supply",
        "total_accounted_assets",
        "balances",
        "escrowed",
        "unclaimed_fee_shares",
        "high_water_mark",
        "last_accrual",
        "fees",
        "exemption_list",
    )

    def __init__(
        self,
        decimals: int,
        fees: Optional[Fees] = None,
        exemption_list: Iterable[str] = ()
    ):
        """
        Initialize share ledger.

        Args:
            decimals: Share decimals (same as the base asset)
            fees: Fee schedule in bps
            exemption_list: Accounts excluded from all fees
        """
        self.unit = 10 ** decimals
        self.total_supply = 0
        self.total_accounted_assets = 0
        self.balances: Dict[str, int] = {}
        self.escrowed: Dict[str, int] = {}
        self.unclaimed_fee_shares = 0
        self.high_water_mark = self.unit
        self.last_accrual: Optional[float] = None
        self.fees = fees or Fees()
        self.exemption_list: Set[str] = set(exemption_list)

    # --- valuation ---

    def share_price(self) -> int:
        """
        Base units per whole share.

        Raises:
            AmountTooLow: If shares exist but back no assets (total loss)
        """
        if self.total_supply == 0:
            return self.unit
        if self.total_accounted_assets == 0:
            raise AmountTooLow(
                f"Share price would be zero with {self.total_supply} shares outstanding"
            )
        return mul_div(self.total_accounted_assets, self.unit, self.total_supply)

    def convert_to_shares(self, assets: int, round_up: bool = False) -> int:
        if self.total_supply == 0:
            return assets
        self.share_price()
        fn = mul_div_up if round_up else mul_div
        return fn(assets, self.total_supply, self.total_accounted_assets)

    def convert_to_assets(self, shares: int, round_up: bool = False) -> int:
        if self.total_supply == 0:
            return shares
        self.share_price()
        fn = mul_div_up if round_up else mul_div
        return fn(shares, self.total_accounted_assets, self.total_supply)

    def is_exempt(self, account: str) -> bool:
        return account in self.exemption_list

    # --- balances ---

    def balance_of(self, account: str) -> int:
        """Transferable (non-escrowed) shares."""
        return self.balances.get(account, 0)

    def escrowed_of(self, account: str) -> int:
        return self.escrowed.get(account, 0)

    def mint(self, account: str, shares: int) -> None:
        if shares < 0:
            raise InvalidData(f"Cannot mint {shares} shares")
        self.balances[account] = self.balance_of(account) + shares
        self.total_supply += shares

    def burn(self, account: str, shares: int) -> None:
        self._debit(account, shares)
        self.total_supply -= shares

    def transfer(self, sender: str, recipient: str, shares: int) -> None:
        self._debit(sender, shares)
        self.balances[recipient] = self.balance_of(recipient) + shares

    def escrow(self, owner: str, shares: int) -> None:
        """Move shares out of the owner's transferable balance."""
        self._debit(owner, shares)
        self.escrowed[owner] = self.escrowed_of(owner) + shares

    def release(self, owner: str, shares: int) -> None:
        """Return escrowed shares to the owner's transferable balance."""
        self._debit_escrow(owner, shares)
        self.balances[owner] = self.balance_of(owner) + shares

    def burn_escrowed(self, owner: str, shares: int) -> None:
        self._debit_escrow(owner, shares)
        self.total_supply -= shares

    def escrow_to_fees(self, owner: str, shares: int) -> None:
        """Keep escrowed shares as exit fee."""
        self._debit_escrow(owner, shares)
        self.unclaimed_fee_shares += shares

    def credit_fees(self, account: str, shares: int) -> None:
        """Move shares from `account` into the unclaimed fee bucket."""
        self._debit(account, shares)
        self.unclaimed_fee_shares += shares

    def mint_fees(self, shares: int) -> None:
        self.total_supply += shares
        self.unclaimed_fee_shares += shares

    def _debit(self, account: str, shares: int) -> None:
        if shares < 0:
            raise InvalidData(f"Share amount must be non-negative, got {shares}")
        balance = self.balance_of(account)
        if shares > balance:
            raise Unauthorized(f"{account} owns {balance} shares, cannot use {shares}")
        self.balances[account] = balance - shares

    def _debit_escrow(self, owner: str, shares: int) -> None:
        if shares < 0:
            raise InvalidData(f"Share amount must be non-negative, got {shares}")
        held = self.escrowed_of(owner)
        if shares > held:
            raise Unauthorized(f"{owner} has {held} escrowed shares, cannot use {shares}")
        self.escrowed[owner] = held - shares
        if self.escrowed[owner] == 0:
            del self.escrowed[owner]

    # --- fees ---

    def entry_fee(self, account: str, shares: int) -> int:
        if self.is_exempt(account):
            return 0
        return entry_fee_shares(shares, self.fees.entry)

    def exit_fee(self, account: str, shares: int) -> int:
        if self.is_exempt(account):
            return 0
        return exit_fee_shares(shares, self.fees.exit)

    def accrue(self, total_assets: int, now: float) -> FeeAccrual:
        """
        Mark total accounted assets and charge time/performance fees.

        Fees are paid in shares debited pro-rata from non-exempt
        transferable balances; supply is unchanged so the share price does
        not move at accrual, and exempt holders bypass both fee types.

        Args:
            total_assets: Live valuation (idle cash + Σ positions)
            now: Clock time in seconds

        Returns:
            FeeAccrual with the fees charged at this point

        Raises:
            AmountTooLow: If the valuation implies a zero share price
        """
        elapsed = 0.0 if self.last_accrual is None else max(0.0, now - self.last_accrual)
        self.last_accrual = now
        self.total_accounted_assets = total_assets
        accrual = FeeAccrual()
        if self.total_supply == 0:
            self.high_water_mark = self.unit
            return accrual

        price = self.share_price()
        payers = {
            account: balance
            for account, balance in self.balances.items()
            if balance > 0 and not self.is_exempt(account)
        }
        fee_base_shares = sum(payers.values())
        fee_base_assets = mul_div(total_assets, fee_base_shares, self.total_supply)

        accrual.management = management_fee(fee_base_assets, self.fees.mgmt, elapsed)
        accrual.performance = performance_fee(
            price, self.high_water_mark, fee_base_shares, self.unit, self.fees.perf
        )
        self.high_water_mark = max(self.high_water_mark, price)

        if accrual.total == 0 or fee_base_shares == 0:
            return accrual

        fee_shares = min(
            mul_div(accrual.total, self.total_supply, total_assets),
            fee_base_shares
        )
        taken = 0
        for account, balance in payers.items():
            cut = mul_div(balance, fee_shares, fee_base_shares)
            if cut:
                self.credit_fees(account, cut)
                taken += cut
        accrual.shares = taken
        logger.debug(
            "Accrued fees mgmt=%d perf=%d (%d shares) over %.0fs",
            accrual.management, accrual.performance, taken, elapsed
        )
        return accrual

    def take_fees(self, collector: str) -> int:
        """Hand the unclaimed fee bucket to `collector`; returns shares moved."""
        shares = self.unclaimed_fee_shares
        if shares == 0:
            return 0
        self.unclaimed_fee_shares = 0
        self.balances[collector] = self.balance_of(collector) + shares
        return shares

    def state(self, t: float) -> LedgerState:
        """Snapshot of the ledger for validation and reporting."""
        return LedgerState(
            t=t,
            total_supply=self.total_supply,
            total_accounted_assets=self.total_accounted_assets,
            share_price=self.share_price(),
            high_water_mark=self.high_water_mark,
            unclaimed_fee_shares=self.unclaimed_fee_shares,
            balances=dict(self.balances),
            escrowed=dict(self.escrowed),
        )
