"""Lending market venue - Supply, borrow and reward emissions.

In-memory stand-in for an external lending protocol, used by the lending
adapter and the leverage overlay:
- Suppliers receive native (receipt) units at the market exchange rate
- exchange_rate = (cash + borrows) / native supply
- Borrow rate follows utilization: rate = base_rate × (1 + U)^elasticity
- Borrowing is capped by Σ collateral × collateral_factor
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..engine.state import Stateful
from ..engine.tokens import TokenLedger
from ..errors import AmountTooHigh, InsufficientLiquidity, InvalidData
from .oracle import PriceOracle

logger = logging.getLogger(__name__)

SCALE = 10 ** 18
BPS = 10_000
SECONDS_PER_YEAR = 31_557_600


@dataclass
class LendingMarketState:
    """State of one market (one underlying token)."""
    token: str
    collateral_factor_bps: int  # Max loan-to-value of this collateral
    base_rate: float  # Base borrow rate
    utilization_elasticity: float  # Rate elasticity to utilization
    reward_rate: float = 0.0  # Reward tokens per underlying unit per year
    total_native: int = 0  # Receipt units outstanding
    total_borrows: int = 0  # Underlying lent out, interest included
    borrow_index: int = SCALE  # Cumulative borrow interest factor


class SimulatedLendingMarket(Stateful):
    """Multi-market lending venue with utilization-driven rates."""

    _state_fields = ("markets", "_supplied", "_debts", "_rewards")

    def __init__(
        self,
        tokens: TokenLedger,
        oracle: PriceOracle,
        address: str = "lending-market",
        reward_token: Optional[str] = None
    ):
        """
        Initialize lending market.

        Args:
            tokens: Token ledger the venue settles in
            oracle: Prices for borrow capacity checks
            address: Account holding the venue's cash
            reward_token: Token emitted to suppliers, if any
        """
        self.tokens = tokens
        self.oracle = oracle
        self.address = address
        self.reward_token = reward_token
        self.markets: Dict[str, LendingMarketState] = {}
        self._supplied: Dict[str, Dict[str, int]] = {}
        self._debts: Dict[str, Dict[str, Tuple[int, int]]] = {}
        self._rewards: Dict[str, int] = {}

    def list_market(
        self,
        token: str,
        collateral_factor_bps: int = 8_000,
        base_rate: float = 0.02,
        utilization_elasticity: float = 2.0,
        reward_rate: float = 0.0
    ) -> LendingMarketState:
        if not 0 <= collateral_factor_bps < BPS:
            raise InvalidData(f"Collateral factor must be in [0, {BPS}), got {collateral_factor_bps}")
        market = LendingMarketState(
            token=token,
            collateral_factor_bps=collateral_factor_bps,
            base_rate=base_rate,
            utilization_elasticity=utilization_elasticity,
            reward_rate=reward_rate,
        )
        self.markets[token] = market
        self._supplied.setdefault(token, {})
        self._debts.setdefault(token, {})
        return market

    def market(self, token: str) -> LendingMarketState:
        if token not in self.markets:
            raise InvalidData(f"No lending market for {token}")
        return self.markets[token]

    # --- rate model ---

    def compute_utilization(self, token: str) -> float:
        """
        Compute utilization ratio.

        Returns:
            Utilization ratio (0-1), borrows / (cash + borrows)
        """
        market = self.market(token)
        pool = self.cash(token) + market.total_borrows
        if pool <= 0:
            return 0.0
        return min(1.0, market.total_borrows / pool)

    def compute_lending_rate(self, token: str) -> float:
        """
        Compute annual borrow rate from utilization.

        Formula: Borrow_Rate = Base_Rate × (1 + Utilization)^elasticity
        """
        market = self.market(token)
        utilization = self.compute_utilization(token)
        return market.base_rate * ((1.0 + utilization) ** market.utilization_elasticity)

    def compute_supply_rate(self, token: str) -> float:
        return self.compute_lending_rate(token) * self.compute_utilization(token)

    # --- views ---

    def cash(self, token: str) -> int:
        return self.tokens.balance_of(token, self.address)

    def exchange_rate(self, token: str) -> int:
        """Underlying per native unit, scaled by 1e18."""
        market = self.market(token)
        if market.total_native == 0:
            return SCALE
        return (self.cash(token) + market.total_borrows) * SCALE // market.total_native

    def collateral_factor_bps(self, token: str) -> int:
        return self.market(token).collateral_factor_bps

    def balance_of(self, account: str, token: str) -> int:
        """Native units held by `account` in the `token` market."""
        return self._supplied.get(token, {}).get(account, 0)

    def underlying_balance(self, account: str, token: str) -> int:
        return self.balance_of(account, token) * self.exchange_rate(token) // SCALE

    def borrow_balance(self, account: str, token: str) -> int:
        principal, index = self._debts.get(token, {}).get(account, (0, SCALE))
        if principal == 0:
            return 0
        return -(-(principal * self.market(token).borrow_index) // index)

    def borrow_capacity(self, account: str, denomination: str) -> int:
        """Remaining borrowable value, in `denomination` units."""
        capacity = 0
        debt = 0
        for token, market in self.markets.items():
            supplied = self.underlying_balance(account, token)
            if supplied:
                allowed = supplied * market.collateral_factor_bps // BPS
                capacity += self.oracle.convert(token, allowed, denomination)
            owed = self.borrow_balance(account, token)
            if owed:
                debt += self.oracle.convert(token, owed, denomination)
        return max(0, capacity - debt)

    # --- actions ---

    def supply(self, account: str, token: str, amount: int) -> int:
        """Deposit underlying; returns native units minted."""
        market = self.market(token)
        native = amount * SCALE // self.exchange_rate(token)
        self.tokens.transfer(token, account, self.address, amount)
        book = self._supplied[token]
        book[account] = book.get(account, 0) + native
        market.total_native += native
        return native

    def redeem(self, account: str, token: str, native: int) -> int:
        """Burn native units; returns underlying paid out."""
        market = self.market(token)
        held = self.balance_of(account, token)
        if native > held:
            raise InsufficientLiquidity(f"{account} holds {held} native {token}, redeeming {native}")
        underlying = native * self.exchange_rate(token) // SCALE
        if underlying > self.cash(token):
            raise InsufficientLiquidity(f"Market {token} has {self.cash(token)} cash, needs {underlying}")
        self._supplied[token][account] = held - native
        market.total_native -= native
        self._check_solvent(account)
        self.tokens.transfer(token, self.address, account, underlying)
        return underlying

    def borrow(self, account: str, token: str, amount: int) -> None:
        """
        Borrow underlying against supplied collateral.

        Raises:
            AmountTooHigh: If the borrow exceeds collateral capacity
            InsufficientLiquidity: If the market lacks cash
        """
        market = self.market(token)
        capacity = self.borrow_capacity(account, token)
        if amount > capacity:
            raise AmountTooHigh(f"Borrow of {amount} {token} exceeds capacity {capacity}")
        owed = self.borrow_balance(account, token)
        self._debts[token][account] = (owed + amount, market.borrow_index)
        market.total_borrows += amount
        self.tokens.transfer(token, self.address, account, amount)

    def repay(self, account: str, token: str, amount: int) -> int:
        """Repay debt (capped at what is owed); returns amount repaid."""
        market = self.market(token)
        owed = self.borrow_balance(account, token)
        repaid = min(amount, owed)
        if repaid == 0:
            return 0
        self.tokens.transfer(token, account, self.address, repaid)
        remaining = owed - repaid
        if remaining:
            self._debts[token][account] = (remaining, market.borrow_index)
        else:
            self._debts[token].pop(account, None)
        market.total_borrows = max(0, market.total_borrows - repaid)
        return repaid

    def _check_solvent(self, account: str) -> None:
        for token in self.markets:
            if self.borrow_balance(account, token):
                # capacity is net of debt, so any shortfall shows up as zero
                capacity = 0
                debt = 0
                for t, m in self.markets.items():
                    capacity += self.oracle.convert(
                        t, self.underlying_balance(account, t) * m.collateral_factor_bps // BPS, token
                    )
                    debt += self.oracle.convert(t, self.borrow_balance(account, t), token)
                if debt > capacity:
                    raise AmountTooHigh(f"Redeem would leave {account} undercollateralized")
                return

    # --- time ---

    def accrue(self, elapsed_seconds: float) -> None:
        """Accrue borrow interest and supplier rewards over a time span."""
        if elapsed_seconds <= 0:
            return
        dt_years = elapsed_seconds / SECONDS_PER_YEAR
        for token, market in self.markets.items():
            if market.reward_rate > 0 and self.reward_token:
                for account in self._supplied[token]:
                    earned = int(self.underlying_balance(account, token) * market.reward_rate * dt_years)
                    if earned:
                        self._rewards[account] = self._rewards.get(account, 0) + earned
            if market.total_borrows:
                factor = self.compute_lending_rate(token) * dt_years
                market.total_borrows += int(market.total_borrows * factor)
                market.borrow_index += int(market.borrow_index * factor)
        logger.debug("Lending market accrued %.0fs", elapsed_seconds)

    # --- rewards ---

    def reward_tokens(self) -> List[str]:
        return [self.reward_token] if self.reward_token else []

    def claimable_rewards(self, account: str) -> Dict[str, int]:
        if not self.reward_token:
            return {}
        return {self.reward_token: self._rewards.get(account, 0)}

    def claim_rewards(self, account: str) -> Dict[str, int]:
        claimed = self.claimable_rewards(account)
        for token, amount in claimed.items():
            if amount:
                self.tokens.mint(token, account, amount)
        self._rewards.pop(account, None)
        return claimed


class LegacyLendingMarket(SimulatedLendingMarket):
    """Venue exposing the older single-token reward call shape."""

    claimable_rewards = None
    claim_rewards = None

    def reward_accrued(self, account: str) -> int:
        return self._rewards.get(account, 0)

    def claim_reward(self, account: str) -> int:
        amount = self._rewards.pop(account, 0)
        if amount and self.reward_token:
            self.tokens.mint(self.reward_token, account, amount)
        return amount
