"""Staking pool venue - rebasing balances.

A staker's balance is its share of the pooled tokens, so yield credited to
the pool shows up directly in every balance (native units denote value).
"""

import logging
from typing import Dict

from ..engine.state import Stateful
from ..engine.tokens import TokenLedger
from ..errors import InsufficientLiquidity

logger = logging.getLogger(__name__)


class SimulatedStakingPool(Stateful):
    """Per-token rebasing staking pool."""

    _state_fields = ("_shares", "_total_shares")

    def __init__(self, tokens: TokenLedger, address: str = "staking-pool"):
        self.tokens = tokens
        self.address = address
        self._shares: Dict[str, Dict[str, int]] = {}
        self._total_shares: Dict[str, int] = {}

    def pooled(self, token: str) -> int:
        return self.tokens.balance_of(token, self.address)

    def balance_of(self, account: str, token: str) -> int:
        total = self._total_shares.get(token, 0)
        if total == 0:
            return 0
        return self._shares.get(token, {}).get(account, 0) * self.pooled(token) // total

    def stake(self, account: str, token: str, amount: int) -> int:
        """Stake `amount`; returns the balance increase."""
        total = self._total_shares.get(token, 0)
        pooled = self.pooled(token)
        shares = amount if total == 0 or pooled == 0 else amount * total // pooled
        before = self.balance_of(account, token)
        self.tokens.transfer(token, account, self.address, amount)
        book = self._shares.setdefault(token, {})
        book[account] = book.get(account, 0) + shares
        self._total_shares[token] = total + shares
        return self.balance_of(account, token) - before

    def unstake(self, account: str, token: str, amount: int) -> int:
        """Withdraw `amount` of balance; returns tokens paid out."""
        balance = self.balance_of(account, token)
        if amount > balance:
            raise InsufficientLiquidity(f"{account} has {balance} staked {token}, unstaking {amount}")
        total = self._total_shares[token]
        shares = -(-(amount * total) // self.pooled(token))
        shares = min(shares, self._shares[token][account])
        self._shares[token][account] -= shares
        self._total_shares[token] = total - shares
        self.tokens.transfer(token, self.address, account, amount)
        return amount

    def rebase(self, token: str, reward: int) -> None:
        """Credit staking yield to every staker of `token`."""
        self.tokens.mint(token, self.address, reward)
        logger.debug("Staking pool rebased %s by %d", token, reward)
