"""Token balances for every account in the ledger domain."""

from typing import Dict

from ..errors import InsufficientLiquidity, InvalidData
from .state import Stateful


class TokenLedger(Stateful):
    """Balances of all fungible tokens, keyed by token then account."""

    _state_fields = ("_balances", "_supply")

    def __init__(self):
        self._balances: Dict[str, Dict[str, int]] = {}
        self._supply: Dict[str, int] = {}

    def balance_of(self, token: str, account: str) -> int:
        return self._balances.get(token, {}).get(account, 0)

    def total_supply(self, token: str) -> int:
        return self._supply.get(token, 0)

    def mint(self, token: str, account: str, amount: int) -> None:
        """Create `amount` of `token` in `account`."""
        amount = self._check_amount(amount)
        book = self._balances.setdefault(token, {})
        book[account] = book.get(account, 0) + amount
        self._supply[token] = self._supply.get(token, 0) + amount

    def burn(self, token: str, account: str, amount: int) -> None:
        """Destroy `amount` of `token` held by `account`."""
        amount = self._check_amount(amount)
        self._debit(token, account, amount)
        self._supply[token] = self._supply.get(token, 0) - amount

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """
        Move tokens between accounts.

        Raises:
            InvalidData: If amount is negative
            InsufficientLiquidity: If the sender's balance is short
        """
        amount = self._check_amount(amount)
        if amount == 0 or sender == recipient:
            return
        self._debit(token, sender, amount)
        book = self._balances.setdefault(token, {})
        book[recipient] = book.get(recipient, 0) + amount

    def _debit(self, token: str, account: str, amount: int) -> None:
        balance = self.balance_of(token, account)
        if balance < amount:
            raise InsufficientLiquidity(
                f"{account} holds {balance} {token}, needs {amount}"
            )
        self._balances[token][account] = balance - amount

    @staticmethod
    def _check_amount(amount: int) -> int:
        amount = int(amount)
        if amount < 0:
            raise InvalidData(f"Token amount must be non-negative, got {amount}")
        return amount
