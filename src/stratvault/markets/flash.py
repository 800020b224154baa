"""Flash loan provider - same-operation loans repaid with a fee.

The provider transfers the loan to the receiver's holder account, invokes
the receiver's `on_flash_loan(provider, token, amount, fee, data)` callback
and pulls `amount + fee` back afterwards. A short repayment aborts the
whole operation.
"""

import logging
from typing import Any, Protocol

from ..engine.fees import flash_fee
from ..engine.state import Stateful
from ..engine.tokens import TokenLedger
from ..errors import AmountTooLow, InsufficientLiquidity

logger = logging.getLogger(__name__)


class FlashBorrower(Protocol):
    """Callback side of a flash loan."""

    holder: str

    def on_flash_loan(self, provider: Any, token: str, amount: int, fee: int, data: Any) -> None:
        ...


class SimulatedFlashLender(Stateful):
    """Loan provider funded from its own token balance."""

    _state_fields = ("loans_served",)

    def __init__(self, tokens: TokenLedger, address: str = "flash-lender", fee_bps: int = 0):
        self.tokens = tokens
        self.address = address
        self.fee_bps = fee_bps
        self.loans_served = 0

    def max_flash_loan(self, token: str) -> int:
        return self.tokens.balance_of(token, self.address)

    def flash_fee(self, amount: int) -> int:
        return flash_fee(amount, self.fee_bps)

    def flash_borrow(self, token: str, amount: int, receiver: FlashBorrower, data: Any = None) -> int:
        """
        Lend `amount` of `token` for the duration of the callback.

        Returns:
            Fee paid

        Raises:
            InsufficientLiquidity: If the provider cannot fund the loan
            AmountTooLow: If the receiver cannot repay amount + fee
        """
        available = self.max_flash_loan(token)
        if amount > available:
            raise InsufficientLiquidity(f"Flash lender holds {available} {token}, asked {amount}")
        fee = self.flash_fee(amount)
        holder = receiver.holder
        self.tokens.transfer(token, self.address, holder, amount)
        receiver.on_flash_loan(self, token, amount, fee, data)
        owed = amount + fee
        balance = self.tokens.balance_of(token, holder)
        if balance < owed:
            raise AmountTooLow(f"Flash loan repayment short: {holder} holds {balance} {token}, owes {owed}")
        self.tokens.transfer(token, holder, self.address, owed)
        self.loans_served += 1
        logger.debug("Flash loan %d %s to %s, fee %d", amount, token, holder, fee)
        return fee
