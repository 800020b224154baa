"""Redemption manager - Asynchronous withdrawal requests.

Request lifecycle:
    NONE → PENDING → CLAIMABLE → CLAIMED
    PENDING / CLAIMABLE → CANCELLED (owner, any time before claim)

- request: escrow shares at the current share price snapshot
- refresh: after liquidity arrives, walk requests first-in first-out and
  mark them CLAIMABLE while their cumulative value is covered
- claim: burn escrowed shares at min(snapshot price, current price)

One active request per owner; a second request adds shares, keeps the
lower snapshot price and restarts the cooldown.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from ..errors import InvalidData, NotYetClaimable, Unauthorized
from .fees import mul_div
from .ledger import ShareLedger
from .state import Stateful

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    CLAIMABLE = "claimable"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"


ACTIVE = (RequestStatus.PENDING, RequestStatus.CLAIMABLE)


@dataclass
class WithdrawalRequest:
    """A withdrawal request with its escrowed shares."""
    owner: str
    shares: int
    snapshot_share_price: int
    requested_at: float
    claimable_after: float
    status: RequestStatus = RequestStatus.PENDING

    @property
    def active(self) -> bool:
        return self.status in ACTIVE


class RedemptionManager(Stateful):
    """Request → fulfill → claim queue over the share ledger."""

    _state_fields = ("requests", "history", "cooldown_seconds")

    def __init__(self, ledger: ShareLedger, cooldown_seconds: float = 0.0):
        """
        Initialize redemption manager.

        Args:
            ledger: Share ledger holding the escrow
            cooldown_seconds: Minimum delay between request and claim
        """
        self.ledger = ledger
        self.cooldown_seconds = cooldown_seconds
        self.requests: Dict[str, WithdrawalRequest] = {}  # active, FIFO order
        self.history: List[WithdrawalRequest] = []

    def get(self, owner: str) -> Optional[WithdrawalRequest]:
        return self.requests.get(owner)

    def status(self, owner: str) -> RequestStatus:
        request = self.requests.get(owner)
        if request is not None:
            return request.status
        for past in reversed(self.history):
            if past.owner == owner:
                return past.status
        return RequestStatus.NONE

    # --- valuation ---

    def claim_price(self, request: WithdrawalRequest) -> int:
        """Lesser of the snapshot and the current share price."""
        return min(request.snapshot_share_price, self.ledger.share_price())

    def claim_value(self, request: WithdrawalRequest, shares: Optional[int] = None) -> int:
        shares = request.shares if shares is None else shares
        return mul_div(shares, self.claim_price(request), self.ledger.unit)

    def claimable_assets(self) -> int:
        """Base reserved for CLAIMABLE requests."""
        return sum(
            self.claim_value(r) for r in self.requests.values()
            if r.status == RequestStatus.CLAIMABLE
        )

    def pending_assets(self) -> int:
        """Base owed to every active request."""
        return sum(self.claim_value(r) for r in self.requests.values())

    # --- lifecycle ---

    def request(self, owner: str, shares: int, now: float) -> WithdrawalRequest:
        """
        Escrow `shares` of `owner` into a withdrawal request.

        Raises:
            InvalidData: If shares is not positive
            Unauthorized: If the owner holds fewer transferable shares
        """
        if shares <= 0:
            raise InvalidData(f"Request must cover a positive share amount, got {shares}")
        price = self.ledger.share_price()
        self.ledger.escrow(owner, shares)

        request = self.requests.pop(owner, None)
        if request is None:
            request = WithdrawalRequest(
                owner=owner, shares=shares, snapshot_share_price=price,
                requested_at=now, claimable_after=now + self.cooldown_seconds,
            )
        else:
            request.shares += shares
            request.snapshot_share_price = min(request.snapshot_share_price, price)
            request.requested_at = now
            request.claimable_after = now + self.cooldown_seconds
            request.status = RequestStatus.PENDING
        # re-inserting puts a topped-up request at the back of the queue
        self.requests[owner] = request
        logger.info("Withdraw request by %s: %d shares at price %d", owner, request.shares, request.snapshot_share_price)
        return request

    def cancel(self, owner: str) -> int:
        """
        Cancel the owner's active request and return its shares.

        Raises:
            InvalidData: If the owner has no active request
        """
        request = self.requests.pop(owner, None)
        if request is None:
            raise InvalidData(f"{owner} has no active withdrawal request")
        self.ledger.release(owner, request.shares)
        request.status = RequestStatus.CANCELLED
        self.history.append(request)
        logger.info("Withdraw request by %s cancelled, %d shares returned", owner, request.shares)
        return request.shares

    def refresh(self, idle: int) -> List[WithdrawalRequest]:
        """
        Mark pending requests CLAIMABLE while idle cash covers them.

        Args:
            idle: Idle base cash of the vault

        Returns:
            Requests that became claimable
        """
        covered = self.claimable_assets()
        promoted = []
        for request in self.requests.values():
            if request.status != RequestStatus.PENDING:
                continue
            value = self.claim_value(request)
            if covered + value > idle:
                break
            covered += value
            request.status = RequestStatus.CLAIMABLE
            promoted.append(request)
        return promoted

    def consume(self, owner: str, shares: int, now: float) -> WithdrawalRequest:
        """
        Check that `shares` of the owner's request can be claimed and take them off it.

        The caller burns (or keeps as fee) the escrowed shares.

        Raises:
            InvalidData: If the owner has no active request
            NotYetClaimable: If the request is pending or inside its cooldown
            Unauthorized: If more shares are claimed than escrowed
        """
        request = self.requests.get(owner)
        if request is None:
            raise InvalidData(f"{owner} has no active withdrawal request")
        if request.status != RequestStatus.CLAIMABLE:
            raise NotYetClaimable(f"Request of {owner} is still {request.status.value}")
        if now < request.claimable_after:
            raise NotYetClaimable(
                f"Request of {owner} claimable after t={request.claimable_after}, now t={now}"
            )
        if shares > request.shares:
            raise Unauthorized(f"{owner} requested {request.shares} shares, claiming {shares}")
        request.shares -= shares
        if request.shares == 0:
            del self.requests[owner]
            request.status = RequestStatus.CLAIMED
            self.history.append(request)
        return request
