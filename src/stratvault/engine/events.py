"""Events emitted for external observers (never consumed internally)."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .state import Stateful

logger = logging.getLogger(__name__)

DEPOSIT = "deposit"
REDEMPTION_FULFILLED = "redemption_fulfilled"
WITHDRAW_REQUESTED = "withdraw_requested"
WITHDRAW_REQUEST_CANCELLED = "withdraw_request_cancelled"
WITHDRAW_CLAIMABLE = "withdraw_claimable"
ALLOCATION_PERFORMED = "allocation_performed"
LIQUIDATION_PERFORMED = "liquidation_performed"
HARVEST = "harvest"
FEES_COLLECTED = "fees_collected"
LEVERAGE_OPENED = "leverage_opened"
LEVERAGE_CLOSED = "leverage_closed"
FLASH_LOAN = "flash_loan"
PAUSED = "paused"
UNPAUSED = "unpaused"
PARAMS_UPDATED = "params_updated"
INPUTS_UPDATED = "inputs_updated"
RESCUE_REQUESTED = "rescue_requested"
RESCUED = "rescued"


@dataclass
class VaultEvent:
    """A single emitted event."""
    name: str
    t: float  # Clock time in seconds
    data: Dict[str, Any] = field(default_factory=dict)


class EventLog(Stateful):
    """Append-only event list; events of a reverted operation are dropped."""

    _state_fields = ("events",)

    def __init__(self):
        self.events: List[VaultEvent] = []

    def emit(self, name: str, t: float, **data: Any) -> VaultEvent:
        event = VaultEvent(name=name, t=t, data=data)
        self.events.append(event)
        logger.debug("event %s %s", name, data)
        return event

    def named(self, name: str) -> List[VaultEvent]:
        return [e for e in self.events if e.name == name]

    def last(self, name: str) -> VaultEvent:
        matches = self.named(name)
        if not matches:
            raise KeyError(name)
        return matches[-1]
