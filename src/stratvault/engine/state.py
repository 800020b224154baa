"""All-or-nothing execution support for vault operations.

A vault operation touches many collaborators (token balances, the share
ledger, lending venues, the loan provider). Each of them that holds mutable
state derives from `Stateful` and lists that state in `_state_fields`.
`atomic()` snapshots every participant before the operation and restores
all of them if an exception escapes, so no multi-step swap, stake or loan
cycle is ever partially applied.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Tuple

logger = logging.getLogger(__name__)


class Stateful:
    """Mixin for components whose mutable state rolls back on failure."""

    _state_fields: Tuple[str, ...] = ()

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the attributes named in `_state_fields`."""
        return {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Put back a snapshot taken by `snapshot()`."""
        for name, value in snapshot.items():
            setattr(self, name, value)


@contextmanager
def atomic(participants: Iterable[Stateful], label: str = "operation") -> Iterator[None]:
    """
    Run a block so that it either completes or leaves no trace.

    Args:
        participants: Components whose state the block may change
        label: Operation name used in the revert log line

    Raises:
        Whatever the block raised, after every participant is restored
    """
    participants = list({id(p): p for p in participants}.values())
    snapshots = [p.snapshot() for p in participants]
    try:
        yield
    except Exception as exc:
        for participant, snap in zip(participants, snapshots):
            participant.restore(snap)
        logger.warning("%s reverted (%s: %s)", label, type(exc).__name__, exc)
        raise
