"""Role-based access control for vault entry points."""

import logging
from typing import Dict, Set

from ..errors import Unauthorized
from .state import Stateful

logger = logging.getLogger(__name__)

ADMIN = "admin"  # parameter configuration, leverage bounds
MANAGER = "manager"  # fee collection
KEEPER = "keeper"  # scheduled invest/liquidate/harvest
ROLES = (ADMIN, MANAGER, KEEPER)


class AccessControl(Stateful):
    """Role membership. Role checks are preconditions, not workflow steps."""

    _state_fields = ("_members",)

    def __init__(self, admin: str):
        """
        Initialize access control.

        Args:
            admin: Initial admin, also granted the manager and keeper roles
        """
        self._members: Dict[str, Set[str]] = {role: {admin} for role in ROLES}

    def has_role(self, role: str, account: str) -> bool:
        return account in self._members.get(role, set())

    def require(self, role: str, account: str) -> None:
        """Raise Unauthorized unless `account` holds `role`."""
        if not self.has_role(role, account):
            raise Unauthorized(f"{account} is missing role {role}")

    def grant_role(self, role: str, account: str, caller: str) -> None:
        self.require(ADMIN, caller)
        if role not in ROLES:
            raise Unauthorized(f"Unknown role {role}")
        self._members[role].add(account)
        logger.info("Granted %s to %s", role, account)

    def revoke_role(self, role: str, account: str, caller: str) -> None:
        self.require(ADMIN, caller)
        if role == ADMIN and self._members[ADMIN] == {account}:
            raise Unauthorized("Cannot revoke the last admin")
        self._members.get(role, set()).discard(account)
        logger.info("Revoked %s from %s", role, account)
