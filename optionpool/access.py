"""
access.py - Role-based access control

Each pool owns a RoleTable. ADMIN members configure the pool and manage roles;
OPTIONS_ENGINE members may lock, unlock and pay out collateral. The options
engine and the price calculator use a RoleTable holding only ADMIN as their owner.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, FrozenSet

from .core import Snapshottable, MissingRole, require_address


class Role(Enum):
    ADMIN = "ADMIN"
    OPTIONS_ENGINE = "OPTIONS_ENGINE"


class RoleTable(Snapshottable):
    """
    Role membership for one component.

    Membership sets are frozen and replaced on change, so a snapshot only
    needs to copy the outer dict.
    """

    _SNAPSHOT_FIELDS = ("_members",)

    def __init__(self, admin: str):
        require_address(admin, "admin")
        self._members: Dict[Role, FrozenSet[str]] = {role: frozenset() for role in Role}
        self._members[Role.ADMIN] = frozenset({admin})

    def has_role(self, role: Role, account: str) -> bool:
        return account in self._members[role]

    def members(self, role: Role) -> FrozenSet[str]:
        return self._members[role]

    def require(self, role: Role, account: str) -> None:
        """
        Raises:
            MissingRole: If account is not a member of role.
        """
        if not self.has_role(role, account):
            raise MissingRole(f"{account} must have the {role.value} role")

    def grant(self, caller: str, role: Role, account: str) -> None:
        """Add account to role. Only ADMIN members may grant."""
        self.require(Role.ADMIN, caller)
        require_address(account, "account")
        self._members[role] = self._members[role] | {account}

    def revoke(self, caller: str, role: Role, account: str) -> None:
        """Remove account from role. Only ADMIN members may revoke."""
        self.require(Role.ADMIN, caller)
        self._members[role] = self._members[role] - {account}

    def renounce(self, caller: str, role: Role) -> None:
        """Remove the caller from role."""
        self._members[role] = self._members[role] - {caller}

    def __repr__(self) -> str:
        parts = ", ".join(f"{r.value}={sorted(m)}" for r, m in self._members.items())
        return f"RoleTable({parts})"
