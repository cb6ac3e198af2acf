"""
Roles (``casework_kernel.domain.roles``).

Responsibility
--------------
The closed set of organisational roles and the single parsing function used
at every authorization boundary.  Free-form role strings never reach a
comparison: ``parse_role`` either returns a ``UserRole`` or raises
``UnknownRoleError``.

Architecture position
---------------------
Kernel domain layer.  ZERO I/O.  Imports only ``casework_kernel.exceptions``.

Invariants enforced
-------------------
* Roles compare by enum identity, never by display string.
* Parsing accepts the member, its display value ("Accounts Team") or its
  name ("ACCOUNTS_TEAM"), case- and whitespace-insensitively.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID

from casework_kernel.exceptions import UnknownRoleError


class UserRole(str, Enum):
    """Organisational roles.  The value is the display label."""

    SUPER_ADMIN = "Super Admin"
    SALES_GENERAL_MANAGER = "Sales General Manager"
    SALES_TEAM_MEMBER = "Sales Team Member"
    DRAWING_TEAM = "Drawing Team"
    QUOTATION_TEAM = "Quotation Team"
    SITE_ENGINEER = "Site Engineer"
    PROCUREMENT_TEAM = "Procurement Team"
    EXECUTION_TEAM = "Execution Team"
    ACCOUNTS_TEAM = "Accounts Team"


def _normalize(text: str) -> str:
    return " ".join(text.replace("_", " ").split()).casefold()


_LOOKUP: dict[str, UserRole] = {}
for _role in UserRole:
    _LOOKUP[_normalize(_role.value)] = _role
    _LOOKUP[_normalize(_role.name)] = _role


def parse_role(value: UserRole | str) -> UserRole:
    """Resolve ``value`` to a UserRole or raise ``UnknownRoleError``."""
    if isinstance(value, UserRole):
        return value
    if not isinstance(value, str):
        raise UnknownRoleError(repr(value))
    role = _LOOKUP.get(_normalize(value))
    if role is None:
        raise UnknownRoleError(value)
    return role


def parse_roles(values: Iterable[UserRole | str]) -> tuple[UserRole, ...]:
    """Parse every role, keeping first-seen order and dropping duplicates."""
    seen: dict[UserRole, None] = {}
    for value in values:
        seen.setdefault(parse_role(value), None)
    return tuple(seen)


class RoleDirectory(Protocol):
    """Resolves an actor identity to a role.  Read-only."""

    def role_of(self, actor_id: UUID) -> UserRole:
        ...


class InMemoryRoleDirectory:
    """Dictionary-backed RoleDirectory for tests and single-process use."""

    def __init__(self, roles: dict[UUID, UserRole | str] | None = None):
        self._roles: dict[UUID, UserRole] = {
            actor_id: parse_role(role) for actor_id, role in (roles or {}).items()
        }

    def assign(self, actor_id: UUID, role: UserRole | str) -> None:
        self._roles[actor_id] = parse_role(role)

    def role_of(self, actor_id: UUID) -> UserRole:
        try:
            return self._roles[actor_id]
        except KeyError:
            raise UnknownRoleError(f"no role for actor {actor_id}") from None
