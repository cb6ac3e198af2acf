"""
Ledger domain types (``casework_kernel.domain.ledger``).

Responsibility
--------------
Pure value objects for the per-project cost-center ledger: transaction
drafts and snapshots, cost centers, the budget view, the privileged-role
policy, and the reconciliation report.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.

Invariants enforced
-------------------
* Transaction lifecycle: ``pending -> approved`` and ``pending -> rejected``
  only; both targets are terminal.
* Amounts are Decimal and strictly positive on a transaction.
* Budget views are snapshots; callers never mutate aggregates through them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from casework_kernel.domain.roles import UserRole

GENERAL_CATEGORY = "General"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.APPROVED,
        TransactionStatus.REJECTED,
    }),
    TransactionStatus.APPROVED: frozenset(),
    TransactionStatus.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class LedgerPolicy:
    """Which roles post transactions straight to approved."""

    privileged_roles: frozenset[UserRole] = frozenset({
        UserRole.ACCOUNTS_TEAM,
        UserRole.SUPER_ADMIN,
    })
    general_category: str = GENERAL_CATEGORY

    def is_privileged(self, role: UserRole) -> bool:
        return role in self.privileged_roles


@dataclass(frozen=True)
class TransactionDraft:
    """Caller-supplied content of a new transaction."""

    type: TransactionType | str
    category: str
    amount: Decimal | int | str
    description: str = ""
    date: datetime | None = None


@dataclass(frozen=True)
class Transaction:
    """Snapshot of a recorded ledger transaction."""

    id: UUID
    project_id: UUID
    type: TransactionType
    category: str
    amount: Decimal
    description: str
    date: datetime
    status: TransactionStatus
    created_by_id: UUID
    created_by_name: str
    created_by_role: UserRole
    idempotency_key: str | None = None
    approved_by_id: UUID | None = None
    approved_by_name: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CostCenterItem:
    """A named budget bucket within a project."""

    id: UUID
    project_id: UUID
    name: str
    allocated_amount: Decimal
    spent_amount: Decimal
    created_at: datetime | None = None

    @property
    def remaining(self) -> Decimal:
        return self.allocated_amount - self.spent_amount


@dataclass(frozen=True)
class ProjectBudget:
    """Read view of a project's budget and its cost centers.

    ``exists`` is False for a project that has never been written to; the
    view is then all zeros.
    """

    project_id: UUID
    total_budget: Decimal
    received_amount: Decimal
    spent_amount: Decimal
    pending_amount: Decimal
    cost_centers: tuple[CostCenterItem, ...] = ()
    updated_at: datetime | None = None
    exists: bool = True

    @property
    def allocated_total(self) -> Decimal:
        return sum((c.allocated_amount for c in self.cost_centers), Decimal("0"))

    @property
    def over_allocated(self) -> bool:
        return self.allocated_total > self.total_budget

    def cost_center(self, name: str) -> CostCenterItem | None:
        for center in self.cost_centers:
            if center.name == name:
                return center
        return None


@dataclass(frozen=True)
class AggregateDelta:
    """Signed change to a project's cached aggregates.

    ``cost_center`` names the center whose spend moves by
    ``cost_center_spent``; None when nothing is attributed.
    """

    received: Decimal = Decimal("0")
    spent: Decimal = Decimal("0")
    pending: Decimal = Decimal("0")
    cost_center: str | None = None
    cost_center_spent: Decimal = Decimal("0")

    @property
    def is_zero(self) -> bool:
        return not (self.received or self.spent or self.pending or self.cost_center_spent)


@dataclass(frozen=True)
class AggregateDrift:
    """One cached value that disagrees with the transaction log."""

    field: str
    cached: Decimal
    expected: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached - self.expected


@dataclass(frozen=True)
class ReconciliationReport:
    """Cached aggregates compared with values recomputed from the log."""

    project_id: UUID
    expected_received: Decimal
    expected_spent: Decimal
    expected_pending: Decimal
    expected_center_spent: dict[str, Decimal] = field(default_factory=dict)
    unattributed_spent: Decimal = Decimal("0")
    drifts: tuple[AggregateDrift, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.drifts
