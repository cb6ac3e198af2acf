"""
Module: casework_kernel.models.ledger
Responsibility: ORM persistence for project budgets, cost centers and ledger
    transactions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One budget row per project (UNIQUE project_id).
    - Cost centers are their own rows, unique by (project_id, name), so a
      center's spend is a single-row atomic increment rather than an edit of
      one element inside a list.
    - Idempotency: UNIQUE(project_id, idempotency_key) on transactions.
    - Transactions are never deleted and their content (type, category,
      amount, project) never changes.  Only status and approver fields move,
      through the ledger store's compare-and-swap update.

Failure modes:
    - IntegrityError on duplicate budget, cost center name or idempotency key.
    - ImmutabilityViolationError on a content change or delete of a
      transaction.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from casework_kernel.db.base import Base, UTCDateTime, UUIDString
from casework_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from casework_kernel.domain.ledger import CostCenterItem, Transaction

_ZERO = Decimal("0")


class ProjectBudgetModel(Base):
    """Cached aggregates for one project."""

    __tablename__ = "project_budgets"

    __table_args__ = (
        UniqueConstraint("project_id", name="uq_project_budgets_project"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    total_budget: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)
    received_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)
    spent_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)
    pending_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ProjectBudget {self.project_id} total={self.total_budget} "
            f"spent={self.spent_amount} pending={self.pending_amount}>"
        )


class CostCenterModel(Base):
    """A named budget bucket within a project."""

    __tablename__ = "cost_centers"

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_cost_centers_project_name"),
        Index("ix_cost_centers_project", "project_id"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    spent_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=_ZERO)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<CostCenter {self.name} allocated={self.allocated_amount}>"

    def to_dto(self) -> CostCenterItem:
        from casework_kernel.domain.ledger import CostCenterItem

        return CostCenterItem(
            id=self.id,
            project_id=self.project_id,
            name=self.name,
            allocated_amount=self.allocated_amount,
            spent_amount=self.spent_amount,
            created_at=self.created_at,
        )


class LedgerTransactionModel(Base):
    """One ledger entry.  Never deleted; content immutable."""

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        CheckConstraint(
            "type IN ('credit', 'debit')",
            name="ck_ledger_transactions_valid_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_ledger_transactions_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_ledger_transactions_positive_amount"),
        UniqueConstraint(
            "project_id", "idempotency_key",
            name="uq_ledger_transactions_idempotency",
        ),
        Index("ix_ledger_transactions_project_date", "project_id", "date"),
        Index("ix_ledger_transactions_project_status", "project_id", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    category: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_by_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # UserRole.name
    created_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction {self.id} {self.type} {self.amount} "
            f"{self.category} status={self.status}>"
        )

    def to_dto(self) -> Transaction:
        from casework_kernel.domain.ledger import (
            Transaction,
            TransactionStatus,
            TransactionType,
        )
        from casework_kernel.domain.roles import UserRole

        return Transaction(
            id=self.id,
            project_id=self.project_id,
            type=TransactionType(self.type),
            category=self.category,
            amount=self.amount,
            description=self.description,
            date=self.date,
            status=TransactionStatus(self.status),
            created_by_id=self.created_by_id,
            created_by_name=self.created_by_name,
            created_by_role=UserRole[self.created_by_role],
            idempotency_key=self.idempotency_key,
            approved_by_id=self.approved_by_id,
            approved_by_name=self.approved_by_name,
            approved_at=self.approved_at,
            created_at=self.created_at,
        )


_IMMUTABLE_TRANSACTION_FIELDS = ("project_id", "type", "category", "amount", "content_hash")


@event.listens_for(LedgerTransactionModel, "before_update")
def prevent_transaction_content_update(mapper, connection, target):
    """Only status and approver metadata may change on a transaction."""
    state = inspect(target)
    for name in _IMMUTABLE_TRANSACTION_FIELDS:
        if state.attrs[name].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="LedgerTransaction",
                entity_id=str(target.id),
                reason=f"Field '{name}' is immutable once recorded",
            )


@event.listens_for(LedgerTransactionModel, "before_delete")
def prevent_transaction_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="LedgerTransaction",
        entity_id=str(target.id),
        reason="Ledger transactions are never deleted",
    )
