"""
Module: casework_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- the project's budget view with
    its cost centers, and paginated transaction history.

Invariants enforced:
    - ``budget()`` on a project that has never been written returns a
      zero-valued view and writes nothing.
    - Transaction history is ordered by transaction date, newest first,
      with id as a stable tie-breaker so pagination never skips or repeats.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from casework_kernel.domain.ledger import ProjectBudget, Transaction, TransactionStatus
from casework_kernel.models.ledger import (
    CostCenterModel,
    LedgerTransactionModel,
    ProjectBudgetModel,
)
from casework_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


class LedgerSelector(BaseSelector):
    """Read-only ledger queries."""

    def budget(self, project_id: UUID) -> ProjectBudget:
        model = self.session.execute(
            select(ProjectBudgetModel)
            .where(ProjectBudgetModel.project_id == project_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        centers = tuple(
            c.to_dto()
            for c in self.session.execute(
                select(CostCenterModel)
                .where(CostCenterModel.project_id == project_id)
                .order_by(CostCenterModel.created_at, CostCenterModel.name)
                .execution_options(populate_existing=True)
            ).scalars()
        )
        if model is None:
            return ProjectBudget(
                project_id=project_id,
                total_budget=_ZERO,
                received_amount=_ZERO,
                spent_amount=_ZERO,
                pending_amount=_ZERO,
                cost_centers=centers,
                exists=False,
            )
        return ProjectBudget(
            project_id=project_id,
            total_budget=model.total_budget,
            received_amount=model.received_amount,
            spent_amount=model.spent_amount,
            pending_amount=model.pending_amount,
            cost_centers=centers,
            updated_at=model.updated_at,
        )

    def transactions(
        self,
        project_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        status: TransactionStatus | str | None = None,
    ) -> list[Transaction]:
        """One page of the project's transactions, newest first."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)
        stmt = select(LedgerTransactionModel).where(
            LedgerTransactionModel.project_id == project_id
        )
        if status is not None:
            stmt = stmt.where(LedgerTransactionModel.status == TransactionStatus(status).value)
        stmt = (
            stmt.order_by(
                LedgerTransactionModel.date.desc(),
                LedgerTransactionModel.created_at.desc(),
                LedgerTransactionModel.id,
            )
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def transaction_count(
        self,
        project_id: UUID,
        status: TransactionStatus | str | None = None,
    ) -> int:
        stmt = select(func.count(LedgerTransactionModel.id)).where(
            LedgerTransactionModel.project_id == project_id
        )
        if status is not None:
            stmt = stmt.where(LedgerTransactionModel.status == TransactionStatus(status).value)
        return self.session.execute(stmt).scalar_one()
