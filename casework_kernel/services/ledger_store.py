"""
LedgerStore -- persistence and atomic aggregate updates for project ledgers.

Responsibility:
    Owns every write to ``project_budgets``, ``cost_centers`` and
    ``ledger_transactions``.  Callers describe *what* changes (an
    ``AggregateDelta``, a status transition); this module makes each change
    a single atomic statement.

Architecture position:
    Kernel > Services.  Flushes only; the caller owns the transaction.

Invariants enforced:
    - Aggregates move only by ``UPDATE ... SET x = x + :delta``; there is
      no read-modify-write of a cached amount anywhere.
    - A cost center's spend is its own row, incremented the same way.  A
      category that names no center updates zero rows and stays
      unattributed (still counted in the project's spent amount).
    - Transaction status moves only by compare-and-swap
      (``WHERE status = 'pending'``): exactly one concurrent reviewer wins.
    - The budget row is created lazily.  Two creators racing on the unique
      ``project_id`` both end up using the same row.

Failure modes:
    - DuplicateCostCenterError, CostCenterNotFoundError,
      TransactionNotFoundError, NotPendingError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from casework_kernel.domain.ledger import (
    AggregateDelta,
    CostCenterItem,
    ProjectBudget,
    TransactionStatus,
)
from casework_kernel.exceptions import (
    CostCenterNotFoundError,
    DuplicateCostCenterError,
    NotPendingError,
    TransactionNotFoundError,
)
from casework_kernel.logging_config import get_logger
from casework_kernel.models.ledger import (
    CostCenterModel,
    LedgerTransactionModel,
    ProjectBudgetModel,
)
from casework_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")

_ZERO = Decimal("0")


class LedgerStore(BaseService):
    """Ledger Store."""

    # -- budget ------------------------------------------------------------

    def ensure_budget(self, project_id: UUID) -> None:
        """Create the zero-valued budget row if the project has none."""
        if self._budget_id(project_id) is not None:
            return
        now = self.clock.now()
        try:
            with self.session.begin_nested():
                self.session.add(
                    ProjectBudgetModel(
                        project_id=project_id,
                        total_budget=_ZERO,
                        received_amount=_ZERO,
                        spent_amount=_ZERO,
                        pending_amount=_ZERO,
                        created_at=now,
                        updated_at=now,
                    )
                )
                self.session.flush()
            logger.info("project_budget_created", extra={"project_id": str(project_id)})
        except IntegrityError:
            # Lost the creation race; the winner's row is the one to use.
            logger.info("project_budget_exists", extra={"project_id": str(project_id)})

    def set_total(self, project_id: UUID, amount: Decimal) -> None:
        self.ensure_budget(project_id)
        self.session.execute(
            update(ProjectBudgetModel)
            .where(ProjectBudgetModel.project_id == project_id)
            .values(total_budget=amount, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )

    def apply_delta(self, project_id: UUID, delta: AggregateDelta) -> bool:
        """
        Apply ``delta`` with atomic increments.

        Returns True when the delta's cost center matched a row (or there
        was no center to update), False when the spend is unattributed.
        """
        self.ensure_budget(project_id)
        now = self.clock.now()
        self.session.execute(
            update(ProjectBudgetModel)
            .where(ProjectBudgetModel.project_id == project_id)
            .values(
                received_amount=ProjectBudgetModel.received_amount + delta.received,
                spent_amount=ProjectBudgetModel.spent_amount + delta.spent,
                pending_amount=ProjectBudgetModel.pending_amount + delta.pending,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        attributed = True
        if delta.cost_center is not None and delta.cost_center_spent:
            result = self.session.execute(
                update(CostCenterModel)
                .where(
                    CostCenterModel.project_id == project_id,
                    CostCenterModel.name == delta.cost_center,
                )
                .values(spent_amount=CostCenterModel.spent_amount + delta.cost_center_spent)
                .execution_options(synchronize_session=False)
            )
            attributed = result.rowcount > 0

        logger.debug(
            "ledger_aggregates_applied",
            extra={
                "project_id": str(project_id),
                "received_delta": delta.received,
                "spent_delta": delta.spent,
                "pending_delta": delta.pending,
                "cost_center": delta.cost_center,
                "attributed": attributed,
            },
        )
        return attributed

    def overwrite_aggregates(
        self,
        project_id: UUID,
        received: Decimal,
        spent: Decimal,
        pending: Decimal,
        center_spent: dict[str, Decimal],
    ) -> None:
        """Replace cached aggregates wholesale.  Operator repair only."""
        self.ensure_budget(project_id)
        self.session.execute(
            update(ProjectBudgetModel)
            .where(ProjectBudgetModel.project_id == project_id)
            .values(
                received_amount=received,
                spent_amount=spent,
                pending_amount=pending,
                updated_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        for center in self._centers(project_id):
            self.session.execute(
                update(CostCenterModel)
                .where(CostCenterModel.id == center.id)
                .values(spent_amount=center_spent.get(center.name, _ZERO))
                .execution_options(synchronize_session=False)
            )

    def budget_view(self, project_id: UUID) -> ProjectBudget:
        """Current budget with cost centers.  Zero-valued if absent; never writes."""
        model = self.session.execute(
            select(ProjectBudgetModel)
            .where(ProjectBudgetModel.project_id == project_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        centers = tuple(c.to_dto() for c in self._centers(project_id))
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

    # -- cost centers ------------------------------------------------------

    def add_cost_center(self, project_id: UUID, name: str, amount: Decimal) -> CostCenterItem:
        existing = self.session.execute(
            select(CostCenterModel.id).where(
                CostCenterModel.project_id == project_id,
                CostCenterModel.name == name,
            )
        ).first()
        if existing is not None:
            raise DuplicateCostCenterError(str(project_id), name)

        model = CostCenterModel(
            project_id=project_id,
            name=name,
            allocated_amount=amount,
            spent_amount=_ZERO,
            created_at=self.clock.now(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(model)
                self.session.flush()
        except IntegrityError:
            raise DuplicateCostCenterError(str(project_id), name) from None
        return model.to_dto()

    def remove_cost_center(self, project_id: UUID, cost_center_id: UUID) -> CostCenterItem:
        model = self.session.execute(
            select(CostCenterModel).where(
                CostCenterModel.id == cost_center_id,
                CostCenterModel.project_id == project_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise CostCenterNotFoundError(str(project_id), str(cost_center_id))
        removed = model.to_dto()
        self.session.execute(
            delete(CostCenterModel)
            .where(CostCenterModel.id == cost_center_id)
            .execution_options(synchronize_session="fetch")
        )
        return removed

    # -- transactions ------------------------------------------------------

    def insert_transaction(self, model: LedgerTransactionModel) -> LedgerTransactionModel:
        """Insert a transaction.  IntegrityError propagates on a key race."""
        with self.session.begin_nested():
            self.session.add(model)
            self.session.flush()
        return model

    def find_by_idempotency_key(
        self, project_id: UUID, idempotency_key: str,
    ) -> LedgerTransactionModel | None:
        return self.session.execute(
            select(LedgerTransactionModel).where(
                LedgerTransactionModel.project_id == project_id,
                LedgerTransactionModel.idempotency_key == idempotency_key,
            )
        ).scalar_one_or_none()

    def get_transaction(self, project_id: UUID, transaction_id: UUID) -> LedgerTransactionModel:
        model = self.session.execute(
            select(LedgerTransactionModel)
            .where(
                LedgerTransactionModel.id == transaction_id,
                LedgerTransactionModel.project_id == project_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise TransactionNotFoundError(str(project_id), str(transaction_id))
        return model

    def transition_transaction(
        self,
        project_id: UUID,
        transaction_id: UUID,
        to_status: TransactionStatus,
        approver_id: UUID,
        approver_name: str,
        at: datetime,
    ) -> LedgerTransactionModel:
        """
        Compare-and-swap ``pending -> to_status``.

        Raises:
            TransactionNotFoundError: No such transaction in the project.
            NotPendingError: Someone else already moved it; carries the
                status they moved it to.
        """
        result = self.session.execute(
            update(LedgerTransactionModel)
            .where(
                LedgerTransactionModel.id == transaction_id,
                LedgerTransactionModel.project_id == project_id,
                LedgerTransactionModel.status == TransactionStatus.PENDING.value,
            )
            .values(
                status=to_status.value,
                approved_by_id=approver_id,
                approved_by_name=approver_name,
                approved_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        model = self.get_transaction(project_id, transaction_id)
        if result.rowcount != 1:
            raise NotPendingError(str(transaction_id), model.status)
        return model

    def transactions_for(self, project_id: UUID) -> list[LedgerTransactionModel]:
        return list(
            self.session.execute(
                select(LedgerTransactionModel)
                .where(LedgerTransactionModel.project_id == project_id)
                .order_by(LedgerTransactionModel.created_at, LedgerTransactionModel.id)
            ).scalars()
        )

    # -- internals ---------------------------------------------------------

    def _budget_id(self, project_id: UUID) -> UUID | None:
        return self.session.execute(
            select(ProjectBudgetModel.id).where(ProjectBudgetModel.project_id == project_id)
        ).scalar_one_or_none()

    def _centers(self, project_id: UUID) -> list[CostCenterModel]:
        return list(
            self.session.execute(
                select(CostCenterModel)
                .where(CostCenterModel.project_id == project_id)
                .order_by(CostCenterModel.created_at, CostCenterModel.name)
                .execution_options(populate_existing=True)
            ).scalars()
        )
