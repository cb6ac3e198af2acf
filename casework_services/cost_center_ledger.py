"""
CostCenterLedger -- budgets, cost-center allocations and transactions per project.

Responsibility:
    Validate ledger operations, decide a new transaction's initial status
    from the actor's role, and keep the project's cached aggregates
    (received, spent, pending, per-center spend) consistent with the
    transaction log.  Offers reconciliation and an operator rebuild.

Architecture position:
    Services -- orchestration over LedgerStore (atomic writes),
    ActivityLogService, CaseMutator (budget-summary mirror) and the pure
    ledger_aggregates engine.  Flushes only; the caller or
    ``session_scope()`` commits.

Invariants enforced:
    - Amounts are Decimal: floats are refused before any write.
    - Privileged roles (``LedgerPolicy``) post straight to approved; every
      other role posts pending.
    - Approved credit increments received; approved debit increments spent
      and the spend of the cost center named by the category.  Pending
      increments pending regardless of type.
    - Pending -> approved/rejected happens once, by compare-and-swap.
    - An idempotency key replays the original transaction without
      touching aggregates; the same key with different content is refused.

Failure modes:
    - InvalidAmountError, InvalidTransactionError, DuplicateCostCenterError,
      IdempotencyConflictError.
    - UnauthorizedRoleError for a non-privileged reviewer.
    - TransactionNotFoundError, CostCenterNotFoundError, NotPendingError.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casework_engines.ledger_aggregates import (
    delta_for_recorded,
    delta_for_transition,
    reconcile,
)
from casework_kernel.db.types import to_amount
from casework_kernel.domain.activity import ActivityRecord, ActivityType, NotificationSink
from casework_kernel.domain.clock import Clock, SystemClock
from casework_kernel.domain.ledger import (
    CostCenterItem,
    LedgerPolicy,
    ProjectBudget,
    ReconciliationReport,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
)
from casework_kernel.domain.roles import UserRole, parse_role
from casework_kernel.exceptions import (
    IdempotencyConflictError,
    InvalidAmountError,
    InvalidTransactionError,
    UnauthorizedRoleError,
)
from casework_kernel.logging_config import LogContext, get_logger
from casework_kernel.models.ledger import LedgerTransactionModel
from casework_kernel.services.activity_log import ActivityLogService
from casework_kernel.services.case_mutator import CaseMutator
from casework_kernel.services.ledger_store import LedgerStore
from casework_kernel.utils.idempotency import transaction_content_hash

logger = get_logger("services.cost_center_ledger")

_ZERO = Decimal("0")


def parse_amount(value: Any, allow_zero: bool = False) -> Decimal:
    """Coerce to Decimal and check the sign, as InvalidAmountError."""
    try:
        amount = to_amount(value)
    except (TypeError, ValueError) as exc:
        raise InvalidAmountError(repr(value), str(exc)) from None
    if amount < _ZERO or (amount == _ZERO and not allow_zero):
        reason = "must be zero or more" if allow_zero else "must be greater than zero"
        raise InvalidAmountError(str(amount), reason)
    return amount


class CostCenterLedger:
    """Cost-Center Ledger Engine."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        activity_log: ActivityLogService | None = None,
        sinks: Iterable[NotificationSink] = (),
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or LedgerPolicy()
        self._store = LedgerStore(session, self._clock)
        self._cases = CaseMutator(session, self._clock)
        self._activity = activity_log or ActivityLogService(session, self._clock, sinks)

    @property
    def policy(self) -> LedgerPolicy:
        return self._policy

    def budget(self, project_id: UUID) -> ProjectBudget:
        return self._store.budget_view(project_id)

    def find_transaction(self, project_id: UUID, idempotency_key: str) -> Transaction | None:
        model = self._store.find_by_idempotency_key(project_id, idempotency_key)
        return model.to_dto() if model is not None else None

    # ------------------------------------------------------------------
    # Budget and allocations
    # ------------------------------------------------------------------

    def set_total_budget(
        self,
        project_id: UUID,
        amount: Decimal | int | str,
        actor_id: UUID | None = None,
        actor_name: str | None = None,
    ) -> ProjectBudget:
        """Set the project's total budget (creating the budget if absent)."""
        total = parse_amount(amount, allow_zero=True)
        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            self._store.set_total(project_id, total)
            view = self._store.budget_view(project_id)
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.BUDGET_SET,
                    description=f"Total budget set to {total}",
                    project_id=project_id,
                    metadata={"total_budget": total},
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
            )
            self._mirror(view)
            logger.info("budget_set", extra={"total_budget": total})
            return view

    def allocate(
        self,
        project_id: UUID,
        name: str,
        amount: Decimal | int | str,
        actor_id: UUID | None = None,
        actor_name: str | None = None,
    ) -> CostCenterItem:
        """Create a cost center.  Exceeding the total budget is allowed.

        Over-allocation is surfaced by ``ProjectBudget.over_allocated``.
        """
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidTransactionError("name", "cost center name is required")
        allocated = parse_amount(amount, allow_zero=True)

        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            center = self._store.add_cost_center(project_id, clean_name, allocated)
            view = self._store.budget_view(project_id)
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.COST_CENTER_ALLOCATED,
                    description=f"Allocated {allocated} to {clean_name}",
                    project_id=project_id,
                    metadata={
                        "cost_center_id": center.id,
                        "name": clean_name,
                        "allocated_amount": allocated,
                        "over_allocated": view.over_allocated,
                    },
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
            )
            if view.over_allocated:
                logger.warning(
                    "budget_over_allocated",
                    extra={
                        "allocated_total": view.allocated_total,
                        "total_budget": view.total_budget,
                    },
                )
            self._mirror(view)
            logger.info(
                "cost_center_allocated",
                extra={"cost_center": clean_name, "allocated_amount": allocated},
            )
            return center

    def deallocate(
        self,
        project_id: UUID,
        cost_center_id: UUID,
        actor_id: UUID | None = None,
        actor_name: str | None = None,
    ) -> CostCenterItem:
        """Remove a cost center.  Transactions naming it are left as recorded."""
        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            removed = self._store.remove_cost_center(project_id, cost_center_id)
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.COST_CENTER_REMOVED,
                    description=f"Removed cost center {removed.name}",
                    project_id=project_id,
                    metadata={
                        "cost_center_id": removed.id,
                        "name": removed.name,
                        "allocated_amount": removed.allocated_amount,
                        "spent_amount": removed.spent_amount,
                    },
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
            )
            self._mirror(self._store.budget_view(project_id))
            logger.info("cost_center_removed", extra={"cost_center": removed.name})
            return removed

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def record_transaction(
        self,
        project_id: UUID,
        draft: TransactionDraft,
        actor_id: UUID,
        actor_name: str,
        actor_role: UserRole | str,
        idempotency_key: str | None = None,
    ) -> Transaction:
        """Record a credit or debit.

        Approved immediately for a privileged ``actor_role``; pending
        otherwise.

        Raises:
            UnknownRoleError, InvalidTransactionError, InvalidAmountError,
            IdempotencyConflictError.
        """
        role = parse_role(actor_role)
        txn_type = self._parse_type(draft.type)
        amount = parse_amount(draft.amount, allow_zero=False)
        category = (draft.category or "").strip() or self._policy.general_category
        description = (draft.description or "").strip()
        if draft.date is not None and draft.date.tzinfo is None:
            raise InvalidTransactionError("date", "must be timezone-aware")

        content_hash = transaction_content_hash(
            type=txn_type.value,
            category=category,
            amount=amount,
            description=description,
            date=draft.date,
        )

        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            if idempotency_key is not None:
                existing = self._store.find_by_idempotency_key(project_id, idempotency_key)
                if existing is not None:
                    return self._replay(existing, idempotency_key, content_hash)

            now = self._clock.now()
            privileged = self._policy.is_privileged(role)
            status = TransactionStatus.APPROVED if privileged else TransactionStatus.PENDING
            model = LedgerTransactionModel(
                project_id=project_id,
                type=txn_type.value,
                category=category,
                amount=amount,
                description=description,
                date=draft.date or now,
                status=status.value,
                created_by_id=actor_id,
                created_by_name=actor_name,
                created_by_role=role.name,
                idempotency_key=idempotency_key,
                content_hash=content_hash,
                approved_by_id=actor_id if privileged else None,
                approved_by_name=actor_name if privileged else None,
                approved_at=now if privileged else None,
                created_at=now,
            )
            try:
                self._store.insert_transaction(model)
            except IntegrityError:
                if idempotency_key is None:
                    raise
                existing = self._store.find_by_idempotency_key(project_id, idempotency_key)
                if existing is None:
                    raise
                return self._replay(existing, idempotency_key, content_hash)

            delta = delta_for_recorded(txn_type, status, amount, category)
            attributed = self._store.apply_delta(project_id, delta)
            self._warn_unattributed(attributed, delta.cost_center, model.id)

            txn = model.to_dto()
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.TRANSACTION_RECORDED,
                    description=(
                        f"{actor_name} recorded {txn_type.value} of {amount} "
                        f"({category}), {status.value}"
                    ),
                    project_id=project_id,
                    metadata={
                        "transaction_id": txn.id,
                        "type": txn_type,
                        "category": category,
                        "amount": amount,
                        "status": status,
                    },
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
            )
            self._mirror(self._store.budget_view(project_id))
            logger.info(
                "transaction_recorded",
                extra={
                    "transaction_id": str(txn.id),
                    "type": txn_type.value,
                    "amount": amount,
                    "category": category,
                    "status": status.value,
                    "role": role.name,
                },
            )
            return txn

    def approve_transaction(
        self,
        project_id: UUID,
        transaction_id: UUID,
        approver_id: UUID,
        approver_name: str,
        approver_role: UserRole | str,
    ) -> Transaction:
        """Approve a pending transaction and move its amount out of pending."""
        return self._review(
            project_id,
            transaction_id,
            approver_id,
            approver_name,
            approver_role,
            TransactionStatus.APPROVED,
        )

    def reject_transaction(
        self,
        project_id: UUID,
        transaction_id: UUID,
        approver_id: UUID,
        approver_name: str,
        approver_role: UserRole | str,
    ) -> Transaction:
        """Reject a pending transaction; only pending moves."""
        return self._review(
            project_id,
            transaction_id,
            approver_id,
            approver_name,
            approver_role,
            TransactionStatus.REJECTED,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, project_id: UUID) -> ReconciliationReport:
        """Compare cached aggregates with the transaction log.  Read-only."""
        with LogContext.bind(project_id=project_id):
            report = reconcile(
                project_id,
                self._store.budget_view(project_id),
                [m.to_dto() for m in self._store.transactions_for(project_id)],
            )
            if report.is_consistent:
                logger.info("ledger_reconciled", extra={"consistent": True})
            else:
                logger.warning(
                    "ledger_drift_detected",
                    extra={
                        "consistent": False,
                        "drifts": [
                            {"field": d.field, "cached": d.cached, "expected": d.expected}
                            for d in report.drifts
                        ],
                    },
                )
            return report

    def rebuild_aggregates(
        self,
        project_id: UUID,
        actor_id: UUID | None = None,
        actor_name: str | None = None,
    ) -> ReconciliationReport:
        """Overwrite cached aggregates with values recomputed from the log.

        Returns the report taken before the rebuild, so the caller can see
        what was corrected.
        """
        report = self.reconcile(project_id)
        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            self._store.overwrite_aggregates(
                project_id,
                received=report.expected_received,
                spent=report.expected_spent,
                pending=report.expected_pending,
                center_spent=report.expected_center_spent,
            )
            self._activity.record(
                ActivityRecord(
                    type=ActivityType.LEDGER_REBUILT,
                    description="Ledger aggregates rebuilt from transactions",
                    project_id=project_id,
                    metadata={
                        "drifts": [
                            {"field": d.field, "cached": d.cached, "expected": d.expected}
                            for d in report.drifts
                        ],
                    },
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
            )
            self._mirror(self._store.budget_view(project_id))
            logger.info("ledger_rebuilt", extra={"drift_count": len(report.drifts)})
            return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _review(
        self,
        project_id: UUID,
        transaction_id: UUID,
        reviewer_id: UUID,
        reviewer_name: str,
        reviewer_role: UserRole | str,
        to_status: TransactionStatus,
    ) -> Transaction:
        role = parse_role(reviewer_role)
        if not self._policy.is_privileged(role):
            raise UnauthorizedRoleError(
                role.value,
                tuple(sorted(r.value for r in self._policy.privileged_roles)),
                f"transaction {transaction_id}",
            )

        with LogContext.bind(project_id=project_id, actor_id=reviewer_id):
            model = self._store.transition_transaction(
                project_id,
                transaction_id,
                to_status,
                reviewer_id,
                reviewer_name,
                self._clock.now(),
            )
            txn = model.to_dto()
            delta = delta_for_transition(
                txn.type, txn.amount, txn.category, TransactionStatus.PENDING, to_status,
            )
            attributed = self._store.apply_delta(project_id, delta)
            self._warn_unattributed(attributed, delta.cost_center, txn.id)

            activity_type = (
                ActivityType.TRANSACTION_APPROVED
                if to_status == TransactionStatus.APPROVED
                else ActivityType.TRANSACTION_REJECTED
            )
            self._activity.record(
                ActivityRecord(
                    type=activity_type,
                    description=f"{reviewer_name} {to_status.value} {txn.type.value} of {txn.amount}",
                    project_id=project_id,
                    metadata={
                        "transaction_id": txn.id,
                        "amount": txn.amount,
                        "category": txn.category,
                        "status": to_status,
                    },
                    actor_id=reviewer_id,
                    actor_name=reviewer_name,
                )
            )
            self._mirror(self._store.budget_view(project_id))
            logger.info(
                "transaction_reviewed",
                extra={"transaction_id": str(txn.id), "status": to_status.value, "role": role.name},
            )
            return txn

    def _replay(
        self,
        existing: LedgerTransactionModel,
        idempotency_key: str,
        content_hash: str,
    ) -> Transaction:
        if existing.content_hash != content_hash:
            logger.warning(
                "idempotency_conflict",
                extra={"idempotency_key": idempotency_key, "transaction_id": str(existing.id)},
            )
            raise IdempotencyConflictError(idempotency_key, str(existing.id))
        logger.info(
            "transaction_replayed",
            extra={"idempotency_key": idempotency_key, "transaction_id": str(existing.id)},
        )
        return existing.to_dto()

    def _warn_unattributed(self, attributed: bool, category: str | None, txn_id: UUID) -> None:
        if not attributed:
            logger.warning(
                "spend_unattributed",
                extra={"category": category, "transaction_id": str(txn_id)},
            )

    def _mirror(self, view: ProjectBudget) -> None:
        summary: dict[str, Any] = {
            "total_budget": view.total_budget,
            "received_amount": view.received_amount,
            "spent_amount": view.spent_amount,
            "pending_amount": view.pending_amount,
            "allocated_total": view.allocated_total,
            "over_allocated": view.over_allocated,
            "cost_centers": [
                {
                    "name": c.name,
                    "allocated_amount": c.allocated_amount,
                    "spent_amount": c.spent_amount,
                }
                for c in view.cost_centers
            ],
            "updated_at": view.updated_at,
        }
        self._cases.mirror_budget_summary(view.project_id, summary)

    @staticmethod
    def _parse_type(value: TransactionType | str) -> TransactionType:
        if isinstance(value, TransactionType):
            return value
        try:
            return TransactionType(str(value).strip().lower())
        except ValueError:
            raise InvalidTransactionError("type", f"must be credit or debit, got {value!r}") from None
