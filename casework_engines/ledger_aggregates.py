"""
casework_engines.ledger_aggregates -- Pure aggregate arithmetic for project ledgers.

Responsibility:
    Translate ledger events (a transaction recorded, a pending transaction
    approved or rejected) into signed ``AggregateDelta`` values, and
    recompute a project's aggregates from its transaction log for
    reconciliation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import casework_kernel/domain/ types.

Invariants enforced:
    - Approved credit moves ``received``; approved debit moves ``spent``
      and the spend of the cost center whose name equals the category.
    - Pending moves ``pending`` by the amount for credits and debits
      alike; approval or rejection removes exactly that amount again.
    - Rejected transactions contribute nothing.
    - Recomputing from the log and summing every delta ever applied give
      the same totals.

Failure modes:
    - ValueError for a transition out of a non-pending status.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from casework_kernel.domain.ledger import (
    AggregateDelta,
    AggregateDrift,
    CostCenterItem,
    ProjectBudget,
    ReconciliationReport,
    Transaction,
    TransactionStatus,
    TransactionType,
)

from casework_engines.tracer import traced_engine

_ZERO = Decimal("0")


def _approved_delta(type: TransactionType, amount: Decimal, category: str) -> AggregateDelta:
    if type == TransactionType.CREDIT:
        return AggregateDelta(received=amount)
    return AggregateDelta(spent=amount, cost_center=category, cost_center_spent=amount)


def delta_for_recorded(
    type: TransactionType,
    status: TransactionStatus,
    amount: Decimal,
    category: str,
) -> AggregateDelta:
    """Delta for a newly recorded transaction landing in ``status``."""
    if status == TransactionStatus.APPROVED:
        return _approved_delta(type, amount, category)
    if status == TransactionStatus.PENDING:
        return AggregateDelta(pending=amount)
    return AggregateDelta()


def delta_for_transition(
    type: TransactionType,
    amount: Decimal,
    category: str,
    from_status: TransactionStatus,
    to_status: TransactionStatus,
) -> AggregateDelta:
    """Delta for moving a transaction out of pending."""
    if from_status != TransactionStatus.PENDING:
        raise ValueError(f"Cannot transition transaction from {from_status.value}")
    if to_status == TransactionStatus.APPROVED:
        approved = _approved_delta(type, amount, category)
        return AggregateDelta(
            received=approved.received,
            spent=approved.spent,
            pending=-amount,
            cost_center=approved.cost_center,
            cost_center_spent=approved.cost_center_spent,
        )
    if to_status == TransactionStatus.REJECTED:
        return AggregateDelta(pending=-amount)
    raise ValueError(f"Cannot transition transaction to {to_status.value}")


@dataclass(frozen=True)
class LedgerTotals:
    """Aggregates recomputed from a transaction log.

    ``center_spent`` holds approved debit spend keyed by category, whether
    or not a cost center of that name exists.
    """

    received: Decimal = _ZERO
    spent: Decimal = _ZERO
    pending: Decimal = _ZERO
    center_spent: dict[str, Decimal] = field(default_factory=dict)


@traced_engine("ledger_recompute", "1.0")
def recompute(transactions: Iterable[Transaction]) -> LedgerTotals:
    received = spent = pending = _ZERO
    by_category: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.status == TransactionStatus.PENDING:
            pending += txn.amount
        elif txn.status == TransactionStatus.APPROVED:
            if txn.type == TransactionType.CREDIT:
                received += txn.amount
            else:
                spent += txn.amount
                by_category[txn.category] = by_category.get(txn.category, _ZERO) + txn.amount
    return LedgerTotals(received=received, spent=spent, pending=pending, center_spent=by_category)


def _charged_to(center: CostCenterItem, txn: Transaction) -> bool:
    """Whether ``txn`` landed on ``center`` when it was approved.

    Spend is matched by category name, and only from the moment the center
    exists; a center re-created under an old name starts empty.
    """
    if txn.category != center.name:
        return False
    if center.created_at is None or txn.approved_at is None:
        return True
    return txn.approved_at >= center.created_at


@traced_engine("ledger_reconcile", "1.1")
def reconcile(
    project_id: UUID,
    budget: ProjectBudget,
    transactions: Iterable[Transaction],
) -> ReconciliationReport:
    """Compare ``budget``'s cached aggregates with the transaction log.

    Approved spend that no current cost center received (its category has
    no center, or the center was created after the approval) is reported as
    ``unattributed_spent``; it is part of ``spent`` but of no center.
    """
    transactions = list(transactions)
    totals = recompute(transactions)

    drifts: list[AggregateDrift] = []
    for name, cached, expected in (
        ("received_amount", budget.received_amount, totals.received),
        ("spent_amount", budget.spent_amount, totals.spent),
        ("pending_amount", budget.pending_amount, totals.pending),
    ):
        if cached != expected:
            drifts.append(AggregateDrift(field=name, cached=cached, expected=expected))

    approved_debits = [
        t for t in transactions
        if t.status == TransactionStatus.APPROVED and t.type == TransactionType.DEBIT
    ]
    expected_centers: dict[str, Decimal] = {}
    for center in budget.cost_centers:
        expected = sum(
            (t.amount for t in approved_debits if _charged_to(center, t)),
            _ZERO,
        )
        expected_centers[center.name] = expected
        if center.spent_amount != expected:
            drifts.append(
                AggregateDrift(
                    field=f"cost_center:{center.name}",
                    cached=center.spent_amount,
                    expected=expected,
                )
            )

    unattributed = totals.spent - sum(expected_centers.values(), _ZERO)

    return ReconciliationReport(
        project_id=project_id,
        expected_received=totals.received,
        expected_spent=totals.spent,
        expected_pending=totals.pending,
        expected_center_spent=expected_centers,
        unattributed_spent=unattributed,
        drifts=tuple(drifts),
    )
