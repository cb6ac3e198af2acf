"""
Module: casework_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    casework_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import casework_kernel/domain types (and sibling engine modules).
    MUST NOT import casework_services or casework_config.

Invariants enforced:
    - Purity: engines never read the clock or touch the database.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from casework_engines import evaluate_quorum, next_status
    from casework_engines import delta_for_recorded, reconcile
"""

from casework_engines.ledger_aggregates import (
    LedgerTotals,
    delta_for_recorded,
    delta_for_transition,
    recompute,
    reconcile,
)
from casework_engines.quorum import (
    QuorumEvaluation,
    evaluate_quorum,
    is_covered,
    next_status,
)
from casework_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "LedgerTotals",
    "QuorumEvaluation",
    "compute_input_fingerprint",
    "delta_for_recorded",
    "delta_for_transition",
    "evaluate_quorum",
    "is_covered",
    "next_status",
    "recompute",
    "reconcile",
    "traced_engine",
]
