"""
casework_engines.quorum -- Pure role-quorum evaluation for staged approvals.

Responsibility:
    Decide what status an approval request should have given the roles it
    requires and the actions recorded against it, and what status a new
    action would move it to.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import casework_kernel/domain/ types.

Invariants enforced:
    - Quorum is role coverage: APPROVED iff every required role appears
      among the approving roles.  Extra approvals by the same role, or by
      roles outside the required set, never count.
    - Any rejection wins over any approval coverage.
    - Terminal statuses are absorbing: ``next_status`` on an APPROVED or
      REJECTED request returns it unchanged.
    - Purity: no clock, no database, deterministic for identical inputs.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from casework_kernel.domain.approval import (
    ActionKind,
    ApprovalRequest,
    ApprovalStatus,
)
from casework_kernel.domain.roles import UserRole

from casework_engines.tracer import traced_engine


@dataclass(frozen=True)
class QuorumEvaluation:
    """Outcome of evaluating a request's votes."""

    status: ApprovalStatus
    covered_roles: frozenset[UserRole]
    missing_roles: tuple[UserRole, ...]

    @property
    def is_covered(self) -> bool:
        return not self.missing_roles


def is_covered(
    required_roles: Iterable[UserRole],
    approved_roles: Iterable[UserRole],
) -> bool:
    """True when every required role has approved."""
    return set(required_roles) <= set(approved_roles)


@traced_engine("quorum", "1.0", fingerprint_fields=("required_roles", "approved_roles", "rejected"))
def evaluate_quorum(
    *,
    required_roles: tuple[UserRole, ...],
    approved_roles: Iterable[UserRole],
    rejected: bool = False,
) -> QuorumEvaluation:
    """Evaluate coverage of ``required_roles`` by ``approved_roles``.

    ``missing_roles`` keeps the configured order of ``required_roles``.
    """
    approved = frozenset(approved_roles)
    covered = frozenset(r for r in required_roles if r in approved)
    missing = tuple(r for r in required_roles if r not in approved)

    if rejected:
        status = ApprovalStatus.REJECTED
    elif not missing:
        status = ApprovalStatus.APPROVED
    else:
        status = ApprovalStatus.PENDING
    return QuorumEvaluation(status=status, covered_roles=covered, missing_roles=missing)


def next_status(
    request: ApprovalRequest,
    kind: ActionKind,
    role: UserRole,
) -> ApprovalStatus:
    """Status ``request`` takes once ``role`` records an action of ``kind``.

    Authorization and duplicate checks are the caller's job; this only
    applies the quorum rule.
    """
    if request.is_terminal:
        return request.status
    if kind == ActionKind.REJECT:
        return ApprovalStatus.REJECTED
    return evaluate_quorum(
        required_roles=request.required_roles,
        approved_roles=request.approved_roles | {role},
    ).status
