"""
Approval domain types (``casework_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for staged, role-quorum approvals: the request lifecycle,
the recorded actions, the static stage table and the auto-action
definitions that fire when a stage is fully approved.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Lifecycle: ``APPROVAL_TRANSITIONS`` lists the only valid status edges.
  APPROVED and REJECTED have none.
* Quorum is coverage of the required role set, not a head count: a role
  satisfies the quorum at most once.
* The stage table is immutable once built and is injected into the
  workflow engine, never held in module state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from casework_kernel.domain.roles import UserRole
from casework_kernel.exceptions import UnknownAutoActionError, UnknownStageError


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.PENDING,
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})


class ActionKind(str, Enum):
    """What an approval action records."""

    APPROVE = "approve"
    REJECT = "reject"


class AutoActionKind(str, Enum):
    """Side effects a stage may trigger on full approval."""

    CREATE_TASK = "create_task"
    SET_CASE_STATUS = "set_case_status"
    CONVERT_TO_PROJECT = "convert_to_project"


# =========================================================================
# Configuration types
# =========================================================================


@dataclass(frozen=True)
class AutoActionSpec:
    """One auto-action definition.

    ``params`` carries ``title``/``description`` for CREATE_TASK and
    ``status`` for SET_CASE_STATUS.
    """

    action_id: str
    name: str
    kind: AutoActionKind
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowStage:
    """Static definition of one gated stage."""

    key: str
    name: str
    required_roles: tuple[UserRole, ...]
    auto_actions: tuple[str, ...] = ()


class StageTable:
    """Immutable lookup of stages and auto-actions.

    Built once (usually from YAML via ``casework_config.bridges``) and
    handed to the workflow engine.  Every auto-action a stage references
    must be defined.
    """

    def __init__(
        self,
        stages: tuple[WorkflowStage, ...] | list[WorkflowStage],
        actions: tuple[AutoActionSpec, ...] | list[AutoActionSpec] = (),
    ):
        action_map = {a.action_id: a for a in actions}
        for stage in stages:
            for action_id in stage.auto_actions:
                if action_id not in action_map:
                    raise UnknownAutoActionError(action_id)
        self._stages: Mapping[str, WorkflowStage] = MappingProxyType(
            {s.key: s for s in stages}
        )
        self._actions: Mapping[str, AutoActionSpec] = MappingProxyType(action_map)

    def stage(self, key: str) -> WorkflowStage:
        try:
            return self._stages[key]
        except KeyError:
            raise UnknownStageError(key) from None

    def action(self, action_id: str) -> AutoActionSpec:
        try:
            return self._actions[action_id]
        except KeyError:
            raise UnknownAutoActionError(action_id) from None

    def actions_for(self, key: str) -> tuple[AutoActionSpec, ...]:
        return tuple(self.action(a) for a in self.stage(key).auto_actions)

    @property
    def stage_keys(self) -> tuple[str, ...]:
        return tuple(self._stages)

    def __contains__(self, key: object) -> bool:
        return key in self._stages

    def __len__(self) -> int:
        return len(self._stages)


# =========================================================================
# Request and action records
# =========================================================================


@dataclass(frozen=True)
class ApprovalActionRecord:
    """One recorded approve or reject action.  Immutable."""

    action_id: UUID
    kind: ActionKind
    role: UserRole
    actor_id: UUID
    actor_name: str
    acted_at: datetime
    comment: str = ""


@dataclass(frozen=True)
class ApprovalRequest:
    """Snapshot of an approval request and its actions."""

    id: UUID
    case_id: UUID
    stage: str
    stage_name: str
    status: ApprovalStatus
    requester_id: UUID
    requester_name: str
    required_roles: tuple[UserRole, ...]
    approvals: tuple[ApprovalActionRecord, ...] = ()
    rejections: tuple[ApprovalActionRecord, ...] = ()
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolved_at: datetime | None = None
    version: int = 1

    @property
    def approved_roles(self) -> frozenset[UserRole]:
        return frozenset(a.role for a in self.approvals)

    @property
    def missing_roles(self) -> tuple[UserRole, ...]:
        approved = self.approved_roles
        return tuple(r for r in self.required_roles if r not in approved)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of an approve call.

    ``became_approved`` is True only for the call that moved the request
    from PENDING to APPROVED; ``executed_actions`` lists the auto-action ids
    that ran during that call.
    """

    request: ApprovalRequest
    became_approved: bool = False
    executed_actions: tuple[str, ...] = ()
