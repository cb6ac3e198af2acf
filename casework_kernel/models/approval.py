"""
Module: casework_kernel.models.approval
Responsibility: ORM persistence for approval requests and their actions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status values limited by a check constraint; transition rules live in
      the approval store.
    - One vote per role: UNIQUE(approval_id, kind, role) on actions, so a
      second approval by the same role fails at the database even when two
      callers race.
    - Lost-update protection: status writes are a compare-and-swap on
      ``version`` (see ApprovalStore.append_action); a writer holding a stale
      snapshot updates zero rows and gets OptimisticLockError.
    - Actions are append-only (ORM listeners reject UPDATE/DELETE).

Failure modes:
    - IntegrityError on a duplicate (approval_id, kind, role).
    - ImmutabilityViolationError on action UPDATE/DELETE.

Audit relevance:
    Requests and actions are never deleted.  They are the audit trail of who
    signed off each stage, in which role, and when.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from casework_kernel.db.base import Base, UTCDateTime, UUIDString
from casework_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from casework_kernel.domain.approval import (
        ApprovalActionRecord,
        ApprovalRequest,
    )


class ApprovalRequestModel(Base):
    """Persistent approval request for one stage of one case."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_requests_valid_status",
        ),
        Index("ix_approval_requests_case", "case_id", "created_at"),
        Index("ix_approval_requests_status", "status", "created_at"),
        Index("ix_approval_requests_requester", "requester_id", "created_at"),
    )

    case_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    stage_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    requester_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Role names (UserRole.name), configured order, no duplicates
    required_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    actions: Mapped[list["ApprovalActionModel"]] = relationship(
        "ApprovalActionModel",
        back_populates="request",
        order_by="ApprovalActionModel.acted_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ApprovalRequest {self.id} {self.stage} status={self.status}>"

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from casework_kernel.domain.approval import (
            ActionKind,
            ApprovalRequest as ApprovalRequestDTO,
            ApprovalStatus,
        )
        from casework_kernel.domain.roles import UserRole

        actions = sorted(self.actions, key=lambda a: (a.acted_at, a.seq))
        return ApprovalRequestDTO(
            id=self.id,
            case_id=self.case_id,
            stage=self.stage,
            stage_name=self.stage_name,
            status=ApprovalStatus(self.status),
            requester_id=self.requester_id,
            requester_name=self.requester_name,
            required_roles=tuple(UserRole[name] for name in self.required_roles),
            approvals=tuple(
                a.to_dto() for a in actions if a.kind == ActionKind.APPROVE.value
            ),
            rejections=tuple(
                a.to_dto() for a in actions if a.kind == ActionKind.REJECT.value
            ),
            created_at=self.created_at,
            updated_at=self.updated_at,
            resolved_at=self.resolved_at,
            version=self.version,
        )


class ApprovalActionModel(Base):
    """One approve or reject action.  Append-only."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        CheckConstraint(
            "kind IN ('approve', 'reject')",
            name="ck_approval_actions_valid_kind",
        ),
        UniqueConstraint(
            "approval_id", "kind", "role",
            name="uq_approval_actions_role_vote",
        ),
        Index("ix_approval_actions_approval", "approval_id"),
    )

    approval_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    # UserRole.name
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    acted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    # Comment for approvals, mandatory reason for rejections
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    # Position within the request, breaks timestamp ties
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="actions",
    )

    def __repr__(self) -> str:
        return f"<ApprovalAction {self.id} {self.kind} role={self.role}>"

    def to_dto(self) -> ApprovalActionRecord:
        from casework_kernel.domain.approval import ActionKind, ApprovalActionRecord
        from casework_kernel.domain.roles import UserRole

        return ApprovalActionRecord(
            action_id=self.id,
            kind=ActionKind(self.kind),
            role=UserRole[self.role],
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            acted_at=self.acted_at,
            comment=self.comment,
        )


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    """Prevent updates to approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    """Prevent deletion of approval action records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are immutable -- cannot delete",
    )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Approval requests are retained as an audit trail."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.id),
        reason="Approval requests are never deleted",
    )
