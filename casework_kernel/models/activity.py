"""
Module: casework_kernel.models.activity
Responsibility: Append-only activity log.

No foreign keys: an entry may reference a case or project the kernel does
not hold, and the log must accept it.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from casework_kernel.db.base import Base, UTCDateTime, UUIDString
from casework_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from casework_kernel.domain.activity import ActivityRecord


class ActivityLogModel(Base):
    __tablename__ = "activity_log"

    __table_args__ = (
        Index("ix_activity_log_case", "case_id", "created_at"),
        Index("ix_activity_log_project", "project_id", "created_at"),
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    case_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    project_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> ActivityRecord:
        from casework_kernel.domain.activity import ActivityRecord, ActivityType

        return ActivityRecord(
            id=self.id,
            type=ActivityType(self.type),
            case_id=self.case_id,
            project_id=self.project_id,
            description=self.description,
            metadata=dict(self.details or {}),
            actor_id=self.actor_id,
            actor_name=self.actor_name,
            created_at=self.created_at,
        )


@event.listens_for(ActivityLogModel, "before_update")
def prevent_activity_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ActivityLog",
        entity_id=str(target.id),
        reason="Activity entries are append-only",
    )


@event.listens_for(ActivityLogModel, "before_delete")
def prevent_activity_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ActivityLog",
        entity_id=str(target.id),
        reason="Activity entries are append-only",
    )
