"""
Module: casework_kernel.models.auto_action
Responsibility: Exactly-once bookkeeping for stage auto-actions.

A row exists iff the action ran successfully for that approval.  The unique
constraint means a retry, or a racing second caller, cannot run the same
action twice: its insert fails and its savepoint rolls back.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from casework_kernel.db.base import Base, UTCDateTime, UUIDString


class AutoActionExecutionModel(Base):
    __tablename__ = "auto_action_executions"

    __table_args__ = (
        UniqueConstraint(
            "approval_id", "action_id",
            name="uq_auto_action_executions_once",
        ),
    )

    approval_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    action_id: Mapped[str] = mapped_column(String(100), nullable=False)
    executed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AutoActionExecution {self.approval_id} {self.action_id}>"
