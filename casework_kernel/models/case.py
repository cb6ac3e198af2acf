"""
Module: casework_kernel.models.case
Responsibility: Minimal ORM view of the case record and follow-on tasks.

The application owns the rest of the case.  The kernel reads
``payment_verified`` and ``status`` for the payment gate and writes
``is_project``, ``status``, ``project_start_date`` and the two denormalized
mirrors (``approvals_mirror``, ``budget_summary``).  Mirrors are display
caches: nothing in the kernel reads them to make a decision.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from casework_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from casework_kernel.domain.case import Case, CaseTask

_CASE_STATUSES = (
    "'lead', 'site_visit', 'drawing', 'boq', 'quotation', 'quotation_sent', "
    "'payment_pending', 'waiting_for_planning', 'execution', 'completed'"
)


class CaseModel(Base):
    __tablename__ = "cases"

    __table_args__ = (
        CheckConstraint(f"status IN ({_CASE_STATUSES})", name="ck_cases_valid_status"),
    )

    title: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default="lead")
    is_project: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    project_start_date: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    payment_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    advance_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0"),
    )
    approvals_mirror: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    budget_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Case {self.id} status={self.status} is_project={self.is_project}>"

    def to_dto(self) -> Case:
        from casework_kernel.domain.case import Case, CaseStatus

        return Case(
            id=self.id,
            title=self.title,
            status=CaseStatus(self.status),
            is_project=self.is_project,
            payment_verified=self.payment_verified,
            advance_amount=self.advance_amount,
            project_start_date=self.project_start_date,
            approvals_mirror=tuple(self.approvals_mirror or ()),
            budget_summary=dict(self.budget_summary) if self.budget_summary else None,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class CaseTaskModel(Base):
    __tablename__ = "case_tasks"

    __table_args__ = (
        Index("ix_case_tasks_case", "case_id", "created_at"),
    )

    case_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("cases.id"), nullable=False,
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_stage: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> CaseTask:
        from casework_kernel.domain.case import CaseTask

        return CaseTask(
            id=self.id,
            case_id=self.case_id,
            title=self.title,
            description=self.description,
            source_stage=self.source_stage,
            created_at=self.created_at,
        )
