"""
Case domain types.

A case is the sales lead that may become a billable project.  The kernel
owns only the fields the approval workflow and the payment gate need;
everything else about a case lives with the application.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class CaseStatus(str, Enum):
    LEAD = "lead"
    SITE_VISIT = "site_visit"
    DRAWING = "drawing"
    BOQ = "boq"
    QUOTATION = "quotation"
    QUOTATION_SENT = "quotation_sent"
    PAYMENT_PENDING = "payment_pending"
    WAITING_FOR_PLANNING = "waiting_for_planning"
    EXECUTION = "execution"
    COMPLETED = "completed"


# Only state from which a case may become a project.
CONVERTIBLE_STATUS = CaseStatus.WAITING_FOR_PLANNING


@dataclass(frozen=True)
class Case:
    """Snapshot of a case row."""

    id: UUID
    title: str
    status: CaseStatus
    is_project: bool
    payment_verified: bool
    advance_amount: Decimal
    project_start_date: datetime | None = None
    approvals_mirror: tuple[dict[str, Any], ...] = ()
    budget_summary: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class CaseTask:
    """Follow-on task created by a stage auto-action."""

    id: UUID
    case_id: UUID
    title: str
    description: str
    source_stage: str | None
    created_at: datetime
