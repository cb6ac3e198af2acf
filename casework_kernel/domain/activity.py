"""
Activity records and the notification sink interface.

Every approval and ledger transition appends an ``ActivityRecord`` to the
activity log and hands the same record to each registered
``NotificationSink``.  Sinks are fire-and-forget: how a notification is
delivered (email, push, in-app) is not the kernel's concern.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID


class ActivityType(str, Enum):
    APPROVAL_INITIATED = "APPROVAL_INITIATED"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    APPROVAL_REJECTED = "APPROVAL_REJECTED"
    STAGE_COMPLETED = "STAGE_COMPLETED"
    AUTO_ACTION_FAILED = "AUTO_ACTION_FAILED"
    TASK_CREATED = "TASK_CREATED"
    CASE_STATUS_CHANGED = "CASE_STATUS_CHANGED"
    PROJECT_CONVERTED = "PROJECT_CONVERTED"
    PAYMENT_VERIFIED = "PAYMENT_VERIFIED"
    BUDGET_SET = "BUDGET_SET"
    COST_CENTER_ALLOCATED = "COST_CENTER_ALLOCATED"
    COST_CENTER_REMOVED = "COST_CENTER_REMOVED"
    TRANSACTION_RECORDED = "TRANSACTION_RECORDED"
    TRANSACTION_APPROVED = "TRANSACTION_APPROVED"
    TRANSACTION_REJECTED = "TRANSACTION_REJECTED"
    LEDGER_REBUILT = "LEDGER_REBUILT"


@dataclass(frozen=True)
class ActivityRecord:
    """One domain event, as appended to the log and sent to sinks."""

    type: ActivityType
    description: str
    case_id: UUID | None = None
    project_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    actor_id: UUID | None = None
    actor_name: str | None = None
    id: UUID | None = None
    created_at: datetime | None = None


@runtime_checkable
class NotificationSink(Protocol):
    """Receives activity records.  Exceptions raised here never propagate."""

    def deliver(self, record: ActivityRecord) -> None:
        ...


class RecordingSink:
    """Sink that keeps every delivered record in memory."""

    def __init__(self) -> None:
        self.records: list[ActivityRecord] = []

    def deliver(self, record: ActivityRecord) -> None:
        self.records.append(record)

    def of_type(self, activity_type: ActivityType) -> list[ActivityRecord]:
        return [r for r in self.records if r.type == activity_type]
