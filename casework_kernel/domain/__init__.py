"""Pure domain types - zero I/O."""

from casework_kernel.domain.activity import (
    ActivityRecord,
    ActivityType,
    NotificationSink,
    RecordingSink,
)
from casework_kernel.domain.approval import (
    ActionKind,
    ApprovalActionRecord,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalStatus,
    AutoActionKind,
    AutoActionSpec,
    StageTable,
    WorkflowStage,
)
from casework_kernel.domain.case import Case, CaseStatus, CaseTask
from casework_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from casework_kernel.domain.ledger import (
    CostCenterItem,
    LedgerPolicy,
    ProjectBudget,
    ReconciliationReport,
    Transaction,
    TransactionDraft,
    TransactionStatus,
    TransactionType,
)
from casework_kernel.domain.roles import (
    InMemoryRoleDirectory,
    RoleDirectory,
    UserRole,
    parse_role,
)

__all__ = [
    "ActivityRecord",
    "ActivityType",
    "NotificationSink",
    "RecordingSink",
    "ActionKind",
    "ApprovalActionRecord",
    "ApprovalOutcome",
    "ApprovalRequest",
    "ApprovalStatus",
    "AutoActionKind",
    "AutoActionSpec",
    "StageTable",
    "WorkflowStage",
    "Case",
    "CaseStatus",
    "CaseTask",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CostCenterItem",
    "LedgerPolicy",
    "ProjectBudget",
    "ReconciliationReport",
    "Transaction",
    "TransactionDraft",
    "TransactionStatus",
    "TransactionType",
    "InMemoryRoleDirectory",
    "RoleDirectory",
    "UserRole",
    "parse_role",
]
