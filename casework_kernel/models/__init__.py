"""SQLAlchemy ORM models.  Importing this package registers every table."""

from casework_kernel.models.activity import ActivityLogModel
from casework_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from casework_kernel.models.auto_action import AutoActionExecutionModel
from casework_kernel.models.case import CaseModel, CaseTaskModel
from casework_kernel.models.ledger import (
    CostCenterModel,
    LedgerTransactionModel,
    ProjectBudgetModel,
)

__all__ = [
    "ActivityLogModel",
    "ApprovalActionModel",
    "ApprovalRequestModel",
    "AutoActionExecutionModel",
    "CaseModel",
    "CaseTaskModel",
    "CostCenterModel",
    "LedgerTransactionModel",
    "ProjectBudgetModel",
]
