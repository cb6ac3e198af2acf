"""Read-only selectors.  They return frozen DTOs and never write."""

from casework_kernel.selectors.activity_selector import ActivitySelector, CaseSelector
from casework_kernel.selectors.approval_selector import ApprovalSelector
from casework_kernel.selectors.ledger_selector import LedgerSelector

__all__ = [
    "ActivitySelector",
    "ApprovalSelector",
    "CaseSelector",
    "LedgerSelector",
]
