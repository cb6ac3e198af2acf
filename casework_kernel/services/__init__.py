"""Kernel write services.  All of them flush; none of them commit."""

from casework_kernel.services.activity_log import ActivityLogService
from casework_kernel.services.approval_store import ApprovalStore
from casework_kernel.services.case_mutator import CaseMutator
from casework_kernel.services.ledger_store import LedgerStore

__all__ = [
    "ActivityLogService",
    "ApprovalStore",
    "CaseMutator",
    "LedgerStore",
]
