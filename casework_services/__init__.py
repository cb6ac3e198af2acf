"""
casework_services -- orchestration over the casework kernel.

Responsibility:
    Public entry points for the approval workflow, the cost-center ledger
    and payment verification.  Each service composes kernel services
    (stores, mutators, the activity log) with the pure engines in
    ``casework_engines``.

Architecture position:
    Services -- above kernel, engines and config.  The kernel never imports
    from here.

Usage:
    from casework_config import get_active_config
    from casework_config.bridges import build_ledger_policy, build_stage_table
    from casework_services import ApprovalWorkflowEngine, CostCenterLedger

    config = get_active_config()
    with session_scope() as session:
        workflow = ApprovalWorkflowEngine(session, build_stage_table(config))
        ledger = CostCenterLedger(session, policy=build_ledger_policy(config))
"""

from casework_services.approval_workflow import ApprovalWorkflowEngine
from casework_services.auto_actions import AutoActionDispatcher
from casework_services.cost_center_ledger import CostCenterLedger, parse_amount
from casework_services.payment_verification import (
    ADVANCE_PAYMENT_CATEGORY,
    PaymentVerificationService,
)

__all__ = [
    "ADVANCE_PAYMENT_CATEGORY",
    "ApprovalWorkflowEngine",
    "AutoActionDispatcher",
    "CostCenterLedger",
    "PaymentVerificationService",
    "parse_amount",
]
