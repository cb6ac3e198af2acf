"""
Module: casework_kernel.selectors.approval_selector
Responsibility: Read models over approval requests -- the review queue for a
    role, a requester's own requests, and a case's approval history.

Role eligibility is evaluated in Python over the pending set: required roles
are a JSON list and JSON containment is not portable across backends.
"""

from uuid import UUID

from sqlalchemy import select

from casework_kernel.domain.approval import ApprovalRequest, ApprovalStatus
from casework_kernel.domain.roles import UserRole, parse_role
from casework_kernel.exceptions import ApprovalNotFoundError
from casework_kernel.models.approval import ApprovalRequestModel
from casework_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector):
    """Read-only approval queries."""

    def get(self, approval_id: UUID) -> ApprovalRequest:
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == approval_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(approval_id))
        return model.to_dto()

    def pending_for_role(self, role: UserRole | str) -> list[ApprovalRequest]:
        """PENDING requests that need ``role`` and that ``role`` has not yet approved.

        Oldest first, so the queue is worked in arrival order.
        """
        wanted = parse_role(role)
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .order_by(ApprovalRequestModel.created_at, ApprovalRequestModel.id)
            .execution_options(populate_existing=True)
        ).scalars()
        result = []
        for model in models:
            dto = model.to_dto()
            if wanted in dto.required_roles and wanted not in dto.approved_roles:
                result.append(dto)
        return result

    def requested_by(self, requester_id: UUID) -> list[ApprovalRequest]:
        """All requests raised by ``requester_id``, newest first."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.requester_id == requester_id)
            .order_by(ApprovalRequestModel.created_at.desc(), ApprovalRequestModel.id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [m.to_dto() for m in models]

    def history_for_case(self, case_id: UUID) -> list[ApprovalRequest]:
        """Every request for the case in the order the stages were initiated."""
        models = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.case_id == case_id)
            .order_by(ApprovalRequestModel.created_at, ApprovalRequestModel.id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [m.to_dto() for m in models]
