"""
CaseMutator -- terminal case transitions and denormalized mirrors.

Responsibility:
    Apply the writes the workflow is allowed to make to a case: status
    changes, follow-on tasks, payment verification, and case -> project
    conversion behind the payment gate.  Keep the case's display mirrors
    (approval list, budget summary) roughly in step with the authoritative
    records.

Architecture position:
    Kernel > Services.  Flushes only; the caller owns the transaction.

Invariants enforced:
    - Payment gate: ``convert_to_project`` checks ``payment_verified`` and
      then ``status`` under a row lock, strictly before any write.  A failed
      gate leaves the row exactly as it was.  There is no override path.
    - Mirrors are written after the authoritative write, inside a
      SAVEPOINT.  A failed mirror write is logged and discarded.  Nothing
      reads a mirror to make a decision.

Failure modes:
    - CaseNotFoundError, PaymentNotVerifiedError, InvalidStatusError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from casework_kernel.domain.approval import ApprovalRequest
from casework_kernel.domain.case import CONVERTIBLE_STATUS, Case, CaseStatus, CaseTask
from casework_kernel.exceptions import (
    CaseNotFoundError,
    InvalidStatusError,
    PaymentNotVerifiedError,
)
from casework_kernel.logging_config import get_logger
from casework_kernel.models.case import CaseModel, CaseTaskModel
from casework_kernel.services.base import BaseService
from casework_kernel.utils.hashing import to_jsonable

logger = get_logger("services.case_mutator")


class CaseMutator(BaseService):
    """Case/Project Mutator."""

    def open_case(
        self,
        title: str,
        status: CaseStatus = CaseStatus.LEAD,
        case_id: UUID | None = None,
    ) -> Case:
        """Register a case row.  The application owns the rest of the case."""
        now = self.clock.now()
        model = CaseModel(
            title=title,
            status=CaseStatus(status).value,
            is_project=False,
            payment_verified=False,
            advance_amount=Decimal("0"),
            approvals_mirror=[],
            created_at=now,
            updated_at=now,
        )
        if case_id is not None:
            model.id = case_id
        self.session.add(model)
        self.session.flush()
        logger.info("case_opened", extra={"case_id": str(model.id), "status": model.status})
        return model.to_dto()

    def get(self, case_id: UUID) -> Case:
        return self._load(case_id, lock=False).to_dto()

    def convert_to_project(self, case_id: UUID) -> Case:
        """
        Turn a case into a project behind the payment gate.

        Raises:
            CaseNotFoundError: No such case.
            PaymentNotVerifiedError: Accounts has not verified the payment.
                Checked first, whatever the status.
            InvalidStatusError: Payment verified but the case is not
                waiting for planning.
        """
        model = self._load(case_id, lock=True)

        if not model.payment_verified:
            logger.warning(
                "project_conversion_blocked",
                extra={"case_id": str(case_id), "reason": "payment_not_verified"},
            )
            raise PaymentNotVerifiedError(str(case_id))

        if model.status != CONVERTIBLE_STATUS.value:
            logger.warning(
                "project_conversion_blocked",
                extra={
                    "case_id": str(case_id),
                    "reason": "invalid_status",
                    "status": model.status,
                },
            )
            raise InvalidStatusError(str(case_id), model.status, CONVERTIBLE_STATUS.value)

        if model.is_project:
            logger.info("case_already_project", extra={"case_id": str(case_id)})
            return model.to_dto()

        now = self.clock.now()
        model.is_project = True
        model.project_start_date = now
        model.updated_at = now
        self.session.flush()

        logger.info(
            "case_converted_to_project",
            extra={"case_id": str(case_id), "project_start_date": now},
        )
        return model.to_dto()

    def set_status(self, case_id: UUID, status: CaseStatus | str) -> Case:
        new_status = CaseStatus(status)
        model = self._load(case_id, lock=True)
        previous = model.status
        model.status = new_status.value
        model.updated_at = self.clock.now()
        self.session.flush()
        logger.info(
            "case_status_changed",
            extra={"case_id": str(case_id), "from_status": previous, "to_status": new_status.value},
        )
        return model.to_dto()

    def create_task(
        self,
        case_id: UUID,
        title: str,
        description: str = "",
        source_stage: str | None = None,
    ) -> CaseTask:
        self._load(case_id, lock=False)
        model = CaseTaskModel(
            case_id=case_id,
            title=title,
            description=description,
            source_stage=source_stage,
            created_at=self.clock.now(),
        )
        self.session.add(model)
        self.session.flush()
        logger.info(
            "case_task_created",
            extra={"case_id": str(case_id), "task_id": str(model.id), "title": title},
        )
        return model.to_dto()

    def mark_payment_verified(self, case_id: UUID, amount: Decimal) -> Case:
        """Record accounts' verification of the advance payment."""
        model = self._load(case_id, lock=True)
        previous = model.status
        model.payment_verified = True
        model.advance_amount = (model.advance_amount or Decimal("0")) + amount
        if not model.is_project:
            model.status = CONVERTIBLE_STATUS.value
        model.updated_at = self.clock.now()
        self.session.flush()
        logger.info(
            "case_payment_verified",
            extra={
                "case_id": str(case_id),
                "amount": amount,
                "from_status": previous,
                "to_status": model.status,
            },
        )
        return model.to_dto()

    # -- mirrors (best-effort) ---------------------------------------------

    def mirror_approval(self, request: ApprovalRequest) -> bool:
        """Upsert ``request`` into the case's approval list.  Never raises."""
        entry = to_jsonable(
            {
                "id": request.id,
                "stage": request.stage,
                "stage_name": request.stage_name,
                "status": request.status,
                "required_roles": [r.value for r in request.required_roles],
                "approved_roles": [a.role.value for a in request.approvals],
                "rejected_by": [a.role.value for a in request.rejections],
                "updated_at": request.updated_at,
            }
        )

        def _apply(model: CaseModel) -> None:
            mirror = [m for m in (model.approvals_mirror or []) if m.get("id") != entry["id"]]
            mirror.append(entry)
            model.approvals_mirror = mirror

        return self._mirror(request.case_id, "approvals_mirror", _apply)

    def mirror_budget_summary(self, project_id: UUID, summary: dict[str, Any]) -> bool:
        """Replace the project's budget summary.  Never raises."""
        payload = to_jsonable(summary)

        def _apply(model: CaseModel) -> None:
            model.budget_summary = payload

        return self._mirror(project_id, "budget_summary", _apply)

    def _mirror(self, case_id: UUID, field: str, apply) -> bool:
        try:
            with self.session.begin_nested():
                model = self.session.get(CaseModel, case_id)
                if model is None:
                    logger.warning(
                        "case_mirror_skipped",
                        extra={"case_id": str(case_id), "field": field, "reason": "case_not_found"},
                    )
                    return False
                apply(model)
                self.session.flush()
        except SQLAlchemyError:
            logger.warning(
                "case_mirror_failed",
                extra={"case_id": str(case_id), "field": field},
                exc_info=True,
            )
            return False
        return True

    # -- internals ---------------------------------------------------------

    def _load(self, case_id: UUID, lock: bool) -> CaseModel:
        stmt = select(CaseModel).where(CaseModel.id == case_id)
        if lock:
            stmt = stmt.with_for_update()
        model = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise CaseNotFoundError(str(case_id))
        return model
