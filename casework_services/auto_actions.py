"""
AutoActionDispatcher -- executes a stage's configured side effects.

Responsibility:
    Map an ``AutoActionSpec`` to the Case/Project Mutator call it stands
    for and describe what happened as an ``ActivityRecord``.

Architecture position:
    Services -- called only by ``ApprovalWorkflowEngine`` inside a
    per-action SAVEPOINT.  Does not commit and does not record activity
    itself: the engine records the returned entry once the savepoint and
    the exactly-once marker have both succeeded.

Failure modes:
    - Whatever the mutator raises (CaseNotFoundError,
      PaymentNotVerifiedError, InvalidStatusError, ...) propagates so the
      engine can roll back this action alone.
    - UnknownAutoActionError for a kind with no handler.
"""

from __future__ import annotations

from collections.abc import Callable

from casework_kernel.domain.activity import ActivityRecord, ActivityType
from casework_kernel.domain.approval import ApprovalRequest, AutoActionKind, AutoActionSpec
from casework_kernel.domain.case import CaseStatus
from casework_kernel.exceptions import UnknownAutoActionError
from casework_kernel.logging_config import get_logger
from casework_kernel.services.case_mutator import CaseMutator

logger = get_logger("services.auto_actions")


class AutoActionDispatcher:
    def __init__(self, case_mutator: CaseMutator):
        self._cases = case_mutator
        self._handlers: dict[
            AutoActionKind,
            Callable[[AutoActionSpec, ApprovalRequest], ActivityRecord],
        ] = {
            AutoActionKind.CREATE_TASK: self._create_task,
            AutoActionKind.SET_CASE_STATUS: self._set_case_status,
            AutoActionKind.CONVERT_TO_PROJECT: self._convert_to_project,
        }

    def execute(self, spec: AutoActionSpec, request: ApprovalRequest) -> ActivityRecord:
        handler = self._handlers.get(spec.kind)
        if handler is None:
            raise UnknownAutoActionError(spec.action_id)

        logger.info(
            "auto_action_started",
            extra={
                "approval_id": str(request.id),
                "case_id": str(request.case_id),
                "action_id": spec.action_id,
                "kind": spec.kind.value,
            },
        )
        return handler(spec, request)

    def _create_task(self, spec: AutoActionSpec, request: ApprovalRequest) -> ActivityRecord:
        title = str(spec.params.get("title", spec.name))
        description = str(spec.params.get("description", ""))
        task = self._cases.create_task(
            request.case_id, title, description, source_stage=request.stage,
        )
        return ActivityRecord(
            type=ActivityType.TASK_CREATED,
            description=f"Task created: {title}",
            case_id=request.case_id,
            metadata={
                "task_id": task.id,
                "title": title,
                "stage": request.stage,
                "approval_id": request.id,
            },
        )

    def _set_case_status(self, spec: AutoActionSpec, request: ApprovalRequest) -> ActivityRecord:
        status = CaseStatus(str(spec.params["status"]).lower())
        self._cases.set_status(request.case_id, status)
        return ActivityRecord(
            type=ActivityType.CASE_STATUS_CHANGED,
            description=f"Case status set to {status.value}",
            case_id=request.case_id,
            metadata={"status": status, "stage": request.stage, "approval_id": request.id},
        )

    def _convert_to_project(self, spec: AutoActionSpec, request: ApprovalRequest) -> ActivityRecord:
        case = self._cases.convert_to_project(request.case_id)
        return ActivityRecord(
            type=ActivityType.PROJECT_CONVERTED,
            description="Case converted to project",
            case_id=request.case_id,
            project_id=case.id,
            metadata={
                "project_start_date": case.project_start_date,
                "stage": request.stage,
                "approval_id": request.id,
            },
        )
