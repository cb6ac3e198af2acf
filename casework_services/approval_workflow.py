"""
ApprovalWorkflowEngine -- staged, role-quorum approvals with auto-actions.

Responsibility:
    Initiate approval requests for configured stages, record approvals and
    rejections, decide quorum, and once a stage is fully approved run its
    auto-actions exactly once.  Owns the case -> project payment gate entry
    point.

Architecture position:
    Services -- orchestration over kernel services (ApprovalStore,
    CaseMutator, ActivityLogService) and the pure quorum engine.  The stage
    table is injected (built from YAML by casework_config.bridges).

Invariants enforced:
    - Quorum is distinct-role coverage of the stage's required roles.
    - One vote per role: checked on the locked snapshot and enforced by the
      unique ``(approval_id, kind, role)`` constraint under a race.
    - APPROVED and REJECTED are terminal; a vote on a terminal request
      leaves status and actions unchanged.
    - The approval is durable before any side effect runs.  Each
      auto-action runs in its own SAVEPOINT together with its
      exactly-once marker row; a failure rolls back that action only and
      the approval stays APPROVED.
    - Mirrors are written after the authoritative write and never read.

Failure modes:
    - UnknownStageError, UnknownRoleError, InvalidTransactionError (blank
      rejection reason).
    - ApprovalNotFoundError.
    - UnauthorizedRoleError, AlreadyApprovedByRoleError,
      ApprovalAlreadyResolvedError, ApprovalNotApprovedError.
    - OptimisticLockError (retryable) when a concurrent writer moved the
      request between lock and write.
    - AutoActionFailedError after the approval has committed.

Transaction handling:
    With ``auto_commit=True`` (default) each public call commits on success
    and rolls back on failure.  With ``auto_commit=False`` the engine only
    flushes and the caller owns commit/rollback.  Auto-actions never run
    before the approval is durable, so in that mode ``approve`` stops at
    APPROVED and leaves them pending: commit, then call
    ``retry_auto_actions``.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from casework_engines.quorum import next_status
from casework_kernel.domain.activity import ActivityRecord, ActivityType, NotificationSink
from casework_kernel.domain.approval import (
    ActionKind,
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalStatus,
    AutoActionSpec,
    StageTable,
)
from casework_kernel.domain.case import Case
from casework_kernel.domain.clock import Clock, SystemClock
from casework_kernel.domain.roles import RoleDirectory, UserRole, parse_role
from casework_kernel.exceptions import (
    AlreadyApprovedByRoleError,
    ApprovalAlreadyResolvedError,
    ApprovalNotApprovedError,
    AutoActionFailedError,
    CaseworkError,
    InvalidTransactionError,
    UnauthorizedRoleError,
    UnknownRoleError,
)
from casework_kernel.logging_config import LogContext, get_logger
from casework_kernel.services.activity_log import ActivityLogService
from casework_kernel.services.approval_store import ApprovalStore
from casework_kernel.services.case_mutator import CaseMutator
from casework_services.auto_actions import AutoActionDispatcher

logger = get_logger("services.approval_workflow")


class ApprovalWorkflowEngine:
    """Approval Workflow Engine."""

    def __init__(
        self,
        session: Session,
        stage_table: StageTable,
        clock: Clock | None = None,
        role_directory: RoleDirectory | None = None,
        activity_log: ActivityLogService | None = None,
        sinks: Iterable[NotificationSink] = (),
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._stages = stage_table
        self._roles = role_directory
        self._auto_commit = auto_commit
        self._store = ApprovalStore(session, self._clock)
        self._cases = CaseMutator(session, self._clock)
        self._activity = activity_log or ActivityLogService(session, self._clock, sinks)
        self._dispatcher = AutoActionDispatcher(self._cases)

    @property
    def stage_table(self) -> StageTable:
        return self._stages

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    def initiate(
        self,
        case_id: UUID,
        stage: str,
        requester_id: UUID,
        requester_name: str,
    ) -> ApprovalRequest:
        """Open a PENDING request for ``stage`` on ``case_id``.

        Raises:
            UnknownStageError: ``stage`` is not in the stage table.
        """
        stage_def = self._stages.stage(stage)

        with LogContext.bind(case_id=case_id, actor_id=requester_id):
            try:
                request = self._store.create(case_id, stage_def, requester_id, requester_name)
                self._activity.record(
                    ActivityRecord(
                        type=ActivityType.APPROVAL_INITIATED,
                        description=f"Approval initiated for {stage_def.name}",
                        case_id=case_id,
                        metadata={
                            "approval_id": request.id,
                            "stage": stage_def.key,
                            "required_roles": [r.value for r in stage_def.required_roles],
                        },
                        actor_id=requester_id,
                        actor_name=requester_name,
                    )
                )
                self._cases.mirror_approval(request)
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info(
                "approval_initiated",
                extra={"approval_id": str(request.id), "stage": stage_def.key},
            )
            return request

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------

    def approve(
        self,
        approval_id: UUID,
        approver_id: UUID,
        approver_name: str,
        approver_role: UserRole | str | None = None,
        comment: str = "",
    ) -> ApprovalOutcome:
        """Record ``approver_role``'s approval and run auto-actions on quorum.

        ``approver_role`` may be omitted when a role directory was injected.

        Precondition order: request exists, role is required, role has not
        already approved, request is not resolved.

        Raises:
            ApprovalNotFoundError, UnauthorizedRoleError,
            AlreadyApprovedByRoleError, ApprovalAlreadyResolvedError,
            OptimisticLockError, AutoActionFailedError.
        """
        role = self._resolve_role(approver_id, approver_role)

        with LogContext.bind(approval_id=approval_id, actor_id=approver_id):
            try:
                request = self._store.load_for_update(approval_id)
                self._check_vote(request, role, ActionKind.APPROVE)

                status = next_status(request, ActionKind.APPROVE, role)
                updated = self._store.append_action(
                    request,
                    ActionKind.APPROVE,
                    role,
                    approver_id,
                    approver_name,
                    comment,
                    status,
                )
                self._activity.record(
                    ActivityRecord(
                        type=ActivityType.APPROVAL_GRANTED,
                        description=f"{approver_name} approved {updated.stage_name}",
                        case_id=updated.case_id,
                        metadata={
                            "approval_id": updated.id,
                            "stage": updated.stage,
                            "role": role.value,
                            "status": updated.status,
                            "missing_roles": [r.value for r in updated.missing_roles],
                        },
                        actor_id=approver_id,
                        actor_name=approver_name,
                    )
                )
                self._cases.mirror_approval(updated)
                # Approval is durable before any side effect runs.
                self._commit()
            except Exception:
                self._rollback()
                raise

            became_approved = updated.status == ApprovalStatus.APPROVED
            logger.info(
                "approval_granted",
                extra={
                    "approval_id": str(updated.id),
                    "role": role.name,
                    "status": updated.status.value,
                    "became_approved": became_approved,
                },
            )
            if not became_approved:
                return ApprovalOutcome(request=updated)

            if not self._auto_commit:
                logger.info(
                    "auto_actions_deferred",
                    extra={"approval_id": str(updated.id), "stage": updated.stage},
                )
                return ApprovalOutcome(request=updated, became_approved=True)

            actions = self._stages.actions_for(updated.stage)
            executed = self._run_auto_actions(updated, actions)
            return ApprovalOutcome(
                request=updated,
                became_approved=True,
                executed_actions=executed,
            )

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    def reject(
        self,
        approval_id: UUID,
        rejector_id: UUID,
        rejector_name: str,
        rejector_role: UserRole | str | None = None,
        reason: str = "",
    ) -> ApprovalRequest:
        """Reject the request.  Any single required role may reject.

        Raises:
            ApprovalNotFoundError, UnauthorizedRoleError,
            InvalidTransactionError (blank reason),
            ApprovalAlreadyResolvedError, OptimisticLockError.
        """
        role = self._resolve_role(rejector_id, rejector_role)

        with LogContext.bind(approval_id=approval_id, actor_id=rejector_id):
            try:
                request = self._store.load_for_update(approval_id)
                self._check_vote(request, role, ActionKind.REJECT)
                if not (reason or "").strip():
                    raise InvalidTransactionError("reason", "a rejection reason is required")
                if request.is_terminal:
                    raise ApprovalAlreadyResolvedError(str(request.id), request.status.value)

                updated = self._store.append_action(
                    request,
                    ActionKind.REJECT,
                    role,
                    rejector_id,
                    rejector_name,
                    reason.strip(),
                    next_status(request, ActionKind.REJECT, role),
                )
                self._activity.record(
                    ActivityRecord(
                        type=ActivityType.APPROVAL_REJECTED,
                        description=f"{rejector_name} rejected {updated.stage_name}",
                        case_id=updated.case_id,
                        metadata={
                            "approval_id": updated.id,
                            "stage": updated.stage,
                            "role": role.value,
                            "reason": reason.strip(),
                        },
                        actor_id=rejector_id,
                        actor_name=rejector_name,
                    )
                )
                self._cases.mirror_approval(updated)
                self._commit()
            except Exception:
                self._rollback()
                raise

            logger.info(
                "approval_rejected",
                extra={"approval_id": str(updated.id), "role": role.name},
            )
            return updated

    # ------------------------------------------------------------------
    # Auto-actions
    # ------------------------------------------------------------------

    def retry_auto_actions(self, approval_id: UUID) -> ApprovalOutcome:
        """Run the auto-actions of an APPROVED request that have not yet run.

        Raises:
            ApprovalNotFoundError, ApprovalNotApprovedError,
            AutoActionFailedError.
        """
        with LogContext.bind(approval_id=approval_id):
            request = self._store.get(approval_id)
            if request.status != ApprovalStatus.APPROVED:
                raise ApprovalNotApprovedError(str(approval_id), request.status.value)

            done = self._store.executed_actions(approval_id)
            remaining = tuple(
                spec for spec in self._stages.actions_for(request.stage)
                if spec.action_id not in done
            )
            if not remaining:
                logger.info("auto_actions_nothing_to_retry", extra={"approval_id": str(approval_id)})
                return ApprovalOutcome(request=request)

            executed = self._run_auto_actions(request, remaining)
            return ApprovalOutcome(request=request, executed_actions=executed)

    def _run_auto_actions(
        self,
        request: ApprovalRequest,
        actions: tuple[AutoActionSpec, ...],
    ) -> tuple[str, ...]:
        done = self._store.executed_actions(request.id)
        executed: list[str] = []

        for spec in actions:
            if spec.action_id in done:
                continue
            try:
                with self._session.begin_nested():
                    entry = self._dispatcher.execute(spec, request)
                    self._store.mark_action_executed(request.id, spec.action_id)
            except IntegrityError:
                # Marker already present: a concurrent retry ran it.
                logger.info(
                    "auto_action_already_executed",
                    extra={"approval_id": str(request.id), "action_id": spec.action_id},
                )
                continue
            except (CaseworkError, SQLAlchemyError) as exc:
                raise self._action_failure(request, spec, exc) from exc

            self._activity.record(entry)
            self._commit()
            executed.append(spec.action_id)
            logger.info(
                "auto_action_executed",
                extra={"approval_id": str(request.id), "action_id": spec.action_id},
            )

        self._activity.record(
            ActivityRecord(
                type=ActivityType.STAGE_COMPLETED,
                description=f"{request.stage_name} completed and approved",
                case_id=request.case_id,
                metadata={
                    "approval_id": request.id,
                    "stage": request.stage,
                    "auto_actions": [a.action_id for a in self._stages.actions_for(request.stage)],
                },
            )
        )
        self._commit()
        logger.info(
            "stage_completed",
            extra={"approval_id": str(request.id), "stage": request.stage},
        )
        return tuple(executed)

    def _action_failure(
        self,
        request: ApprovalRequest,
        spec: AutoActionSpec,
        exc: Exception,
    ) -> AutoActionFailedError:
        """Log and record the failure, commit, and build the error to raise."""
        cause_code = exc.code if isinstance(exc, CaseworkError) else type(exc).__name__
        logger.error(
            "auto_action_failed",
            extra={
                "approval_id": str(request.id),
                "action_id": spec.action_id,
                "cause_code": cause_code,
            },
            exc_info=True,
        )
        self._activity.record(
            ActivityRecord(
                type=ActivityType.AUTO_ACTION_FAILED,
                description=f"Auto-action '{spec.name}' failed: {exc}",
                case_id=request.case_id,
                metadata={
                    "approval_id": request.id,
                    "stage": request.stage,
                    "action_id": spec.action_id,
                    "cause_code": cause_code,
                },
            )
        )
        self._commit()
        return AutoActionFailedError(str(request.id), spec.action_id, cause_code, str(exc))

    # ------------------------------------------------------------------
    # Payment gate
    # ------------------------------------------------------------------

    def convert_to_project(self, case_id: UUID) -> Case:
        """Convert a case to a project behind the payment gate.

        Raises:
            CaseNotFoundError, PaymentNotVerifiedError, InvalidStatusError.
        """
        with LogContext.bind(case_id=case_id):
            try:
                case = self._cases.convert_to_project(case_id)
                self._activity.record(
                    ActivityRecord(
                        type=ActivityType.PROJECT_CONVERTED,
                        description="Case converted to project",
                        case_id=case_id,
                        project_id=case.id,
                        metadata={"project_start_date": case.project_start_date},
                    )
                )
                self._commit()
            except Exception:
                self._rollback()
                raise
            return case

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_role(self, actor_id: UUID, role: UserRole | str | None) -> UserRole:
        if role is not None:
            return parse_role(role)
        if self._roles is None:
            raise UnknownRoleError(f"no role given for actor {actor_id}")
        return self._roles.role_of(actor_id)

    def _check_vote(self, request: ApprovalRequest, role: UserRole, kind: ActionKind) -> None:
        if role not in request.required_roles:
            raise UnauthorizedRoleError(
                role.value,
                tuple(r.value for r in request.required_roles),
                f"approval {request.id} ({request.stage})",
            )
        if kind == ActionKind.APPROVE:
            if role in request.approved_roles:
                raise AlreadyApprovedByRoleError(str(request.id), role.value)
            if request.is_terminal:
                raise ApprovalAlreadyResolvedError(str(request.id), request.status.value)

    def _commit(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()
