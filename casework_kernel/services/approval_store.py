"""
ApprovalStore -- persistence of approval requests and their actions.

Responsibility:
    Create requests, load them (optionally under a row lock), append
    approve/reject actions, and move request status with a version
    compare-and-swap.  Quorum and authorization rules are NOT decided here;
    the workflow engine decides and this store makes the write atomic.

Architecture position:
    Kernel > Services.  Flushes only; the caller owns the transaction.

Invariants enforced:
    - One vote per role per request: the action insert runs inside a
      SAVEPOINT and a unique-constraint violation becomes
      ``AlreadyApprovedByRoleError`` (the database decides under a race).
    - No lost votes: the status write is
      ``UPDATE ... SET version = version + 1 WHERE id = :id AND version = :seen``.
      Zero rows updated means another writer got there first; the savepoint
      (action insert included) is rolled back and ``OptimisticLockError``
      is raised for the caller to retry.
    - Requests and actions are never deleted or edited (model listeners).

Failure modes:
    - ApprovalNotFoundError for an unknown id.
    - AlreadyApprovedByRoleError on a duplicate role vote.
    - OptimisticLockError on a stale version.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from casework_kernel.domain.approval import (
    TERMINAL_APPROVAL_STATUSES,
    ActionKind,
    ApprovalRequest,
    ApprovalStatus,
    WorkflowStage,
)
from casework_kernel.domain.roles import UserRole
from casework_kernel.exceptions import (
    AlreadyApprovedByRoleError,
    ApprovalNotFoundError,
    OptimisticLockError,
)
from casework_kernel.logging_config import get_logger
from casework_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from casework_kernel.models.auto_action import AutoActionExecutionModel
from casework_kernel.services.base import BaseService

logger = get_logger("services.approval_store")


class ApprovalStore(BaseService):
    """Approval Record Store."""

    def create(
        self,
        case_id: UUID,
        stage: WorkflowStage,
        requester_id: UUID,
        requester_name: str,
    ) -> ApprovalRequest:
        """Insert a PENDING request with the stage's required roles."""
        now = self.clock.now()
        model = ApprovalRequestModel(
            case_id=case_id,
            stage=stage.key,
            stage_name=stage.name,
            status=ApprovalStatus.PENDING.value,
            requester_id=requester_id,
            requester_name=requester_name,
            required_roles=[r.name for r in stage.required_roles],
            created_at=now,
            updated_at=now,
            version=1,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "approval_request_created",
            extra={
                "approval_id": str(model.id),
                "case_id": str(case_id),
                "stage": stage.key,
                "required_roles": [r.name for r in stage.required_roles],
            },
        )
        return model.to_dto()

    def get(self, approval_id: UUID) -> ApprovalRequest:
        return self._load(approval_id, lock=False).to_dto()

    def load_for_update(self, approval_id: UUID) -> ApprovalRequest:
        """Load the request under ``SELECT ... FOR UPDATE``.

        The identity map is refreshed so the snapshot reflects the row as
        locked, not an earlier read in the same session.
        """
        return self._load(approval_id, lock=True).to_dto()

    def append_action(
        self,
        request: ApprovalRequest,
        kind: ActionKind,
        role: UserRole,
        actor_id: UUID,
        actor_name: str,
        comment: str,
        new_status: ApprovalStatus,
    ) -> ApprovalRequest:
        """
        Record one action and move the request to ``new_status``.

        ``request`` is the snapshot the decision was made on; its ``version``
        is the compare-and-swap expectation.
        """
        now = self.clock.now()
        action = ApprovalActionModel(
            approval_id=request.id,
            kind=kind.value,
            role=role.name,
            actor_id=actor_id,
            actor_name=actor_name,
            acted_at=now,
            comment=comment or "",
            seq=len(request.approvals) + len(request.rejections) + 1,
        )
        values = {
            "status": new_status.value,
            "updated_at": now,
            "version": ApprovalRequestModel.version + 1,
        }
        if new_status in TERMINAL_APPROVAL_STATUSES:
            values["resolved_at"] = now

        try:
            with self.session.begin_nested():
                self.session.add(action)
                self.session.flush()
                result = self.session.execute(
                    update(ApprovalRequestModel)
                    .where(
                        ApprovalRequestModel.id == request.id,
                        ApprovalRequestModel.version == request.version,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise OptimisticLockError("ApprovalRequest", str(request.id))
        except IntegrityError:
            logger.info(
                "approval_action_duplicate_role",
                extra={"approval_id": str(request.id), "role": role.name, "kind": kind.value},
            )
            raise AlreadyApprovedByRoleError(str(request.id), role.value) from None
        except OptimisticLockError:
            logger.warning(
                "approval_version_conflict",
                extra={"approval_id": str(request.id), "expected_version": request.version},
            )
            raise

        logger.info(
            "approval_action_recorded",
            extra={
                "approval_id": str(request.id),
                "kind": kind.value,
                "role": role.name,
                "actor_id": str(actor_id),
                "new_status": new_status.value,
                "version": request.version + 1,
            },
        )
        return self._reload(request.id).to_dto()

    # -- auto-action bookkeeping -------------------------------------------

    def executed_actions(self, approval_id: UUID) -> frozenset[str]:
        rows = self.session.execute(
            select(AutoActionExecutionModel.action_id).where(
                AutoActionExecutionModel.approval_id == approval_id
            )
        ).scalars()
        return frozenset(rows)

    def mark_action_executed(self, approval_id: UUID, action_id: str) -> None:
        """Insert the exactly-once marker.  IntegrityError if already present."""
        self.session.add(
            AutoActionExecutionModel(
                approval_id=approval_id,
                action_id=action_id,
                executed_at=self.clock.now(),
            )
        )
        self.session.flush()

    # -- internals ---------------------------------------------------------

    def _load(self, approval_id: UUID, lock: bool) -> ApprovalRequestModel:
        stmt = select(ApprovalRequestModel).where(ApprovalRequestModel.id == approval_id)
        if lock:
            stmt = stmt.with_for_update()
        stmt = stmt.execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(approval_id))
        return model

    def _reload(self, approval_id: UUID) -> ApprovalRequestModel:
        model = self.session.get(ApprovalRequestModel, approval_id)
        if model is not None:
            self.session.expire(model)
            return model
        return self._load(approval_id, lock=False)
