"""Read-only queries over the activity log and case records."""

from uuid import UUID

from sqlalchemy import or_, select

from casework_kernel.domain.activity import ActivityRecord, ActivityType
from casework_kernel.domain.case import Case, CaseTask
from casework_kernel.exceptions import CaseNotFoundError
from casework_kernel.models.activity import ActivityLogModel
from casework_kernel.models.case import CaseModel, CaseTaskModel
from casework_kernel.selectors.base import BaseSelector


class ActivitySelector(BaseSelector):
    def for_case(
        self,
        case_id: UUID,
        activity_type: ActivityType | None = None,
    ) -> list[ActivityRecord]:
        """Entries for a case (or the project it became), oldest first."""
        stmt = select(ActivityLogModel).where(
            or_(ActivityLogModel.case_id == case_id, ActivityLogModel.project_id == case_id)
        )
        if activity_type is not None:
            stmt = stmt.where(ActivityLogModel.type == activity_type.value)
        stmt = stmt.order_by(ActivityLogModel.created_at, ActivityLogModel.id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]


class CaseSelector(BaseSelector):
    def get(self, case_id: UUID) -> Case:
        model = self.session.execute(
            select(CaseModel)
            .where(CaseModel.id == case_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise CaseNotFoundError(str(case_id))
        return model.to_dto()

    def tasks(self, case_id: UUID) -> list[CaseTask]:
        rows = self.session.execute(
            select(CaseTaskModel)
            .where(CaseTaskModel.case_id == case_id)
            .order_by(CaseTaskModel.created_at, CaseTaskModel.title)
        ).scalars()
        return [r.to_dto() for r in rows]
