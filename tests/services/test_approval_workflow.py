"""
Tests for ApprovalWorkflowEngine.

Tests cover:
- initiate: PENDING with configured roles, unknown stage
- approve: partial vs. full quorum, one vote per role, foreign roles,
  role directory lookup, approval on a resolved request
- reject: terminal, blank reason, votes after rejection
- auto-actions: run once on quorum, failure leaves the request APPROVED,
  retry runs only what is left
- payment gate: every (verified, status) combination
- auto-actions wait for a caller-owned commit
- mirrors and notification sinks are best-effort
- recorded votes and requests are append-only
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from casework_kernel.domain.activity import ActivityType
from casework_kernel.domain.approval import ApprovalStatus
from casework_kernel.domain.case import CaseStatus
from casework_kernel.domain.roles import UserRole
from casework_kernel.exceptions import (
    AlreadyApprovedByRoleError,
    ApprovalAlreadyResolvedError,
    ApprovalNotApprovedError,
    ApprovalNotFoundError,
    AutoActionFailedError,
    ImmutabilityViolationError,
    InvalidStatusError,
    InvalidTransactionError,
    PaymentNotVerifiedError,
    UnauthorizedRoleError,
    UnknownRoleError,
    UnknownStageError,
)
from casework_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from casework_kernel.selectors import ActivitySelector, ApprovalSelector, CaseSelector
from casework_services import ApprovalWorkflowEngine


@pytest.fixture
def requester(actors):
    return actors[UserRole.SALES_GENERAL_MANAGER]


@pytest.fixture
def initiate(workflow, make_case, requester, clock):
    """Open a case and initiate ``stage`` on it."""

    def _initiate(stage: str, case=None):
        case = case or make_case()
        clock.tick()
        return case, workflow.initiate(case.id, stage, requester.id, requester.name)

    return _initiate


@pytest.fixture
def verify(payments, session, actors):
    def _verify(case_id, amount=Decimal("50000")):
        accounts = actors[UserRole.ACCOUNTS_TEAM]
        case = payments.verify_payment(
            case_id, amount, accounts.id, accounts.name, UserRole.ACCOUNTS_TEAM,
        )
        session.commit()
        return case

    return _verify


class TestInitiate:
    def test_creates_pending_request_with_stage_roles(self, initiate, session, sink):
        case, request = initiate("SITE_VISIT")

        assert request.status == ApprovalStatus.PENDING
        assert request.case_id == case.id
        assert request.stage_name == "Site Visit"
        assert request.required_roles == (UserRole.SITE_ENGINEER, UserRole.SALES_TEAM_MEMBER)
        assert request.approvals == ()
        assert request.version == 1

        stored = ApprovalSelector(session).get(request.id)
        assert stored.status == ApprovalStatus.PENDING
        assert [r.type for r in sink.records] == [ActivityType.APPROVAL_INITIATED]

    def test_unknown_stage_writes_nothing(self, workflow, make_case, requester, session):
        case = make_case()
        with pytest.raises(UnknownStageError):
            workflow.initiate(case.id, "DEMOLITION", requester.id, requester.name)
        assert ApprovalSelector(session).history_for_case(case.id) == []

    def test_mirror_written_to_case(self, initiate, session):
        case, request = initiate("DRAWING")
        mirror = CaseSelector(session).get(case.id).approvals_mirror
        assert len(mirror) == 1
        assert mirror[0]["id"] == str(request.id)
        assert mirror[0]["status"] == "pending"

    def test_logs_initiation(self, initiate, captured_logs):
        _, request = initiate("BOQ")
        logs = [r for r in captured_logs() if r["message"] == "approval_initiated"]
        assert logs
        assert logs[0]["approval_id"] == str(request.id)
        assert logs[0]["stage"] == "BOQ"


class TestApprove:
    def test_partial_approval_stays_pending(self, initiate, workflow, actors, session):
        case, request = initiate("SITE_VISIT")
        engineer = actors[UserRole.SITE_ENGINEER]

        outcome = workflow.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER)

        assert outcome.request.status == ApprovalStatus.PENDING
        assert not outcome.became_approved
        assert outcome.executed_actions == ()
        assert outcome.request.missing_roles == (UserRole.SALES_TEAM_MEMBER,)
        assert outcome.request.version == 2
        assert CaseSelector(session).tasks(case.id) == []

    def test_full_quorum_approves_and_runs_actions(self, initiate, approve_all, session, sink):
        case, request = initiate("SITE_VISIT")

        outcome = approve_all(request)

        assert outcome.request.status == ApprovalStatus.APPROVED
        assert outcome.became_approved
        assert outcome.executed_actions == ("create_drawing_task",)
        assert outcome.request.resolved_at is not None

        tasks = CaseSelector(session).tasks(case.id)
        assert [(t.title, t.description, t.source_stage) for t in tasks] == [
            ("Drawing", "Create detailed drawings", "SITE_VISIT"),
        ]
        types = [r.type for r in sink.records]
        assert types.count(ActivityType.APPROVAL_GRANTED) == 2
        assert ActivityType.TASK_CREATED in types
        assert types[-1] == ActivityType.STAGE_COMPLETED

    def test_approval_order_does_not_matter(self, initiate, workflow, actors, clock):
        _, request = initiate("DRAWING")
        for role in reversed(request.required_roles):
            clock.tick()
            actor = actors[role]
            outcome = workflow.approve(request.id, actor.id, actor.name, role)
        assert outcome.request.status == ApprovalStatus.APPROVED

    def test_same_role_cannot_vote_twice(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        engineer = actors[UserRole.SITE_ENGINEER]
        workflow.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER)

        with pytest.raises(AlreadyApprovedByRoleError) as exc_info:
            workflow.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER)
        assert exc_info.value.role == UserRole.SITE_ENGINEER.value

    def test_two_people_with_one_role_share_a_vote(self, initiate, workflow, make_actor, session):
        _, request = initiate("SITE_VISIT")
        first = make_actor(UserRole.SITE_ENGINEER, 1)
        second = make_actor(UserRole.SITE_ENGINEER, 2)
        workflow.approve(request.id, first.id, first.name, first.role)

        with pytest.raises(AlreadyApprovedByRoleError):
            workflow.approve(request.id, second.id, second.name, second.role)

        stored = ApprovalSelector(session).get(request.id)
        assert stored.status == ApprovalStatus.PENDING
        assert len(stored.approvals) == 1

    def test_foreign_role_refused_without_change(self, initiate, workflow, actors, session):
        _, request = initiate("PAYMENT")
        outsider = actors[UserRole.DRAWING_TEAM]

        with pytest.raises(UnauthorizedRoleError) as exc_info:
            workflow.approve(request.id, outsider.id, outsider.name, UserRole.DRAWING_TEAM)
        assert exc_info.value.code == "UNAUTHORIZED_ROLE"

        stored = ApprovalSelector(session).get(request.id)
        assert stored.approvals == ()
        assert stored.version == 1

    def test_role_from_directory(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        sales = actors[UserRole.SALES_TEAM_MEMBER]
        outcome = workflow.approve(request.id, sales.id, sales.name)
        assert outcome.request.approved_roles == frozenset({UserRole.SALES_TEAM_MEMBER})

    def test_free_form_role_string_is_parsed(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        sales = actors[UserRole.SALES_TEAM_MEMBER]
        outcome = workflow.approve(request.id, sales.id, sales.name, "sales team member")
        assert outcome.request.approved_roles == frozenset({UserRole.SALES_TEAM_MEMBER})

    def test_unknown_role_string(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        sales = actors[UserRole.SALES_TEAM_MEMBER]
        with pytest.raises(UnknownRoleError):
            workflow.approve(request.id, sales.id, sales.name, "Salesperson")

    def test_unknown_approval(self, workflow, actors, session):
        engineer = actors[UserRole.SITE_ENGINEER]
        with pytest.raises(ApprovalNotFoundError):
            workflow.approve(uuid4(), engineer.id, engineer.name, UserRole.SITE_ENGINEER)

    def test_no_role_and_no_directory(self, session, stage_table, clock, initiate):
        _, request = initiate("SITE_VISIT")
        engine = ApprovalWorkflowEngine(session, stage_table, clock=clock)
        with pytest.raises(UnknownRoleError):
            engine.approve(request.id, uuid4(), "Nobody")


class TestReject:
    def test_single_rejection_is_terminal(self, initiate, workflow, actors, session, sink):
        _, request = initiate("QUOTATION")
        admin = actors[UserRole.SUPER_ADMIN]

        rejected = workflow.reject(
            request.id, admin.id, admin.name, UserRole.SUPER_ADMIN, reason="  Price too low ",
        )

        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.resolved_at is not None
        assert rejected.rejections[0].comment == "Price too low"
        assert sink.of_type(ActivityType.APPROVAL_REJECTED)[0].metadata["reason"] == "Price too low"

        sales = actors[UserRole.SALES_TEAM_MEMBER]
        with pytest.raises(ApprovalAlreadyResolvedError):
            workflow.approve(request.id, sales.id, sales.name, UserRole.SALES_TEAM_MEMBER)
        with pytest.raises(ApprovalAlreadyResolvedError):
            workflow.reject(request.id, sales.id, sales.name, UserRole.SALES_TEAM_MEMBER, "No")

        stored = ApprovalSelector(session).get(request.id)
        assert stored.status == ApprovalStatus.REJECTED
        assert stored.approvals == ()
        assert len(stored.rejections) == 1

    def test_rejection_after_partial_approval(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        engineer = actors[UserRole.SITE_ENGINEER]
        sales = actors[UserRole.SALES_TEAM_MEMBER]
        workflow.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER)

        rejected = workflow.reject(
            request.id, sales.id, sales.name, UserRole.SALES_TEAM_MEMBER, "Client cancelled",
        )
        assert rejected.status == ApprovalStatus.REJECTED
        assert rejected.approved_roles == frozenset({UserRole.SITE_ENGINEER})

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_blank_reason_refused(self, initiate, workflow, actors, session, reason):
        _, request = initiate("SITE_VISIT")
        engineer = actors[UserRole.SITE_ENGINEER]

        with pytest.raises(InvalidTransactionError) as exc_info:
            workflow.reject(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER, reason)
        assert exc_info.value.field == "reason"
        assert ApprovalSelector(session).get(request.id).status == ApprovalStatus.PENDING

    def test_foreign_role_cannot_reject(self, initiate, workflow, actors):
        _, request = initiate("SITE_VISIT")
        accounts = actors[UserRole.ACCOUNTS_TEAM]
        with pytest.raises(UnauthorizedRoleError):
            workflow.reject(request.id, accounts.id, accounts.name, UserRole.ACCOUNTS_TEAM, "No")

    def test_approved_request_cannot_be_rejected(self, initiate, approve_all, workflow, actors):
        _, request = initiate("BOQ")
        approve_all(request)
        qs = actors[UserRole.QUOTATION_TEAM]
        with pytest.raises(ApprovalAlreadyResolvedError):
            workflow.reject(request.id, qs.id, qs.name, UserRole.QUOTATION_TEAM, "Too late")


class TestAutoActions:
    def test_quotation_sets_case_status(self, initiate, approve_all, session):
        case, request = initiate("QUOTATION")
        outcome = approve_all(request)
        assert outcome.executed_actions == ("send_to_client",)
        assert CaseSelector(session).get(case.id).status == CaseStatus.QUOTATION_SENT

    def test_actions_run_exactly_once(self, initiate, approve_all, workflow, session):
        case, request = initiate("EXECUTION")
        approve_all(request)

        outcome = workflow.retry_auto_actions(request.id)

        assert outcome.executed_actions == ()
        assert len(CaseSelector(session).tasks(case.id)) == 1

    def test_retry_refused_for_pending_request(self, initiate, workflow):
        _, request = initiate("EXECUTION")
        with pytest.raises(ApprovalNotApprovedError):
            workflow.retry_auto_actions(request.id)

    def test_failed_action_keeps_approval(self, initiate, approve_all, session, sink):
        case, request = initiate("PAYMENT")

        with pytest.raises(AutoActionFailedError) as exc_info:
            approve_all(request)

        assert exc_info.value.action_id == "convert_to_project"
        assert exc_info.value.cause_code == "PAYMENT_NOT_VERIFIED"
        assert ApprovalSelector(session).get(request.id).status == ApprovalStatus.APPROVED
        assert not CaseSelector(session).get(case.id).is_project

        failures = ActivitySelector(session).for_case(case.id, ActivityType.AUTO_ACTION_FAILED)
        assert len(failures) == 1
        assert failures[0].metadata["cause_code"] == "PAYMENT_NOT_VERIFIED"
        assert sink.of_type(ActivityType.STAGE_COMPLETED) == []
        assert len(sink.of_type(ActivityType.AUTO_ACTION_FAILED)) == 1

    def test_retry_after_fixing_precondition(
        self, initiate, approve_all, workflow, verify, session,
    ):
        case, request = initiate("PAYMENT")
        with pytest.raises(AutoActionFailedError):
            approve_all(request)

        verify(case.id)
        outcome = workflow.retry_auto_actions(request.id)

        assert outcome.executed_actions == ("convert_to_project",)
        converted = CaseSelector(session).get(case.id)
        assert converted.is_project
        assert converted.project_start_date is not None

        again = workflow.retry_auto_actions(request.id)
        assert again.executed_actions == ()

    def test_caller_owned_commit_defers_actions(
        self, session, stage_table, clock, role_directory, initiate, actors, sink, captured_logs,
    ):
        case, request = initiate("EXECUTION")
        engine = ApprovalWorkflowEngine(
            session, stage_table, clock=clock, role_directory=role_directory,
            sinks=[sink], auto_commit=False,
        )

        outcome = None
        for role in request.required_roles:
            clock.tick()
            actor = actors[role]
            outcome = engine.approve(request.id, actor.id, actor.name, role)

        assert outcome.became_approved
        assert outcome.executed_actions == ()
        assert CaseSelector(session).tasks(case.id) == []
        assert any(r["message"] == "auto_actions_deferred" for r in captured_logs())
        assert sink.of_type(ActivityType.STAGE_COMPLETED) == []

        session.commit()
        retried = engine.retry_auto_actions(request.id)
        session.commit()

        assert retried.executed_actions == ("project_monitoring",)
        assert len(CaseSelector(session).tasks(case.id)) == 1
        assert len(sink.of_type(ActivityType.STAGE_COMPLETED)) == 1

    def test_rolled_back_approval_runs_no_actions(
        self, session, stage_table, clock, role_directory, initiate, actors,
    ):
        case, request = initiate("EXECUTION")
        engine = ApprovalWorkflowEngine(
            session, stage_table, clock=clock, role_directory=role_directory,
            auto_commit=False,
        )
        for role in request.required_roles:
            actor = actors[role]
            engine.approve(request.id, actor.id, actor.name, role)

        session.rollback()

        assert ApprovalSelector(session).get(request.id).status == ApprovalStatus.PENDING
        assert CaseSelector(session).tasks(case.id) == []


class TestPaymentGate:
    def test_unverified_lead_is_blocked_on_payment(self, workflow, make_case, session):
        case = make_case(status=CaseStatus.LEAD)
        with pytest.raises(PaymentNotVerifiedError):
            workflow.convert_to_project(case.id)
        assert not CaseSelector(session).get(case.id).is_project

    def test_payment_checked_before_status(self, workflow, make_case, session):
        case = make_case(status=CaseStatus.WAITING_FOR_PLANNING)
        with pytest.raises(PaymentNotVerifiedError):
            workflow.convert_to_project(case.id)
        stored = CaseSelector(session).get(case.id)
        assert stored.status == CaseStatus.WAITING_FOR_PLANNING
        assert not stored.is_project

    def test_verified_but_wrong_status(self, workflow, make_case, verify, cases, session):
        case = make_case()
        verify(case.id)
        cases.set_status(case.id, CaseStatus.EXECUTION)
        session.commit()

        with pytest.raises(InvalidStatusError) as exc_info:
            workflow.convert_to_project(case.id)
        assert exc_info.value.current_status == "execution"
        assert exc_info.value.required_status == "waiting_for_planning"
        assert not CaseSelector(session).get(case.id).is_project

    def test_verified_and_waiting_converts(self, workflow, make_case, verify, session, sink):
        case = make_case()
        verify(case.id)

        converted = workflow.convert_to_project(case.id)

        assert converted.is_project
        assert converted.project_start_date is not None
        assert CaseSelector(session).get(case.id).is_project
        assert sink.of_type(ActivityType.PROJECT_CONVERTED)

    def test_conversion_is_idempotent(self, workflow, make_case, verify):
        case = make_case()
        verify(case.id)
        first = workflow.convert_to_project(case.id)
        second = workflow.convert_to_project(case.id)
        assert second.is_project
        assert second.project_start_date == first.project_start_date


class TestBestEffortSideChannels:
    def test_failing_sink_does_not_fail_the_approval(
        self, session, stage_table, clock, role_directory, initiate, actors, captured_logs,
    ):
        class ExplodingSink:
            def deliver(self, record):
                raise RuntimeError("smtp down")

        _, request = initiate("SITE_VISIT")
        engine = ApprovalWorkflowEngine(
            session, stage_table, clock=clock, role_directory=role_directory,
            sinks=[ExplodingSink()],
        )
        engineer = actors[UserRole.SITE_ENGINEER]

        outcome = engine.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER)

        assert outcome.request.approved_roles == frozenset({UserRole.SITE_ENGINEER})
        assert any(r["message"] == "notification_delivery_failed" for r in captured_logs())

    def test_request_on_missing_case_skips_mirror(self, workflow, requester, captured_logs):
        request = workflow.initiate(uuid4(), "SITE_VISIT", requester.id, requester.name)
        assert request.status == ApprovalStatus.PENDING
        assert any(r["message"] == "case_mirror_skipped" for r in captured_logs())


class TestAppendOnlyVotes:
    @pytest.fixture
    def recorded_vote(self, initiate, workflow, actors, session):
        _, request = initiate("EXECUTION")
        engineer = actors[UserRole.SITE_ENGINEER]
        workflow.approve(request.id, engineer.id, engineer.name, UserRole.SITE_ENGINEER, "Looks good")
        action = session.execute(
            select(ApprovalActionModel).where(ApprovalActionModel.approval_id == request.id)
        ).scalar_one()
        return request, action

    def test_vote_cannot_be_edited(self, recorded_vote, session):
        _, action = recorded_vote
        action.comment = "Rewritten later"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_vote_cannot_be_deleted(self, recorded_vote, session):
        _, action = recorded_vote
        session.delete(action)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_request_cannot_be_deleted(self, recorded_vote, session):
        request, _ = recorded_vote
        session.delete(session.get(ApprovalRequestModel, request.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
        assert ApprovalSelector(session).get(request.id).approved_roles == frozenset(
            {UserRole.SITE_ENGINEER}
        )
