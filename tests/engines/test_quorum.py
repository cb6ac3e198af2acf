"""
Tests for the pure quorum engine.

Tests cover:
- evaluate_quorum: coverage, missing roles in configured order, rejection wins
- next_status: partial, completing and rejecting actions; terminal absorption
- Property: for every required role set up to size 5 and every approval
  order, the request is APPROVED exactly when the approving roles cover
  the required set.
"""

from itertools import permutations
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from casework_engines.quorum import evaluate_quorum, is_covered, next_status
from casework_kernel.domain.approval import (
    ActionKind,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
)
from casework_kernel.domain.clock import DeterministicClock
from casework_kernel.domain.roles import UserRole

ALL_ROLES = tuple(UserRole)


def make_request(
    required: tuple[UserRole, ...],
    approved: tuple[UserRole, ...] = (),
    status: ApprovalStatus = ApprovalStatus.PENDING,
) -> ApprovalRequest:
    clock = DeterministicClock()
    return ApprovalRequest(
        id=uuid4(),
        case_id=uuid4(),
        stage="STAGE",
        stage_name="Stage",
        status=status,
        requester_id=uuid4(),
        requester_name="Requester",
        required_roles=required,
        approvals=tuple(
            ApprovalActionRecord(
                action_id=uuid4(),
                kind=ActionKind.APPROVE,
                role=role,
                actor_id=uuid4(),
                actor_name=role.value,
                acted_at=clock.tick(),
            )
            for role in approved
        ),
    )


class TestEvaluateQuorum:
    def test_full_coverage_is_approved(self):
        result = evaluate_quorum(
            required_roles=(UserRole.SITE_ENGINEER, UserRole.SALES_TEAM_MEMBER),
            approved_roles={UserRole.SALES_TEAM_MEMBER, UserRole.SITE_ENGINEER},
        )
        assert result.status == ApprovalStatus.APPROVED
        assert result.is_covered
        assert result.missing_roles == ()

    def test_missing_roles_keep_configured_order(self):
        result = evaluate_quorum(
            required_roles=(UserRole.DRAWING_TEAM, UserRole.SITE_ENGINEER, UserRole.SUPER_ADMIN),
            approved_roles={UserRole.SITE_ENGINEER},
        )
        assert result.status == ApprovalStatus.PENDING
        assert result.missing_roles == (UserRole.DRAWING_TEAM, UserRole.SUPER_ADMIN)

    def test_foreign_roles_do_not_count(self):
        result = evaluate_quorum(
            required_roles=(UserRole.ACCOUNTS_TEAM, UserRole.SUPER_ADMIN),
            approved_roles={UserRole.ACCOUNTS_TEAM, UserRole.EXECUTION_TEAM},
        )
        assert result.status == ApprovalStatus.PENDING
        assert result.covered_roles == frozenset({UserRole.ACCOUNTS_TEAM})

    def test_rejection_wins_over_coverage(self):
        result = evaluate_quorum(
            required_roles=(UserRole.ACCOUNTS_TEAM,),
            approved_roles={UserRole.ACCOUNTS_TEAM},
            rejected=True,
        )
        assert result.status == ApprovalStatus.REJECTED

    def test_is_covered(self):
        assert is_covered([UserRole.SITE_ENGINEER], [UserRole.SITE_ENGINEER, UserRole.SUPER_ADMIN])
        assert not is_covered([UserRole.SITE_ENGINEER, UserRole.SUPER_ADMIN], [UserRole.SUPER_ADMIN])


class TestNextStatus:
    def test_partial_approval_stays_pending(self):
        request = make_request((UserRole.DRAWING_TEAM, UserRole.SITE_ENGINEER))
        assert next_status(request, ActionKind.APPROVE, UserRole.DRAWING_TEAM) == ApprovalStatus.PENDING

    def test_last_required_role_approves(self):
        request = make_request(
            (UserRole.DRAWING_TEAM, UserRole.SITE_ENGINEER),
            approved=(UserRole.DRAWING_TEAM,),
        )
        assert next_status(request, ActionKind.APPROVE, UserRole.SITE_ENGINEER) == ApprovalStatus.APPROVED

    def test_single_rejection_rejects(self):
        request = make_request(
            (UserRole.DRAWING_TEAM, UserRole.SITE_ENGINEER),
            approved=(UserRole.DRAWING_TEAM,),
        )
        assert next_status(request, ActionKind.REJECT, UserRole.SITE_ENGINEER) == ApprovalStatus.REJECTED

    @pytest.mark.parametrize("status", [ApprovalStatus.APPROVED, ApprovalStatus.REJECTED])
    def test_terminal_status_is_absorbing(self, status):
        request = make_request((UserRole.SUPER_ADMIN,), status=status)
        assert next_status(request, ActionKind.APPROVE, UserRole.SUPER_ADMIN) == status
        assert next_status(request, ActionKind.REJECT, UserRole.SUPER_ADMIN) == status


# =========================================================================
# Property: APPROVED iff coverage, for every order
# =========================================================================


@settings(max_examples=200, deadline=None)
@given(
    required=st.lists(st.sampled_from(ALL_ROLES), min_size=1, max_size=5, unique=True),
    extra=st.lists(st.sampled_from(ALL_ROLES), max_size=3),
)
def test_quorum_reached_exactly_when_all_required_roles_have_approved(required, extra):
    required_roles = tuple(required)
    voters = list(dict.fromkeys(required_roles + tuple(extra)))

    for order in permutations(voters):
        request = make_request(required_roles)
        approved: list[UserRole] = []
        for role in order:
            if role not in required_roles:
                # Foreign roles are refused upstream; they never change status.
                continue
            status = next_status(request, ActionKind.APPROVE, role)
            approved.append(role)
            assert (status == ApprovalStatus.APPROVED) == set(required_roles).issubset(approved)
            request = make_request(required_roles, tuple(approved), status)
        assert request.status == ApprovalStatus.APPROVED
