"""
Tests for role parsing and the immutable stage table.

Tests cover:
- parse_role: member, display value, name, case/whitespace, rejection
- parse_roles: order kept, duplicates dropped
- InMemoryRoleDirectory lookups
- StageTable: lookup, unknown stage, undefined auto-action references, immutability
"""

from uuid import uuid4

import pytest

from casework_kernel.domain.approval import (
    AutoActionKind,
    AutoActionSpec,
    StageTable,
    WorkflowStage,
)
from casework_kernel.domain.roles import (
    InMemoryRoleDirectory,
    UserRole,
    parse_role,
    parse_roles,
)
from casework_kernel.exceptions import (
    UnknownAutoActionError,
    UnknownRoleError,
    UnknownStageError,
    ValidationError,
)


class TestParseRole:
    @pytest.mark.parametrize(
        "value",
        [
            UserRole.ACCOUNTS_TEAM,
            "Accounts Team",
            "ACCOUNTS_TEAM",
            "accounts_team",
            "  accounts   team ",
        ],
    )
    def test_accepts_member_value_and_name(self, value):
        assert parse_role(value) is UserRole.ACCOUNTS_TEAM

    @pytest.mark.parametrize("value", ["Accountant", "", "ADMIN", None, 3])
    def test_rejects_anything_else(self, value):
        with pytest.raises(UnknownRoleError):
            parse_role(value)

    def test_unknown_role_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_role("Janitor")
        assert exc_info.value.code == "UNKNOWN_ROLE"

    def test_parse_roles_keeps_order_and_drops_duplicates(self):
        roles = parse_roles(["SITE_ENGINEER", "Sales Team Member", "site engineer"])
        assert roles == (UserRole.SITE_ENGINEER, UserRole.SALES_TEAM_MEMBER)


class TestRoleDirectory:
    def test_lookup_and_assign(self):
        a, b = uuid4(), uuid4()
        directory = InMemoryRoleDirectory({a: "Drawing Team"})
        directory.assign(b, UserRole.SUPER_ADMIN)

        assert directory.role_of(a) is UserRole.DRAWING_TEAM
        assert directory.role_of(b) is UserRole.SUPER_ADMIN

    def test_unknown_actor_raises(self):
        with pytest.raises(UnknownRoleError):
            InMemoryRoleDirectory().role_of(uuid4())


def _table() -> StageTable:
    return StageTable(
        [
            WorkflowStage(
                key="SITE_VISIT",
                name="Site Visit",
                required_roles=(UserRole.SITE_ENGINEER, UserRole.SALES_TEAM_MEMBER),
                auto_actions=("drawing_task",),
            ),
        ],
        [
            AutoActionSpec(
                action_id="drawing_task",
                name="Create Drawing Task",
                kind=AutoActionKind.CREATE_TASK,
                params={"title": "Drawing"},
            ),
        ],
    )


class TestStageTable:
    def test_lookup(self):
        table = _table()
        stage = table.stage("SITE_VISIT")
        assert stage.name == "Site Visit"
        assert "SITE_VISIT" in table
        assert len(table) == 1
        assert table.stage_keys == ("SITE_VISIT",)
        assert [a.action_id for a in table.actions_for("SITE_VISIT")] == ["drawing_task"]

    def test_unknown_stage(self):
        with pytest.raises(UnknownStageError) as exc_info:
            _table().stage("DEMOLITION")
        assert exc_info.value.stage == "DEMOLITION"

    def test_undefined_action_reference_is_rejected_at_build(self):
        with pytest.raises(UnknownAutoActionError):
            StageTable(
                [WorkflowStage("X", "X", (UserRole.SUPER_ADMIN,), ("missing",))],
            )

    def test_stage_definitions_are_frozen(self):
        stage = _table().stage("SITE_VISIT")
        with pytest.raises(AttributeError):
            stage.required_roles = ()  # type: ignore[misc]

    def test_mapping_cannot_be_mutated(self):
        table = _table()
        with pytest.raises(TypeError):
            table._stages["NEW"] = table.stage("SITE_VISIT")  # type: ignore[index]
