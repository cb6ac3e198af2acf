"""
Configuration Validator (``casework_config.validator``).

Responsibility
--------------
Checks a parsed ``WorkflowConfigDef`` before it is bridged into kernel
types, collecting every problem rather than stopping at the first.

Architecture position
---------------------
**Config layer** -- called by ``get_active_config()`` after loading.
Uses the kernel's role and status enumerations as the closed vocabularies
the YAML must draw from.

Invariants enforced
-------------------
* Stage keys are unique.
* Every stage names at least one required role, and every role name
  parses to a ``UserRole``.
* Every auto-action a stage references is defined; auto-action ids are
  unique; kinds are known; ``create_task`` has a title and
  ``set_case_status`` names a real case status.
* Ledger privileged roles parse to ``UserRole``.

Failure modes
-------------
* Errors  -> configuration MUST NOT be used.
* Warnings (a stage listing the same role twice, an auto-action no stage
  uses)  -> usable but worth review.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from casework_kernel.domain.approval import AutoActionKind
from casework_kernel.domain.case import CaseStatus
from casework_kernel.domain.roles import parse_role
from casework_kernel.exceptions import UnknownRoleError

from casework_config.schema import WorkflowConfigDef


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _check_role(name: str, where: str, result: ConfigValidationResult) -> None:
    try:
        parse_role(name)
    except UnknownRoleError:
        result.add_error(f"{where}: unknown role {name!r}")


def validate_workflow_config(config: WorkflowConfigDef) -> ConfigValidationResult:
    result = ConfigValidationResult()

    if not config.stages:
        result.add_error("configuration defines no stages")

    action_ids: set[str] = set()
    for action in config.auto_actions:
        if action.action_id in action_ids:
            result.add_error(f"duplicate auto-action id {action.action_id!r}")
        action_ids.add(action.action_id)

        try:
            kind = AutoActionKind(action.kind)
        except ValueError:
            result.add_error(f"auto-action {action.action_id}: unknown kind {action.kind!r}")
            continue

        if kind == AutoActionKind.CREATE_TASK and not str(action.params.get("title", "")).strip():
            result.add_error(f"auto-action {action.action_id}: create_task needs a title")
        if kind == AutoActionKind.SET_CASE_STATUS:
            status = action.params.get("status")
            try:
                CaseStatus(str(status).lower())
            except ValueError:
                result.add_error(
                    f"auto-action {action.action_id}: unknown case status {status!r}"
                )

    seen_stages: set[str] = set()
    used_actions: set[str] = set()
    for stage in config.stages:
        if stage.key in seen_stages:
            result.add_error(f"duplicate stage key {stage.key!r}")
        seen_stages.add(stage.key)

        if not stage.required_roles:
            result.add_error(f"stage {stage.key}: required_roles is empty")
        if len(set(stage.required_roles)) != len(stage.required_roles):
            result.add_warning(f"stage {stage.key}: required_roles lists a role twice")
        for role in stage.required_roles:
            _check_role(role, f"stage {stage.key}", result)

        for action_id in stage.auto_actions:
            used_actions.add(action_id)
            if action_id not in action_ids:
                result.add_error(f"stage {stage.key}: unknown auto-action {action_id!r}")

    for unused in sorted(action_ids - used_actions):
        result.add_warning(f"auto-action {unused!r} is not used by any stage")

    for role in config.ledger.privileged_roles:
        _check_role(role, "ledger.privileged_roles", result)
    if not config.ledger.general_category.strip():
        result.add_error("ledger.general_category is blank")

    return result
