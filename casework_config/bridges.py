"""
Config -> Kernel Bridges.

Functions that turn a validated ``WorkflowConfigDef`` into the kernel types
the services consume.  They live here (the producer) because the kernel
must never import casework_config.

Usage:
    from casework_config import get_active_config
    from casework_config.bridges import build_ledger_policy, build_stage_table

    config = get_active_config()
    stages = build_stage_table(config)
    policy = build_ledger_policy(config)
"""

from __future__ import annotations

from types import MappingProxyType

from casework_kernel.domain.approval import (
    AutoActionKind,
    AutoActionSpec,
    StageTable,
    WorkflowStage,
)
from casework_kernel.domain.ledger import LedgerPolicy
from casework_kernel.domain.roles import parse_roles

from casework_config.schema import AutoActionDef, WorkflowConfigDef


def _build_action(action: AutoActionDef) -> AutoActionSpec:
    params = dict(action.params)
    if "status" in params:
        params["status"] = str(params["status"]).lower()
    return AutoActionSpec(
        action_id=action.action_id,
        name=action.name,
        kind=AutoActionKind(action.kind),
        params=MappingProxyType(params),
    )


def build_stage_table(config: WorkflowConfigDef) -> StageTable:
    """Frozen stage table; required roles deduplicated in configured order."""
    stages = tuple(
        WorkflowStage(
            key=stage.key,
            name=stage.name,
            required_roles=parse_roles(stage.required_roles),
            auto_actions=stage.auto_actions,
        )
        for stage in config.stages
    )
    actions = tuple(_build_action(a) for a in config.auto_actions)
    return StageTable(stages, actions)


def build_ledger_policy(config: WorkflowConfigDef) -> LedgerPolicy:
    return LedgerPolicy(
        privileged_roles=frozenset(parse_roles(config.ledger.privileged_roles)),
        general_category=config.ledger.general_category,
    )
