"""
Workflow configuration schema.

Defines the human-authored, reviewable source artifact for the approval
workflow and ledger policy.  YAML is parsed into these types by the loader,
checked by the validator, and turned into kernel types by the bridges.

Roles and kinds are kept as the strings the YAML uses; the validator is
where they are checked against the kernel's closed enumerations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class AutoActionDef:
    """One auto-action a stage may fire on full approval."""

    action_id: str
    name: str
    kind: str  # create_task | set_case_status | convert_to_project
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StageDef:
    """One gated workflow stage."""

    key: str
    name: str
    required_roles: tuple[str, ...]
    auto_actions: tuple[str, ...] = ()


@dataclass(frozen=True)
class LedgerPolicyDef:
    """Who posts ledger transactions straight to approved."""

    privileged_roles: tuple[str, ...] = ("ACCOUNTS_TEAM", "SUPER_ADMIN")
    general_category: str = "General"


@dataclass(frozen=True)
class WorkflowConfigDef:
    """A complete, versioned workflow configuration."""

    config_id: str
    version: int
    stages: tuple[StageDef, ...]
    auto_actions: tuple[AutoActionDef, ...] = ()
    ledger: LedgerPolicyDef = field(default_factory=LedgerPolicyDef)
    checksum: str = ""
    source_path: str | None = None
