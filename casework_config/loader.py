"""
Configuration Loader (``casework_config.loader``).

Responsibility
--------------
Locates the workflow YAML, loads it with PyYAML, and parses it into the
frozen ``casework_config.schema`` dataclasses.  Callers at runtime go
through ``casework_config.get_active_config()``, which also validates.

Architecture position
---------------------
**Config layer**.  No dependency on kernel services, engines or the
database.

Invariants enforced
-------------------
* Required keys are never defaulted: a missing ``stages`` list, stage
  ``key`` or auto-action ``id`` raises ``KeyError``.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  form of the loaded document, so the same YAML content always yields the
  same checksum regardless of key order or formatting.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrong shapes (a stage that is not a mapping)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from casework_config.schema import (
    AutoActionDef,
    LedgerPolicyDef,
    StageDef,
    WorkflowConfigDef,
)

CONFIG_ENV_VAR = "CASEWORK_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "workflow.yaml"


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Explicit path, else ``$CASEWORK_CONFIG``, else the packaged default."""
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _as_tuple(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{where}: expected a list, got {type(value).__name__}")
    return tuple(str(v) for v in value)


def parse_auto_action(data: dict[str, Any]) -> AutoActionDef:
    if not isinstance(data, dict):
        raise ValueError(f"auto_action entry must be a mapping, got {data!r}")
    action_id = str(data["id"])
    return AutoActionDef(
        action_id=action_id,
        name=str(data.get("name", action_id)),
        kind=str(data["kind"]),
        params=dict(data.get("params") or {}),
    )


def parse_stage(data: dict[str, Any]) -> StageDef:
    if not isinstance(data, dict):
        raise ValueError(f"stage entry must be a mapping, got {data!r}")
    key = str(data["key"])
    return StageDef(
        key=key,
        name=str(data.get("name", key)),
        required_roles=_as_tuple(data.get("required_roles"), f"stage {key}.required_roles"),
        auto_actions=_as_tuple(data.get("auto_actions"), f"stage {key}.auto_actions"),
    )


def parse_ledger_policy(data: dict[str, Any] | None) -> LedgerPolicyDef:
    if not data:
        return LedgerPolicyDef()
    defaults = LedgerPolicyDef()
    return LedgerPolicyDef(
        privileged_roles=_as_tuple(
            data.get("privileged_roles", defaults.privileged_roles),
            "ledger.privileged_roles",
        ),
        general_category=str(data.get("general_category", defaults.general_category)),
    )


def parse_workflow_config(
    data: dict[str, Any],
    source_path: str | None = None,
) -> WorkflowConfigDef:
    """Parse a loaded YAML document into a ``WorkflowConfigDef``."""
    stages = data["stages"]
    if not isinstance(stages, list):
        raise ValueError("stages: expected a list")
    return WorkflowConfigDef(
        config_id=str(data.get("config_id", "casework")),
        version=int(data.get("version", 1)),
        stages=tuple(parse_stage(s) for s in stages),
        auto_actions=tuple(parse_auto_action(a) for a in data.get("auto_actions") or ()),
        ledger=parse_ledger_policy(data.get("ledger")),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def load_workflow_config(path: str | Path | None = None) -> WorkflowConfigDef:
    """Load and parse the workflow configuration (unvalidated)."""
    resolved = resolve_config_path(path)
    return parse_workflow_config(load_yaml_file(resolved), source_path=str(resolved))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
