"""
casework_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the bridged kernel types
    (``StageTable``, ``LedgerPolicy``) and never read YAML or environment
    variables themselves.

Architecture position:
    Configuration -- sits above ``casework_kernel`` and below
    ``casework_services``.  The kernel MUST NEVER import from
    ``casework_config``; ``bridges`` translates config into kernel types.

Invariants enforced:
    - A configuration is returned only after ``validate_workflow_config``
      reports no errors.
    - Deterministic identity: the same YAML content always yields the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- structural validation failures (all listed).

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CASEWORK_CONFIG_TRACE`` log entry with the config id, version,
    checksum, source path and stage count, tying workflow behaviour to the
    exact configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from casework_config.loader import load_workflow_config
from casework_config.schema import WorkflowConfigDef
from casework_config.validator import validate_workflow_config

_logger = logging.getLogger("casework.config")


def get_active_config(path: str | Path | None = None) -> WorkflowConfigDef:
    """Load, validate and return the workflow configuration.

    Args:
        path: Override path to the YAML file.  Defaults to
            ``$CASEWORK_CONFIG`` or the packaged ``defaults/workflow.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config = load_workflow_config(path)

    validation = validate_workflow_config(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "CASEWORK_CONFIG_TRACE",
        extra={
            "trace_type": "CASEWORK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source_path": config.source_path,
            "stage_count": len(config.stages),
            "auto_action_count": len(config.auto_actions),
        },
    )
    return config


__all__ = ["WorkflowConfigDef", "get_active_config"]
