"""
disbursement_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It returns a frozen ``WorkflowConfig``.

Invariants enforced:
    - Single entrypoint: the engine never reads YAML or environment
      variables itself.
    - Deterministic: the same document always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the selected YAML file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid settings.

Audit relevance:
    Every successful call logs ``disbursement_config_loaded`` with the
    config_id, version and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from disbursement_config.loader import load_yaml_file, parse_workflow_config
from disbursement_config.schema import WorkflowConfig
from disbursement_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "DISBURSEMENT_CONFIG"
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> WorkflowConfig:
    """Load the active workflow configuration.

    Resolution order: ``path``, then ``$DISBURSEMENT_CONFIG``, then the
    packaged ``sets/default.yaml``.
    """
    source = Path(path or os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_PATH)
    config = parse_workflow_config(load_yaml_file(source))

    _logger.info(
        "disbursement_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
            "approval_threshold": config.approval_threshold,
        },
    )
    return config


__all__ = ["CONFIG_ENV_VAR", "WorkflowConfig", "get_active_config"]
