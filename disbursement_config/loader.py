"""
Configuration Loader (``disbursement_config.loader``).

Responsibility
--------------
Loads the workflow YAML document and parses it into a frozen
``WorkflowConfig``.  Runtime callers go through
``disbursement_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from disbursement_config.schema import WorkflowConfig
from disbursement_kernel.domain.types import Priority

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field: str) -> Decimal:
    # YAML floats go through str() so 20000.5 stays 20000.5
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number, got {value!r}")
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field} must be a number, got {value!r}") from None
    if not parsed.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return parsed


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """
    Parse a ``WorkflowConfig`` from a dict.

    Required keys: ``config_id``, ``version``, ``workflow.approval_threshold``.

    Raises:
        KeyError: if required keys are missing.
        ValueError: if a value is out of range or malformed.
    """
    workflow = data["workflow"]
    threshold = parse_decimal(workflow["approval_threshold"], "approval_threshold")
    if threshold <= 0:
        raise ValueError(f"approval_threshold must be positive, got {threshold}")

    requests = data.get("requests", {})
    currency = requests.get("currency", "PHP")
    if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
        raise ValueError(f"currency must be a 3-letter ISO code, got {currency!r}")

    prefix = requests.get("id_prefix", "REQ")
    if not isinstance(prefix, str) or not prefix:
        raise ValueError(f"id_prefix must be a non-empty string, got {prefix!r}")

    width = requests.get("id_width", 3)
    if isinstance(width, bool) or not isinstance(width, int) or width < 1:
        raise ValueError(f"id_width must be a positive integer, got {width!r}")

    return WorkflowConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        approval_threshold=threshold,
        currency=currency,
        request_id_prefix=prefix,
        request_id_width=width,
        default_priority=Priority(requests.get("default_priority", Priority.MEDIUM.value)),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
