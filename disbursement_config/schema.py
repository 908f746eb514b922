"""
Workflow configuration schema.

The YAML document under ``disbursement_config/sets/`` is parsed by the
loader into this frozen dataclass; nothing else carries configuration at
runtime.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from disbursement_kernel.domain.types import Priority


@dataclass(frozen=True)
class WorkflowConfig:
    """Tunable parameters of the approval workflow."""

    config_id: str
    version: int
    approval_threshold: Decimal
    currency: str = "PHP"
    request_id_prefix: str = "REQ"
    request_id_width: int = 3
    default_priority: Priority = Priority.MEDIUM
    checksum: str = ""
