"""Services for the disbursement kernel (write side)."""

from disbursement_kernel.services.sequence_service import SequenceService
from disbursement_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "SequenceService",
    "WorkflowEngine",
]
