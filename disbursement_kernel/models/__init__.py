"""ORM models for the disbursement kernel."""

from disbursement_kernel.models.request import RequestModel, TimelineEventModel
from disbursement_kernel.models.user import UserModel
from disbursement_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "RequestModel",
    "SequenceCounter",
    "TimelineEventModel",
    "UserModel",
]
