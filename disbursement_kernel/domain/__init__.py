"""
Pure domain layer.

Value objects, the routing policy, the timeline recorder and the request
aggregate.  Nothing here touches SQLAlchemy, the database or the system
clock.
"""

from disbursement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from disbursement_kernel.domain.request import DisbursementRequest
from disbursement_kernel.domain.routing import (
    DISBURSEMENT_WORKFLOW,
    RoutingOutcome,
    RoutingPolicy,
)
from disbursement_kernel.domain.timeline import TimelineEvent
from disbursement_kernel.domain.types import (
    TERMINAL_STATUSES,
    ActorRef,
    EventOrigin,
    Priority,
    RequestStatus,
    RequestType,
    Role,
    TimelineDecision,
    User,
    WorkflowAction,
)
from disbursement_kernel.domain.validation import (
    CashAdvanceDetails,
    LiquidationDetails,
    ReimbursementDetails,
    Submission,
)

__all__ = [
    "ActorRef",
    "CashAdvanceDetails",
    "Clock",
    "DISBURSEMENT_WORKFLOW",
    "DeterministicClock",
    "DisbursementRequest",
    "EventOrigin",
    "LiquidationDetails",
    "Priority",
    "ReimbursementDetails",
    "RequestStatus",
    "RequestType",
    "Role",
    "RoutingOutcome",
    "RoutingPolicy",
    "Submission",
    "SystemClock",
    "TERMINAL_STATUSES",
    "TimelineDecision",
    "TimelineEvent",
    "User",
    "WorkflowAction",
]
