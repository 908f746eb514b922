"""
Timeline recorder (``disbursement_kernel.domain.timeline``).

Responsibility
--------------
Map a request's new (status, type) to a human-readable stage label and a
canonical decision code, and build the immutable ``TimelineEvent`` that
records each submission and transition.

Architecture position
---------------------
**Kernel domain layer** -- pure apart from error logging.  The request
aggregate is the only caller that appends the events built here.

Invariants enforced
-------------------
* The stage table covers every reachable (status, type) pair; a missing
  pair logs an error and raises ``UnmappedTimelineStageError``.  There is no
  fallback label.
* ``TimelineEvent`` is frozen.  Corrections are new events, never edits.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID, uuid4

from disbursement_kernel.domain.types import (
    ActorRef,
    EventOrigin,
    RequestStatus,
    RequestType,
    TimelineDecision,
)
from disbursement_kernel.exceptions import UnmappedTimelineStageError
from disbursement_kernel.logging_config import get_logger

logger = get_logger("domain.timeline")

SUBMISSION_STAGE = "Request Submitted"


@dataclass(frozen=True)
class TimelineEvent:
    """One immutable entry in a request's audit trail."""

    event_id: UUID
    stage: str
    decision: TimelineDecision
    actor: ActorRef
    occurred_at: datetime
    origin: EventOrigin = EventOrigin.USER
    comment: str | None = None


_S = RequestStatus
_T = RequestType
_D = TimelineDecision

_STAGES: dict[tuple[RequestStatus, RequestType], tuple[str, TimelineDecision]] = {
    # Manager review (liquidations skip it)
    (_S.PENDING_VALIDATION, _T.REIMBURSEMENT): ("Pending Manager Validation", _D.SUBMITTED),
    (_S.PENDING_VALIDATION, _T.CASH_ADVANCE): ("Pending Manager Validation", _D.SUBMITTED),
    # Finance review
    (_S.PENDING_FINANCE, _T.REIMBURSEMENT): ("Pending Finance Approval", _D.VALIDATED),
    (_S.PENDING_FINANCE, _T.CASH_ADVANCE): ("Pending Finance Approval", _D.VALIDATED),
    (_S.PENDING_FINANCE, _T.LIQUIDATION): ("Pending Finance Approval", _D.VALIDATED),
    # CEO review (liquidations never escalate)
    (_S.PENDING_CEO, _T.REIMBURSEMENT): ("Pending CEO Approval", _D.VALIDATED),
    (_S.PENDING_CEO, _T.CASH_ADVANCE): ("Pending CEO Approval", _D.VALIDATED),
    # Approval
    (_S.APPROVED, _T.REIMBURSEMENT): ("Approved", _D.APPROVED),
    (_S.APPROVED, _T.CASH_ADVANCE): ("Advance Approved", _D.APPROVED),
    (_S.APPROVED, _T.LIQUIDATION): ("Liquidation Approved", _D.APPROVED),
    # Payment
    (_S.PROCESSING_PAYMENT, _T.REIMBURSEMENT): ("Processing Payment", _D.VALIDATED),
    (_S.PROCESSING_PAYMENT, _T.LIQUIDATION): ("Processing Payment", _D.VALIDATED),
    (_S.PAID, _T.REIMBURSEMENT): ("Payment Released", _D.RELEASED),
    (_S.PAID, _T.LIQUIDATION): ("Payment Released", _D.RELEASED),
    # Cash advance lifecycle
    (_S.PENDING_LIQUIDATION, _T.CASH_ADVANCE): ("Advance Released", _D.RELEASED),
    (_S.LIQUIDATED, _T.CASH_ADVANCE): ("Advance Liquidated", _D.LIQUIDATED),
    # Rejection
    (_S.REJECTED, _T.REIMBURSEMENT): ("Request Rejected", _D.REJECTED),
    (_S.REJECTED, _T.CASH_ADVANCE): ("Request Rejected", _D.REJECTED),
    (_S.REJECTED, _T.LIQUIDATION): ("Request Rejected", _D.REJECTED),
}


def reachable_pairs() -> frozenset[tuple[RequestStatus, RequestType]]:
    return frozenset(_STAGES)


def _lookup(status: RequestStatus, request_type: RequestType) -> tuple[str, TimelineDecision]:
    try:
        return _STAGES[(status, request_type)]
    except KeyError:
        logger.error(
            "timeline_stage_unmapped",
            extra={"status": status.value, "request_type": request_type.value},
        )
        raise UnmappedTimelineStageError(status.value, request_type.value) from None


def stage_for(status: RequestStatus, request_type: RequestType) -> str:
    return _lookup(status, request_type)[0]


def decision_for(status: RequestStatus, request_type: RequestType) -> TimelineDecision:
    return _lookup(status, request_type)[1]


def transition_event(
    status: RequestStatus,
    request_type: RequestType,
    actor: ActorRef,
    at: datetime,
    comment: str | None = None,
) -> TimelineEvent:
    """Event for a user action that moved a request into ``status``."""
    stage, decision = _lookup(status, request_type)
    return TimelineEvent(
        event_id=uuid4(),
        stage=stage,
        decision=decision,
        actor=actor,
        occurred_at=at,
        origin=EventOrigin.USER,
        comment=comment,
    )


def submission_event(actor: ActorRef, at: datetime, comment: str | None = None) -> TimelineEvent:
    return TimelineEvent(
        event_id=uuid4(),
        stage=SUBMISSION_STAGE,
        decision=TimelineDecision.SUBMITTED,
        actor=actor,
        occurred_at=at,
        origin=EventOrigin.USER,
        comment=comment,
    )


def liquidation_event(actor: ActorRef, at: datetime, liquidation_id: str) -> TimelineEvent:
    """System event on a cash advance closed by an approved liquidation."""
    stage, decision = _lookup(RequestStatus.LIQUIDATED, RequestType.CASH_ADVANCE)
    return TimelineEvent(
        event_id=uuid4(),
        stage=stage,
        decision=decision,
        actor=actor,
        occurred_at=at,
        origin=EventOrigin.SYSTEM,
        comment=f"Liquidated by {liquidation_id}",
    )
