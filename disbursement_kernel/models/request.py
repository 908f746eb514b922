"""
Module: disbursement_kernel.models.request
Responsibility: ORM persistence for disbursement requests and their
    timeline events.

Architecture position: Kernel > Models.  May import from db/base.py and
    the domain value objects it converts to and from.

Invariants enforced:
    - Optimistic locking: ``version_id`` is SQLAlchemy's version counter; a
      flush against a row changed by another transaction raises
      StaleDataError (surfaced by the repository as OptimisticLockError).
    - Timeline append-only: UPDATE/DELETE of a timeline row raises
      ImmutabilityViolationError before any SQL is issued.
    - (request_id, seq) is unique; seq is the append position, so the
      oldest-first order survives identical timestamps.

Failure modes:
    - IntegrityError on a duplicate request id or timeline position.
    - ImmutabilityViolationError on timeline UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from disbursement_kernel.db.base import Base, UUIDString
from disbursement_kernel.domain.request import DisbursementRequest
from disbursement_kernel.domain.timeline import TimelineEvent
from disbursement_kernel.domain.types import (
    ActorRef,
    EventOrigin,
    Priority,
    RequestStatus,
    RequestType,
    Role,
    TimelineDecision,
)
from disbursement_kernel.domain.validation import (
    CashAdvanceDetails,
    LiquidationDetails,
    ReimbursementDetails,
)
from disbursement_kernel.exceptions import ImmutabilityViolationError

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestStatus)
_TYPE_VALUES = ", ".join(f"'{t.value}'" for t in RequestType)


class RequestModel(Base):
    """Persistent disbursement request.

    Type-specific details live in nullable columns; only the ones matching
    ``request_type`` are populated.
    """

    __tablename__ = "disbursement_requests"

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_requests_valid_status"),
        CheckConstraint(f"request_type IN ({_TYPE_VALUES})", name="ck_requests_valid_type"),
        CheckConstraint("amount > 0", name="ck_requests_positive_amount"),
        Index("ix_requests_employee", "employee_id", "created_at"),
        Index("ix_requests_status", "status"),
        Index("ix_requests_advance", "advance_id"),
    )

    request_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    employee_id: Mapped[int] = mapped_column(nullable=False)
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    employee_role: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    next_action_by: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Shared optional details
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    company: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Reimbursement
    business_purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    expense_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expense_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Cash advance
    advance_purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_liquidation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    destination: Mapped[str | None] = mapped_column(String(200), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Liquidation
    advance_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actual_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    remaining_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    liquidation_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    events: Mapped[list["TimelineEventModel"]] = relationship(
        "TimelineEventModel",
        back_populates="request",
        primaryjoin="RequestModel.request_id == TimelineEventModel.request_id",
        order_by="TimelineEventModel.seq",
        cascade="save-update, merge",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Request {self.request_id} {self.request_type} status={self.status}>"

    # -- conversion ----------------------------------------------------------

    def to_domain(self) -> DisbursementRequest:
        """Rebuild the aggregate, timeline included."""
        return DisbursementRequest(
            request_id=self.request_id,
            request_type=RequestType(self.request_type),
            submitter=ActorRef(
                actor_id=self.employee_id,
                name=self.employee_name,
                role=Role(self.employee_role),
            ),
            amount=self.amount,
            currency=self.currency,
            category=self.category,
            description=self.description,
            priority=Priority(self.priority),
            details=self._details(),
            status=RequestStatus(self.status),
            next_action_by=frozenset(Role(r) for r in self.next_action_by),
            created_at=self.created_at,
            updated_at=self.updated_at,
            timeline=tuple(e.to_domain() for e in self.events),
        )

    def _details(self):
        rtype = RequestType(self.request_type)
        if rtype is RequestType.REIMBURSEMENT:
            return ReimbursementDetails(
                business_purpose=self.business_purpose,
                expense_start_date=self.expense_start_date,
                expense_end_date=self.expense_end_date,
                department=self.department,
                company=self.company,
            )
        if rtype is RequestType.CASH_ADVANCE:
            return CashAdvanceDetails(
                advance_purpose=self.advance_purpose,
                expected_liquidation_date=self.expected_liquidation_date,
                planned_expense_date=self.planned_expense_date,
                destination=self.destination,
                remarks=self.remarks,
                department=self.department,
                company=self.company,
            )
        return LiquidationDetails(
            advance_id=self.advance_id,
            actual_amount=self.actual_amount,
            liquidation_summary=self.liquidation_summary,
            department=self.department,
            company=self.company,
            remaining_amount=self.remaining_amount,
        )

    @classmethod
    def from_domain(cls, request: DisbursementRequest) -> RequestModel:
        """Create the row for a newly submitted request."""
        model = cls(
            request_id=request.request_id,
            request_type=request.request_type.value,
            employee_id=request.submitter.actor_id,
            employee_name=request.submitter.name,
            employee_role=request.submitter.role.value,
            amount=request.amount,
            currency=request.currency,
            category=request.category,
            description=request.description,
            priority=request.priority.value,
            created_at=request.created_at,
        )
        details = request.details
        model.department = details.department
        model.company = details.company
        if isinstance(details, ReimbursementDetails):
            model.business_purpose = details.business_purpose
            model.expense_start_date = details.expense_start_date
            model.expense_end_date = details.expense_end_date
        elif isinstance(details, CashAdvanceDetails):
            model.advance_purpose = details.advance_purpose
            model.expected_liquidation_date = details.expected_liquidation_date
            model.planned_expense_date = details.planned_expense_date
            model.destination = details.destination
            model.remarks = details.remarks
        else:
            model.advance_id = details.advance_id
            model.actual_amount = details.actual_amount
            model.remaining_amount = details.remaining_amount
            model.liquidation_summary = details.liquidation_summary
        model.apply_domain(request)
        return model

    def apply_domain(self, request: DisbursementRequest) -> None:
        """Copy lifecycle state from the aggregate and append unseen events.

        Only status, next_action_by, updated_at and new timeline entries
        change after submission; existing timeline rows are never touched.
        """
        self.status = request.status.value
        self.next_action_by = [
            r.value for r in sorted(request.next_action_by, key=lambda r: r.rank)
        ]
        self.updated_at = request.updated_at
        timeline = request.timeline
        for seq in range(len(self.events), len(timeline)):
            self.events.append(TimelineEventModel.from_domain(timeline[seq], seq + 1))


class TimelineEventModel(Base):
    """Persistent timeline event. Append-only."""

    __tablename__ = "request_timeline_events"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_timeline_request_seq"),
        Index("ix_timeline_request_id", "request_id"),
    )

    event_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    request_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("disbursement_requests.request_id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(String(100), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[int] = mapped_column(nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    origin: Mapped[str] = mapped_column(String(10), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[RequestModel] = relationship(
        "RequestModel",
        back_populates="events",
        foreign_keys=[request_id],
        primaryjoin="TimelineEventModel.request_id == RequestModel.request_id",
    )

    def __repr__(self) -> str:
        return f"<TimelineEvent {self.request_id}#{self.seq} {self.decision}>"

    def to_domain(self) -> TimelineEvent:
        return TimelineEvent(
            event_id=self.event_id,
            stage=self.stage,
            decision=TimelineDecision(self.decision),
            actor=ActorRef(
                actor_id=self.actor_id,
                name=self.actor_name,
                role=Role(self.actor_role),
            ),
            occurred_at=self.occurred_at,
            origin=EventOrigin(self.origin),
            comment=self.comment,
        )

    @classmethod
    def from_domain(cls, timeline_event: TimelineEvent, seq: int) -> TimelineEventModel:
        return cls(
            event_id=timeline_event.event_id,
            seq=seq,
            stage=timeline_event.stage,
            decision=timeline_event.decision.value,
            actor_id=timeline_event.actor.actor_id,
            actor_name=timeline_event.actor.name,
            actor_role=timeline_event.actor.role.value,
            origin=timeline_event.origin.value,
            comment=timeline_event.comment,
            occurred_at=timeline_event.occurred_at,
        )


# =============================================================================
# ORM-Level Immutability for Timeline Events (Append-Only)
# =============================================================================


@event.listens_for(TimelineEventModel, "before_update")
def prevent_timeline_update(mapper, connection, target):
    """Prevent updates to timeline event records."""
    raise ImmutabilityViolationError(
        entity_type="TimelineEvent",
        entity_id=str(target.event_id),
        reason="Timeline events are immutable -- cannot modify",
    )


@event.listens_for(TimelineEventModel, "before_delete")
def prevent_timeline_delete(mapper, connection, target):
    """Prevent deletion of timeline event records."""
    raise ImmutabilityViolationError(
        entity_type="TimelineEvent",
        entity_id=str(target.event_id),
        reason="Timeline events are immutable -- cannot delete",
    )
