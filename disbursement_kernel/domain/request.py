"""
Request aggregate (``disbursement_kernel.domain.request``).

Responsibility
--------------
``DisbursementRequest`` owns one request's status, the roles that may act
next, and its timeline.  It is the only object that mutates those fields,
and it does so only by applying a routing outcome and appending the
matching timeline event in one step.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  The workflow engine loads an
aggregate inside a unit of work, calls ``apply`` or ``liquidate``, and hands
it back to the repository.

Invariants enforced
-------------------
* ``next_action_by`` is read-only to callers and empty iff the status is
  terminal.
* Every status change appends exactly one timeline event.
* Terminal requests reject every action with ``AlreadyTerminalError``,
  checked before authorization.
* The timeline is append-only and ordered oldest first.

Failure modes
-------------
* AlreadyTerminalError -- action on Paid, Rejected or Liquidated.
* UnauthorizedActionError -- actor's role not in ``next_action_by``.
* InvalidTransitionError -- no rule for (status, action), or ``liquidate``
  on a request that is not an advance awaiting liquidation.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from disbursement_kernel.domain.routing import RoutingPolicy
from disbursement_kernel.domain.timeline import (
    TimelineEvent,
    liquidation_event,
    submission_event,
    transition_event,
)
from disbursement_kernel.domain.types import (
    TERMINAL_STATUSES,
    ActorRef,
    Priority,
    RequestStatus,
    RequestType,
    Role,
    WorkflowAction,
)
from disbursement_kernel.domain.validation import RequestDetails, Submission
from disbursement_kernel.exceptions import (
    AlreadyTerminalError,
    InvalidTransitionError,
    UnauthorizedActionError,
)


def _sorted_roles(roles) -> list[str]:
    return [r.value for r in sorted(roles, key=lambda r: r.rank)]


class DisbursementRequest:
    """Aggregate root for a reimbursement, cash advance or liquidation."""

    def __init__(
        self,
        *,
        request_id: str,
        request_type: RequestType,
        submitter: ActorRef,
        amount: Decimal,
        currency: str,
        category: str,
        description: str,
        priority: Priority,
        details: RequestDetails,
        status: RequestStatus,
        next_action_by: frozenset[Role],
        created_at: datetime,
        updated_at: datetime,
        timeline: tuple[TimelineEvent, ...] = (),
    ):
        self.request_id = request_id
        self.request_type = request_type
        self.submitter = submitter
        self.amount = amount
        self.currency = currency
        self.category = category
        self.description = description
        self.priority = priority
        self.details = details
        self.status = status
        self._next_action_by = frozenset(next_action_by)
        self.created_at = created_at
        self.updated_at = updated_at
        self._timeline: list[TimelineEvent] = list(timeline)

    def __repr__(self) -> str:
        return (
            f"DisbursementRequest({self.request_id!r}, {self.request_type.value}, "
            f"{self.status.value}, amount={self.amount})"
        )

    # -- construction --------------------------------------------------------

    @classmethod
    def submit(
        cls,
        request_id: str,
        submission: Submission,
        submitter: ActorRef,
        policy: RoutingPolicy,
        currency: str,
        at: datetime,
    ) -> DisbursementRequest:
        """Create a request in its initial status with a submission event."""
        outcome = policy.initial_state(submission.request_type, submitter.role, submission.amount)
        return cls(
            request_id=request_id,
            request_type=submission.request_type,
            submitter=submitter,
            amount=submission.amount,
            currency=currency,
            category=submission.category,
            description=submission.description,
            priority=submission.priority,
            details=submission.details,
            status=outcome.status,
            next_action_by=outcome.next_action_by,
            created_at=at,
            updated_at=at,
            timeline=(submission_event(submitter, at),),
        )

    # -- read-only views -----------------------------------------------------

    @property
    def next_action_by(self) -> frozenset[Role]:
        return self._next_action_by

    @property
    def timeline(self) -> tuple[TimelineEvent, ...]:
        return tuple(self._timeline)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def employee_id(self) -> int:
        return self.submitter.actor_id

    # -- behaviour -----------------------------------------------------------

    def apply(
        self,
        action: WorkflowAction,
        actor: ActorRef,
        policy: RoutingPolicy,
        at: datetime,
        comment: str | None = None,
    ) -> TimelineEvent:
        """Apply ``action`` by ``actor`` and return the appended event."""
        if self.is_terminal:
            raise AlreadyTerminalError(self.request_id, self.status.value)
        if actor.role not in self._next_action_by:
            raise UnauthorizedActionError(
                self.request_id,
                actor.role.value,
                action.value,
                _sorted_roles(self._next_action_by),
            )

        outcome = policy.next_state(
            self.status,
            self.request_type,
            actor.role,
            action,
            self.amount,
            request_id=self.request_id,
        )
        event = transition_event(outcome.status, self.request_type, actor, at, comment)
        self._move(outcome.status, outcome.next_action_by, event)
        return event

    def liquidate(
        self,
        liquidation: DisbursementRequest,
        actor: ActorRef,
        at: datetime,
    ) -> TimelineEvent:
        """Close this cash advance because ``liquidation`` was approved."""
        if self.request_type is not RequestType.CASH_ADVANCE:
            raise InvalidTransitionError(
                self.request_id, self.status.value, "LIQUIDATE",
                reason="only cash advances can be liquidated",
            )
        if self.status is not RequestStatus.PENDING_LIQUIDATION:
            raise InvalidTransitionError(
                self.request_id, self.status.value, "LIQUIDATE",
                reason="advance is not awaiting liquidation",
            )
        event = liquidation_event(actor, at, liquidation.request_id)
        self._move(RequestStatus.LIQUIDATED, frozenset(), event)
        return event

    def _move(self, status: RequestStatus, next_action_by: frozenset[Role], event: TimelineEvent) -> None:
        self.status = status
        self._next_action_by = frozenset(next_action_by)
        self._timeline.append(event)
        self.updated_at = event.occurred_at


def format_request_id(prefix: str, width: int, value: int) -> str:
    """``REQ`` + zero-padded counter; widths grow past the pad (``REQ1000``)."""
    if value <= 0:
        raise ValueError(f"request sequence values start at 1, got {value}")
    return f"{prefix}{value:0{width}d}"
