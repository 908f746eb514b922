"""
Role and status model (``disbursement_kernel.domain.types``).

Responsibility
--------------
Closed enumerations for roles, request types, lifecycle statuses, workflow
actions and timeline vocabulary, plus the ``User``/``ActorRef`` value
objects that identify who acts.

Architecture position
---------------------
**Kernel domain layer** -- pure data.  ZERO I/O.  Imported by every other
layer; imports nothing from the kernel.

Invariants enforced
-------------------
* Roles carry a total order (``Role.rank``): Employee < Manager < Finance < CEO.
* ``TERMINAL_STATUSES`` is the only definition of "terminal"; a request's
  ``next_action_by`` is empty iff its status is in this set.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Organizational roles, ordered for escalation."""

    EMPLOYEE = "Employee"
    MANAGER = "Manager"
    FINANCE = "Finance"
    CEO = "CEO"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    @property
    def is_privileged(self) -> bool:
        """Manager and above may see every request."""
        return self.rank >= Role.MANAGER.rank


_ROLE_RANK: dict[Role, int] = {
    Role.EMPLOYEE: 0,
    Role.MANAGER: 1,
    Role.FINANCE: 2,
    Role.CEO: 3,
}


class RequestType(str, Enum):
    """Kinds of disbursement request."""

    REIMBURSEMENT = "REIMBURSEMENT"
    CASH_ADVANCE = "CASH_ADVANCE"
    LIQUIDATION = "LIQUIDATION"


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    PENDING_VALIDATION = "PENDING_VALIDATION"
    PENDING_FINANCE = "PENDING_FINANCE"
    PENDING_CEO = "PENDING_CEO"
    APPROVED = "APPROVED"
    PROCESSING_PAYMENT = "PROCESSING_PAYMENT"
    PAID = "PAID"
    REJECTED = "REJECTED"
    PENDING_LIQUIDATION = "PENDING_LIQUIDATION"
    LIQUIDATED = "LIQUIDATED"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PAID,
    RequestStatus.REJECTED,
    RequestStatus.LIQUIDATED,
})

PENDING_REVIEW_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING_VALIDATION,
    RequestStatus.PENDING_FINANCE,
    RequestStatus.PENDING_CEO,
})


class WorkflowAction(str, Enum):
    """Actions an actor can apply to an existing request."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PROCESS_PAYMENT = "PROCESS_PAYMENT"
    MARK_PAID = "MARK_PAID"


class TimelineDecision(str, Enum):
    """Canonical decision codes recorded on timeline events."""

    SUBMITTED = "submitted"
    VALIDATED = "validated"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"
    LIQUIDATED = "liquidated"


class EventOrigin(str, Enum):
    """Whether a timeline event was caused by a user or by the system."""

    USER = "user"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class User:
    """A person known to the user directory."""

    user_id: int
    name: str
    role: Role
    email: str | None = None
    department: str | None = None

    def as_actor(self) -> ActorRef:
        return ActorRef(actor_id=self.user_id, name=self.name, role=self.role)


@dataclass(frozen=True)
class ActorRef:
    """Snapshot of an actor's identity as recorded on a timeline event."""

    actor_id: int
    name: str
    role: Role
