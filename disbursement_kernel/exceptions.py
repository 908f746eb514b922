"""
Typed Exception Hierarchy for the Disbursement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (HTTP handlers, batch jobs, admin tools) must
translate failures into user-facing responses.  Parsing message strings for
that is fragile, so every failure here is:

  1. A TYPED exception class (catch by type, not message)
  2. Tagged with a CODE class attribute (machine-readable, API-safe)
  3. Carrying structured DATA as attributes (request_id, role, status, ...)

Example:
    try:
        engine.apply_action("REQ007", WorkflowAction.APPROVE, actor_id=3)
    except AlreadyTerminalError as e:
        respond(409, code=e.code, status=e.status)
    except UnauthorizedActionError as e:
        respond(403, code=e.code, allowed=e.allowed_roles)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DisbursementError (base)
    |
    +-- ValidationError
    |
    +-- WorkflowError
    |   +-- UnauthorizedActionError
    |   +-- InvalidTransitionError
    |   +-- AlreadyTerminalError
    |   +-- UnmappedTimelineStageError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- AdvanceNotFoundError
    |   +-- UserNotFoundError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | When Raised
--------------|---------------------------|-------------------------------------------
Validation    | VALIDATION_ERROR          | Missing/malformed input, amount <= 0
--------------|---------------------------|-------------------------------------------
Workflow      | UNAUTHORIZED              | Actor role not allowed to act now
              | INVALID_TRANSITION        | No routing rule for (status, action)
              | ALREADY_TERMINAL          | Action on Paid/Rejected/Liquidated
              | UNMAPPED_TIMELINE_STAGE   | No stage label for (status, type)
--------------|---------------------------|-------------------------------------------
Not found     | REQUEST_NOT_FOUND         | Unknown request id
              | ADVANCE_NOT_FOUND         | Liquidation references unknown advance
              | USER_NOT_FOUND            | Unknown submitter/actor id
--------------|---------------------------|-------------------------------------------
Concurrency   | OPTIMISTIC_LOCK_CONFLICT  | Row changed underneath a unit of work
--------------|---------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | Update/delete of a timeline event

===============================================================================
"""


class DisbursementError(Exception):
    """
    Base exception for all disbursement kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "DISBURSEMENT_ERROR"


# Validation


class ValidationError(DisbursementError):
    """
    Submission or action input failed validation.

    ``field_errors`` is a list of ``{"field": ..., "message": ...}`` dicts so
    the boundary layer can report every problem at once.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict]):
        self.field_errors = field_errors
        fields = ", ".join(e["field"] for e in field_errors)
        super().__init__(
            f"Validation failed: {len(field_errors)} error(s) ({fields})"
        )

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


# Workflow


class WorkflowError(DisbursementError):
    """Base exception for workflow routing errors."""

    code: str = "WORKFLOW_ERROR"


class UnauthorizedActionError(WorkflowError):
    """Actor's role is not currently allowed to act on the request."""

    code: str = "UNAUTHORIZED"

    def __init__(
        self,
        request_id: str | None,
        actor_role: str,
        action: str,
        allowed_roles: list[str],
    ):
        self.request_id = request_id
        self.actor_role = actor_role
        self.action = action
        self.allowed_roles = allowed_roles
        super().__init__(
            f"Role {actor_role} may not {action} request {request_id}; "
            f"allowed: {allowed_roles or 'none'}"
        )


class InvalidTransitionError(WorkflowError):
    """No routing rule exists for the given status and action."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        request_id: str | None,
        status: str,
        action: str,
        reason: str = "",
    ):
        self.request_id = request_id
        self.status = status
        self.action = action
        self.reason = reason
        msg = f"Cannot {action} request {request_id} in status {status}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class AlreadyTerminalError(WorkflowError):
    """Request is Paid, Rejected or Liquidated; no further actions exist."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, request_id: str | None, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"Request {request_id} is already in terminal status {status}"
        )


class UnmappedTimelineStageError(WorkflowError):
    """
    The timeline recorder has no stage label for a (status, type) pair.

    Indicates an incomplete recorder table; never defaulted.
    """

    code: str = "UNMAPPED_TIMELINE_STAGE"

    def __init__(self, status: str, request_type: str):
        self.status = status
        self.request_type = request_type
        super().__init__(
            f"No timeline stage defined for status {status} "
            f"on {request_type} requests"
        )


# Lookups


class NotFoundError(DisbursementError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Request with given id was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class AdvanceNotFoundError(NotFoundError):
    """Liquidation references a cash advance that does not exist."""

    code: str = "ADVANCE_NOT_FOUND"

    def __init__(self, advance_id: str):
        self.advance_id = advance_id
        super().__init__(f"Cash advance not found: {advance_id}")


class UserNotFoundError(NotFoundError):
    """User with given id was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# Concurrency


class ConcurrencyError(DisbursementError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Request row was modified by another transaction."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}"
        )


# Immutability


class ImmutabilityError(DisbursementError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
