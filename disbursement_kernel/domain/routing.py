"""
Routing policy (``disbursement_kernel.domain.routing``).

Responsibility
--------------
The single place that decides where a request goes next.  Given the
current status, the request type, the acting role, the action and the
amount, return the new status and the set of roles that own the request
afterwards.  Submission routing (the initial status) lives here too.

Architecture position
---------------------
**Kernel domain layer** -- pure and deterministic.  ZERO I/O.  The request
aggregate calls ``next_state``; the engine calls ``initial_state``.

Invariants enforced
-------------------
* Terminal statuses accept no action (``AlreadyTerminalError``).
* A (status, action) pair with no rule raises ``InvalidTransitionError``;
  nothing is defaulted.
* A rule exists but not for the actor's role: ``UnauthorizedActionError``.
* Amount is validated (> 0) before any routing decision.
* Amounts strictly above ``approval_threshold`` need CEO approval; exactly
  the threshold does not.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from disbursement_kernel.domain.types import (
    TERMINAL_STATUSES,
    RequestStatus,
    RequestType,
    Role,
    WorkflowAction,
)
from disbursement_kernel.domain.validation import validate_amount
from disbursement_kernel.domain.workflow import Guard, Transition, Workflow
from disbursement_kernel.exceptions import (
    AlreadyTerminalError,
    InvalidTransitionError,
    UnauthorizedActionError,
)

if TYPE_CHECKING:
    from disbursement_config.schema import WorkflowConfig

DEFAULT_APPROVAL_THRESHOLD = Decimal("20000")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

IS_LIQUIDATION = Guard(
    name="is_liquidation",
    description="Request is a liquidation of a prior cash advance",
)

IS_CASH_ADVANCE = Guard(
    name="is_cash_advance",
    description="Request is a cash advance that must later be liquidated",
)

ABOVE_APPROVAL_THRESHOLD = Guard(
    name="above_approval_threshold",
    description="Amount exceeds the Finance approval threshold; CEO must approve",
)

WITHIN_APPROVAL_THRESHOLD = Guard(
    name="within_approval_threshold",
    description="Amount is within the Finance approval threshold",
)


@dataclass(frozen=True)
class RoutingContext:
    """Facts a guard may inspect."""

    request_type: RequestType
    amount: Decimal
    approval_threshold: Decimal


_GUARD_EVALUATORS: dict[str, Callable[[RoutingContext], bool]] = {
    IS_LIQUIDATION.name: lambda ctx: ctx.request_type is RequestType.LIQUIDATION,
    IS_CASH_ADVANCE.name: lambda ctx: ctx.request_type is RequestType.CASH_ADVANCE,
    ABOVE_APPROVAL_THRESHOLD.name: lambda ctx: ctx.amount > ctx.approval_threshold,
    WITHIN_APPROVAL_THRESHOLD.name: lambda ctx: ctx.amount <= ctx.approval_threshold,
}


# -----------------------------------------------------------------------------
# Disbursement Request Workflow
# -----------------------------------------------------------------------------

_S = RequestStatus
_A = WorkflowAction
_R = Role

DISBURSEMENT_WORKFLOW = Workflow(
    name="disbursement_request",
    description="Reimbursement / cash advance / liquidation approval lifecycle",
    initial_state=_S.PENDING_VALIDATION.value,
    states=tuple(s.value for s in RequestStatus),
    terminal_states=tuple(s.value for s in TERMINAL_STATUSES),
    transitions=(
        # Manager validation
        Transition(
            _S.PENDING_VALIDATION.value, _S.PENDING_FINANCE.value,
            action=_A.APPROVE.value,
            actor_roles=(_R.MANAGER.value,),
            next_action_by=(_R.FINANCE.value,),
        ),
        Transition(
            _S.PENDING_VALIDATION.value, _S.REJECTED.value,
            action=_A.REJECT.value,
            actor_roles=(_R.MANAGER.value,),
        ),
        # Finance review; first matching guard wins
        Transition(
            _S.PENDING_FINANCE.value, _S.APPROVED.value,
            action=_A.APPROVE.value,
            actor_roles=(_R.FINANCE.value,),
            next_action_by=(_R.FINANCE.value,),
            guard=IS_LIQUIDATION,
            liquidates_advance=True,
        ),
        Transition(
            _S.PENDING_FINANCE.value, _S.PENDING_CEO.value,
            action=_A.APPROVE.value,
            actor_roles=(_R.FINANCE.value,),
            next_action_by=(_R.CEO.value,),
            guard=ABOVE_APPROVAL_THRESHOLD,
        ),
        Transition(
            _S.PENDING_FINANCE.value, _S.APPROVED.value,
            action=_A.APPROVE.value,
            actor_roles=(_R.FINANCE.value,),
            next_action_by=(_R.FINANCE.value,),
            guard=WITHIN_APPROVAL_THRESHOLD,
        ),
        Transition(
            _S.PENDING_FINANCE.value, _S.REJECTED.value,
            action=_A.REJECT.value,
            actor_roles=(_R.FINANCE.value,),
        ),
        # CEO approval
        Transition(
            _S.PENDING_CEO.value, _S.APPROVED.value,
            action=_A.APPROVE.value,
            actor_roles=(_R.CEO.value,),
            next_action_by=(_R.FINANCE.value,),
        ),
        Transition(
            _S.PENDING_CEO.value, _S.REJECTED.value,
            action=_A.REJECT.value,
            actor_roles=(_R.CEO.value,),
        ),
        # Payment
        Transition(
            _S.APPROVED.value, _S.PENDING_LIQUIDATION.value,
            action=_A.PROCESS_PAYMENT.value,
            actor_roles=(_R.FINANCE.value,),
            next_action_by=(_R.EMPLOYEE.value,),
            guard=IS_CASH_ADVANCE,
        ),
        Transition(
            _S.APPROVED.value, _S.PROCESSING_PAYMENT.value,
            action=_A.PROCESS_PAYMENT.value,
            actor_roles=(_R.FINANCE.value,),
            next_action_by=(_R.FINANCE.value,),
        ),
        Transition(
            _S.PROCESSING_PAYMENT.value, _S.PAID.value,
            action=_A.MARK_PAID.value,
            actor_roles=(_R.FINANCE.value,),
        ),
    ),
)


# -----------------------------------------------------------------------------
# Policy
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RoutingOutcome:
    """Where a request lands after a submission or an action."""

    status: RequestStatus
    next_action_by: frozenset[Role]
    liquidates_advance: bool = False


@dataclass(frozen=True)
class RoutingPolicy:
    """Evaluates ``DISBURSEMENT_WORKFLOW`` for a configured threshold.

    Contract: pure; same inputs always give the same outcome.
    """

    approval_threshold: Decimal = DEFAULT_APPROVAL_THRESHOLD
    workflow: Workflow = field(default=DISBURSEMENT_WORKFLOW)

    def __post_init__(self) -> None:
        validate_amount(self.approval_threshold, field="approval_threshold")
        for t in self.workflow.transitions:
            if t.guard is not None and t.guard.name not in _GUARD_EVALUATORS:
                raise ValueError(f"No evaluator registered for guard {t.guard.name!r}")

    @classmethod
    def from_config(cls, config: WorkflowConfig) -> RoutingPolicy:
        return cls(approval_threshold=config.approval_threshold)

    # -- submission ---------------------------------------------------------

    def initial_state(
        self,
        request_type: RequestType,
        submitter_role: Role,
        amount: Any,
    ) -> RoutingOutcome:
        """Status and owners of a freshly submitted request.

        Liquidations always go to Finance, who checks them against the
        advance.  Otherwise the submitter's own review step is skipped:
        Managers start at Finance, and Finance/CEO submitters go straight to
        the threshold decision.
        """
        value = validate_amount(amount)

        if request_type is RequestType.LIQUIDATION:
            return RoutingOutcome(RequestStatus.PENDING_FINANCE, frozenset({Role.FINANCE}))
        if submitter_role is Role.EMPLOYEE:
            return RoutingOutcome(RequestStatus.PENDING_VALIDATION, frozenset({Role.MANAGER}))
        if submitter_role is Role.MANAGER:
            return RoutingOutcome(RequestStatus.PENDING_FINANCE, frozenset({Role.FINANCE}))
        if value > self.approval_threshold:
            return RoutingOutcome(RequestStatus.PENDING_CEO, frozenset({Role.CEO}))
        return RoutingOutcome(RequestStatus.APPROVED, frozenset({Role.FINANCE}))

    # -- transitions --------------------------------------------------------

    def next_state(
        self,
        current_status: RequestStatus,
        request_type: RequestType,
        actor_role: Role,
        action: WorkflowAction,
        amount: Any,
        *,
        request_id: str | None = None,
    ) -> RoutingOutcome:
        """Resolve one action against the workflow table.

        Raises:
            ValidationError: amount is not a positive number.
            AlreadyTerminalError: current status is terminal.
            InvalidTransitionError: no rule for (status, action), or no
                guard matched.
            UnauthorizedActionError: rules exist but none for this role.
        """
        value = validate_amount(amount)
        transition = self._match(current_status, request_type, actor_role, action, value, request_id)
        return RoutingOutcome(
            status=RequestStatus(transition.to_state),
            next_action_by=frozenset(Role(r) for r in transition.next_action_by),
            liquidates_advance=transition.liquidates_advance,
        )

    def settles_advance(
        self,
        request_type: RequestType,
        current_status: RequestStatus,
        action: WorkflowAction,
    ) -> bool:
        """True when approving this request also closes its cash advance."""
        ctx = RoutingContext(request_type, Decimal("1"), self.approval_threshold)
        return any(
            t.liquidates_advance and self._guard_holds(t, ctx)
            for t in self.workflow.transitions_from(current_status.value, action.value)
        )

    def available_actions(
        self,
        current_status: RequestStatus,
        request_type: RequestType,
        actor_role: Role,
    ) -> tuple[WorkflowAction, ...]:
        """Actions ``actor_role`` may attempt in ``current_status``, in declared order.

        An action is listed when some rule for it accepts the role and its
        guard could hold for ``request_type`` at some amount.
        """
        seen: list[WorkflowAction] = []
        for t in self.workflow.transitions_from(current_status.value):
            action = WorkflowAction(t.action)
            if action in seen or actor_role.value not in t.actor_roles:
                continue
            if self._type_admits(t, request_type):
                seen.append(action)
        return tuple(seen)

    def _type_admits(self, transition: Transition, request_type: RequestType) -> bool:
        if transition.guard is None:
            return True
        probes = (self.approval_threshold, self.approval_threshold + 1)
        return any(
            self._guard_holds(transition, RoutingContext(request_type, amount, self.approval_threshold))
            for amount in probes
        )

    def _match(
        self,
        current_status: RequestStatus,
        request_type: RequestType,
        actor_role: Role,
        action: WorkflowAction,
        amount: Decimal,
        request_id: str | None,
    ) -> Transition:
        if current_status in TERMINAL_STATUSES:
            raise AlreadyTerminalError(request_id, current_status.value)

        candidates = self.workflow.transitions_from(current_status.value, action.value)
        if not candidates:
            raise InvalidTransitionError(request_id, current_status.value, action.value)

        permitted = [t for t in candidates if actor_role.value in t.actor_roles]
        if not permitted:
            allowed = sorted({r for t in candidates for r in t.actor_roles})
            raise UnauthorizedActionError(request_id, actor_role.value, action.value, allowed)

        ctx = RoutingContext(request_type, amount, self.approval_threshold)
        for t in permitted:
            if self._guard_holds(t, ctx):
                return t
        raise InvalidTransitionError(
            request_id, current_status.value, action.value,
            reason=f"no rule applies to {request_type.value} requests",
        )

    @staticmethod
    def _guard_holds(transition: Transition, ctx: RoutingContext) -> bool:
        if transition.guard is None:
            return True
        return _GUARD_EVALUATORS[transition.guard.name](ctx)
