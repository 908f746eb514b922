"""
disbursement_kernel.services.workflow_engine -- Disbursement workflow engine.

Responsibility:
    The public entry point for submitting requests, applying workflow
    actions and reading request views.  Resolves users, opens units of
    work, delegates routing to the policy and state changes to the request
    aggregate, and logs every outcome.

Architecture position:
    Kernel > Services.  May import from domain/, selectors/, repositories/
    and disbursement_config.  Never touches SQL directly; persistence is
    whatever ``RequestRepository`` it is given.

Invariants enforced:
    - Each submission and each action is one unit of work: status change,
      timeline append and any advance liquidation commit together or not
      at all.
    - A liquidation references an existing cash advance of the same
      employee that is awaiting liquidation and has no other open
      liquidation.
    - All timestamps come from the injected clock.

Failure modes:
    - ValidationError, UserNotFoundError, RequestNotFoundError,
      AdvanceNotFoundError, UnauthorizedActionError,
      InvalidTransitionError, AlreadyTerminalError.  Every rejection is
      logged as a warning with its error code and re-raised unchanged.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

from disbursement_config import get_active_config
from disbursement_config.schema import WorkflowConfig
from disbursement_kernel.domain.clock import Clock, SystemClock
from disbursement_kernel.domain.ports import RequestRepository, RequestUnitOfWork, UserDirectory
from disbursement_kernel.domain.request import DisbursementRequest
from disbursement_kernel.domain.routing import RoutingPolicy
from disbursement_kernel.domain.types import (
    RequestStatus,
    RequestType,
    Role,
    User,
    WorkflowAction,
)
from disbursement_kernel.domain.validation import Submission, validate_submission
from disbursement_kernel.exceptions import (
    AdvanceNotFoundError,
    DisbursementError,
    InvalidTransitionError,
    RequestNotFoundError,
    ValidationError,
)
from disbursement_kernel.logging_config import LogContext, get_logger
from disbursement_kernel.repositories.memory import (
    InMemoryRequestRepository,
    InMemoryUserDirectory,
)
from disbursement_kernel.selectors.request_selector import (
    DashboardStats,
    Pagination,
    RequestFilters,
    RequestPage,
    RequestSelector,
)

logger = get_logger("services.workflow_engine")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _parse_action(action: WorkflowAction | str) -> WorkflowAction:
    try:
        return WorkflowAction(action)
    except ValueError:
        allowed = ", ".join(a.value for a in WorkflowAction)
        raise ValidationError.single("action", f"must be one of {allowed}") from None


def _parse_role(role: Role | str) -> Role:
    try:
        return Role(role)
    except ValueError:
        allowed = ", ".join(r.value for r in Role)
        raise ValidationError.single("role", f"must be one of {allowed}") from None


class WorkflowEngine:
    """Submits requests and moves them through the approval workflow."""

    def __init__(
        self,
        repository: RequestRepository,
        users: UserDirectory,
        clock: Clock | None = None,
        policy: RoutingPolicy | None = None,
        config: WorkflowConfig | None = None,
    ) -> None:
        self._config = config or get_active_config()
        self._repository = repository
        self._users = users
        self._clock = clock or SystemClock()
        self._policy = policy or RoutingPolicy.from_config(self._config)
        self._selector = RequestSelector(repository)

    @classmethod
    def in_memory(
        cls,
        users: list[User] | tuple[User, ...] = (),
        clock: Clock | None = None,
        config: WorkflowConfig | None = None,
    ) -> WorkflowEngine:
        """Engine over process-local storage, ids formatted per ``config``."""
        config = config or get_active_config()
        repository = InMemoryRequestRepository(
            id_prefix=config.request_id_prefix,
            id_width=config.request_id_width,
        )
        return cls(repository, InMemoryUserDirectory(users), clock=clock, config=config)

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    @property
    def selector(self) -> RequestSelector:
        return self._selector

    # =========================================================================
    # Commands
    # =========================================================================

    def submit_request(
        self,
        request_type: RequestType | str,
        submitter_id: int,
        amount: Any,
        category: str,
        description: str,
        details: dict[str, Any] | None = None,
        *,
        priority: Any = None,
        currency: str | None = None,
    ) -> DisbursementRequest:
        """Validate and create a request in its routed initial status.

        Liquidations take ``amount`` from ``details["actual_amount"]`` when
        ``amount`` is None.
        """
        with LogContext.bind(actor_id=submitter_id, action="SUBMIT"):
            try:
                submitter = self._users.get(submitter_id)
                submission = validate_submission(
                    request_type,
                    amount,
                    category,
                    description,
                    details,
                    priority=priority,
                    default_priority=self._config.default_priority,
                )
                currency = self._resolve_currency(currency)

                with self._repository.unit_of_work() as uow:
                    if submission.request_type is RequestType.LIQUIDATION:
                        submission = self._attach_advance(uow, submission, submitter)
                    request = DisbursementRequest.submit(
                        uow.next_request_id(),
                        submission,
                        submitter.as_actor(),
                        self._policy,
                        currency,
                        self._clock.now(),
                    )
                    uow.add(request)
            except DisbursementError as exc:
                logger.warning(
                    "submission_rejected",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

            logger.info(
                "request_submitted",
                extra={
                    "request_id": request.request_id,
                    "request_type": request.request_type.value,
                    "amount": request.amount,
                    "currency": request.currency,
                    "status": request.status.value,
                    "next_action_by": sorted(r.value for r in request.next_action_by),
                },
            )
            return request

    def apply_action(
        self,
        request_id: str,
        action: WorkflowAction | str,
        actor_id: int,
        comment: str | None = None,
    ) -> DisbursementRequest:
        """Apply ``action`` on behalf of ``actor_id`` and return the updated request.

        Approving a liquidation also moves its cash advance to Liquidated,
        in the same unit of work.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id, action=getattr(action, "value", action)):
            try:
                parsed = _parse_action(action)
                actor = self._users.get(actor_id).as_actor()

                with self._repository.unit_of_work() as uow:
                    request = uow.load_for_update(request_id)
                    from_status = request.status
                    settles = self._policy.settles_advance(
                        request.request_type, from_status, parsed,
                    )
                    at = self._clock.now()
                    event = request.apply(parsed, actor, self._policy, at, comment)
                    if settles:
                        self._liquidate_advance(uow, request, actor, at)
                    uow.save(request)
            except DisbursementError as exc:
                logger.warning(
                    "action_rejected",
                    extra={"error_code": exc.code, "error": str(exc)},
                )
                raise

            logger.info(
                "transition_applied",
                extra={
                    "from_status": from_status.value,
                    "to_status": request.status.value,
                    "decision": event.decision.value,
                    "next_action_by": sorted(r.value for r in request.next_action_by),
                },
            )
            return request

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: str) -> DisbursementRequest:
        return self._repository.get(request_id)

    def get_inbox(self, actor_role: Role | str) -> list[DisbursementRequest]:
        return self._selector.inbox_for(_parse_role(actor_role))

    def get_inbox_for_user(self, user_id: int) -> list[DisbursementRequest]:
        return self._selector.inbox_for_user(self._users.get(user_id))

    def get_requests_for(self, user_id: int) -> list[DisbursementRequest]:
        return self._selector.requests_for(self._users.get(user_id))

    def dashboard_stats(self, user_id: int) -> DashboardStats:
        return self._selector.dashboard_stats(self._users.get(user_id))

    def search(
        self,
        filters: RequestFilters | None = None,
        pagination: Pagination | None = None,
    ) -> RequestPage:
        return self._selector.search(filters, pagination)

    def available_actions(self, request_id: str, actor_id: int) -> tuple[WorkflowAction, ...]:
        """Actions the user could apply to the request right now."""
        request = self._repository.get(request_id)
        role = self._users.get(actor_id).role
        if request.is_terminal or role not in request.next_action_by:
            return ()
        return self._policy.available_actions(request.status, request.request_type, role)

    # =========================================================================
    # Internals
    # =========================================================================

    def _resolve_currency(self, currency: str | None) -> str:
        if currency is None:
            return self._config.currency
        if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
            raise ValidationError.single("currency", "must be a 3-letter ISO code")
        return currency

    def _attach_advance(
        self,
        uow: RequestUnitOfWork,
        submission: Submission,
        submitter: User,
    ) -> Submission:
        """Lock the referenced advance, check it can be liquidated, and
        record the remaining amount on the liquidation details."""
        details = submission.details
        try:
            advance = uow.load_for_update(details.advance_id)
        except RequestNotFoundError:
            raise AdvanceNotFoundError(details.advance_id) from None

        if advance.request_type is not RequestType.CASH_ADVANCE:
            raise AdvanceNotFoundError(details.advance_id)
        if advance.employee_id != submitter.user_id:
            raise ValidationError.single(
                "details.advance_id", "cash advance belongs to another employee",
            )
        if advance.status is not RequestStatus.PENDING_LIQUIDATION:
            raise InvalidTransitionError(
                advance.request_id, advance.status.value, "LIQUIDATE",
                reason="advance is not awaiting liquidation",
            )
        open_liquidations = uow.find(
            lambda r: r.request_type is RequestType.LIQUIDATION
            and r.details.advance_id == advance.request_id
            and r.status is not RequestStatus.REJECTED
        )
        if open_liquidations:
            raise InvalidTransitionError(
                advance.request_id, advance.status.value, "LIQUIDATE",
                reason=f"already liquidated by {open_liquidations[0].request_id}",
            )

        return replace(
            submission,
            details=replace(details, remaining_amount=advance.amount - details.actual_amount),
        )

    def _liquidate_advance(self, uow, liquidation, actor, at) -> None:
        advance_id = liquidation.details.advance_id
        try:
            advance = uow.load_for_update(advance_id)
        except RequestNotFoundError:
            raise AdvanceNotFoundError(advance_id) from None
        advance.liquidate(liquidation, actor, at)
        uow.save(advance)
        logger.info(
            "advance_liquidated",
            extra={"advance_id": advance_id, "liquidation_id": liquidation.request_id},
        )
