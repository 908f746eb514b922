"""
Module: disbursement_kernel.selectors.request_selector
Responsibility: Read-only views over requests: role inboxes, per-user
    listings, dashboard statistics, filtered/paginated search and timeline
    views.
Architecture position: Kernel > Selectors.  Reads through the
    ``RequestRepository`` port; never opens a unit of work.

Invariants enforced:
    - Read-only: selectors never add, save or lock requests.
    - Least privilege: Employees only ever see their own requests.
    - Inboxes never contain terminal requests.
    - Listings are newest first unless a sort order says otherwise.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from disbursement_kernel.domain.ports import RequestRepository
from disbursement_kernel.domain.request import DisbursementRequest
from disbursement_kernel.domain.timeline import TimelineEvent
from disbursement_kernel.domain.types import (
    Priority,
    RequestStatus,
    RequestType,
    Role,
    User,
)
from disbursement_kernel.exceptions import ValidationError

MAX_PAGE_SIZE = 100


def _newest_first_key(request: DisbursementRequest):
    # REQ999 < REQ1000: compare by length before text
    return (request.created_at, len(request.request_id), request.request_id)


def _newest_first(requests: list[DisbursementRequest]) -> list[DisbursementRequest]:
    return sorted(requests, key=_newest_first_key, reverse=True)


def _coerce_enum(obj, name: str, enum_cls: type[Enum], errors: list[dict]) -> None:
    """Replace a plain string field on a frozen dataclass with its enum member."""
    value = getattr(obj, name)
    if value is None or isinstance(value, enum_cls):
        return
    try:
        object.__setattr__(obj, name, enum_cls(value))
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        errors.append({"field": name, "message": f"must be one of {allowed}"})


class SortField(str, Enum):
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    AMOUNT = "amount"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class RequestFilters:
    """Search criteria; ``None`` means "any".  Date bounds are inclusive."""

    status: RequestStatus | None = None
    request_type: RequestType | None = None
    category: str | None = None
    employee_id: int | None = None
    priority: Priority | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None

    def __post_init__(self) -> None:
        errors: list[dict] = []
        _coerce_enum(self, "status", RequestStatus, errors)
        _coerce_enum(self, "request_type", RequestType, errors)
        _coerce_enum(self, "priority", Priority, errors)
        if errors:
            raise ValidationError(errors)

    def matches(self, request: DisbursementRequest) -> bool:
        if self.status is not None and request.status is not self.status:
            return False
        if self.request_type is not None and request.request_type is not self.request_type:
            return False
        if self.category is not None and request.category.lower() != self.category.lower():
            return False
        if self.employee_id is not None and request.employee_id != self.employee_id:
            return False
        if self.priority is not None and request.priority is not self.priority:
            return False
        if self.created_from is not None and request.created_at < self.created_from:
            return False
        if self.created_to is not None and request.created_at > self.created_to:
            return False
        return True


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = 10
    sort_by: SortField = SortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC

    def __post_init__(self) -> None:
        errors: list[dict] = []
        _coerce_enum(self, "sort_by", SortField, errors)
        _coerce_enum(self, "sort_order", SortOrder, errors)
        if self.page < 1:
            errors.append({"field": "page", "message": "must be at least 1"})
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            errors.append({"field": "limit", "message": f"must be between 1 and {MAX_PAGE_SIZE}"})
        if errors:
            raise ValidationError(errors)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class RequestPage:
    items: tuple[DisbursementRequest, ...]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit)


@dataclass(frozen=True)
class DashboardStats:
    """Counts and sums over one user's own requests."""

    total_requests: int = 0
    pending_requests: int = 0
    approved_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    status_counts: dict[RequestStatus, int] = field(default_factory=dict)
    status_amounts: dict[RequestStatus, Decimal] = field(default_factory=dict)


class RequestSelector:
    """
    Query side of the workflow.

    Contract:
        Every method returns snapshots; mutating them has no effect on
        stored requests.
    """

    def __init__(self, repository: RequestRepository):
        self.repository = repository

    def inbox_for(self, role: Role) -> list[DisbursementRequest]:
        """Non-terminal requests whose ``next_action_by`` contains ``role``."""
        return _newest_first(
            self.repository.list(lambda r: not r.is_terminal and role in r.next_action_by)
        )

    def inbox_for_user(self, user: User) -> list[DisbursementRequest]:
        """Like ``inbox_for``, but Employees only see their own requests."""
        inbox = self.inbox_for(user.role)
        if user.role.is_privileged:
            return inbox
        return [r for r in inbox if r.employee_id == user.user_id]

    def requests_for(self, user: User) -> list[DisbursementRequest]:
        """Own requests for Employees; every request for privileged roles."""
        if user.role.is_privileged:
            return _newest_first(self.repository.list())
        return _newest_first(self.repository.list(lambda r: r.employee_id == user.user_id))

    def dashboard_stats(self, user: User) -> DashboardStats:
        own = self.repository.list(lambda r: r.employee_id == user.user_id)
        counts: Counter[RequestStatus] = Counter(r.status for r in own)
        amounts: dict[RequestStatus, Decimal] = {}
        for r in own:
            amounts[r.status] = amounts.get(r.status, Decimal("0")) + r.amount
        return DashboardStats(
            total_requests=len(own),
            pending_requests=sum(1 for r in own if not r.is_terminal),
            approved_amount=amounts.get(RequestStatus.APPROVED, Decimal("0")),
            paid_amount=amounts.get(RequestStatus.PAID, Decimal("0")),
            status_counts=dict(counts),
            status_amounts=amounts,
        )

    def search(
        self,
        filters: RequestFilters | None = None,
        pagination: Pagination | None = None,
    ) -> RequestPage:
        filters = filters or RequestFilters()
        pagination = pagination or Pagination()

        matched = self.repository.list(filters.matches)
        reverse = pagination.sort_order is SortOrder.DESC
        matched.sort(
            key=lambda r: (getattr(r, pagination.sort_by.value),) + _newest_first_key(r)[1:],
            reverse=reverse,
        )
        window = matched[pagination.offset:pagination.offset + pagination.limit]
        return RequestPage(
            items=tuple(window),
            total=len(matched),
            page=pagination.page,
            limit=pagination.limit,
        )

    @staticmethod
    def timeline_view(
        request: DisbursementRequest,
        newest_first: bool = False,
    ) -> tuple[TimelineEvent, ...]:
        """Timeline in stored (oldest first) order, or reversed."""
        events = request.timeline
        return tuple(reversed(events)) if newest_first else events
