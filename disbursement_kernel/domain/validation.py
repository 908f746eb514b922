"""
Submission validation (``disbursement_kernel.domain.validation``).

Responsibility
--------------
Turn caller-supplied submission input (loosely typed mappings, strings,
floats) into frozen, typed values, or fail with one ``ValidationError``
listing every field problem at once.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  Cross-request checks (does the
advance exist, does it belong to the submitter) are the engine's job.

Invariants enforced
-------------------
* Amounts are finite ``Decimal`` values > 0.  ``bool`` is not a number.
* Each request type has its own required detail fields; unknown detail
  keys are rejected rather than dropped.
* Date pairs are ordered: expense end >= start; expected liquidation date
  strictly after the planned expense date.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from disbursement_kernel.domain.types import Priority, RequestType
from disbursement_kernel.exceptions import ValidationError


def _parse_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not parsed.is_finite():
        return None
    return parsed


# Matches the Numeric(18, 2) amount columns.
AMOUNT_PLACES = 2
MAX_AMOUNT = Decimal(10) ** (18 - AMOUNT_PLACES)


def _decimal_places(value: Decimal) -> int:
    # Trailing zeros do not count: 12.500 has one place
    _, digits, exponent = value.as_tuple()
    significant = "".join(map(str, digits)).rstrip("0")
    return max(0, -(exponent + len(digits) - len(significant)))


def validate_amount(value: Any, field: str = "amount") -> Decimal:
    """Return ``value`` as a positive Decimal or raise ``ValidationError``.

    Amounts carry at most two decimal places so that the value routed at
    submit time is the value every backend stores and reloads.
    """
    parsed = _parse_decimal(value)
    if parsed is None:
        raise ValidationError.single(field, "must be a finite number")
    if parsed <= 0:
        raise ValidationError.single(field, "must be greater than zero")
    if parsed >= MAX_AMOUNT:
        raise ValidationError.single(field, "exceeds the maximum amount")
    if _decimal_places(parsed) > AMOUNT_PLACES:
        raise ValidationError.single(field, "must have at most 2 decimal places")
    return parsed


# -----------------------------------------------------------------------------
# Type-specific details
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ReimbursementDetails:
    business_purpose: str
    expense_start_date: date | None = None
    expense_end_date: date | None = None
    department: str | None = None
    company: str | None = None


@dataclass(frozen=True)
class CashAdvanceDetails:
    advance_purpose: str
    expected_liquidation_date: date
    planned_expense_date: date | None = None
    destination: str | None = None
    remarks: str | None = None
    department: str | None = None
    company: str | None = None


@dataclass(frozen=True)
class LiquidationDetails:
    """Actual spend against ``advance_id``.

    ``remaining_amount`` is filled in by the engine once the advance is
    known; negative means the employee spent more than was advanced.
    """

    advance_id: str
    actual_amount: Decimal
    liquidation_summary: str
    department: str | None = None
    company: str | None = None
    remaining_amount: Decimal | None = None


RequestDetails = Union[ReimbursementDetails, CashAdvanceDetails, LiquidationDetails]

DETAILS_TYPES: dict[RequestType, type] = {
    RequestType.REIMBURSEMENT: ReimbursementDetails,
    RequestType.CASH_ADVANCE: CashAdvanceDetails,
    RequestType.LIQUIDATION: LiquidationDetails,
}

# Keys the caller may supply, per type.  remaining_amount is derived.
_ALLOWED_KEYS: dict[RequestType, frozenset[str]] = {
    RequestType.REIMBURSEMENT: frozenset({
        "business_purpose", "expense_start_date", "expense_end_date",
        "department", "company",
    }),
    RequestType.CASH_ADVANCE: frozenset({
        "advance_purpose", "expected_liquidation_date", "planned_expense_date",
        "destination", "remarks", "department", "company",
    }),
    RequestType.LIQUIDATION: frozenset({
        "advance_id", "actual_amount", "liquidation_summary",
        "department", "company",
    }),
}


@dataclass(frozen=True)
class Submission:
    """A validated submission, ready for routing."""

    request_type: RequestType
    amount: Decimal
    category: str
    description: str
    priority: Priority
    details: RequestDetails


class _Errors:
    def __init__(self) -> None:
        self.items: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.items.append({"field": field, "message": message})

    def raise_if_any(self) -> None:
        if self.items:
            raise ValidationError(self.items)


def _text(data: Mapping[str, Any], key: str, errors: _Errors, *, required: bool,
          prefix: str = "details.") -> str | None:
    value = data.get(key)
    if value is None:
        if required:
            errors.add(prefix + key, "is required")
        return None
    if not isinstance(value, str):
        errors.add(prefix + key, "must be a string")
        return None
    value = value.strip()
    if not value:
        if required:
            errors.add(prefix + key, "must not be blank")
        return None
    return value


def _date(data: Mapping[str, Any], key: str, errors: _Errors, *, required: bool) -> date | None:
    value = data.get(key)
    if value is None:
        if required:
            errors.add(f"details.{key}", "is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    errors.add(f"details.{key}", "must be an ISO date (YYYY-MM-DD)")
    return None


def parse_request_type(value: Any) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RequestType)
        raise ValidationError.single("request_type", f"must be one of {allowed}") from None


def parse_priority(value: Any, default: Priority = Priority.MEDIUM) -> Priority:
    if value is None:
        return default
    try:
        return Priority(value)
    except ValueError:
        allowed = ", ".join(p.value for p in Priority)
        raise ValidationError.single("priority", f"must be one of {allowed}") from None


def parse_details(request_type: RequestType, details: Mapping[str, Any] | None) -> RequestDetails:
    """Build the typed details for ``request_type`` or raise with every problem found."""
    errors = _Errors()
    data: Mapping[str, Any] = details or {}
    if not isinstance(data, Mapping):
        raise ValidationError.single("details", "must be a mapping")

    for key in sorted(set(data) - _ALLOWED_KEYS[request_type]):
        errors.add(f"details.{key}", f"is not a {request_type.value} field")

    department = _text(data, "department", errors, required=False)
    company = _text(data, "company", errors, required=False)

    if request_type is RequestType.REIMBURSEMENT:
        purpose = _text(data, "business_purpose", errors, required=True)
        start = _date(data, "expense_start_date", errors, required=False)
        end = _date(data, "expense_end_date", errors, required=False)
        if start and end and end < start:
            errors.add("details.expense_end_date", "must not be before expense_start_date")
        errors.raise_if_any()
        return ReimbursementDetails(
            business_purpose=purpose,
            expense_start_date=start,
            expense_end_date=end,
            department=department,
            company=company,
        )

    if request_type is RequestType.CASH_ADVANCE:
        purpose = _text(data, "advance_purpose", errors, required=True)
        expected = _date(data, "expected_liquidation_date", errors, required=True)
        planned = _date(data, "planned_expense_date", errors, required=False)
        if planned and expected and expected <= planned:
            errors.add(
                "details.expected_liquidation_date",
                "must be after planned_expense_date",
            )
        destination = _text(data, "destination", errors, required=False)
        remarks = _text(data, "remarks", errors, required=False)
        errors.raise_if_any()
        return CashAdvanceDetails(
            advance_purpose=purpose,
            expected_liquidation_date=expected,
            planned_expense_date=planned,
            destination=destination,
            remarks=remarks,
            department=department,
            company=company,
        )

    advance_id = _text(data, "advance_id", errors, required=True)
    summary = _text(data, "liquidation_summary", errors, required=True)
    actual = None
    if data.get("actual_amount") is None:
        errors.add("details.actual_amount", "is required")
    else:
        try:
            actual = validate_amount(data["actual_amount"], field="details.actual_amount")
        except ValidationError as exc:
            errors.items.extend(exc.field_errors)
    errors.raise_if_any()
    return LiquidationDetails(
        advance_id=advance_id,
        actual_amount=actual,
        liquidation_summary=summary,
        department=department,
        company=company,
    )


def validate_submission(
    request_type: Any,
    amount: Any,
    category: Any,
    description: Any,
    details: Mapping[str, Any] | None,
    *,
    priority: Any = None,
    default_priority: Priority = Priority.MEDIUM,
) -> Submission:
    """Validate a whole submission.

    For liquidations ``amount`` may be omitted; it always equals
    ``details.actual_amount``.
    """
    rtype = parse_request_type(request_type)
    errors = _Errors()
    top = {"category": category, "description": description}

    cat = _text(top, "category", errors, required=True, prefix="")
    desc = _text(top, "description", errors, required=True, prefix="")

    prio = default_priority
    try:
        prio = parse_priority(priority, default_priority)
    except ValidationError as exc:
        errors.items.extend(exc.field_errors)

    parsed_details = None
    try:
        parsed_details = parse_details(rtype, details)
    except ValidationError as exc:
        errors.items.extend(exc.field_errors)

    value = None
    if rtype is RequestType.LIQUIDATION and amount is None:
        if parsed_details is not None:
            value = parsed_details.actual_amount
    else:
        try:
            value = validate_amount(amount)
        except ValidationError as exc:
            errors.items.extend(exc.field_errors)
    if (
        rtype is RequestType.LIQUIDATION
        and value is not None
        and parsed_details is not None
        and value != parsed_details.actual_amount
    ):
        errors.add("amount", "must equal details.actual_amount for a liquidation")

    errors.raise_if_any()
    return Submission(
        request_type=rtype,
        amount=value,
        category=cat,
        description=desc,
        priority=prio,
        details=parsed_details,
    )
