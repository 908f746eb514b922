"""
Tests for the SQL-backed repository and user directory, driven through
the workflow engine.

Runs against in-memory SQLite unless DATABASE_URL points at PostgreSQL.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from disbursement_kernel.db.engine import session_scope
from disbursement_kernel.domain.types import (
    EventOrigin,
    RequestStatus,
    RequestType,
    Role,
    User,
)
from disbursement_kernel.exceptions import (
    AlreadyTerminalError,
    InvalidTransitionError,
    OptimisticLockError,
    RequestNotFoundError,
    UnauthorizedActionError,
    UserNotFoundError,
    ValidationError,
)
from disbursement_kernel.models.request import RequestModel, TimelineEventModel
from disbursement_kernel.repositories.sql import SqlRequestRepository, SqlUserDirectory
from tests.conftest import (
    APPROVE,
    MARK_PAID,
    PROCESS,
    REJECT,
    cash_advance_details,
    reimbursement_details,
)


def _reimbursement(engine, submitter, amount="5000"):
    return engine.submit_request(
        RequestType.REIMBURSEMENT, submitter.user_id, amount, "Travel", "Taxi",
        reimbursement_details(),
    )


def _advance(engine, submitter, amount="25000"):
    return engine.submit_request(
        RequestType.CASH_ADVANCE, submitter.user_id, amount, "Travel", "Trade show",
        cash_advance_details(),
    )


def _act(engine, cast, request_id, *steps):
    request = None
    for role, action in steps:
        request = engine.apply_action(request_id, action, cast.by_role(role).user_id)
    return request


class TestSqlLifecycle:

    def test_reimbursement_to_paid(self, sql_engine, cast):
        request = _reimbursement(sql_engine, cast.employee)
        assert request.request_id == "REQ001"

        _act(
            sql_engine, cast, request.request_id,
            (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE),
            (Role.FINANCE, PROCESS), (Role.FINANCE, MARK_PAID),
        )

        stored = sql_engine.get_request("REQ001")
        assert stored.status is RequestStatus.PAID
        assert stored.next_action_by == frozenset()
        assert stored.amount == Decimal("5000")
        assert [e.decision.value for e in stored.timeline] == [
            "submitted", "validated", "approved", "validated", "released",
        ]

    def test_advance_liquidation_in_one_transaction(self, sql_engine, cast):
        advance = _advance(sql_engine, cast.employee)
        _act(
            sql_engine, cast, advance.request_id,
            (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE),
            (Role.CEO, APPROVE), (Role.FINANCE, PROCESS),
        )
        liquidation = sql_engine.submit_request(
            RequestType.LIQUIDATION, cast.employee.user_id, None, "Travel", "Liquidation",
            {"advance_id": advance.request_id, "actual_amount": "24000", "liquidation_summary": "Hotel"},
        )
        assert liquidation.details.remaining_amount == Decimal("1000")

        sql_engine.apply_action(liquidation.request_id, APPROVE, cast.finance.user_id)

        closed = sql_engine.get_request(advance.request_id)
        assert closed.status is RequestStatus.LIQUIDATED
        assert closed.timeline[-1].origin is EventOrigin.SYSTEM
        assert closed.timeline[-1].comment == f"Liquidated by {liquidation.request_id}"

        reloaded = sql_engine.get_request(liquidation.request_id)
        assert reloaded.details.remaining_amount == Decimal("1000")
        assert reloaded.details.advance_id == advance.request_id

    def test_failed_action_rolls_back(self, sql_engine, cast, sql_session_factory):
        request = _reimbursement(sql_engine, cast.employee)
        with pytest.raises(UnauthorizedActionError):
            sql_engine.apply_action(request.request_id, APPROVE, cast.ceo.user_id)

        with session_scope(sql_session_factory) as session:
            count = session.execute(select(func.count()).select_from(TimelineEventModel)).scalar_one()
        assert count == 1
        assert sql_engine.get_request(request.request_id).status is RequestStatus.PENDING_VALIDATION

    def test_terminal_request_rejects_actions(self, sql_engine, cast):
        request = _reimbursement(sql_engine, cast.employee)
        _act(sql_engine, cast, request.request_id, (Role.MANAGER, REJECT))
        with pytest.raises(AlreadyTerminalError):
            sql_engine.apply_action(request.request_id, APPROVE, cast.manager.user_id)

    def test_failed_settlement_keeps_liquidation_pending(self, sql_engine, cast, sql_session_factory):
        advance = _advance(sql_engine, cast.employee, amount="100")
        _act(
            sql_engine, cast, advance.request_id,
            (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE), (Role.FINANCE, PROCESS),
        )
        liquidation = sql_engine.submit_request(
            RequestType.LIQUIDATION, cast.employee.user_id, None, "Travel", "Liquidation",
            {"advance_id": advance.request_id, "actual_amount": "90", "liquidation_summary": "Taxi"},
        )
        with session_scope(sql_session_factory) as session:
            model = session.execute(
                select(RequestModel).where(RequestModel.request_id == advance.request_id)
            ).scalar_one()
            model.status = RequestStatus.LIQUIDATED.value
            model.next_action_by = []

        with pytest.raises(InvalidTransitionError):
            sql_engine.apply_action(liquidation.request_id, APPROVE, cast.finance.user_id)
        assert sql_engine.get_request(liquidation.request_id).status is RequestStatus.PENDING_FINANCE


class TestAmountPrecision:
    """Both backends route and store the same amount."""

    @pytest.fixture(params=["engine", "sql_engine"])
    def any_engine(self, request):
        return request.getfixturevalue(request.param)

    @pytest.mark.parametrize("amount", ["20000.001", "0.001"])
    def test_sub_cent_amount_rejected_at_submit(self, any_engine, cast, amount):
        with pytest.raises(ValidationError) as exc_info:
            _reimbursement(any_engine, cast.employee, amount)
        assert exc_info.value.field_errors == [
            {"field": "amount", "message": "must have at most 2 decimal places"},
        ]
        assert any_engine.get_requests_for(cast.manager.user_id) == []

    def test_amount_above_threshold_escalates_after_reload(self, any_engine, cast):
        request = _reimbursement(any_engine, cast.employee, "20000.01")
        _act(any_engine, cast, request.request_id, (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE))

        stored = any_engine.get_request(request.request_id)
        assert stored.amount == Decimal("20000.01")
        assert stored.status is RequestStatus.PENDING_CEO

    def test_smallest_amount_completes(self, any_engine, cast):
        request = _reimbursement(any_engine, cast.employee, "0.01")
        _act(
            any_engine, cast, request.request_id,
            (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE),
        )
        stored = any_engine.get_request(request.request_id)
        assert stored.amount == Decimal("0.01")
        assert stored.status is RequestStatus.APPROVED


class TestSqlReads:

    def test_unknown_request(self, sql_engine):
        with pytest.raises(RequestNotFoundError):
            sql_engine.get_request("REQ404")

    def test_list_and_inbox(self, sql_engine, cast):
        first = _reimbursement(sql_engine, cast.employee)
        second = _reimbursement(sql_engine, cast.other_employee)
        _act(sql_engine, cast, first.request_id, (Role.MANAGER, APPROVE))

        assert [r.request_id for r in sql_engine.get_inbox(Role.MANAGER)] == [second.request_id]
        assert [r.request_id for r in sql_engine.get_inbox(Role.FINANCE)] == [first.request_id]
        assert len(sql_engine.get_requests_for(cast.employee.user_id)) == 1
        assert len(sql_engine.get_requests_for(cast.ceo.user_id)) == 2


class TestSqlUserDirectory:

    def test_round_trip(self, sql_session_factory):
        users = SqlUserDirectory(sql_session_factory)
        users.add(User(5, "Dan Uy", Role.FINANCE, "dan@example.com", "Finance"))
        assert users.get(5) == User(5, "Dan Uy", Role.FINANCE, "dan@example.com", "Finance")

    def test_unknown_user(self, sql_session_factory):
        with pytest.raises(UserNotFoundError):
            SqlUserDirectory(sql_session_factory).get(404)


class TestOptimisticLock:

    def test_concurrent_modification_detected(self, sql_engine, cast, sql_session_factory):
        request = _reimbursement(sql_engine, cast.employee)
        repo = SqlRequestRepository(sql_session_factory)

        with pytest.raises(OptimisticLockError) as exc_info:
            with repo.unit_of_work() as uow:
                loaded = uow.load_for_update(request.request_id)
                # Another writer bumps the version behind the ORM's back.
                uow._session.execute(
                    RequestModel.__table__.update()
                    .where(RequestModel.__table__.c.request_id == request.request_id)
                    .values(version_id=RequestModel.__table__.c.version_id + 1)
                )
                loaded.apply(APPROVE, cast.manager.as_actor(), sql_engine.policy, loaded.created_at)
                uow.save(loaded)

        assert exc_info.value.entity_id == request.request_id
        assert sql_engine.get_request(request.request_id).status is RequestStatus.PENDING_VALIDATION
