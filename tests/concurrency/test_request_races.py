"""
Concurrency tests for the workflow engine.

Threads released together by a Barrier race on the same request.  The
per-request lock held by a unit of work must serialize them so that
exactly one transition wins and the loser sees the winner's state.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from disbursement_kernel.domain.types import RequestStatus, RequestType, Role
from disbursement_kernel.exceptions import (
    AdvanceNotFoundError,
    DisbursementError,
    RequestNotFoundError,
    WorkflowError,
)
from tests.conftest import APPROVE, REJECT

THREADS = 8


def _race(calls):
    """Run every callable at once; return (results, errors)."""
    barrier = Barrier(len(calls))

    def _run(fn):
        barrier.wait()
        try:
            return fn(), None
        except DisbursementError as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        outcomes = list(pool.map(_run, calls))
    results = [r for r, _ in outcomes if r is not None]
    errors = [e for _, e in outcomes if e is not None]
    return results, errors


class TestConcurrentActions:

    def test_approve_vs_reject_one_winner(self, engine, cast, submit_reimbursement):
        request = submit_reimbursement()
        rid = request.request_id
        manager = cast.manager.user_id
        calls = [
            (lambda a=action: engine.apply_action(rid, a, manager))
            for action in [APPROVE, REJECT] * (THREADS // 2)
        ]

        results, errors = _race(calls)

        assert len(results) == 1
        assert len(errors) == THREADS - 1
        assert all(isinstance(e, WorkflowError) for e in errors)

        stored = engine.get_request(rid)
        assert stored.status in (RequestStatus.PENDING_FINANCE, RequestStatus.REJECTED)
        assert len(stored.timeline) == 2

    def test_duplicate_finance_approvals(self, engine, cast, submit_reimbursement, drive):
        request = submit_reimbursement()
        drive(request.request_id, (Role.MANAGER, APPROVE))
        finance = cast.finance.user_id

        results, errors = _race([
            (lambda: engine.apply_action(request.request_id, APPROVE, finance))
            for _ in range(THREADS)
        ])

        assert len(results) == 1
        assert len(errors) == THREADS - 1
        stored = engine.get_request(request.request_id)
        assert stored.status is RequestStatus.APPROVED
        assert len(stored.timeline) == 3


class TestConcurrentSubmissions:

    def test_ids_unique_and_dense(self, engine, submit_reimbursement):
        results, errors = _race([submit_reimbursement for _ in range(THREADS)])

        assert errors == []
        ids = sorted(r.request_id for r in results)
        assert ids == [f"REQ{n:03d}" for n in range(1, THREADS + 1)]

    def test_one_liquidation_per_advance(self, engine, advance_awaiting_liquidation, submit_liquidation):
        results, errors = _race([
            (lambda: submit_liquidation(advance_awaiting_liquidation))
            for _ in range(THREADS)
        ])

        assert len(results) == 1
        assert len(errors) == THREADS - 1
        open_liquidations = [
            r for r in engine.get_inbox(Role.FINANCE)
            if r.request_type is RequestType.LIQUIDATION
        ]
        assert len(open_liquidations) == 1


class TestLockRegistry:
    """Per-request locks exist only for requests that were committed."""

    def test_unknown_ids_leave_no_locks(self, engine, cast, submit_liquidation):
        repo = engine._repository
        for n in range(THREADS):
            with pytest.raises(RequestNotFoundError):
                engine.apply_action(f"REQ9{n:02d}", APPROVE, cast.manager.user_id)
        with pytest.raises(AdvanceNotFoundError):
            submit_liquidation("REQ404")
        assert repo._locks == {}

    def test_lock_reused_for_known_request(self, engine, cast, submit_reimbursement, drive):
        request = submit_reimbursement()
        drive(request.request_id, (Role.MANAGER, APPROVE), (Role.FINANCE, APPROVE))
        assert list(engine._repository._locks) == [request.request_id]
