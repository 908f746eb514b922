"""
In-memory repository and user directory.

Responsibility:
    Process-local implementations of the persistence ports, used by tests
    and by embedders that do not need a database.

Invariants enforced:
    - A unit of work holds a per-request ``threading.RLock`` for every
      request it loads for update, until it exits.
    - Work happens on deep copies; nothing becomes visible to readers until
      the unit of work exits cleanly.  An exception discards every change.
    - Readers always get deep copies, never the committed objects.

Non-goals:
    - Gap-free ids: a rolled-back submission consumes its number.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from disbursement_kernel.domain.ports import RequestPredicate
from disbursement_kernel.domain.request import DisbursementRequest, format_request_id
from disbursement_kernel.domain.types import User
from disbursement_kernel.exceptions import RequestNotFoundError, UserNotFoundError
from disbursement_kernel.logging_config import get_logger

logger = get_logger("repositories.memory")


class _MemoryUnitOfWork:
    def __init__(self, repo: InMemoryRequestRepository):
        self._repo = repo
        self._staged: dict[str, DisbursementRequest] = {}
        self._held: list[threading.RLock] = []

    def next_request_id(self) -> str:
        return self._repo._allocate_id()

    def load_for_update(self, request_id: str) -> DisbursementRequest:
        if request_id in self._staged:
            return self._staged[request_id]
        lock = self._repo._lock_for(request_id)
        lock.acquire()
        self._held.append(lock)
        committed = self._repo._committed.get(request_id)
        if committed is None:
            raise RequestNotFoundError(request_id)
        working = copy.deepcopy(committed)
        self._staged[request_id] = working
        return working

    def add(self, request: DisbursementRequest) -> None:
        if request.request_id in self._repo._committed or request.request_id in self._staged:
            raise ValueError(f"Request {request.request_id} already exists")
        self._staged[request.request_id] = request

    def save(self, request: DisbursementRequest) -> None:
        if request.request_id not in self._staged:
            raise ValueError(
                f"Request {request.request_id} was not loaded in this unit of work"
            )
        self._staged[request.request_id] = request

    def find(self, predicate: RequestPredicate) -> list[DisbursementRequest]:
        merged = dict(self._repo._snapshot())
        merged.update(self._staged)
        return [copy.deepcopy(r) for r in merged.values() if predicate(r)]

    def _commit(self) -> None:
        self._repo._publish(self._staged)

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()


class InMemoryRequestRepository:
    """Thread-safe dict-backed ``RequestRepository``."""

    def __init__(self, id_prefix: str = "REQ", id_width: int = 3):
        self._id_prefix = id_prefix
        self._id_width = id_width
        self._committed: dict[str, DisbursementRequest] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._last_value = 0

    @contextmanager
    def unit_of_work(self) -> Iterator[_MemoryUnitOfWork]:
        uow = _MemoryUnitOfWork(self)
        try:
            yield uow
            uow._commit()
        except Exception:
            logger.debug("unit_of_work_discarded", extra={"requests": sorted(uow._staged)})
            raise
        finally:
            uow._release()

    def get(self, request_id: str) -> DisbursementRequest:
        with self._registry_lock:
            committed = self._committed.get(request_id)
            if committed is None:
                raise RequestNotFoundError(request_id)
            return copy.deepcopy(committed)

    def list(self, predicate: RequestPredicate | None = None) -> list[DisbursementRequest]:
        return [
            copy.deepcopy(r)
            for r in self._snapshot().values()
            if predicate is None or predicate(r)
        ]

    # -- internals -----------------------------------------------------------

    def _snapshot(self) -> dict[str, DisbursementRequest]:
        with self._registry_lock:
            return dict(self._committed)

    def _publish(self, staged: dict[str, DisbursementRequest]) -> None:
        with self._registry_lock:
            for request_id, request in staged.items():
                self._committed[request_id] = copy.deepcopy(request)

    def _lock_for(self, request_id: str) -> threading.RLock:
        # Locks exist only for committed ids
        with self._registry_lock:
            lock = self._locks.get(request_id)
            if lock is None:
                if request_id not in self._committed:
                    raise RequestNotFoundError(request_id)
                lock = threading.RLock()
                self._locks[request_id] = lock
            return lock

    def _allocate_id(self) -> str:
        with self._registry_lock:
            self._last_value += 1
            value = self._last_value
        return format_request_id(self._id_prefix, self._id_width, value)


class InMemoryUserDirectory:
    """``UserDirectory`` over a fixed set of users."""

    def __init__(self, users: Iterable[User] = ()):
        self._users: dict[int, User] = {}
        for user in users:
            self.add(user)

    def add(self, user: User) -> None:
        self._users[user.user_id] = user

    def get(self, user_id: int) -> User:
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotFoundError(user_id) from None

    def all(self) -> list[User]:
        return sorted(self._users.values(), key=lambda u: u.user_id)
