"""Port definitions for persistence and user lookup.

Responsibilities:
  - Define the contracts the workflow engine and selectors depend on.
Must not:
  - Implement logic; interfaces only.
"""

from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import Protocol

from disbursement_kernel.domain.request import DisbursementRequest
from disbursement_kernel.domain.types import User

RequestPredicate = Callable[[DisbursementRequest], bool]


class RequestUnitOfWork(Protocol):
    """One atomic, locked read-modify-write over one or more requests.

    Changes become visible to other readers only when the owning context
    manager exits without an exception.
    """

    def next_request_id(self) -> str:
        ...

    def load_for_update(self, request_id: str) -> DisbursementRequest:
        """Load and lock ``request_id``; raises ``RequestNotFoundError``."""
        ...

    def add(self, request: DisbursementRequest) -> None:
        ...

    def save(self, request: DisbursementRequest) -> None:
        ...

    def find(self, predicate: RequestPredicate) -> list[DisbursementRequest]:
        """Committed requests matching ``predicate``, unlocked."""
        ...


class RequestRepository(Protocol):
    def unit_of_work(self) -> AbstractContextManager[RequestUnitOfWork]:
        ...

    def get(self, request_id: str) -> DisbursementRequest:
        """Snapshot of a committed request; raises ``RequestNotFoundError``."""
        ...

    def list(self, predicate: RequestPredicate | None = None) -> list[DisbursementRequest]:
        ...


class UserDirectory(Protocol):
    def get(self, user_id: int) -> User:
        """Raises ``UserNotFoundError`` for unknown ids."""
        ...
