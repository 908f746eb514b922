"""
SQLAlchemy repository and user directory.

Responsibility:
    Persistence ports backed by the ORM models.  One unit of work is one
    session and one transaction.

Invariants enforced:
    - Requests mutated in a unit of work are loaded with
      ``SELECT ... FOR UPDATE``; a second writer blocks until the first
      commits, then re-reads the committed row (``populate_existing``).
    - The ``version_id`` column catches writers that bypassed the lock;
      StaleDataError surfaces as ``OptimisticLockError``.
    - Timeline rows are only ever inserted.
    - Request ids come from ``SequenceService`` inside the same transaction.

Failure modes:
    - RequestNotFoundError / UserNotFoundError for unknown ids.
    - OptimisticLockError on a concurrent modification.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from disbursement_kernel.db.engine import session_scope
from disbursement_kernel.domain.ports import RequestPredicate
from disbursement_kernel.domain.request import DisbursementRequest, format_request_id
from disbursement_kernel.domain.types import User
from disbursement_kernel.exceptions import (
    OptimisticLockError,
    RequestNotFoundError,
    UserNotFoundError,
)
from disbursement_kernel.logging_config import get_logger
from disbursement_kernel.models.request import RequestModel
from disbursement_kernel.models.user import UserModel
from disbursement_kernel.services.sequence_service import SequenceService

logger = get_logger("repositories.sql")


class _SqlUnitOfWork:
    def __init__(self, session: Session, id_prefix: str, id_width: int):
        self._session = session
        self._id_prefix = id_prefix
        self._id_width = id_width
        self._models: dict[str, RequestModel] = {}

    def next_request_id(self) -> str:
        value = SequenceService(self._session).next_value(SequenceService.REQUEST)
        return format_request_id(self._id_prefix, self._id_width, value)

    def load_for_update(self, request_id: str) -> DisbursementRequest:
        model = self._models.get(request_id)
        if model is None:
            model = self._session.execute(
                select(RequestModel)
                .where(RequestModel.request_id == request_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if model is None:
                raise RequestNotFoundError(request_id)
            self._models[request_id] = model
        return model.to_domain()

    def add(self, request: DisbursementRequest) -> None:
        model = RequestModel.from_domain(request)
        self._session.add(model)
        self._models[request.request_id] = model

    def save(self, request: DisbursementRequest) -> None:
        model = self._models.get(request.request_id)
        if model is None:
            raise ValueError(
                f"Request {request.request_id} was not loaded in this unit of work"
            )
        model.apply_domain(request)

    def find(self, predicate: RequestPredicate) -> list[DisbursementRequest]:
        models = self._session.execute(
            select(RequestModel).order_by(RequestModel.created_at, RequestModel.request_id)
        ).scalars()
        return [r for r in (m.to_domain() for m in models) if predicate(r)]


class SqlRequestRepository:
    """``RequestRepository`` over a SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        id_prefix: str = "REQ",
        id_width: int = 3,
    ):
        self._session_factory = session_factory
        self._id_prefix = id_prefix
        self._id_width = id_width

    @contextmanager
    def unit_of_work(self) -> Iterator[_SqlUnitOfWork]:
        uow: _SqlUnitOfWork | None = None
        try:
            with session_scope(self._session_factory) as session:
                uow = _SqlUnitOfWork(session, self._id_prefix, self._id_width)
                yield uow
        except StaleDataError as exc:
            entity_id = ",".join(sorted(uow._models)) if uow else ""
            logger.warning("optimistic_lock_conflict", extra={"entity_id": entity_id})
            raise OptimisticLockError("DisbursementRequest", entity_id) from exc

    def get(self, request_id: str) -> DisbursementRequest:
        with self._session_factory() as session:
            model = session.execute(
                select(RequestModel).where(RequestModel.request_id == request_id)
            ).scalar_one_or_none()
            if model is None:
                raise RequestNotFoundError(request_id)
            return model.to_domain()

    def list(self, predicate: RequestPredicate | None = None) -> list[DisbursementRequest]:
        with self._session_factory() as session:
            models = session.execute(
                select(RequestModel).order_by(RequestModel.created_at, RequestModel.request_id)
            ).scalars()
            requests = [m.to_domain() for m in models]
        if predicate is None:
            return requests
        return [r for r in requests if predicate(r)]


class SqlUserDirectory:
    """``UserDirectory`` over the ``users`` table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, user_id: int) -> User:
        with self._session_factory() as session:
            model = session.execute(
                select(UserModel).where(UserModel.user_id == user_id)
            ).scalar_one_or_none()
            if model is None:
                raise UserNotFoundError(user_id)
            return model.to_domain()

    def add(self, user: User) -> None:
        with session_scope(self._session_factory) as session:
            session.add(UserModel.from_domain(user))
