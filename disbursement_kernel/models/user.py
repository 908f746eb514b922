"""
Module: disbursement_kernel.models.user
Responsibility: ORM persistence for the user directory.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain value objects.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from disbursement_kernel.db.base import Base
from disbursement_kernel.domain.types import Role, User

_ROLE_VALUES = ", ".join(f"'{r.value}'" for r in Role)


class UserModel(Base):
    """A person who can submit or act on requests."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(f"role IN ({_ROLE_VALUES})", name="ck_users_valid_role"),
    )

    user_id: Mapped[int] = mapped_column(nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str | None] = mapped_column(String(254), nullable=True, unique=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.user_id} {self.name} ({self.role})>"

    def to_domain(self) -> User:
        return User(
            user_id=self.user_id,
            name=self.name,
            role=Role(self.role),
            email=self.email,
            department=self.department,
        )

    @classmethod
    def from_domain(cls, user: User) -> UserModel:
        return cls(
            user_id=user.user_id,
            name=user.name,
            role=user.role.value,
            email=user.email,
            department=user.department,
        )
