"""Implementations of the request repository and user directory ports."""

from disbursement_kernel.repositories.memory import (
    InMemoryRequestRepository,
    InMemoryUserDirectory,
)
from disbursement_kernel.repositories.sql import SqlRequestRepository, SqlUserDirectory

__all__ = [
    "InMemoryRequestRepository",
    "InMemoryUserDirectory",
    "SqlRequestRepository",
    "SqlUserDirectory",
]
