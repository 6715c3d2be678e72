"""Database error taxonomy.

Failures are caught where they happen and handed back to callers inside an
``Outcome`` rather than raised, so every error carries the kind it was
classified as.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    """Category of a database failure."""

    CONNECTION = "connection"
    STATEMENT = "statement"
    CONSTRAINT = "constraint"


class DatabaseError(Exception):
    """Base class for failures reported by the statement executor."""

    kind: ErrorKind = ErrorKind.STATEMENT

    def __init__(self, message: str, *, statement: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement


class DatabaseConnectionError(DatabaseError):
    """A connection could not be opened."""

    kind = ErrorKind.CONNECTION


class StatementError(DatabaseError):
    """Execution or driver-level fault while running a statement."""

    kind = ErrorKind.STATEMENT


class ConstraintViolationError(StatementError):
    """The database rejected a write because of an integrity constraint."""

    kind = ErrorKind.CONSTRAINT
