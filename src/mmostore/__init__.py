"""Account, authentication and counter persistence for a multiplayer game server."""

from mmostore.accounts import AUTH_TYPE_NORMAL, AccountRepository
from mmostore.database import ConnectionFactory, build_url
from mmostore.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    DatabaseError,
    ErrorKind,
    StatementError,
)
from mmostore.executor import AsyncStatementExecutor, Outcome, StatementExecutor
from mmostore.migrations import Migration, MigrationLedger, MigrationRunner
from mmostore.store import AccountStore, open_account_store

__version__ = "0.1.0"

__all__ = [
    "AUTH_TYPE_NORMAL",
    "AccountRepository",
    "AccountStore",
    "AsyncStatementExecutor",
    "ConnectionFactory",
    "ConstraintViolationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "ErrorKind",
    "Migration",
    "MigrationLedger",
    "MigrationRunner",
    "Outcome",
    "StatementError",
    "StatementExecutor",
    "build_url",
    "open_account_store",
]
