"""
Parameterized statement execution.

Statements are shaped into one of four results: the generated row id of an
insert, the affected-row count of a non-query, a single scalar value, or a
stream of rows handed to a consumer. Each shape is available in a blocking
mode (``StatementExecutor``) and a suspending mode
(``AsyncStatementExecutor``); both share the same binding, shaping and
failure handling and differ only in how they open connections and wait on
the driver.

Every shape accepts an optional caller-owned connection. Without one, a
private connection is opened, committed on success and closed on every exit
path. With one, the statement joins the caller's transaction and the
connection is left open and uncommitted.

Database failures never escape a shape call: they are logged at critical
level and returned in the ``Outcome`` alongside the shape's zero value.
"""

from __future__ import annotations

import enum
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import structlog
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from mmostore.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    DatabaseError,
    ErrorKind,
    StatementError,
)

if TYPE_CHECKING:
    from sqlalchemy import Connection, CursorResult, Row, TextClause
    from sqlalchemy.ext.asyncio import AsyncConnection

    from mmostore.database import ConnectionFactory

logger = structlog.get_logger()

T = TypeVar("T")

Params = Mapping[str, Any] | Sequence[tuple[str, Any]] | None
RowConsumer = Callable[["Row[Any]"], Any]


class Shape(enum.Enum):
    INSERT = "insert"
    NON_QUERY = "non_query"
    SCALAR = "scalar"
    READER = "reader"


_ZERO: dict[Shape, Any] = {
    Shape.INSERT: 0,
    Shape.NON_QUERY: 0,
    Shape.SCALAR: None,
    Shape.READER: 0,
}


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a statement: a value, or the shape's zero value plus the error."""

    value: T
    error: DatabaseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error is not None else None

    def value_or(self, default: T) -> T:
        """Return the value, or ``default`` on failure or when the value is None."""
        if self.error is not None or self.value is None:
            return default
        return self.value


def bind(sql: str, params: Params = None) -> tuple[TextClause, dict[str, Any]]:
    """
    Pair statement text with its bound values.

    ``params`` is a mapping or a sequence of ``(name, value)`` pairs; a
    leading ``:`` on a name is ignored. Values are only ever passed to the
    driver as bind parameters.
    """
    pairs = params.items() if isinstance(params, Mapping) else (params or ())
    values = {name.lstrip(":"): value for name, value in pairs}
    return text(sql), values


def shape_result(shape: Shape, result: CursorResult[Any], on_row: RowConsumer | None = None) -> Any:
    """Reduce a driver result to the value the shape promises."""
    if shape is Shape.INSERT:
        return int(result.lastrowid or 0)
    if shape is Shape.NON_QUERY:
        return max(int(result.rowcount), 0)
    if shape is Shape.SCALAR:
        return result.scalar()

    consumed = 0
    try:
        for row in result:
            if on_row is not None:
                on_row(row)
            consumed += 1
    finally:
        result.close()
    return consumed


def _classify(exc: SQLAlchemyError, statement: str) -> StatementError:
    if isinstance(exc, IntegrityError):
        return ConstraintViolationError(str(exc.orig or exc), statement=statement)
    return StatementError(str(exc), statement=statement)


class _BaseExecutor:
    """Failure policy shared by both execution modes."""

    def __init__(self, factory: ConnectionFactory) -> None:
        self._factory = factory

    @property
    def factory(self) -> ConnectionFactory:
        return self._factory

    def _connection_error(self, exc: SQLAlchemyError, statement: str | None = None) -> DatabaseConnectionError:
        logger.critical(
            "connection_failed",
            target=self._factory.describe(),
            statement=statement,
            exc_info=exc,
        )
        return DatabaseConnectionError(str(exc), statement=statement)

    def _statement_error(self, exc: SQLAlchemyError, statement: str, shape: Shape | None = None) -> StatementError:
        error = _classify(exc, statement)
        logger.critical(
            "statement_failed",
            shape=shape.value if shape is not None else None,
            kind=error.kind.value,
            statement=statement,
            exc_info=exc,
        )
        return error

    @staticmethod
    def _failed(shape: Shape, error: DatabaseError) -> Outcome[Any]:
        return Outcome(_ZERO[shape], error)


class StatementExecutor(_BaseExecutor):
    """Blocking executor. Never yields while waiting on the database."""

    def insert(self, sql: str, params: Params = None, *, connection: Connection | None = None) -> Outcome[int]:
        """Run a statement that creates one row; value is the generated row id."""
        return self._execute(Shape.INSERT, sql, params, None, connection)

    def non_query(self, sql: str, params: Params = None, *, connection: Connection | None = None) -> Outcome[int]:
        """Run a statement without a result set; value is the affected row count."""
        return self._execute(Shape.NON_QUERY, sql, params, None, connection)

    def scalar(self, sql: str, params: Params = None, *, connection: Connection | None = None) -> Outcome[Any]:
        """Run a statement returning at most one value; value is it, or None."""
        return self._execute(Shape.SCALAR, sql, params, None, connection)

    def reader(
        self,
        sql: str,
        on_row: RowConsumer,
        params: Params = None,
        *,
        connection: Connection | None = None,
    ) -> Outcome[int]:
        """Run a query and pass each row to ``on_row``; value is the row count."""
        return self._execute(Shape.READER, sql, params, on_row, connection)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Open a connection inside a transaction and yield it.

        Commits on normal exit, rolls back on exception, always closes.

        Raises:
            DatabaseConnectionError: If the connection cannot be opened.
            StatementError: If the body, commit or rollback fails in the driver.
        """
        try:
            connection = self._factory.connect()
        except SQLAlchemyError as exc:
            raise self._connection_error(exc) from exc

        try:
            with connection, connection.begin():
                yield connection
        except SQLAlchemyError as exc:
            raise self._statement_error(exc, "<transaction>") from exc

    def _execute(
        self,
        shape: Shape,
        sql: str,
        params: Params,
        on_row: RowConsumer | None,
        connection: Connection | None,
    ) -> Outcome[Any]:
        clause, values = bind(sql, params)
        if connection is not None:
            return self._run(connection, shape, clause, values, on_row, commit=False)

        try:
            private = self._factory.connect()
        except SQLAlchemyError as exc:
            return self._failed(shape, self._connection_error(exc, sql))

        with private:
            return self._run(private, shape, clause, values, on_row, commit=True)

    def _run(
        self,
        connection: Connection,
        shape: Shape,
        clause: TextClause,
        values: dict[str, Any],
        on_row: RowConsumer | None,
        *,
        commit: bool,
    ) -> Outcome[Any]:
        try:
            result = connection.execute(clause, values)
            value = shape_result(shape, result, on_row)
            if commit:
                connection.commit()
        except SQLAlchemyError as exc:
            return self._failed(shape, self._statement_error(exc, clause.text, shape))
        return Outcome(value)


class AsyncStatementExecutor(_BaseExecutor):
    """Suspending executor. Yields only on connection open and statement execution."""

    async def insert(
        self, sql: str, params: Params = None, *, connection: AsyncConnection | None = None
    ) -> Outcome[int]:
        """Run a statement that creates one row; value is the generated row id."""
        return await self._execute(Shape.INSERT, sql, params, None, connection)

    async def non_query(
        self, sql: str, params: Params = None, *, connection: AsyncConnection | None = None
    ) -> Outcome[int]:
        """Run a statement without a result set; value is the affected row count."""
        return await self._execute(Shape.NON_QUERY, sql, params, None, connection)

    async def scalar(
        self, sql: str, params: Params = None, *, connection: AsyncConnection | None = None
    ) -> Outcome[Any]:
        """Run a statement returning at most one value; value is it, or None."""
        return await self._execute(Shape.SCALAR, sql, params, None, connection)

    async def reader(
        self,
        sql: str,
        on_row: RowConsumer,
        params: Params = None,
        *,
        connection: AsyncConnection | None = None,
    ) -> Outcome[int]:
        """Run a query and pass each row to ``on_row``; value is the row count."""
        return await self._execute(Shape.READER, sql, params, on_row, connection)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Open a connection inside a transaction and yield it.

        Commits on normal exit, rolls back on exception, always closes.

        Raises:
            DatabaseConnectionError: If the connection cannot be opened.
            StatementError: If the body, commit or rollback fails in the driver.
        """
        try:
            connection = await self._factory.connect_async()
        except SQLAlchemyError as exc:
            raise self._connection_error(exc) from exc

        try:
            async with connection.begin():
                yield connection
        except SQLAlchemyError as exc:
            raise self._statement_error(exc, "<transaction>") from exc
        finally:
            await connection.close()

    async def _execute(
        self,
        shape: Shape,
        sql: str,
        params: Params,
        on_row: RowConsumer | None,
        connection: AsyncConnection | None,
    ) -> Outcome[Any]:
        clause, values = bind(sql, params)
        if connection is not None:
            return await self._run(connection, shape, clause, values, on_row, commit=False)

        try:
            private = await self._factory.connect_async()
        except SQLAlchemyError as exc:
            return self._failed(shape, self._connection_error(exc, sql))

        try:
            return await self._run(private, shape, clause, values, on_row, commit=True)
        finally:
            await private.close()

    async def _run(
        self,
        connection: AsyncConnection,
        shape: Shape,
        clause: TextClause,
        values: dict[str, Any],
        on_row: RowConsumer | None,
        *,
        commit: bool,
    ) -> Outcome[Any]:
        try:
            # Async results arrive fully buffered, so shaping does not wait
            result = await connection.execute(clause, values)
            value = shape_result(shape, result, on_row)
            if commit:
                await connection.commit()
        except SQLAlchemyError as exc:
            return self._failed(shape, self._statement_error(exc, clause.text, shape))
        return Outcome(value)
