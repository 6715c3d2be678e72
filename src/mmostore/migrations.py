"""
Schema migrations tracked by an append-only ledger table.

The ledger only answers "has this id been applied" and records ids; it does
not deduplicate or check ordering. ``MigrationRunner`` is the one place that
decides to run a migration body, and it records the id in the same
transaction as the body.

On MySQL, DDL statements commit implicitly, so a failed body may leave part
of its schema changes behind even though its ledger row is rolled back.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from mmostore import schema
from mmostore.errors import DatabaseError

if TYPE_CHECKING:
    from sqlalchemy import Connection

    from mmostore.executor import Outcome, StatementExecutor

logger = structlog.get_logger()


class MigrationLedger:
    """Record of applied migration ids, kept in ``__migrations``."""

    def __init__(self, executor: StatementExecutor) -> None:
        self._executor = executor

    def ensure_table(self) -> None:
        """Create the ledger table if it does not exist yet."""
        with self._executor.transaction() as connection:
            schema.migrations.create(connection, checkfirst=True)

    def has_applied(self, migration_id: str, *, connection: Connection | None = None) -> bool:
        outcome = self._executor.scalar(
            "SELECT COUNT(*) FROM __migrations WHERE migrationId=:migrationId",
            {"migrationId": migration_id},
            connection=connection,
        )
        return int(outcome.value_or(0)) > 0

    def record_applied(self, migration_id: str, *, connection: Connection | None = None) -> Outcome[int]:
        return self._executor.non_query(
            "INSERT INTO __migrations (migrationId) VALUES (:migrationId)",
            {"migrationId": migration_id},
            connection=connection,
        )


@dataclass(frozen=True)
class Migration:
    """A named schema change. ``upgrade`` runs inside the runner's transaction."""

    migration_id: str
    upgrade: Callable[[Connection], None]
    description: str = ""


class MigrationRunner:
    """Apply migrations in order, skipping those already in the ledger."""

    def __init__(self, executor: StatementExecutor, migrations: Sequence[Migration] | None = None) -> None:
        self._executor = executor
        self._ledger = MigrationLedger(executor)
        self._migrations = tuple(DEFAULT_MIGRATIONS if migrations is None else migrations)

    @property
    def ledger(self) -> MigrationLedger:
        return self._ledger

    def pending(self) -> list[str]:
        """Ids of migrations that have not been applied."""
        return [m.migration_id for m in self._migrations if not self._ledger.has_applied(m.migration_id)]

    def run(self) -> list[str]:
        """
        Apply every pending migration and return the ids applied in this run.

        A failing migration is rolled back and stops the run; later
        migrations are left pending.
        """
        applied: list[str] = []
        try:
            self._ledger.ensure_table()
        except DatabaseError:
            logger.critical("migration_ledger_unavailable")
            return applied

        for migration in self._migrations:
            if self._ledger.has_applied(migration.migration_id):
                logger.debug("migration_skipped", migration_id=migration.migration_id)
                continue

            try:
                with self._executor.transaction() as connection:
                    migration.upgrade(connection)
                    outcome = self._ledger.record_applied(migration.migration_id, connection=connection)
                    if outcome.error is not None:
                        raise outcome.error
            except DatabaseError:
                logger.critical("migration_failed", migration_id=migration.migration_id, exc_info=True)
                break

            logger.info("migration_applied", migration_id=migration.migration_id)
            applied.append(migration.migration_id)

        return applied


def _baseline(connection: Connection) -> None:
    schema.metadata.create_all(
        connection,
        tables=[schema.userlogin, schema.characters, schema.statistic],
    )


DEFAULT_MIGRATIONS: tuple[Migration, ...] = (
    Migration("0001_baseline", _baseline, "Create userlogin, characters and statistic"),
)
