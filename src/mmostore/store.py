"""Startup and shutdown wiring for the account store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from mmostore.accounts import AccountRepository
from mmostore.config import Settings, get_settings
from mmostore.database import ConnectionFactory
from mmostore.executor import AsyncStatementExecutor, StatementExecutor
from mmostore.logging import setup_logging
from mmostore.migrations import MigrationRunner

if TYPE_CHECKING:
    from pathlib import Path

logger = structlog.get_logger()


@dataclass
class AccountStore:
    """Everything a game server component needs to talk to the account database."""

    factory: ConnectionFactory
    executor: StatementExecutor
    async_executor: AsyncStatementExecutor
    accounts: AccountRepository

    async def close(self) -> None:
        """Dispose of both connection pools."""
        self.factory.dispose()
        await self.factory.dispose_async()


def open_account_store(
    settings: Settings | None = None,
    *,
    config_path: str | Path | None = None,
    configure_logging: bool = True,
) -> AccountStore:
    """
    Build the connection factory and executors, then apply pending migrations.

    Migration failures are logged and leave the store usable; operations on
    missing tables degrade like any other database failure.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    factory = ConnectionFactory.from_settings(settings, config_path)
    executor = StatementExecutor(factory)
    applied = MigrationRunner(executor).run()
    logger.info("account_store_ready", target=factory.describe(), migrations_applied=applied)

    async_executor = AsyncStatementExecutor(factory)
    return AccountStore(
        factory=factory,
        executor=executor,
        async_executor=async_executor,
        accounts=AccountRepository(async_executor),
    )
