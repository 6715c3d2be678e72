"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import argon2
import pytest
import pytest_asyncio

from mmostore.accounts import AccountRepository
from mmostore.config import get_settings
from mmostore.database import ConnectionFactory
from mmostore.executor import AsyncStatementExecutor, StatementExecutor
from mmostore.migrations import MigrationRunner


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path: Path):
    """Keep tests away from any real config file or .env in the working directory."""
    monkeypatch.chdir(tmp_path)
    for name in ("MMO_DATABASE_URL", "MMO_ASYNC_DATABASE_URL", "MMO_DATABASE_CONFIG_PATH"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "mmo.db"


@pytest_asyncio.fixture
async def factory(db_path: Path) -> AsyncGenerator[ConnectionFactory, None]:
    """Connection factory over a fresh file-backed SQLite database."""
    f = ConnectionFactory(f"sqlite:///{db_path}", f"sqlite+aiosqlite:///{db_path}")
    yield f
    f.dispose()
    await f.dispose_async()


@pytest.fixture
def executor(factory: ConnectionFactory) -> StatementExecutor:
    return StatementExecutor(factory)


@pytest.fixture
def async_executor(factory: ConnectionFactory) -> AsyncStatementExecutor:
    return AsyncStatementExecutor(factory)


@pytest.fixture
def migrated(executor: StatementExecutor) -> StatementExecutor:
    """Blocking executor over a database with all migrations applied."""
    MigrationRunner(executor).run()
    return executor


@pytest.fixture
def fast_hasher() -> argon2.PasswordHasher:
    """Cheap argon2id parameters so registration-heavy tests stay fast."""
    return argon2.PasswordHasher(time_cost=1, memory_cost=8, parallelism=1, hash_len=16, salt_len=8)


@pytest.fixture
def repo(
    migrated: StatementExecutor, async_executor: AsyncStatementExecutor, fast_hasher: argon2.PasswordHasher
) -> AccountRepository:
    return AccountRepository(async_executor, hasher=fast_hasher)


@pytest.fixture
def add_character(migrated: StatementExecutor):
    """Insert a character row owned by ``user_id``."""

    def _add(character_name: str, user_id: str) -> None:
        outcome = migrated.non_query(
            "INSERT INTO characters (id, userId, characterName) VALUES (:id, :userId, :characterName)",
            {"id": f"char-{character_name}", "userId": user_id, "characterName": character_name},
        )
        assert outcome.ok

    return _add


@pytest.fixture
def broken_factory(tmp_path: Path) -> ConnectionFactory:
    """Factory pointing at a database file that can never be opened."""
    missing = tmp_path / "no-such-dir" / "mmo.db"
    return ConnectionFactory(f"sqlite:///{missing}", f"sqlite+aiosqlite:///{missing}")
