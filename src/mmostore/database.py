"""Connection factory: engine construction and per-call connection checkout."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import URL, Connection, Engine, create_engine, make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from mmostore.config import DatabaseConfig, Settings, get_settings, load_database_config

if TYPE_CHECKING:
    from pathlib import Path

logger = structlog.get_logger()

MYSQL_DRIVER = "mysql+pymysql"
MYSQL_ASYNC_DRIVER = "mysql+aiomysql"

# Suspending driver used when only a blocking URL is configured
ASYNC_DRIVERS = {
    "sqlite": "sqlite+aiosqlite",
    "mysql": MYSQL_ASYNC_DRIVER,
}


def build_url(config: DatabaseConfig, drivername: str = MYSQL_DRIVER) -> URL:
    """Build a connection URL from the config file fields.

    An empty password is left out of the URL entirely.
    """
    return URL.create(
        drivername,
        username=config.username,
        password=config.password or None,
        host=config.address,
        port=config.port,
        database=config.db_name,
    )


def derive_async_url(url: str | URL) -> URL:
    """Swap the driver of a blocking URL for its suspending counterpart.

    Raises:
        ValueError: If the backend has no known suspending driver.
    """
    url = make_url(url)
    drivername = ASYNC_DRIVERS.get(url.get_backend_name())
    if drivername is None:
        msg = f"No async driver known for {url.get_backend_name()!r}; set the async URL explicitly."
        raise ValueError(msg)
    return url.set(drivername=drivername)


class ConnectionFactory:
    """
    Produces one new connection per call, blocking or suspending.

    Each mode is backed by its own SQLAlchemy engine, so connections come out
    of an engine pool; callers only ever see the connection they were handed.
    Without an explicit ``async_url`` the suspending engine is derived from
    ``url``, so both modes are always available.
    """

    def __init__(
        self,
        url: str | URL,
        async_url: str | URL | None = None,
        *,
        pool_size: int = 10,
        max_overflow: int = 5,
        pool_pre_ping: bool = True,
    ) -> None:
        self.url = make_url(url)
        self.async_url = make_url(async_url) if async_url is not None else derive_async_url(self.url)
        self._pool_options = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_pre_ping": pool_pre_ping,
        }
        self._engine: Engine = create_engine(self.url, **self._engine_options(self.url))
        self._async_engine: AsyncEngine = create_async_engine(self.async_url, **self._engine_options(self.async_url))

    @classmethod
    def from_config(cls, config: DatabaseConfig, settings: Settings | None = None) -> ConnectionFactory:
        """Create a MySQL factory from config file fields."""
        settings = settings or get_settings()
        return cls(
            build_url(config, MYSQL_DRIVER),
            build_url(config, MYSQL_ASYNC_DRIVER),
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_pre_ping=settings.pool_pre_ping,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, config_path: str | Path | None = None) -> ConnectionFactory:
        """
        Create a factory from explicit URLs if configured, else from the JSON config file.

        An unset async URL is derived from ``database_url``.
        """
        settings = settings or get_settings()
        if settings.database_url:
            return cls(
                settings.database_url,
                settings.async_database_url or None,
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_pre_ping=settings.pool_pre_ping,
            )
        config = load_database_config(config_path or settings.database_config_path)
        return cls.from_config(config, settings)

    def _engine_options(self, url: URL) -> dict[str, Any]:
        # SQLite pools do not accept sizing arguments
        if url.get_backend_name() == "sqlite":
            return {}
        return dict(self._pool_options)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def async_engine(self) -> AsyncEngine:
        return self._async_engine

    def describe(self) -> str:
        """Connection target with the password masked, for log output."""
        return self.url.render_as_string(hide_password=True)

    def connect(self) -> Connection:
        """Open a new blocking connection. Raises SQLAlchemyError if it cannot be opened."""
        return self._engine.connect()

    async def connect_async(self) -> AsyncConnection:
        """Open a new suspending connection, already started."""
        connection = self.async_engine.connect()
        await connection.start()
        return connection

    def dispose(self) -> None:
        """Close all pooled blocking connections."""
        self._engine.dispose()

    async def dispose_async(self) -> None:
        """Close all pooled suspending connections."""
        await self._async_engine.dispose()
        logger.debug("connection_pools_disposed", target=self.describe())
