"""Application settings via pydantic-settings, plus the database config file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "./config/mySqlConfig.json"


class Settings(BaseSettings):
    """Process configuration loaded from environment variables with MMO_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="MMO_",
        env_file=".env",
        case_sensitive=False,
    )

    # --- Database ---
    database_config_path: str = DEFAULT_CONFIG_PATH
    # Full URLs bypass the JSON config file (used for SQLite)
    database_url: str = ""
    async_database_url: str = ""
    pool_size: int = 10
    max_overflow: int = 5
    pool_pre_ping: bool = True
    echo_sql: bool = False

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


class DatabaseConfig(BaseModel):
    """Connection fields stored in the JSON config file."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = "127.0.0.1"
    port: int = 3306
    username: str = "root"
    password: str = ""
    db_name: str = Field(default="mmorpg_template", alias="dbName")


def load_database_config(path: str | Path | None = None) -> DatabaseConfig:
    """
    Read the database config file, creating it with defaults on first run.

    Fields missing from an existing file fall back to their defaults.
    """
    config_path = Path(path or get_settings().database_config_path)
    logger.info("config_reading", path=str(config_path))

    if config_path.exists():
        return DatabaseConfig.model_validate_json(config_path.read_text(encoding="utf-8"))

    config = DatabaseConfig()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(config.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    logger.info("config_created", path=str(config_path))
    return config
