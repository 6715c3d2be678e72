"""Structured logging configuration with structlog."""

from __future__ import annotations

import logging

import structlog

from mmostore.config import Settings, get_settings

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _output_processors(log_format: str) -> list[structlog.types.Processor]:
    # Executor failures carry exc_info; JSON sinks get the traceback as data,
    # the console renderer formats it itself.
    if log_format == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer()]


def setup_logging(settings: Settings | None = None) -> None:
    """Configure structlog for JSON or console output.

    Database failures are logged at critical level by the executor, so the
    root level should stay at or below CRITICAL for them to reach the sink.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, *_output_processors(settings.log_format)],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    # SQLAlchemy statement echo goes through stdlib logging, not structlog
    sql_level = logging.INFO if settings.echo_sql else logging.WARNING
    logging.getLogger("sqlalchemy.engine").setLevel(sql_level)
