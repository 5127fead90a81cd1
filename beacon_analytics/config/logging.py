"""
Logging Configuration for Beacon Analytics

Structured logging through structlog on top of the stdlib logging tree, so
records from redis, sqlalchemy and asyncio share the same renderer. Every
record carries the application name, environment and version; scheduled job
ticks additionally carry the job name through ``job_context``.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from beacon_analytics.config.settings import Settings, get_settings

# Driver loggers that flood DEBUG output with per-statement records
QUIET_LOGGERS = ("sqlalchemy.engine", "asyncio", "redis")


def _shared_processors() -> List:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(settings: Settings):
    if settings.monitoring.log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(log_level: Optional[str] = None, settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging for the analytics runtime.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        settings: Settings to read the level and format from
    """
    settings = settings or get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    numeric_level = getattr(logging, level, logging.INFO)

    shared = _shared_processors()
    structlog.configure(
        processors=shared + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=_renderer(settings), foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.contextvars.bind_contextvars(
        app=settings.app_name,
        environment=settings.app_env,
        version=settings.version,
    )

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
    )


@contextmanager
def job_context(job: str) -> Iterator[None]:
    """Tag every record emitted inside the block with the scheduled job name"""
    with structlog.contextvars.bound_contextvars(job=job):
        yield
