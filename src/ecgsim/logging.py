"""Structured logging configuration with structlog."""

import logging

import structlog
from structlog.types import Processor

from ecgsim.config import Settings

# Library loggers that are noisy at DEBUG; kept at WARNING unless debug is on
_CHATTY_LOGGERS = ("sqlalchemy.engine", "asyncpg", "redis")


def _processors(settings: Settings) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.log_format == "json":
        # Exceptions become structured frames instead of a preformatted string
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def setup_logging(settings: Settings) -> None:
    """Configure structlog and the stdlib root logger.

    Every event carries the service name and environment so engine logs can
    be told apart from the web layer that embeds it.
    """
    structlog.configure(
        processors=_processors(settings),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="ecgsim-gamification", environment=settings.environment)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.debug else max(level, logging.WARNING))
