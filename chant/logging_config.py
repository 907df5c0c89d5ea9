"""Structured logging for the tournament engine.

Modules log through ``get_logger(__name__)`` with snake_case events and
keyword context. Work done on behalf of one deliberation, such as a tier
advancement, binds the deliberation id so every line it emits carries it.
"""

import logging
import os
import sys

import structlog

# Driver loggers that only matter when debugging the store.
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite")


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Send structlog and stdlib logging to stdout.

    JSON lines for deployments, console output for development. Database
    driver chatter stays at WARNING unless ``level`` is DEBUG.
    """
    numeric_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    driver_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service="chant")


def configure_logging_from_env() -> None:
    """Apply ``LOG_LEVEL`` and ``LOG_FORMAT`` (``json`` or ``console``)."""
    configure_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "json") == "json",
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_deliberation_context(deliberation_id: str, trigger: str) -> None:
    """Tag subsequent log lines with the deliberation and what set the work off."""
    structlog.contextvars.bind_contextvars(deliberation_id=deliberation_id, trigger=trigger)


def clear_deliberation_context() -> None:
    structlog.contextvars.unbind_contextvars("deliberation_id", "trigger")
