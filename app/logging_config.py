"""
Structured logging for the API, the worker and the reference sink.

Production output is one JSON object per line; development gets structlog's
console renderer. Every line carries the `service` that emitted it.
"""
import logging
import sys

import structlog

from app.config import settings


# Third-party loggers that log every request/job at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "arq.worker", "uvicorn.access")


def _level_from_settings() -> int:
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(service: str = "api", level: int | None = None, json: bool | None = None):
    """
    Configure structlog and stdlib logging for one process.

    `json` defaults to True outside the development environment.
    """
    level = level if level is not None else _level_from_settings()
    if json is None:
        json = settings.ENVIRONMENT != "development"

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    structlog.contextvars.bind_contextvars(service=service)


def get_logger(**context):
    """
    Logger with context bound, e.g. get_logger(component="scheduler").

    Call sites bind per-note fields: log = logger.bind(note_id=note.id).
    """
    return structlog.get_logger(**context)
