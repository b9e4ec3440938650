"""
Sentry error tracking.

Disabled unless SENTRY_DSN is set; the capture helpers are no-ops then.
"""
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import settings
from app.logging_config import get_logger

logger = get_logger(component="sentry")


def configure_sentry(service: str = "api"):
    """Initialize Sentry for one process (api, worker or sink)."""
    dsn = settings.SENTRY_DSN
    if not dsn:
        logger.info("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            HttpxIntegration(),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )
    sentry_sdk.set_tag("service", service)
    logger.info("sentry_initialized", environment=settings.ENVIRONMENT, service=service)


def capture_exception(exc: BaseException | None = None, **context):
    """
    Report an exception, tagged with note context.

        capture_exception(e, note_id=note.id, attempt=2)
    """
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc)


def capture_message(message: str, level: str = "info", **context):
    """Report a notable event that is not an exception, such as a note going dead."""
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_message(message, level=level)
