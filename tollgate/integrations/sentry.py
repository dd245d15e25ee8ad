# =============================================================================
# Sentry Error Tracking Integration
# =============================================================================
#
# Setup:
#   1. Create a Python project at sentry.io
#   2. Copy DSN to .env: TOLLGATE_SENTRY_DSN=https://...@sentry.io/...
#
# Usage:
#   Call init_sentry() at startup (done in tollgate/api/app.py)
#
# Credentials are scrubbed from every event before it leaves the process.
#
# =============================================================================

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from tollgate.config import Settings, get_settings

logger = logging.getLogger(__name__)

SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key")

# Expected refusals, not errors
IGNORED_STATUS_CODES = (401, 403, 404, 429)


def init_sentry(settings: Settings | None = None) -> bool:
    """
    Initialize Sentry error tracking.
    
    Returns True if initialized, False if skipped.
    """
    settings = settings or get_settings()
    
    if not settings.sentry_dsn:
        logger.info("TOLLGATE_SENTRY_DSN not set - error tracking disabled")
        return False
    
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR,
            ),
        ],
        send_default_pii=False,
        before_send=_filter_events,
    )
    
    logger.info("Sentry initialized for %s", settings.environment)
    return True


def _filter_events(event: dict, hint: dict) -> dict | None:
    """Drop expected refusals and scrub credentials."""
    if "exc_info" in hint:
        exc_type, exc_value, _ = hint["exc_info"]
        
        from fastapi import HTTPException
        if isinstance(exc_value, HTTPException):
            if exc_value.status_code in IGNORED_STATUS_CODES:
                return None
    
    request = event.get("request")
    if request and "headers" in request:
        headers = request["headers"]
        for key in list(headers.keys()):
            if key.lower() in SENSITIVE_HEADERS:
                headers[key] = "[Filtered]"
    
    return event


def _active() -> bool:
    return sentry_sdk.get_client().is_active()


def capture_exception(error: Exception, **context) -> str | None:
    """
    Capture an exception to Sentry.
    
    Returns the event ID if captured, None otherwise.
    """
    if not _active():
        return None
    
    with sentry_sdk.new_scope() as scope:
        for key, value in context.items():
            scope.set_extra(key, value)
        return sentry_sdk.capture_exception(error)

