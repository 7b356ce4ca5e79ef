"""
Sentry Integration Module.

Configures Sentry error tracking for the reference resolver API and
provides helpers to report degraded lookups with ladder context.
"""

import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

logger = logging.getLogger(__name__)

IGNORED_EXCEPTIONS = (
    "ConnectionResetError",
    "BrokenPipeError",
    "ClientDisconnected",
)

IGNORED_TRANSACTIONS = (
    "/health",
    "/metrics",
    "/favicon.ico",
)


def init_sentry(
    dsn: Optional[str] = None,
    environment: Optional[str] = None,
    release: Optional[str] = None,
    traces_sample_rate: float = 0.1,
) -> bool:
    """
    Initialize the Sentry SDK for the FastAPI backend.

    Args:
        dsn: Sentry DSN. Falls back to the SENTRY_DSN env var.
        environment: Environment name (production, staging, development).
        release: Application release/version string.
        traces_sample_rate: Performance transaction sample rate.

    Returns:
        True when Sentry was initialized, False when no DSN is configured.
    """
    sentry_dsn = dsn or os.getenv("SENTRY_DSN")

    if not sentry_dsn:
        logger.warning("Sentry DSN not configured. Error tracking disabled.")
        return False

    env = environment or os.getenv("ENVIRONMENT", "development")
    app_release = release or os.getenv("APP_VERSION", "1.0.0")

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=env,
        release=f"medicare-reference-resolver@{app_release}",
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.WARNING, event_level=logging.ERROR),
        ],
        send_default_pii=False,
        before_send=before_send_handler,
        before_send_transaction=before_send_transaction_handler,
        attach_stacktrace=True,
        max_breadcrumbs=50,
    )

    logger.info(f"Sentry initialized for environment: {env}")
    return True


def before_send_handler(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Drop client disconnects and scrub credentials before an event is sent.
    """
    if "exc_info" in hint:
        exc_type, _, _ = hint["exc_info"]
        if exc_type.__name__ in IGNORED_EXCEPTIONS:
            return None

    if "request" in event:
        headers = event["request"].get("headers", {})
        for header in ("authorization", "x-api-key", "cookie"):
            if header in headers:
                headers[header] = "[Filtered]"

    return event


def before_send_transaction_handler(
    event: Dict[str, Any],
    hint: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Filter out health check and metrics transactions."""
    transaction_name = event.get("transaction", "")

    for endpoint in IGNORED_TRANSACTIONS:
        if endpoint in transaction_name:
            return None

    return event


def capture_exception(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with additional context.

    Args:
        error: The exception to capture.
        context: Additional context data, keyed by context name.
        tags: Tags for categorization.

    Returns:
        Sentry event ID if captured, None otherwise.
    """
    with sentry_sdk.new_scope() as scope:
        for key, value in (context or {}).items():
            scope.set_context(key, value)
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)

        return sentry_sdk.capture_exception(error)


def add_breadcrumb(
    message: str,
    category: str = "custom",
    level: str = "info",
    data: Optional[Dict[str, Any]] = None,
) -> None:
    """Add a breadcrumb for debugging context."""
    sentry_sdk.add_breadcrumb(
        message=message,
        category=category,
        level=level,
        data=data or {},
    )
