"""
Sentry Error Tracking
=====================

Centralized error tracking for the merchant API.

Related files:
- bargenix/main.py: Initializes Sentry in create_app()
- bargenix/routers/auth.py: Sets user context after login
- bargenix/routers/shopify_oauth.py: Reports best-effort failures (script tags)

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays off when unset)
- ENVIRONMENT: Environment name (production, staging, development)
- RELEASE_VERSION: Release identifier set by CI
"""

from __future__ import annotations

import os
import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)

_initialized = False


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for FastAPI.

    Returns:
        True if Sentry was initialized, False when no DSN is configured.
    """
    global _initialized

    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        logger.debug("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    environment = os.environ.get("ENVIRONMENT", "production")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # breadcrumbs
                    event_level=logging.ERROR,  # events
                ),
            ],
            traces_sample_rate=0.1,
            # Customer emails arrive in bargain requests; keep PII opt-in
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
    except Exception as e:
        logger.error(f"[SENTRY] Failed to initialize: {e}")
        return False

    _initialized = True
    logger.info(f"[SENTRY] Initialized for {environment} environment")
    return True


def set_user_context(user_id: str, email: Optional[str] = None) -> None:
    """Attach the merchant to subsequent Sentry events."""
    if not _initialized:
        return
    sentry_sdk.set_user({"id": user_id, "email": email})


def clear_user_context() -> None:
    """Clear user context from Sentry (logout)."""
    if not _initialized:
        return
    sentry_sdk.set_user(None)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Report an exception that was handled (e.g. a best-effort step failed).

    Args:
        exception: The exception to capture
        extra: Additional context to attach to the event

    Example:
        try:
            await register_widget_script(db, store)
        except ShopifyAPIError as e:
            capture_exception(e, extra={"shop_domain": store.shop_domain})
    """
    if not _initialized:
        logger.error(f"Exception (Sentry disabled): {exception}")
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
