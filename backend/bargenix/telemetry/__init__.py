"""
Telemetry Module
================

Observability for the Bargenix merchant API.

Components:
- sentry.py: Error tracking and performance monitoring

Usage:
    from bargenix.telemetry import init_sentry, capture_exception

Related modules:
- bargenix/main.py: Initializes Sentry in create_app()
- bargenix/routers/auth.py: Sets/clears user context on login/logout
"""

from bargenix.telemetry.sentry import (
    init_sentry,
    set_user_context,
    clear_user_context,
    capture_exception,
)

__all__ = [
    "init_sentry",
    "set_user_context",
    "clear_user_context",
    "capture_exception",
]
