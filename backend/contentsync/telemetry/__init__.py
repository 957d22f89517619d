"""
Telemetry Module
================

Error tracking for the sync service (Sentry). Application logs use the
standard library `logging` module with `[COMPONENT]` tags.

Usage:
    from contentsync.telemetry import init_sentry, capture_exception

    init_sentry()  # once, on startup
"""

from contentsync.telemetry.sentry import (
    init_sentry,
    set_shop_context,
    capture_exception,
    capture_message,
)

__all__ = [
    "init_sentry",
    "set_shop_context",
    "capture_exception",
    "capture_message",
]
