"""
Sentry Error Tracking
=====================

Error tracking for sync failures that are caught and survived: per-item
bulk failures, webhook processing errors and worker job failures. Those
never reach FastAPI's exception handler, so they are reported here
explicitly.

Related files:
- contentsync/main.py: Initializes Sentry on app startup
- contentsync/workers/arq_worker.py: Initializes Sentry in the worker
- contentsync/services/*_sync_service.py: Per-item failures in bulk loops
- contentsync/services/webhook_service.py: Webhook processing failures

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays off when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import os
import logging
from typing import Optional
from functools import lru_cache

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


@lru_cache()
def get_sentry_dsn() -> Optional[str]:
    """Get Sentry DSN from environment variable."""
    return os.environ.get("SENTRY_DSN")


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Returns:
        True if Sentry was initialized, False when no DSN is configured or
        initialization failed.
    """
    dsn = get_sentry_dsn()
    if not dsn:
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                RedisIntegration(),
                LoggingIntegration(
                    level=logging.INFO,         # INFO+ as breadcrumbs
                    event_level=logging.ERROR,  # ERROR+ as events
                ),
            ],
            traces_sample_rate=0.1,
            # Webhook payloads carry customer data
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
        logger.debug(f"[SENTRY] Initialized for {environment} environment")
        return True

    except Exception as e:
        logger.error(f"[SENTRY] Failed to initialize: {e}")
        return False


def set_shop_context(shop: str) -> None:
    """Tag subsequent events with the shop domain."""
    sentry_sdk.set_tag("shop", shop)


def capture_exception(exception: BaseException, extra: Optional[dict] = None) -> None:
    """
    Report a caught exception.

    Args:
        exception: The exception to capture
        extra: Additional context (shop, resource id, topic, ...)

    Example:
        try:
            await service.sync_product(product_id)
        except Exception as e:
            capture_exception(e, extra={"shop": shop, "product_id": product_id})
            failed += 1
    """
    if not get_sentry_dsn():
        logger.debug(f"[SENTRY] Disabled, not reporting: {exception}")
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)


def capture_message(message: str, level: str = "info", extra: Optional[dict] = None) -> None:
    """Report a noteworthy non-exception event (e.g. an exhausted webhook retry)."""
    if not get_sentry_dsn():
        logger.log(logging.getLevelName(level.upper()), f"Message (Sentry disabled): {message}")
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_message(message, level=level)
