"""Webhook processing.

WHAT:
    Runs after the webhook endpoint has verified, logged and acknowledged a
    delivery:
    1. resolve the shop's gateway
    2. dispatch by topic (create/update -> sync, delete -> delete), within
       the shop's plan limits
    3. mark the WebhookLog row processed (with the error, if any)
    4. on failure, queue a retry

WHY:
    Shopify delivers at least once. Every handler converges: create/update
    re-fetch the current upstream state and upsert, delete tolerates an
    already-absent row. Replaying a payload is therefore always safe.

REFERENCES:
    - contentsync/routers/shopify_webhooks.py (receipt + logging)
    - contentsync/services/webhook_retry_service.py
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from contentsync.deps import get_settings
from contentsync.exceptions import ShopNotInstalled
from contentsync.models import WebhookLog
from contentsync.services.content_sync_service import ContentSyncService
from contentsync.services.product_sync_service import ProductSyncService
from contentsync.services.resource_fetchers import to_gid
from contentsync.services.shop_session_service import delete_shop_session, get_gateway_for_shop, get_shop_limits
from contentsync.services.webhook_retry_service import WebhookHandler, WebhookRetryService
from contentsync.telemetry import capture_exception, set_shop_context

logger = logging.getLogger(__name__)


def resource_gid(payload: Dict[str, Any], gid_type: str) -> str:
    """GID of the resource a webhook is about."""
    if payload.get("admin_graphql_api_id"):
        return payload["admin_graphql_api_id"]
    if payload.get("id") is None:
        raise ValueError(f"Webhook payload has no id for {gid_type}")
    return to_gid(str(payload["id"]), gid_type)


def _alt_text_preservation() -> timedelta:
    return timedelta(seconds=get_settings().ALT_TEXT_PRESERVATION_SECONDS)


# =============================================================================
# TOPIC HANDLERS
# =============================================================================

async def handle_product_upsert(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    limits = get_shop_limits(db, shop)
    service = ProductSyncService(
        gateway, db, shop=shop,
        alt_text_preservation=_alt_text_preservation(),
        max_locales=limits.max_locales,
    )
    await service.sync_product(resource_gid(payload, "Product"), include_all_images=limits.include_all_images)


async def handle_product_delete(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    await ProductSyncService(gateway, db, shop=shop).delete_product(resource_gid(payload, "Product"))


async def handle_collection_upsert(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    service = ContentSyncService(gateway, db, shop=shop, max_locales=get_shop_limits(db, shop).max_locales)
    await service.sync_collection(resource_gid(payload, "Collection"))


async def handle_collection_delete(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    await ContentSyncService(gateway, db, shop=shop).delete_collection(resource_gid(payload, "Collection"))


async def handle_menu_upsert(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    if not get_shop_limits(db, shop).allows("menus"):
        logger.info(f"[WEBHOOK] Menus not included in {shop}'s plan, skipping")
        return
    await ContentSyncService(gateway, db, shop=shop).sync_menu(resource_gid(payload, "Menu"))


async def handle_menu_delete(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    gateway = get_gateway_for_shop(db, shop)
    await ContentSyncService(gateway, db, shop=shop).delete_menu(resource_gid(payload, "Menu"))


async def handle_app_uninstalled(db: Session, shop: str, payload: Dict[str, Any]) -> None:
    delete_shop_session(db, shop)


WEBHOOK_HANDLERS: Dict[str, WebhookHandler] = {
    "products/create": handle_product_upsert,
    "products/update": handle_product_upsert,
    "products/delete": handle_product_delete,
    "collections/create": handle_collection_upsert,
    "collections/update": handle_collection_upsert,
    "collections/delete": handle_collection_delete,
    "menus/create": handle_menu_upsert,
    "menus/update": handle_menu_upsert,
    "menus/delete": handle_menu_delete,
    "app/uninstalled": handle_app_uninstalled,
}


# =============================================================================
# PROCESSING
# =============================================================================

def _mark_processed(db: Session, log_id: Optional[uuid.UUID], error: Optional[str] = None) -> None:
    if log_id is None:
        return
    log_row = db.get(WebhookLog, log_id)
    if log_row is None:
        logger.warning(f"[WEBHOOK] Log row {log_id} disappeared before it could be marked")
        return
    log_row.processed = True
    log_row.error = error
    db.commit()


async def process_webhook(
    db: Session,
    shop: str,
    topic: str,
    payload: Dict[str, Any],
    log_id: Optional[uuid.UUID] = None,
    retry_service: Optional[WebhookRetryService] = None,
) -> bool:
    """Process one acknowledged webhook.

    Never raises: failures are recorded on the log row, reported to Sentry
    and queued for retry.

    Returns:
        True if processing succeeded
    """
    set_shop_context(shop)
    handler = WEBHOOK_HANDLERS.get(topic)
    if handler is None:
        logger.info(f"[WEBHOOK] No handler for topic {topic} ({shop}), marking processed")
        _mark_processed(db, log_id)
        return True

    try:
        await handler(db, shop, payload)
    except ShopNotInstalled as e:
        # Retrying cannot help until the shop reinstalls
        logger.warning(f"[WEBHOOK] {topic} for {shop} ignored: {e}")
        _mark_processed(db, log_id, error=str(e))
        return False
    except Exception as e:
        db.rollback()
        logger.error(f"[WEBHOOK] {topic} for {shop} failed: {e}")
        capture_exception(e, extra={"shop": shop, "topic": topic, "webhook_log_id": str(log_id)})
        _mark_processed(db, log_id, error=str(e))

        retries = retry_service or WebhookRetryService(
            db,
            handlers=WEBHOOK_HANDLERS,
            max_attempts=get_settings().WEBHOOK_MAX_ATTEMPTS,
        )
        retries.schedule_retry(shop, topic, payload, e)
        return False

    _mark_processed(db, log_id)
    logger.info(f"[WEBHOOK] Processed {topic} for {shop}")
    return True
