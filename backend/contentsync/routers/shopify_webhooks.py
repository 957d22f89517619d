"""Shopify webhook ingestion.

WHAT:
    Single endpoint receiving every subscribed topic:
    1. verify the HMAC signature against SHOPIFY_API_SECRET
    2. write a WebhookLog row with the body encrypted
    3. acknowledge with 200 {"received": true}
    4. process in a background task (sync / delete / uninstall)

WHY:
    - Shopify expects an answer within 5 seconds and redelivers otherwise,
      so processing happens after the response
    - Once past the signature check a delivery is always acknowledged;
      processing failures are recorded on the log row and queued for retry
    - Invalid signatures are rejected with 401 and never logged or processed

TOPICS:
    products/create|update|delete, collections/create|update|delete,
    menus/create|update|delete, app/uninstalled

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https
    - contentsync/services/webhook_service.py (processing)
    - contentsync/services/webhook_retry_service.py (retries)
"""

import base64
import hashlib
import hmac
import json
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from contentsync.database import get_db, get_session_factory
from contentsync.deps import Settings, get_settings
from contentsync.exceptions import SignatureInvalid
from contentsync.models import WebhookLog
from contentsync.security import encrypt_secret
from contentsync.services.webhook_service import process_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["Shopify Webhooks"])


# =============================================================================
# HMAC VERIFICATION
# =============================================================================

def verify_shopify_webhook(request_body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> bool:
    """Verify that a webhook request came from Shopify.

    WHAT: base64(HMAC-SHA256(secret, raw body)) compared to the header
    WHY: Anyone can POST to a public URL; only Shopify knows the secret

    Args:
        request_body: Raw request body bytes (before JSON parsing)
        hmac_header: X-Shopify-Hmac-Sha256 header value
        secret: App API secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        logger.error("[WEBHOOK] SHOPIFY_API_SECRET not configured")
        return False

    if not hmac_header:
        return False

    computed_hmac = base64.b64encode(
        hmac.new(secret.encode("utf-8"), request_body, hashlib.sha256).digest()
    ).decode("utf-8")

    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(computed_hmac, hmac_header)


def require_valid_signature(request_body: bytes, hmac_header: Optional[str], secret: Optional[str]) -> None:
    """Raise SignatureInvalid unless the body carries a valid Shopify HMAC."""
    if not verify_shopify_webhook(request_body, hmac_header, secret):
        raise SignatureInvalid("Invalid webhook signature")


# =============================================================================
# BACKGROUND PROCESSING
# =============================================================================

async def _process_in_background(
    session_factory: Callable[[], Session],
    shop: str,
    topic: str,
    payload: Dict[str, Any],
    log_id: uuid.UUID,
) -> None:
    db = session_factory()
    try:
        await process_webhook(db, shop, topic, payload, log_id=log_id)
    finally:
        db.close()


def _resource_id(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    if payload.get("admin_graphql_api_id"):
        return str(payload["admin_graphql_api_id"])
    if payload.get("id") is not None:
        return str(payload["id"])
    return None


# =============================================================================
# ENDPOINT
# =============================================================================

@router.post("")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Receive, verify, log and acknowledge a Shopify webhook.

    Responses:
        200 {"received": true}: accepted (processing continues in background)
        400 {"error": ...}: required headers missing or body is not JSON
        401 {"error": ...}: signature mismatch
    """
    body = await request.body()
    hmac_header = request.headers.get("X-Shopify-Hmac-Sha256")
    shop = request.headers.get("X-Shopify-Shop-Domain")
    topic = request.headers.get("X-Shopify-Topic")

    if not hmac_header or not shop or not topic:
        logger.warning(f"[WEBHOOK] Missing required headers (shop={shop}, topic={topic})")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing required Shopify webhook headers"},
        )

    try:
        require_valid_signature(body, hmac_header, settings.SHOPIFY_API_SECRET)
    except SignatureInvalid as e:
        logger.warning(f"[WEBHOOK] Invalid HMAC signature for {topic} from {shop}")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": str(e)},
        )

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error(f"[WEBHOOK] Failed to parse JSON for {topic} from {shop}: {e}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid JSON payload"},
        )

    log_row = WebhookLog(
        shop=shop,
        topic=topic,
        resource_id=_resource_id(payload),
        payload_enc=encrypt_secret(body.decode("utf-8"), context=f"webhook:{topic}"),
        processed=False,
    )
    db.add(log_row)
    db.commit()
    log_id = log_row.id

    logger.info(f"[WEBHOOK] Received {topic} from {shop} (log {log_id})")

    if not isinstance(payload, dict):
        payload = {}
    background_tasks.add_task(_process_in_background, session_factory, shop, topic, payload, log_id)

    return {"received": True}
