"""Shop session helpers.

WHAT:
    Stores a shop's offline access token (encrypted) and builds the
    per-shop ApiGateway every sync service needs.

WHY:
    Routers, the webhook background task, arq jobs and the scheduler all need
    "an API client for shop X". Building it in one place keeps token
    decryption and gateway configuration consistent.
"""

import logging
from typing import Dict, Optional

from sqlalchemy.orm import Session

from contentsync.deps import Settings, get_settings
from contentsync.exceptions import ShopNotInstalled
from contentsync.models import PlanEnum, ShopSession, utcnow
from contentsync.security import decrypt_secret, encrypt_secret
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.plan_limits import PlanLimits, get_plan_limits

logger = logging.getLogger(__name__)

# One gateway per shop per process so concurrent syncs share admission control
_gateways: Dict[str, ApiGateway] = {}


def store_shop_session(
    db: Session,
    shop: str,
    access_token: str,
    scope: Optional[str] = None,
    plan: str = PlanEnum.free.value,
) -> ShopSession:
    """Create or update the offline session for a shop (token encrypted)."""
    session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
    if session is None:
        session = ShopSession(shop=shop)
        db.add(session)
    session.access_token_enc = encrypt_secret(access_token, context=f"shop:{shop}:access")
    session.scope = scope
    session.plan = plan
    session.last_activity_at = utcnow()
    db.commit()
    db.refresh(session)
    _gateways.pop(shop, None)
    logger.info(f"[SHOP_SESSION] Stored session for {shop} (plan={plan})")
    return session


def delete_shop_session(db: Session, shop: str) -> bool:
    """Forget a shop's session (app/uninstalled)."""
    deleted = db.query(ShopSession).filter(ShopSession.shop == shop).delete(synchronize_session=False)
    db.commit()
    _gateways.pop(shop, None)
    if deleted:
        logger.info(f"[SHOP_SESSION] Removed session for {shop}")
    return bool(deleted)


def touch_activity(db: Session, shop: str) -> None:
    session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
    if session is not None:
        session.last_activity_at = utcnow()
        db.commit()


def get_shop_limits(db: Session, shop: str) -> PlanLimits:
    """Plan limits of a shop; shops without a session get free-tier limits."""
    session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
    return get_plan_limits(session.plan if session else PlanEnum.free.value)


def build_gateway(shop: str, access_token: str, settings: Optional[Settings] = None) -> ApiGateway:
    settings = settings or get_settings()
    return ApiGateway(
        shop_domain=shop,
        access_token=access_token,
        api_version=settings.SHOPIFY_API_VERSION,
        max_requests_per_window=settings.GATEWAY_MAX_REQUESTS_PER_SECOND,
        window_seconds=1.0,
        max_retries=settings.GATEWAY_MAX_RETRIES,
        retry_base_delay=settings.GATEWAY_RETRY_BASE_DELAY_SECONDS,
        timeout=settings.GATEWAY_REQUEST_TIMEOUT_SECONDS,
    )


def get_gateway_for_shop(db: Session, shop: str, settings: Optional[Settings] = None) -> ApiGateway:
    """Gateway for an installed shop.

    Raises:
        ShopNotInstalled: No stored session for the shop
    """
    gateway = _gateways.get(shop)
    if gateway is not None:
        return gateway

    session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
    if session is None:
        raise ShopNotInstalled(f"No session stored for {shop}")

    access_token = decrypt_secret(session.access_token_enc, context=f"shop:{shop}:access")
    gateway = build_gateway(shop, access_token, settings)
    _gateways[shop] = gateway
    return gateway
