"""Dependency providers and settings management."""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from jose import JWTError
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import ShopSession
from .security import decode_session_token

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"

    # Operator admin panel (sqladmin); login disabled while ADMIN_PASSWORD is unset
    ADMIN_SECRET_KEY: str = "supersecretkey-change-this-in-production"
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: Optional[str] = None

    # Shopify app credentials; the secret signs webhooks and session tokens,
    # the key is the session tokens' audience
    SHOPIFY_API_KEY: Optional[str] = None
    SHOPIFY_API_SECRET: Optional[str] = None
    # 2025-10 is the first version exposing MEDIA_IMAGE alt-text translations
    SHOPIFY_API_VERSION: str = "2025-10"

    # API gateway admission control
    GATEWAY_MAX_REQUESTS_PER_SECOND: int = 10
    GATEWAY_MAX_RETRIES: int = 3
    GATEWAY_RETRY_BASE_DELAY_SECONDS: float = 1.0
    GATEWAY_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Human alt-text edits younger than this survive a sync
    ALT_TEXT_PRESERVATION_SECONDS: int = 300

    # Background sync scheduler
    SYNC_INTERVAL_SECONDS: int = 40
    SYNC_INACTIVITY_TIMEOUT_SECONDS: int = 300

    # Webhook retry queue
    WEBHOOK_MAX_ATTEMPTS: int = 5

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_authenticated_shop(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the shop from the embedded admin's session token.

    The header value is expected to be in the form: "Bearer <jwt>".
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not settings.SHOPIFY_API_SECRET:
        logger.warning("[AUTH] SHOPIFY_API_SECRET not configured, rejecting request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication not configured")

    token = authorization[len("Bearer ") :]
    try:
        return decode_session_token(token, settings.SHOPIFY_API_SECRET, audience=settings.SHOPIFY_API_KEY)
    except JWTError as e:
        logger.warning(f"[AUTH] Session token rejected: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")


def get_shop_session(
    shop: str = Depends(get_authenticated_shop),
    db: Session = Depends(get_db),
) -> ShopSession:
    """Resolve the installed shop for manual sync endpoints.

    Raises 404 when the authenticated shop has no stored offline session
    (app not installed or already uninstalled).
    """
    session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Shop not installed: {shop}")
    return session
