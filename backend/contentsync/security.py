"""Symmetric encryption at rest and session-token verification.

WHAT:
    Fernet wrapper used for two kinds of stored secrets:
    - shop offline access tokens (ShopSession.access_token_enc)
    - raw webhook bodies (WebhookLog.payload_enc, WebhookRetry.payload_enc)
    plus verification of the embedded admin's session tokens (HS256 JWTs
    signed with the app secret) for the manual sync API.

WHY:
    Webhook bodies carry customer-facing content and shop identifiers; they
    must never land in the database as plaintext. They are decrypted only
    when a retry replays them or an operator debugs a delivery.

REFERENCES:
    - contentsync/routers/shopify_webhooks.py (payload logging)
    - contentsync/services/webhook_retry_service.py (replay)
    - contentsync/services/shop_session_service.py (token restore)
"""

import base64
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt


TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")
# Shopify session tokens are signed with the app secret
ALGORITHM = "HS256"

logger = logging.getLogger(__name__)


if not TOKEN_ENCRYPTION_KEY:
    # Attempt to load from local .env if running in dev
    from contentsync.utils.env import load_env_file
    load_env_file()
    TOKEN_ENCRYPTION_KEY = os.getenv("TOKEN_ENCRYPTION_KEY", "")

if not TOKEN_ENCRYPTION_KEY:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY is not set. Generate a 32-byte Fernet key and export it "
        "or add it to backend/.env."
    )

try:
    # Validate key length by decoding without storing plaintext material.
    base64.urlsafe_b64decode(TOKEN_ENCRYPTION_KEY.encode("utf-8"))
    _cipher = Fernet(TOKEN_ENCRYPTION_KEY)
except (ValueError, TypeError) as exc:
    raise RuntimeError(
        "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
        "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
    ) from exc


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a secret or payload before persisting.

    Args:
        plaintext: Raw value to encrypt (access token, webhook JSON body).
        context:   Friendly label for logs (e.g. "webhook:products/update").

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.debug("[ENCRYPT] Value encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Decrypt a value written by `encrypt_secret`.

    Args:
        ciphertext: Encrypted value retrieved from DB.
        context:    Friendly label for logs.

    Returns:
        Plaintext string.

    Raises:
        ValueError: If the stored value cannot be decrypted.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        logger.debug("[DECRYPT] Value decrypted for %s (length=%d)", context, len(plaintext))
        return plaintext
    except InvalidToken as exc:
        logger.error("[DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored value.") from exc


def create_session_token(shop: str, secret: str, audience: Optional[str] = None, expires_seconds: int = 60) -> str:
    """Sign a session token shaped like the ones App Bridge issues (tests, local tooling)."""
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_seconds)).timestamp()),
    }
    if audience:
        claims["aud"] = audience
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_session_token(token: str, secret: str, audience: Optional[str] = None) -> str:
    """Verify a session token and return the shop domain it was issued for.

    The audience (the app's API key) is checked when configured. The shop is
    taken from `dest`; `iss` must point at the same shop's admin.

    Raises:
        jose.JWTError: Bad signature, expired token, wrong audience or shop
    """
    claims = jwt.decode(
        token,
        secret,
        algorithms=[ALGORITHM],
        audience=audience,
        options={"verify_aud": audience is not None},
    )
    shop = urlparse(claims.get("dest") or "").netloc
    if not shop:
        raise JWTError("Session token has no destination shop")
    issuer = urlparse(claims.get("iss") or "").netloc
    if issuer != shop:
        raise JWTError("Session token issuer does not match its shop")
    return shop
