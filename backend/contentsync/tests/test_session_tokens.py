"""Tests for session-token verification.

REFERENCES:
    - contentsync/security.py
"""

import time

import pytest
from jose import JWTError, jwt

from contentsync.security import ALGORITHM, create_session_token, decode_session_token

from conftest import SHOP

SECRET = "test-secret"


def _claims(**overrides):
    now = int(time.time())
    claims = {"iss": f"https://{SHOP}/admin", "dest": f"https://{SHOP}", "iat": now, "nbf": now, "exp": now + 60}
    claims.update(overrides)
    return claims


def test_valid_token_resolves_to_its_shop():
    token = create_session_token(SHOP, SECRET, audience="api-key")

    assert decode_session_token(token, SECRET, audience="api-key") == SHOP


def test_audience_is_only_checked_when_configured():
    token = create_session_token(SHOP, SECRET, audience="other-app")

    assert decode_session_token(token, SECRET) == SHOP
    with pytest.raises(JWTError):
        decode_session_token(token, SECRET, audience="api-key")


def test_expired_token_is_rejected():
    token = jwt.encode(_claims(exp=int(time.time()) - 10), SECRET, algorithm=ALGORITHM)

    with pytest.raises(JWTError):
        decode_session_token(token, SECRET)


def test_issuer_for_another_shop_is_rejected():
    token = jwt.encode(_claims(iss="https://other-shop.myshopify.com/admin"), SECRET, algorithm=ALGORITHM)

    with pytest.raises(JWTError):
        decode_session_token(token, SECRET)


def test_token_without_destination_is_rejected():
    claims = _claims()
    del claims["dest"]

    with pytest.raises(JWTError):
        decode_session_token(jwt.encode(claims, SECRET, algorithm=ALGORITHM), SECRET)
