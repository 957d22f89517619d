"""Tests for the rate-limited Shopify GraphQL gateway.

WHAT: Admission control, throttle backoff and transient retry behaviour
WHY: Every upstream call goes through ApiGateway.request; a limiter that
     bursts or a retry loop that never ends takes down whole bulk syncs

REFERENCES:
    - contentsync/services/api_gateway.py
"""

import asyncio
import json
import time

import httpx
import pytest

from contentsync.exceptions import RateLimitExceeded, ShopifyAPIError
from contentsync.services.api_gateway import ApiGateway, is_throttle_error

SHOP = "gateway-shop.myshopify.com"


def _gateway(handler, **kwargs) -> ApiGateway:
    kwargs.setdefault("retry_base_delay", 0.001)
    return ApiGateway(
        shop_domain=SHOP,
        access_token="shpat_test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _ok(data):
    return httpx.Response(200, json={"data": data})


def test_request_returns_data_and_sends_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["token"] = request.headers["X-Shopify-Access-Token"]
        seen["body"] = json.loads(request.content)
        return _ok({"shop": {"name": "Test"}})

    gateway = _gateway(handler)
    data = asyncio.run(gateway.request("query getShop { shop { name } }", {"a": 1}))

    assert data == {"shop": {"name": "Test"}}
    assert seen["url"] == f"https://{SHOP}/admin/api/2025-10/graphql.json"
    assert seen["token"] == "shpat_test"
    assert seen["body"]["variables"] == {"a": 1}


def test_admission_limits_requests_per_window():
    """2 requests per 0.2s window: 10 concurrent calls all succeed, spread out."""
    started = []

    def handler(request: httpx.Request) -> httpx.Response:
        started.append(time.monotonic())
        return _ok({"ok": True})

    gateway = _gateway(handler, max_requests_per_window=2, window_seconds=0.2)

    async def scenario():
        return await asyncio.gather(*(gateway.request("query q { ok }") for _ in range(10)))

    results = asyncio.run(scenario())

    assert len(results) == 10
    assert all(result == {"ok": True} for result in results)
    assert len(started) == 10
    started.sort()
    # No three requests may fall inside one window
    for first, third in zip(started, started[2:]):
        assert third - first >= 0.18


def test_http_429_exhausts_retries_and_raises():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(429, json={"errors": "Throttled"})

    gateway = _gateway(handler, max_retries=2)

    with pytest.raises(RateLimitExceeded) as exc_info:
        asyncio.run(gateway.request("query q { ok }"))

    assert exc_info.value.attempts == 3
    assert len(attempts) == 3


def test_throttled_graphql_error_is_retried():
    responses = [
        httpx.Response(200, json={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}),
        _ok({"product": {"id": "gid://shopify/Product/1"}}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    gateway = _gateway(handler)
    data = asyncio.run(gateway.request("query getProduct { product { id } }"))

    assert data == {"product": {"id": "gid://shopify/Product/1"}}
    assert responses == []


def test_non_throttle_graphql_error_raises_without_retry():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(200, json={"errors": [{"message": "Field 'foo' doesn't exist"}]})

    gateway = _gateway(handler)

    with pytest.raises(ShopifyAPIError) as exc_info:
        asyncio.run(gateway.request("query q { foo }"))

    assert "Field 'foo' doesn't exist" in str(exc_info.value)
    assert exc_info.value.status_code == 200
    assert len(attempts) == 1


def test_network_error_is_retried_then_succeeds():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return _ok({"ok": True})

    gateway = _gateway(handler)

    assert asyncio.run(gateway.request("query q { ok }")) == {"ok": True}
    assert len(attempts) == 2


def test_persistent_server_error_raises_after_retries():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(503, text="unavailable")

    gateway = _gateway(handler, max_retries=1)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(gateway.request("query q { ok }"))
    assert len(attempts) == 2


def test_queue_status_snapshot():
    gateway = _gateway(lambda request: _ok({}), max_requests_per_window=4, window_seconds=1.0)
    asyncio.run(gateway.request("query q { ok }"))

    status = gateway.get_queue_status()

    assert status == {
        "shop": SHOP,
        "queued": 0,
        "requests_in_window": 1,
        "max_requests_per_window": 4,
        "window_seconds": 1.0,
    }


def test_invalid_window_capacity_rejected():
    with pytest.raises(ValueError):
        ApiGateway(shop_domain=SHOP, access_token="x", max_requests_per_window=0)


def test_is_throttle_error_detection():
    assert is_throttle_error([{"message": "x", "extensions": {"code": "THROTTLED"}}])
    assert is_throttle_error([{"message": "Rate limit exceeded"}])
    assert not is_throttle_error([{"message": "Access denied"}])
