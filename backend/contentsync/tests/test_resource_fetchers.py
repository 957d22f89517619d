"""Tests for per-family resource fetchers."""

import asyncio

import pytest

from contentsync.exceptions import NotFoundUpstream, ShopifyAPIError
from contentsync.services.resource_fetchers import (
    ArticleFetcher,
    PageFetcher,
    PolicyFetcher,
    ProductFetcher,
    split_locales,
    to_gid,
)
from contentsync.services.shopify_schemas import ShopLocale

from conftest import FakeGateway


def test_to_gid_normalises_numeric_ids():
    assert to_gid("123", "Product") == "gid://shopify/Product/123"
    assert to_gid(123, "Collection") == "gid://shopify/Collection/123"
    assert to_gid("gid://shopify/Product/9", "Product") == "gid://shopify/Product/9"
    assert ArticleFetcher(FakeGateway()).to_gid("5") == "gid://shopify/OnlineStoreArticle/5"
    assert PageFetcher(FakeGateway()).to_gid("6") == "gid://shopify/OnlineStorePage/6"


def test_fetch_all_ids_walks_every_page():
    gateway = FakeGateway()
    for numeric_id in range(1, 6):
        gateway.add_product(numeric_id)

    ids = asyncio.run(ProductFetcher(gateway, page_size=2).fetch_all_ids())

    assert ids == [f"gid://shopify/Product/{n}" for n in range(1, 6)]
    assert [v["after"] for v in gateway.calls_for("getProductIds")] == [None, "2", "4"]


def test_failed_listing_raises_instead_of_returning_empty():
    gateway = FakeGateway()
    gateway.add_product(1)
    gateway.fail("getProductIds", ShopifyAPIError("listing broke"))

    with pytest.raises(ShopifyAPIError):
        asyncio.run(ProductFetcher(gateway).fetch_all_ids())


def test_fetch_one_missing_resource_raises_not_found():
    gateway = FakeGateway()

    with pytest.raises(NotFoundUpstream) as exc_info:
        asyncio.run(ProductFetcher(gateway).fetch_one("404"))

    assert exc_info.value.resource_id == "gid://shopify/Product/404"


def test_fetch_one_decodes_product_children():
    gateway = FakeGateway()
    gateway.add_product(
        7,
        title="Hat",
        images=[("https://cdn/hat.jpg", "A hat")],
        metafields=[{"id": "gid://shopify/Metafield/1", "namespace": "custom", "key": "fabric", "value": "wool", "type": "single_line_text_field"}],
    )

    node = asyncio.run(ProductFetcher(gateway).fetch_one("7"))

    assert node.title == "Hat"
    assert [image.alt for image in node.images] == ["A hat"]
    assert node.featured_image.url == "https://cdn/hat.jpg"
    assert node.options[0].values == ["S", "M"]
    assert node.metafields[0].key == "fabric"
    assert node.updated_at.tzinfo is not None


def test_policy_lookup_by_type_or_id():
    gateway = FakeGateway()
    gateway.add_policy(1, "REFUND_POLICY", "Refunds")
    gateway.add_policy(2, "PRIVACY_POLICY", "Privacy")
    fetcher = PolicyFetcher(gateway)

    assert asyncio.run(fetcher.fetch_one("privacy_policy")).title == "Privacy"
    assert asyncio.run(fetcher.fetch_one("1")).type == "REFUND_POLICY"
    with pytest.raises(NotFoundUpstream):
        asyncio.run(fetcher.fetch_one("SHIPPING_POLICY"))


def test_split_locales():
    locales = [
        ShopLocale(locale="en", primary=True, published=True),
        ShopLocale(locale="fr", primary=False, published=True),
        ShopLocale(locale="it", primary=False, published=False),
    ]

    primary, targets = split_locales(locales)

    assert primary.locale == "en"
    assert [loc.locale for loc in targets] == ["fr"]
