"""Tests for pages, policies and theme sync.

WHAT: Full-catalog sync with aggressive cleanup for the families without
      webhooks, and classified theme groups
WHY: Cleanup deletes rows; it must delete exactly the rows missing from a
     successful listing and nothing when the listing failed

REFERENCES:
    - contentsync/services/background_sync_service.py
    - contentsync/services/theme_classifier.py
"""

import asyncio

import pytest

from contentsync.exceptions import NotFoundUpstream, ShopifyAPIError, ThemeGroupNotFound
from contentsync.models import ContentTranslation, Page, ShopPolicy, ThemeContent, ThemeTranslation
from contentsync.services.background_sync_service import BackgroundSyncService

from conftest import SHOP, FakeGateway

THEME_ID = "gid://shopify/OnlineStoreTheme/1"


def _service(gateway, db) -> BackgroundSyncService:
    return BackgroundSyncService(gateway, db, shop=SHOP)


# =============================================================================
# PAGES
# =============================================================================

def test_pages_missing_upstream_are_deleted_with_translations(test_db_session):
    gateway = FakeGateway()
    for numeric_id in range(1, 11):
        gid = gateway.add_page(numeric_id)
        gateway.translate(gid, "fr", "title", f"Page FR {numeric_id}")
    service = _service(gateway, test_db_session)
    assert asyncio.run(service.sync_all_pages()).synced == 10

    for numeric_id in (8, 9, 10):
        del gateway.pages[f"gid://shopify/OnlineStorePage/{numeric_id}"]
    gateway.add_page(11)
    result = asyncio.run(service.sync_all_pages())

    assert result.synced == 8
    assert result.deleted == 3
    page_ids = {p.shopify_id for p in test_db_session.query(Page)}
    assert page_ids == {f"gid://shopify/OnlineStorePage/{n}" for n in (1, 2, 3, 4, 5, 6, 7, 11)}
    translated = {t.resource_id for t in test_db_session.query(ContentTranslation)}
    assert translated == {f"gid://shopify/OnlineStorePage/{n}" for n in range(1, 8)}


def test_empty_page_listing_wipes_local_pages(test_db_session):
    gateway = FakeGateway()
    gateway.add_page(1)
    service = _service(gateway, test_db_session)
    asyncio.run(service.sync_all_pages())

    gateway.pages.clear()
    assert asyncio.run(service.sync_all_pages()).synced == 0
    assert test_db_session.query(Page).count() == 0


def test_failed_page_listing_keeps_local_pages(test_db_session):
    gateway = FakeGateway()
    gateway.add_page(1)
    gateway.add_page(2)
    service = _service(gateway, test_db_session)
    asyncio.run(service.sync_all_pages())

    gateway.fail("getPages", ShopifyAPIError("listing broke"))
    with pytest.raises(ShopifyAPIError):
        asyncio.run(service.sync_all_pages())

    assert test_db_session.query(Page).count() == 2


def test_page_limit_zero_skips_without_api_calls(test_db_session):
    gateway = FakeGateway()
    gateway.add_page(1)

    assert asyncio.run(_service(gateway, test_db_session).sync_all_pages(max_count=0)).total == 0
    assert gateway.calls == []


def test_page_limit_caps_synced_pages(test_db_session):
    gateway = FakeGateway()
    for numeric_id in range(1, 6):
        gateway.add_page(numeric_id)

    assert asyncio.run(_service(gateway, test_db_session).sync_all_pages(max_count=2)).synced == 2
    assert test_db_session.query(Page).count() == 2


def test_page_failure_is_reported_and_the_rest_still_sync(test_db_session, monkeypatch):
    gateway = FakeGateway()
    for numeric_id in (1, 2, 3):
        gateway.add_page(numeric_id)
    service = _service(gateway, test_db_session)
    apply_page = service.writer.apply_page

    def flaky_apply(node, result):
        if node.id == "gid://shopify/OnlineStorePage/2":
            raise RuntimeError("disk full")
        return apply_page(node, result)

    monkeypatch.setattr(service.writer, "apply_page", flaky_apply)

    result = asyncio.run(service.sync_all_pages())

    assert (result.synced, result.failed, result.total) == (2, 1, 3)
    assert result.errors == ["gid://shopify/OnlineStorePage/2: disk full"]
    assert {p.shopify_id for p in test_db_session.query(Page)} == {
        "gid://shopify/OnlineStorePage/1",
        "gid://shopify/OnlineStorePage/3",
    }


def test_reported_page_errors_are_capped(test_db_session, monkeypatch):
    gateway = FakeGateway()
    for numeric_id in range(1, 13):
        gateway.add_page(numeric_id)
    service = _service(gateway, test_db_session)

    def broken_apply(node, result):
        raise RuntimeError("boom")

    monkeypatch.setattr(service.writer, "apply_page", broken_apply)

    result = asyncio.run(service.sync_all_pages())

    assert result.failed == 12
    assert len(result.errors) == 10


def test_single_page_reload_returns_row_and_translations(test_db_session):
    gateway = FakeGateway()
    gid = gateway.add_page(4, title="About us")
    gateway.translate(gid, "de", "title", "Über uns")

    snapshot = asyncio.run(_service(gateway, test_db_session).sync_single_page("4"))

    assert snapshot.row.title == "About us"
    assert [(t.locale, t.value) for t in snapshot.translations] == [("de", "Über uns")]


def test_single_page_gone_upstream_returns_none(test_db_session):
    gateway = FakeGateway()
    gid = gateway.add_page(4)
    service = _service(gateway, test_db_session)
    asyncio.run(service.sync_single_page(gid))

    del gateway.pages[gid]

    assert asyncio.run(service.sync_single_page(gid)) is None
    assert test_db_session.query(Page).count() == 0


# =============================================================================
# POLICIES
# =============================================================================

def test_empty_policy_listing_wipes_local_policies(test_db_session):
    gateway = FakeGateway()
    gateway.add_policy(1, "REFUND_POLICY", "Refunds")
    gateway.add_policy(2, "PRIVACY_POLICY", "Privacy")
    gateway.translate("gid://shopify/ShopPolicy/1", "fr", "body", "<p>Remboursements</p>")
    service = _service(gateway, test_db_session)
    assert asyncio.run(service.sync_all_policies()).synced == 2

    gateway.policies.clear()
    assert asyncio.run(service.sync_all_policies()).synced == 0

    assert test_db_session.query(ShopPolicy).count() == 0
    assert test_db_session.query(ContentTranslation).count() == 0


def test_policy_failure_is_reported_and_the_rest_still_sync(test_db_session, monkeypatch):
    gateway = FakeGateway()
    gateway.add_policy(1, "REFUND_POLICY", "Refunds")
    gateway.add_policy(2, "PRIVACY_POLICY", "Privacy")
    service = _service(gateway, test_db_session)
    apply_policy = service.writer.apply_policy

    def flaky_apply(node, result):
        if node.type == "PRIVACY_POLICY":
            raise RuntimeError("constraint violated")
        return apply_policy(node, result)

    monkeypatch.setattr(service.writer, "apply_policy", flaky_apply)

    result = asyncio.run(service.sync_all_policies())

    assert (result.synced, result.failed) == (1, 1)
    assert result.errors == ["PRIVACY_POLICY: constraint violated"]
    assert [p.type for p in test_db_session.query(ShopPolicy)] == ["REFUND_POLICY"]


def test_single_policy_by_type(test_db_session):
    gateway = FakeGateway()
    gateway.add_policy(1, "REFUND_POLICY", "Refunds")

    snapshot = asyncio.run(_service(gateway, test_db_session).sync_single_policy("REFUND_POLICY"))

    assert snapshot.row.shopify_id == "gid://shopify/ShopPolicy/1"
    assert snapshot.row.type == "REFUND_POLICY"


def test_single_policy_unknown_type_returns_none(test_db_session):
    assert asyncio.run(_service(FakeGateway(), test_db_session).sync_single_policy("SHIPPING_POLICY")) is None


# =============================================================================
# THEMES
# =============================================================================

def _seed_theme(gateway: FakeGateway) -> None:
    gateway.add_theme_resource(
        "ONLINE_STORE_THEME",
        THEME_ID,
        {
            "section.product.title": "Product title",
            "section.product.add_to_cart": "Add to cart",
            "cart.general.title": "Your cart",
            "section.page.about.heading": "About",
        },
    )
    gateway.translate(THEME_ID, "fr", "section.product.add_to_cart", "Ajouter au panier")
    gateway.translate(THEME_ID, "fr", "cart.general.title", "Votre panier")


def test_theme_sync_writes_classified_groups(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)

    result = asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    assert (result.synced, result.failed) == (3, 0)
    groups = {g.group_id: g for g in test_db_session.query(ThemeContent)}
    assert set(groups) == {"product", "misc_cart", "page_about"}
    assert groups["product"].resource_type_label == "Theme Content"
    assert [item["key"] for item in groups["product"].translatable_content] == [
        "section.product.title",
        "section.product.add_to_cart",
    ]
    translations = {(t.group_id, t.key, t.value) for t in test_db_session.query(ThemeTranslation)}
    assert translations == {
        ("product", "section.product.add_to_cart", "Ajouter au panier"),
        ("misc_cart", "cart.general.title", "Votre panier"),
    }
    # One translation fetch per locale for the resource, shared by its groups
    assert len(gateway.calls_for("getTranslations")) == 2


def test_theme_groups_not_seen_again_are_pruned(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)
    service = _service(gateway, test_db_session)
    asyncio.run(service.sync_all_themes())

    gateway.source_content[THEME_ID] = [
        entry for entry in gateway.source_content[THEME_ID] if not entry["key"].startswith("cart.")
    ]
    asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    assert {g.group_id for g in test_db_session.query(ThemeContent)} == {"product", "page_about"}
    assert {t.group_id for t in test_db_session.query(ThemeTranslation)} == {"product"}


def test_failed_theme_listing_keeps_cached_groups(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)
    asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    gateway.fail(
        "getThemeTranslatableResources",
        ShopifyAPIError("themes down"),
        when=lambda v: v["resourceType"] == "ONLINE_STORE_THEME",
    )
    asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    assert test_db_session.query(ThemeContent).count() == 3


def test_theme_translation_cap_limits_stored_translations(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)

    result = asyncio.run(_service(gateway, test_db_session).sync_all_themes(max_translations=1))

    assert result.synced == 3
    assert test_db_session.query(ThemeContent).count() == 3
    assert test_db_session.query(ThemeTranslation).count() == 1


def test_failed_theme_listing_is_reported(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)
    gateway.fail(
        "getThemeTranslatableResources",
        ShopifyAPIError("themes down"),
        when=lambda v: v["resourceType"] == "ONLINE_STORE_THEME",
    )

    result = asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    assert result.synced == 0
    assert result.failed == 1
    assert result.errors == ["ONLINE_STORE_THEME: themes down"]


def test_locale_cap_limits_translation_fetches(test_db_session):
    gateway = FakeGateway()
    gid = gateway.add_page(1)
    gateway.translate(gid, "fr", "title", "Page FR")
    gateway.translate(gid, "de", "title", "Seite DE")

    asyncio.run(BackgroundSyncService(gateway, test_db_session, shop=SHOP, max_locales=2).sync_all_pages())

    assert [v["locale"] for v in gateway.calls_for("getTranslations")] == ["fr"]
    assert [t.locale for t in test_db_session.query(ContentTranslation)] == ["fr"]


def test_single_theme_group_reload(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)
    service = _service(gateway, test_db_session)
    asyncio.run(service.sync_all_themes())

    gateway.translate(THEME_ID, "de", "section.product.title", "Produkttitel")
    snapshot = asyncio.run(_service(gateway, test_db_session).sync_single_theme_group("product"))

    assert snapshot.row.group_id == "product"
    assert {(t.locale, t.key) for t in snapshot.translations} == {
        ("fr", "section.product.add_to_cart"),
        ("de", "section.product.title"),
    }


def test_single_theme_group_unknown_raises(test_db_session):
    with pytest.raises(ThemeGroupNotFound):
        asyncio.run(_service(FakeGateway(), test_db_session).sync_single_theme_group("nope"))


def test_single_theme_group_resource_gone_raises_not_found(test_db_session):
    gateway = FakeGateway()
    _seed_theme(gateway)
    asyncio.run(_service(gateway, test_db_session).sync_all_themes())

    del gateway.source_content[THEME_ID]
    with pytest.raises(NotFoundUpstream):
        asyncio.run(_service(gateway, test_db_session).sync_single_theme_group("product"))


# =============================================================================
# FULL PASS
# =============================================================================

def test_sync_all_survives_a_failing_family(test_db_session):
    gateway = FakeGateway()
    gateway.add_page(1)
    gateway.add_page(2)
    gateway.add_policy(1)
    _seed_theme(gateway)
    gateway.fail("getShopPolicies", ShopifyAPIError("policies down"))

    stats = asyncio.run(_service(gateway, test_db_session).sync_all())

    assert stats.pages == 2
    assert stats.policies == 0
    assert stats.themes == 3
    assert stats.total == 5
    assert stats.failed == 1
    assert stats.errors == ["policies: policies down"]


def test_sync_all_skips_families_disabled_by_plan(test_db_session):
    gateway = FakeGateway()
    gateway.add_policy(1)
    _seed_theme(gateway)

    stats = asyncio.run(
        _service(gateway, test_db_session).sync_all(max_pages=0, include_policies=False, include_themes=False)
    )

    assert stats.total == 0
    assert gateway.calls == []
