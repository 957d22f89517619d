"""Tests for translation reconciliation and write-back.

WHAT: Records come only from the `translations` arm, deduplicated, with
      failing locales recorded instead of aborting the resource
WHY: Storing source text as a translation shows primary-locale copy as
     "translated" in every language

REFERENCES:
    - contentsync/services/translation_reconciler.py
    - contentsync/services/translation_registrar.py
"""

import asyncio

import pytest

from contentsync.exceptions import ShopifyAPIError, TranslationRegisterError
from contentsync.services.resource_fetchers import LocaleFetcher
from contentsync.services.shopify_schemas import (
    ShopLocale,
    TranslatableContentEntry,
    TranslationEntry,
    TranslationRecord,
)
from contentsync.services.translation_reconciler import (
    TranslationReconciler,
    dedupe_records,
    records_from_translations,
)
from contentsync.services.translation_registrar import TranslationRegistrar

from conftest import FakeGateway


def _reconcile(gateway, resource_id):
    async def scenario():
        fetcher = LocaleFetcher(gateway)
        locales = await fetcher.fetch_shop_locales()
        return await TranslationReconciler(fetcher).reconcile(resource_id, locales)

    return asyncio.run(scenario())


def test_source_text_never_becomes_a_translation():
    gateway = FakeGateway()
    gid = gateway.add_product(1, title="Shirt")
    gateway.translate(gid, "fr", "title", "Chemise")

    result = _reconcile(gateway, gid)

    assert [(r.key, r.locale, r.value) for r in result.records] == [("title", "fr", "Chemise")]
    # German has no translation; the English title must not stand in for it
    assert all(r.value != "Shirt" for r in result.records)
    assert result.records[0].digest == "digest-1-title"


def test_genuine_translation_equal_to_source_is_kept():
    gateway = FakeGateway()
    gid = gateway.add_product(1, title="Jeans")
    gateway.translate(gid, "de", "title", "Jeans")

    result = _reconcile(gateway, gid)

    assert [(r.locale, r.value) for r in result.records] == [("de", "Jeans")]


def test_primary_and_unpublished_locales_are_skipped():
    gateway = FakeGateway(locales=[
        {"locale": "en", "primary": True, "published": True},
        {"locale": "fr", "primary": False, "published": True},
        {"locale": "es", "primary": False, "published": False},
    ])
    gid = gateway.add_collection(3)

    result = _reconcile(gateway, gid)

    assert result.target_locales == ["fr"]
    assert [v["locale"] for v in gateway.calls_for("getTranslations")] == ["fr"]


def test_failed_locale_is_recorded_and_others_continue():
    gateway = FakeGateway()
    gid = gateway.add_product(1)
    gateway.translate(gid, "fr", "title", "Chemise")
    gateway.translate(gid, "de", "title", "Hemd")
    gateway.fail("getTranslations", ShopifyAPIError("boom"), when=lambda v: v["locale"] == "de")

    result = _reconcile(gateway, gid)

    assert result.failed_locales == ["de"]
    assert result.succeeded_locales == ["fr"]
    assert [(r.locale, r.value) for r in result.records] == [("fr", "Chemise")]
    assert "boom" in result.failures[0].message


class SlowFrenchGateway(FakeGateway):
    """French translations arrive last; tracks requests in flight."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def request(self, query, variables=None):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if (variables or {}).get("locale") == "fr":
                await asyncio.sleep(0.05)
            return await super().request(query, variables)
        finally:
            self.in_flight -= 1


def test_locales_are_fetched_concurrently_and_keep_locale_order():
    gateway = SlowFrenchGateway()
    gid = gateway.add_product(1, title="Shirt")
    gateway.translate(gid, "fr", "title", "Chemise")
    gateway.translate(gid, "de", "title", "Hemd")

    result = _reconcile(gateway, gid)

    assert gateway.peak == 2
    assert [r.locale for r in result.records] == ["fr", "de"]


def test_null_translation_values_are_dropped():
    entries = [
        TranslationEntry(key="title", value=None, locale="fr"),
        TranslationEntry(key="body_html", value="<p>Corps</p>", locale="fr"),
    ]

    records = records_from_translations(entries, {"body_html": "abc"})

    assert records == [TranslationRecord(key="body_html", value="<p>Corps</p>", locale="fr", digest="abc")]


def test_records_refuse_source_content_entries():
    source = [TranslatableContentEntry(key="title", value="Shirt", digest="d", locale="en")]

    with pytest.raises(TypeError):
        records_from_translations(source)


def test_dedupe_keeps_first_record_per_key_and_locale():
    records = [
        TranslationRecord(key="title", value="A", locale="fr"),
        TranslationRecord(key="title", value="B", locale="fr"),
        TranslationRecord(key="title", value="C", locale="de"),
    ]

    assert [r.value for r in dedupe_records(records)] == ["A", "C"]


def test_shop_locale_decodes_camel_case():
    locale = ShopLocale.model_validate({"locale": "fr", "name": "French", "primary": False, "published": True})
    assert locale.published is True


def test_registrar_returns_accepted_translations():
    gateway = FakeGateway()
    gateway.register_response = {
        "translations": [{"key": "title", "value": "Chemise", "locale": "fr"}],
        "userErrors": [],
    }

    accepted = asyncio.run(
        TranslationRegistrar(gateway).register(
            "gid://shopify/Product/1",
            [{"key": "title", "value": "Chemise", "locale": "fr", "translatableContentDigest": "d"}],
        )
    )

    assert accepted == [{"key": "title", "value": "Chemise", "locale": "fr"}]


def test_registrar_raises_on_user_errors():
    gateway = FakeGateway()
    gateway.register_response = {
        "translations": None,
        "userErrors": [{"field": ["translations"], "message": "Digest mismatch"}],
    }

    with pytest.raises(TranslationRegisterError) as exc_info:
        asyncio.run(
            TranslationRegistrar(gateway).register(
                "gid://shopify/Product/1",
                [{"key": "title", "value": "Chemise", "locale": "fr", "translatableContentDigest": "old"}],
            )
        )

    assert "Digest mismatch" in str(exc_info.value)
    assert exc_info.value.user_errors[0]["field"] == ["translations"]


def test_registrar_skips_empty_input():
    gateway = FakeGateway()
    assert asyncio.run(TranslationRegistrar(gateway).register("gid://shopify/Product/1", [])) == []
    assert gateway.calls == []
