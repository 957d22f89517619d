"""
Theme Key Classification Tests (Unit)
=====================================

WHAT: Unit tests for grouping theme translation keys.
WHY: Group ids are persisted and used for single-group reloads; a change in
     classification silently orphans cached groups.

NOTE:
These tests live outside `backend/contentsync/tests/` to avoid loading the
integration-test `conftest.py`, which configures a database and a fake gateway
not required here.

REFERENCES:
- backend/contentsync/services/theme_classifier.py
"""

import pytest

from contentsync.services.shopify_schemas import TranslatableContentEntry
from contentsync.services.theme_classifier import (
    THEME_RESOURCE_TYPES,
    classify_key,
    group_content,
    resource_type_label,
)


@pytest.mark.parametrize(
    "key, group_id",
    [
        ("section.article.comments", "article"),
        ("section.collection.empty", "collection"),
        ("section.index.heading", "index"),
        ("section.password.login", "password"),
        ("section.product.add_to_cart", "product"),
        ("collections.json.title", "collections_template"),
        ("group.json.footer.heading", "groups"),
        ("bar.announcement.text", "bars"),
        ("Settings Categories: Colors", "settings"),
    ],
)
def test_known_patterns(key: str, group_id: str) -> None:
    assert classify_key(key).group_id == group_id


def test_page_keys_get_one_group_per_handle() -> None:
    about = classify_key("section.page.about.heading")
    contact = classify_key("section.page.contact.form_title")

    assert about.group_id == "page_about"
    assert about.name == "Page: About"
    assert about.icon == "📄"
    assert contact.group_id == "page_contact"


def test_fallback_groups_use_the_key_prefix() -> None:
    cart = classify_key("cart.general.title")
    assert cart.group_id == "misc_cart"
    assert cart.name == "Cart"
    assert cart.icon == "🛒"

    header = classify_key("section.header.menu")
    assert header.group_id == "misc_section_header"
    assert header.name == "Header"
    assert header.icon == "🎯"

    assert classify_key("general.404.title").icon == "📦"


def test_fallback_with_empty_section_name_is_other() -> None:
    group = classify_key("section..x")

    assert group.group_id == "misc_other"
    assert group.name == "Other"


def test_fallback_icon_match_is_case_sensitive() -> None:
    assert classify_key("cart_drawer.title").icon == "🛒"
    assert classify_key("Cart Drawer: title").icon == "📦"
    assert classify_key("Cart Drawer: title").group_id == "misc_Cart"


def test_group_content_keeps_first_seen_order() -> None:
    entries = [
        TranslatableContentEntry(key=key, value="v", digest="d", locale="en")
        for key in ("cart.title", "section.product.title", "cart.note", "section.page.faq.q1")
    ]

    groups = group_content(entries)

    assert list(groups) == ["misc_cart", "product", "page_faq"]
    assert [entry.key for entry in groups["misc_cart"][1]] == ["cart.title", "cart.note"]


def test_resource_type_labels() -> None:
    assert THEME_RESOURCE_TYPES[0] == ("ONLINE_STORE_THEME", "Theme Content")
    assert resource_type_label("ONLINE_STORE_THEME_SETTINGS_CATEGORY") == "Settings Categories"
    assert resource_type_label("SOMETHING_NEW") == "SOMETHING_NEW"
