"""Theme key classification.

WHAT:
    Assigns every theme translation key (e.g. "section.product.title") to a
    display group with a stable id, a human name and an icon.

WHY:
    A theme exposes thousands of keys on a handful of resources. Grouping
    them lets the cache store and refresh one group at a time, and the group
    id is the unit `sync_single_theme_group` works on.

RULES:
    1. KEY_PATTERNS are tried in order; first match wins.
    2. Otherwise fall back to a prefix group `misc_<prefix>`.
"""

import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Tuple

from contentsync.services.shopify_schemas import TranslatableContentEntry


@dataclass(frozen=True)
class ThemeGroup:
    group_id: str
    name: str
    icon: str


@dataclass(frozen=True)
class KeyPattern:
    pattern: Pattern[str]
    group_id: str
    name: str
    icon: str
    # Builds a subgroup from the match (e.g. one group per page handle)
    subgroup: Optional[Callable[["re.Match[str]"], ThemeGroup]] = None

    def classify(self, key: str) -> Optional[ThemeGroup]:
        match = self.pattern.search(key)
        if match is None:
            return None
        if self.subgroup is not None:
            return self.subgroup(match)
        return ThemeGroup(self.group_id, self.name, self.icon)


def _page_subgroup(match: "re.Match[str]") -> ThemeGroup:
    page = match.group(1)
    return ThemeGroup(f"page_{page}", f"Page: {page[:1].upper()}{page[1:]}", "📄")


KEY_PATTERNS: List[KeyPattern] = [
    KeyPattern(re.compile(r"^section\.article\."), "article", "Article", "📝"),
    KeyPattern(re.compile(r"^section\.collection\."), "collection", "Collection", "📂"),
    KeyPattern(re.compile(r"^section\.index\."), "index", "Index Page", "🏠"),
    KeyPattern(re.compile(r"^section\.password\."), "password", "Password Page", "🔒"),
    KeyPattern(re.compile(r"^section\.product\."), "product", "Product", "🛍️"),
    KeyPattern(re.compile(r"^section\.page\.([^.]+)\."), "page", "Page", "📄", subgroup=_page_subgroup),
    KeyPattern(re.compile(r"^collections\.json\."), "collections_template", "Collections Template", "📋"),
    KeyPattern(re.compile(r"^group\.json\."), "groups", "Theme Groups", "🎨"),
    KeyPattern(re.compile(r"^bar\."), "bars", "Announcement Bars", "📢"),
    KeyPattern(re.compile(r"^Settings Categories:"), "settings", "Settings", "⚙️"),
]

FALLBACK_ICONS: Dict[str, str] = {
    "cart": "🛒",
    "search": "🔍",
    "footer": "🦶",
    "header": "🎯",
}
DEFAULT_FALLBACK_ICON = "📦"

# Theme resource types synced, with their display labels (sync order)
THEME_RESOURCE_TYPES: List[Tuple[str, str]] = [
    ("ONLINE_STORE_THEME", "Theme Content"),
    ("ONLINE_STORE_THEME_JSON_TEMPLATE", "JSON Templates"),
    ("ONLINE_STORE_THEME_LOCALE_CONTENT", "Locale Content"),
    ("ONLINE_STORE_THEME_SECTION_GROUP", "Section Groups"),
    ("ONLINE_STORE_THEME_SETTINGS_CATEGORY", "Settings Categories"),
]


def _fallback_prefix(key: str) -> str:
    if key.startswith("section."):
        section = key.split(".")[1]
        return f"section_{section}" if section else "other"
    if "." in key:
        return key.split(".", 1)[0]
    return re.split(r"[:\s]", key, maxsplit=1)[0] or "other"


def _fallback_name(prefix: str) -> str:
    if prefix.startswith("section_"):
        prefix = prefix[len("section_"):]
    words = prefix.replace("_", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def _fallback_icon(prefix: str) -> str:
    # Case-sensitive: "Cart" keeps the default icon
    for needle, icon in FALLBACK_ICONS.items():
        if needle in prefix:
            return icon
    return DEFAULT_FALLBACK_ICON


def classify_key(key: str) -> ThemeGroup:
    """Group for one theme translation key."""
    for key_pattern in KEY_PATTERNS:
        group = key_pattern.classify(key)
        if group is not None:
            return group

    prefix = _fallback_prefix(key)
    return ThemeGroup(f"misc_{prefix}", _fallback_name(prefix) or prefix, _fallback_icon(prefix))


def group_content(
    entries: Iterable[TranslatableContentEntry],
) -> "OrderedDict[str, Tuple[ThemeGroup, List[TranslatableContentEntry]]]":
    """Bucket entries by group, keeping first-seen group order."""
    groups: "OrderedDict[str, Tuple[ThemeGroup, List[TranslatableContentEntry]]]" = OrderedDict()
    for entry in entries:
        group = classify_key(entry.key)
        if group.group_id not in groups:
            groups[group.group_id] = (group, [])
        groups[group.group_id][1].append(entry)
    return groups


def resource_type_label(resource_type: str) -> str:
    return dict(THEME_RESOURCE_TYPES).get(resource_type, resource_type)
