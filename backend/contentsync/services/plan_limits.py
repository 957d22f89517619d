"""Subscription plan limits.

Bounds the bulk syncs per plan tier: how many products/pages/collections/
articles are cached, how many languages and theme translations are stored,
whether all product images or only the featured one are kept, and which
content families a plan may sync at all. Unknown plans get free-tier limits.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from contentsync.models import PlanEnum
from contentsync.services.shopify_schemas import ShopLocale


@dataclass(frozen=True)
class CacheFlags:
    products: bool = True
    product_images: bool = False
    collections: bool = True
    articles: bool = False
    pages: bool = False
    policies: bool = False
    themes: bool = False


@dataclass(frozen=True)
class PlanLimits:
    max_products: int
    max_locales: int
    max_collections: int
    max_articles: int
    max_pages: int
    max_theme_translations: int
    product_images: str  # "featured-only" | "all"
    content_types: FrozenSet[str]
    cache_enabled: CacheFlags = field(default_factory=CacheFlags)

    @property
    def include_all_images(self) -> bool:
        return self.product_images == "all"

    def allows(self, content_type: str) -> bool:
        return content_type in self.content_types


_FULL_CACHE = CacheFlags(
    product_images=True,
    articles=True,
    pages=True,
    policies=True,
    themes=True,
)

PLAN_CONFIG: Dict[str, PlanLimits] = {
    PlanEnum.free.value: PlanLimits(
        max_products=15,
        max_locales=2,
        max_collections=100,
        max_articles=0,
        max_pages=0,
        max_theme_translations=0,
        product_images="featured-only",
        content_types=frozenset({"products", "collections"}),
        cache_enabled=CacheFlags(),
    ),
    PlanEnum.basic.value: PlanLimits(
        max_products=50,
        max_locales=5,
        max_collections=200,
        max_articles=0,
        max_pages=20,
        max_theme_translations=0,
        product_images="all",
        content_types=frozenset({"products", "collections", "pages", "policies"}),
        cache_enabled=CacheFlags(
            product_images=True,
            pages=True,
            policies=True,
        ),
    ),
    PlanEnum.pro.value: PlanLimits(
        max_products=150,
        max_locales=10,
        max_collections=300,
        max_articles=100,
        max_pages=50,
        max_theme_translations=50000,
        product_images="all",
        content_types=frozenset(
            {"products", "collections", "articles", "pages", "policies", "templates", "menus"}
        ),
        cache_enabled=_FULL_CACHE,
    ),
    PlanEnum.max.value: PlanLimits(
        max_products=5000,
        max_locales=20,
        max_collections=500,
        max_articles=300,
        max_pages=200,
        max_theme_translations=100000,
        product_images="all",
        content_types=frozenset(
            {
                "products", "collections", "articles", "pages", "policies",
                "templates", "menus", "metaobjects", "metadata",
            }
        ),
        cache_enabled=_FULL_CACHE,
    ),
}


def get_plan_limits(plan: str) -> PlanLimits:
    """Limits for a plan name; anything unrecognised is treated as free."""
    return PLAN_CONFIG.get((plan or "").lower(), PLAN_CONFIG[PlanEnum.free.value])


def limit_locales(locales: List[ShopLocale], max_locales: Optional[int]) -> List[ShopLocale]:
    """Trim a shop's locales to the plan's language count.

    `max_locales` counts the primary locale, so a plan with 2 locales syncs
    translations for the first published non-primary locale only. Unpublished
    locales are dropped as well.
    """
    if max_locales is None:
        return list(locales)
    targets = max(max_locales - 1, 0)
    kept: List[ShopLocale] = []
    for locale in locales:
        if locale.primary:
            kept.append(locale)
        elif locale.published and targets > 0:
            kept.append(locale)
            targets -= 1
    return kept
