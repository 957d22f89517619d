"""Typed views of Admin GraphQL responses.

WHAT:
    Pydantic models for every upstream object the sync pipeline reads,
    decoded right after `ApiGateway.request` returns.

WHY:
    Downstream code (reconciler, cache writer, sync services) works with
    attributes instead of nested `dict.get` chains, and a schema drift
    upstream fails loudly at the fetch boundary instead of writing `None`
    into the cache.

REFERENCES:
    - contentsync/services/resource_fetchers.py (decoding site)
    - https://shopify.dev/docs/api/admin-graphql/latest/objects/TranslatableResource
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class ShopifyModel(BaseModel):
    """Base: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _flatten_edges(value: Any) -> Any:
    """Turn a GraphQL connection ({edges: [{node}]}) into a node list."""
    if isinstance(value, dict) and "edges" in value:
        return [edge.get("node") or {} for edge in value.get("edges") or []]
    if value is None:
        return []
    return value


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Upstream timestamps are tz-aware; the cache stores naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# LOCALES & TRANSLATIONS
# =============================================================================

class ShopLocale(ShopifyModel):
    locale: str
    name: Optional[str] = None
    primary: bool = False
    published: bool = False


class TranslatableContentEntry(ShopifyModel):
    """Source-language text of one key. Never stored as a translation."""

    key: str
    value: Optional[str] = None
    digest: Optional[str] = None
    locale: Optional[str] = None


class TranslationEntry(ShopifyModel):
    """Actual translated value returned under `translations(locale)`."""

    key: str
    value: Optional[str] = None
    locale: str
    outdated: bool = False


class TranslatableResource(ShopifyModel):
    resource_id: Optional[str] = None
    translatable_content: List[TranslatableContentEntry] = []
    translations: List[TranslationEntry] = []

    @field_validator("translatable_content", "translations", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return value or []


class PageInfo(ShopifyModel):
    has_next_page: bool = False
    end_cursor: Optional[str] = None


@dataclass(frozen=True)
class TranslationRecord:
    """One reconciled translation ready for the cache writer.

    Only constructible from a TranslationEntry (see
    TranslationReconciler), so source text cannot leak in.
    """

    key: str
    value: str
    locale: str
    digest: Optional[str] = None
    outdated: bool = False

    @property
    def identity(self) -> str:
        return f"{self.key}::{self.locale}"


# =============================================================================
# RESOURCES
# =============================================================================

class Seo(ShopifyModel):
    title: Optional[str] = None
    description: Optional[str] = None


class FeaturedImage(ShopifyModel):
    url: Optional[str] = None
    alt_text: Optional[str] = None


class ImageRef(ShopifyModel):
    url: Optional[str] = None


class MediaImageNode(ShopifyModel):
    """Media node; non-MediaImage media (video, 3D) decode with id=None."""

    id: Optional[str] = None
    alt: Optional[str] = None
    image: Optional[ImageRef] = None

    @property
    def is_image(self) -> bool:
        return bool(self.id and self.image and self.image.url)


class ProductOptionNode(ShopifyModel):
    id: Optional[str] = None
    name: str
    position: Optional[int] = None
    values: List[str] = []


class MetafieldNode(ShopifyModel):
    id: Optional[str] = None
    namespace: str
    key: str
    value: Optional[str] = None
    type: Optional[str] = None


class ProductNode(ShopifyModel):
    id: str
    title: str
    description_html: Optional[str] = None
    handle: str
    status: str
    product_type: Optional[str] = None
    updated_at: Optional[datetime] = None
    seo: Optional[Seo] = None
    featured_image: Optional[FeaturedImage] = None
    media: List[MediaImageNode] = []
    options: List[ProductOptionNode] = []
    metafields: List[MetafieldNode] = []

    @field_validator("media", "metafields", mode="before")
    @classmethod
    def _edges(cls, value: Any) -> Any:
        return _flatten_edges(value)

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, value: Any) -> Any:
        return value or []

    @property
    def images(self) -> List[MediaImageNode]:
        return [m for m in self.media if m.is_image]


class CollectionNode(ShopifyModel):
    id: str
    title: str
    handle: str
    description_html: Optional[str] = None
    updated_at: Optional[datetime] = None
    seo: Optional[Seo] = None


class BlogRef(ShopifyModel):
    id: Optional[str] = None
    title: Optional[str] = None


class ArticleNode(ShopifyModel):
    id: str
    title: str
    handle: str
    body: Optional[str] = None
    updated_at: Optional[datetime] = None
    blog: Optional[BlogRef] = None
    seo: Optional[Seo] = None


class MenuNode(ShopifyModel):
    id: str
    title: str
    handle: str
    # Stored verbatim (nested up to four levels)
    items: List[Dict[str, Any]] = []

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        return value or []


class PageNode(ShopifyModel):
    id: str
    title: str
    handle: str
    body: Optional[str] = None
    updated_at: Optional[datetime] = None


class PolicyNode(ShopifyModel):
    id: str
    type: str
    title: str
    body: Optional[str] = None
    url: Optional[str] = None


class ThemeResourceNode(ShopifyModel):
    resource_id: str
    translatable_content: List[TranslatableContentEntry] = []

    @field_validator("translatable_content", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return value or []
