"""Pydantic schemas for sync API responses."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# TRANSLATIONS
# =============================================================================

class ContentTranslationOut(BaseModel):
    """One cached translation of a resource field."""

    resource_id: str
    resource_type: str
    key: str = Field(description="Translatable key, e.g. title, body_html, meta_title")
    value: str
    locale: str
    digest: Optional[str] = None

    model_config = {"from_attributes": True}


class ThemeTranslationOut(BaseModel):
    resource_id: str
    group_id: str
    key: str
    value: str
    locale: str
    outdated: bool = False

    model_config = {"from_attributes": True}


# =============================================================================
# RESOURCES
# =============================================================================

class ProductImageAltTranslationOut(BaseModel):
    locale: str
    alt_text: str

    model_config = {"from_attributes": True}


class ProductImageOut(BaseModel):
    media_id: Optional[str] = None
    url: str
    alt_text: Optional[str] = None
    position: Optional[int] = None
    alt_text_modified_at: Optional[datetime] = None
    alt_translations: List[ProductImageAltTranslationOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ProductOptionOut(BaseModel):
    name: str
    position: Optional[int] = None
    values: List[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ProductMetafieldOut(BaseModel):
    namespace: str
    key: str
    value: Optional[str] = None
    type: Optional[str] = None

    model_config = {"from_attributes": True}


class ProductOut(BaseModel):
    """Cached product with its children."""

    id: UUID
    shopify_id: str
    title: str
    description_html: Optional[str] = None
    handle: str
    status: str
    product_type: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    featured_image_url: Optional[str] = None
    featured_image_alt: Optional[str] = None
    shopify_updated_at: Optional[datetime] = None
    last_synced_at: datetime
    images: List[ProductImageOut] = Field(default_factory=list)
    options: List[ProductOptionOut] = Field(default_factory=list)
    metafields: List[ProductMetafieldOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class CollectionOut(BaseModel):
    id: UUID
    shopify_id: str
    title: str
    description_html: Optional[str] = None
    handle: str
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class ArticleOut(BaseModel):
    id: UUID
    shopify_id: str
    blog_id: Optional[str] = None
    blog_title: Optional[str] = None
    title: str
    body: Optional[str] = None
    handle: str
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class PageOut(BaseModel):
    id: UUID
    shopify_id: str
    title: str
    body: Optional[str] = None
    handle: str
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class PolicyOut(BaseModel):
    id: UUID
    shopify_id: str
    title: str
    body: Optional[str] = None
    type: str = Field(description="PRIVACY_POLICY, REFUND_POLICY, ...")
    url: Optional[str] = None
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class MenuOut(BaseModel):
    id: UUID
    shopify_id: str
    title: str
    handle: str
    items: List[Dict[str, Any]] = Field(default_factory=list)
    last_synced_at: datetime

    model_config = {"from_attributes": True}


class ThemeContentOut(BaseModel):
    resource_id: str
    resource_type: str
    resource_type_label: str
    group_id: str
    group_name: str
    group_icon: str
    translatable_content: List[Dict[str, Any]] = Field(default_factory=list)
    last_synced_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# RELOAD RESPONSES (row + translations)
# =============================================================================

class ProductReloadResponse(BaseModel):
    product: ProductOut
    translations: List[ContentTranslationOut] = Field(default_factory=list)


class CollectionReloadResponse(BaseModel):
    collection: CollectionOut
    translations: List[ContentTranslationOut] = Field(default_factory=list)


class ArticleReloadResponse(BaseModel):
    article: ArticleOut
    translations: List[ContentTranslationOut] = Field(default_factory=list)


class MenuReloadResponse(BaseModel):
    menu: MenuOut


class PageReloadResponse(BaseModel):
    page: PageOut
    translations: List[ContentTranslationOut] = Field(default_factory=list)


class PolicyReloadResponse(BaseModel):
    policy: PolicyOut
    translations: List[ContentTranslationOut] = Field(default_factory=list)


class ThemeGroupReloadResponse(BaseModel):
    group: ThemeContentOut
    translations: List[ThemeTranslationOut] = Field(default_factory=list)


# =============================================================================
# BULK RESPONSES
# =============================================================================

class BulkProductSyncResponse(BaseModel):
    """Result of a bulk product sync."""

    synced: int = Field(default=0, description="Products written")
    failed: int = Field(default=0, description="Products that raised")
    errors: List[str] = Field(default_factory=list, description="First 10 error messages")
    skipped_existing: int = Field(default=0, description="Set when skipped because products already exist")
    total: int = 0


class FamilySyncResponse(BaseModel):
    """Result of one bulk family pass."""

    synced: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list, description="First 10 error messages")
    deleted: int = Field(default=0, description="Local rows removed by reconciliation")
    total: int = 0


class ContentSyncStatsResponse(BaseModel):
    collections: int = 0
    articles: int = 0
    menus: int = 0
    total: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class BackgroundSyncStatsResponse(BaseModel):
    pages: int = 0
    policies: int = 0
    themes: int = 0
    total: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


# =============================================================================
# STATUS
# =============================================================================

class RetryStatsResponse(BaseModel):
    total: int = 0
    pending: int = 0
    failed: int = 0
    by_topic: Dict[str, int] = Field(default_factory=dict)
    by_attempt: Dict[int, int] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])
    scheduler_active_shops: int = 0
