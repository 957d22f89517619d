"""SQLAlchemy ORM models and enums.

This module defines the local content cache: one table per upstream
resource family, generic translation tables, the theme grouping tables and
the webhook audit/retry tables. Every resource row is identified by
`(shop, shopify_id)`; a surrogate UUID primary key keeps child foreign keys
simple.
"""

import uuid
from datetime import datetime, timezone
import enum

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enums ---------------------------------------------------------

class ResourceTypeEnum(str, enum.Enum):
    """Values stored in ContentTranslation.resource_type."""
    product = "Product"
    collection = "Collection"
    article = "Article"
    page = "Page"
    policy = "ShopPolicy"
    menu = "Menu"


class PlanEnum(str, enum.Enum):
    free = "free"
    basic = "basic"
    pro = "pro"
    max = "max"


# Shop ----------------------------------------------------------

class ShopSession(Base):
    """Installed shop with its offline Admin API token.

    WHAT: One row per shop that installed the app
    WHY: Webhooks and scheduled syncs run without a logged-in merchant and
         need a stored token to build an API gateway for the shop.
    """
    __tablename__ = "shop_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True)  # mystore.myshopify.com
    access_token_enc = Column(Text, nullable=False)  # Fernet ciphertext
    scope = Column(String, nullable=True)
    plan = Column(String, nullable=False, default=PlanEnum.free.value)
    installed_at = Column(DateTime, default=utcnow)
    last_activity_at = Column(DateTime, nullable=True)

    def __str__(self):
        return f"{self.shop} ({self.plan})"


# Products ------------------------------------------------------

class Product(Base):
    """Primary-locale snapshot of one upstream product.

    WHAT: Title, description, SEO and featured image as last fetched
    WHY: Editors read from the local cache instead of the rate-limited API
    REFERENCES:
        - https://shopify.dev/docs/api/admin-graphql/latest/objects/Product
    """
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_product_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)  # gid://shopify/Product/xxx

    title = Column(String, nullable=False)
    description_html = Column(Text, nullable=True)
    handle = Column(String, nullable=False)
    status = Column(String, nullable=False)  # ACTIVE, DRAFT, ARCHIVED
    product_type = Column(String, nullable=True)
    seo_title = Column(String, nullable=True)
    seo_description = Column(Text, nullable=True)
    featured_image_url = Column(String, nullable=True)
    featured_image_alt = Column(String, nullable=True)

    shopify_updated_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.position",
    )
    options = relationship(
        "ProductOption",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductOption.position",
    )
    metafields = relationship("ProductMetafield", back_populates="product", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.title} ({self.shopify_id})"


class ProductImage(Base):
    """Ordered media image of a product.

    WHAT: URL + alt text per MediaImage, keyed by upstream media id
    WHY: alt_text_modified_at marks a human edit; a sync inside the
         preservation window keeps the edited value instead of the upstream one.
    """
    __tablename__ = "product_images"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    media_id = Column(String, nullable=True)  # gid://shopify/MediaImage/xxx
    url = Column(String, nullable=False)
    alt_text = Column(Text, nullable=True)
    position = Column(Integer, nullable=True)
    alt_text_modified_at = Column(DateTime, nullable=True)

    product = relationship("Product", back_populates="images")
    alt_translations = relationship(
        "ProductImageAltTranslation",
        back_populates="image",
        cascade="all, delete-orphan",
    )

    def __str__(self):
        return f"Image {self.position}: {self.url}"


class ProductImageAltTranslation(Base):
    """Per-locale alt text, only ever sourced from upstream translations."""
    __tablename__ = "product_image_alt_translations"
    __table_args__ = (
        UniqueConstraint("image_id", "locale", name="uq_image_alt_locale"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    image_id = Column(UUID(as_uuid=True), ForeignKey("product_images.id", ondelete="CASCADE"), nullable=False)
    locale = Column(String, nullable=False)
    alt_text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    image = relationship("ProductImage", back_populates="alt_translations")


class ProductOption(Base):
    __tablename__ = "product_options"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    shopify_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=True)
    values = Column(JSON, nullable=False, default=list)

    product = relationship("Product", back_populates="options")


class ProductMetafield(Base):
    __tablename__ = "product_metafields"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    shopify_id = Column(String, nullable=True)
    namespace = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value = Column(Text, nullable=True)
    type = Column(String, nullable=True)

    product = relationship("Product", back_populates="metafields")


# Online store content ------------------------------------------

class Collection(Base):
    __tablename__ = "collections"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_collection_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description_html = Column(Text, nullable=True)
    handle = Column(String, nullable=False)
    seo_title = Column(String, nullable=True)
    seo_description = Column(Text, nullable=True)
    shopify_updated_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return self.title


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_article_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    blog_id = Column(String, nullable=True)
    blog_title = Column(String, nullable=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    handle = Column(String, nullable=False)
    seo_title = Column(String, nullable=True)
    seo_description = Column(Text, nullable=True)
    shopify_updated_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return self.title


class Page(Base):
    __tablename__ = "pages"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_page_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    handle = Column(String, nullable=False)
    shopify_updated_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return self.title


class ShopPolicy(Base):
    __tablename__ = "shop_policies"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_policy_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    type = Column(String, nullable=False)  # PRIVACY_POLICY, REFUND_POLICY, ...
    url = Column(String, nullable=True)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return f"{self.title} ({self.type})"


class Menu(Base):
    """Navigation menu with its nested item tree stored verbatim.

    Menus have no upstream translation support, so no ContentTranslation
    rows are ever written for them.
    """
    __tablename__ = "menus"
    __table_args__ = (
        UniqueConstraint("shop", "shopify_id", name="uq_menu_shop_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    shopify_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    handle = Column(String, nullable=False)
    items = Column(JSON, nullable=False, default=list)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return self.title


# Translations --------------------------------------------------

class ContentTranslation(Base):
    """Translated value of one field of one resource in one locale.

    WHAT: (resource_id, key, locale) -> value, with the upstream digest of
          the source text it was translated from
    WHY: Never holds primary-locale text. Rows come only from the
         `translations` arm of translatableResource.
    """
    __tablename__ = "content_translations"
    __table_args__ = (
        UniqueConstraint("shop", "resource_id", "key", "locale", name="uq_content_translation"),
        Index("ix_content_translation_resource", "shop", "resource_type", "resource_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)  # ResourceTypeEnum value
    key = Column(String, nullable=False)  # title, body_html, meta_title, ...
    value = Column(Text, nullable=False)
    locale = Column(String, nullable=False)
    digest = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __str__(self):
        return f"{self.resource_id} {self.key} [{self.locale}]"


class ThemeContent(Base):
    """Classified bundle of theme translatable keys.

    WHAT: One row per (shop, resource_id, group_id) holding the source
          key/value/digest entries that classify into the group
    WHY: Theme resources expose thousands of keys; grouping by key pattern
         gives editors browsable units (Product, Cart, Footer, ...).
    """
    __tablename__ = "theme_contents"
    __table_args__ = (
        UniqueConstraint("shop", "resource_id", "group_id", name="uq_theme_content_group"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    resource_id = Column(String, nullable=False)
    resource_type = Column(String, nullable=False)  # ONLINE_STORE_THEME, ...
    resource_type_label = Column(String, nullable=False)
    group_id = Column(String, nullable=False)
    group_name = Column(String, nullable=False)
    group_icon = Column(String, nullable=False)
    translatable_content = Column(JSON, nullable=False, default=list)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)

    def __str__(self):
        return f"{self.group_icon} {self.group_name} ({self.resource_id})"


class ThemeTranslation(Base):
    __tablename__ = "theme_translations"
    __table_args__ = (
        UniqueConstraint("shop", "resource_id", "group_id", "key", "locale", name="uq_theme_translation"),
        Index("ix_theme_translation_group", "shop", "resource_id", "group_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    group_id = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value = Column(Text, nullable=False)
    locale = Column(String, nullable=False)
    outdated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# Webhooks ------------------------------------------------------

class WebhookLog(Base):
    """Durable audit record of one inbound webhook delivery.

    WHAT: Written before any processing starts, updated to processed=True
          (with or without error) once processing finishes
    WHY: Deliveries are at-least-once; the log is the trail for debugging
         and replay. The raw body is stored encrypted.
    """
    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("ix_webhook_log_shop_topic", "shop", "topic"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False)
    topic = Column(String, nullable=False)  # products/update, collections/delete, ...
    resource_id = Column(String, nullable=True)
    payload_enc = Column(Text, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __str__(self):
        return f"{self.topic} @ {self.shop}"


class WebhookRetry(Base):
    """Failed webhook waiting for another processing attempt."""
    __tablename__ = "webhook_retries"
    __table_args__ = (
        Index("ix_webhook_retry_next", "next_retry_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False)
    topic = Column(String, nullable=False)
    payload_enc = Column(Text, nullable=False)
    attempt = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    next_retry_at = Column(DateTime, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __str__(self):
        return f"{self.topic} @ {self.shop} (attempt {self.attempt}/{self.max_attempts})"
