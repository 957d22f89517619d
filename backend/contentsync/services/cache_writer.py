"""Local cache writer.

WHAT:
    Applies one fetched resource plus its reconciled translations to the
    database as a single transaction:
    1. upsert the resource row
    2. replace fully-owned children (options, metafields, images)
    3. upsert translations, then prune stale (key, locale) rows

WHY:
    A half-applied resource (new title, old translations) is worse than a
    stale one. Every write path commits once or rolls back entirely, and
    callers see TransactionFailure instead of a partial cache.

    The write path never awaits: fetching and reconciliation finish before
    `apply_*` is called, so coroutines sharing a session cannot interleave
    inside a transaction.

PRUNING RULE:
    Stale translation rows are pruned only when the shop has published
    non-primary locales (otherwise "zero translations" carries no
    information). Rows of a locale whose fetch failed are kept.

ALT-TEXT RULE:
    A ProductImage whose alt_text_modified_at is inside the preservation
    window keeps its alt text; the timestamp is refreshed instead.

REFERENCES:
    - contentsync/services/translation_reconciler.py (ReconcileResult)
    - contentsync/models.py
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contentsync.exceptions import TransactionFailure
from contentsync.models import (
    Article,
    Collection,
    ContentTranslation,
    Menu,
    Page,
    Product,
    ProductImage,
    ProductImageAltTranslation,
    ProductMetafield,
    ProductOption,
    ResourceTypeEnum,
    ShopPolicy,
    ThemeContent,
    ThemeTranslation,
    utcnow,
)
from contentsync.services.shopify_schemas import (
    ArticleNode,
    CollectionNode,
    MediaImageNode,
    MenuNode,
    PageNode,
    PolicyNode,
    ProductNode,
    TranslationRecord,
    to_naive_utc,
)
from contentsync.services.translation_reconciler import ReconcileResult

logger = logging.getLogger(__name__)

DEFAULT_ALT_TEXT_PRESERVATION = timedelta(minutes=5)

# media_id -> {locale: alt text}
AltTranslations = Dict[str, Dict[str, str]]


class LocalCacheWriter:
    """Transactional writer for one shop's cache.

    Usage:
        writer = LocalCacheWriter(db, shop="mystore.myshopify.com")
        product = writer.apply_product(node, reconcile_result, alt_translations)
    """

    def __init__(
        self,
        db: Session,
        shop: str,
        log: Optional[logging.Logger] = None,
        alt_text_preservation: timedelta = DEFAULT_ALT_TEXT_PRESERVATION,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.shop = shop
        self.log = log or logger
        self.alt_text_preservation = alt_text_preservation
        self.clock = clock

    # =========================================================================
    # TRANSACTION BOUNDARY
    # =========================================================================

    @contextmanager
    def transaction(self, description: str):
        """Commit on success, roll back and raise TransactionFailure on DB errors."""
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.log.error("[CACHE_WRITER] Transaction failed (%s): %s", description, e)
            raise TransactionFailure(f"{description}: {e}") from e
        except Exception:
            self.db.rollback()
            raise

    def _upsert(self, model: Type, shopify_id: str, **fields):
        row = (
            self.db.query(model)
            .filter(model.shop == self.shop, model.shopify_id == shopify_id)
            .first()
        )
        if row is None:
            row = model(shop=self.shop, shopify_id=shopify_id)
            self.db.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        row.last_synced_at = self.clock()
        return row

    # =========================================================================
    # TRANSLATIONS
    # =========================================================================

    def _write_content_translations(
        self,
        resource_type: ResourceTypeEnum,
        resource_id: str,
        result: ReconcileResult,
    ) -> Tuple[int, int]:
        """Upsert current translations and prune stale ones.

        Returns:
            (upserted, pruned)
        """
        existing: Dict[Tuple[str, str], ContentTranslation] = {
            (row.key, row.locale): row
            for row in self.db.query(ContentTranslation).filter(
                ContentTranslation.shop == self.shop,
                ContentTranslation.resource_id == resource_id,
            )
        }

        current: Set[Tuple[str, str]] = set()
        for record in result.records:
            identity = (record.key, record.locale)
            current.add(identity)
            row = existing.get(identity)
            if row is None:
                row = ContentTranslation(
                    shop=self.shop,
                    resource_id=resource_id,
                    key=record.key,
                    locale=record.locale,
                )
                self.db.add(row)
                existing[identity] = row
            row.resource_type = resource_type.value
            row.value = record.value
            row.digest = record.digest

        pruned = 0
        if result.target_locales:
            failed = set(result.failed_locales)
            for identity, row in existing.items():
                if identity in current or row.locale in failed:
                    continue
                self.db.delete(row)
                pruned += 1
        else:
            self.log.debug("[CACHE_WRITER] %s: no published target locales, skipping prune", resource_id)

        return len(current), pruned

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def _is_alt_text_preserved(self, image: ProductImage, now: datetime) -> bool:
        if image.alt_text_modified_at is None:
            return False
        return now - image.alt_text_modified_at < self.alt_text_preservation

    def _select_images(self, node: ProductNode, include_all_images: bool) -> List[MediaImageNode]:
        images = node.images
        if include_all_images or not images:
            return images
        featured_url = node.featured_image.url if node.featured_image else None
        featured = [m for m in images if m.image and m.image.url == featured_url]
        return featured[:1] or images[:1]

    def _apply_images(
        self,
        product: Product,
        images: List[MediaImageNode],
        alt_translations: AltTranslations,
        alt_locales: Set[str],
    ) -> int:
        """Sync images by media id. Returns how many alt texts were preserved.

        Only alt translations of `alt_locales` (locales fetched successfully)
        are replaced; rows of other locales are left as they are.
        """
        now = self.clock()
        existing = {image.media_id: image for image in product.images if image.media_id}
        preserved = 0
        new_images: List[ProductImage] = []

        for position, media in enumerate(images):
            image = existing.pop(media.id, None)
            if image is None:
                image = ProductImage(media_id=media.id)
            image.url = media.image.url
            image.position = position

            if self._is_alt_text_preserved(image, now):
                image.alt_text_modified_at = now
                preserved += 1
                self.log.info(
                    "[CACHE_WRITER] Preserving edited alt text for %s (edited within %ss)",
                    media.id, int(self.alt_text_preservation.total_seconds()),
                )
            else:
                image.alt_text = media.alt

            # Update in place per locale so (image_id, locale) stays unique
            wanted = alt_translations.get(media.id, {})
            current = {t.locale: t for t in image.alt_translations}
            kept: List[ProductImageAltTranslation] = [
                t for t in image.alt_translations if t.locale not in alt_locales
            ]
            for locale, alt_text in wanted.items():
                if locale not in alt_locales:
                    continue
                row = current.get(locale) or ProductImageAltTranslation(locale=locale)
                row.alt_text = alt_text
                kept.append(row)
            image.alt_translations = kept

            new_images.append(image)

        # delete-orphan removes images no longer upstream
        product.images = new_images
        return preserved

    def apply_product(
        self,
        node: ProductNode,
        result: ReconcileResult,
        alt_translations: Optional[AltTranslations] = None,
        include_all_images: bool = True,
        alt_locales: Optional[Iterable[str]] = None,
    ) -> Product:
        """Write one product with children and translations atomically.

        Args:
            alt_translations: media_id -> {locale: alt text}
            include_all_images: False keeps only the featured image
            alt_locales: Locales whose alt translations were fetched; defaults
                to the locales that succeeded in `result`
        """
        if alt_locales is None:
            alt_locales = result.succeeded_locales
        with self.transaction(f"product {node.id}"):
            seo = node.seo
            featured = node.featured_image
            product = self._upsert(
                Product,
                node.id,
                title=node.title,
                description_html=node.description_html or "",
                handle=node.handle,
                status=node.status,
                product_type=node.product_type,
                seo_title=seo.title if seo else None,
                seo_description=seo.description if seo else None,
                featured_image_url=featured.url if featured else None,
                featured_image_alt=featured.alt_text if featured else None,
                shopify_updated_at=to_naive_utc(node.updated_at),
            )

            preserved = self._apply_images(
                product,
                self._select_images(node, include_all_images),
                alt_translations or {},
                set(alt_locales),
            )

            # Options and metafields are fully replaced on every sync
            product.options = [
                ProductOption(
                    shopify_id=option.id,
                    name=option.name,
                    position=option.position,
                    values=list(option.values),
                )
                for option in node.options
            ]
            product.metafields = [
                ProductMetafield(
                    shopify_id=mf.id,
                    namespace=mf.namespace,
                    key=mf.key,
                    value=mf.value,
                    type=mf.type,
                )
                for mf in node.metafields
            ]

            upserted, pruned = self._write_content_translations(ResourceTypeEnum.product, node.id, result)

        self.log.info(
            "[CACHE_WRITER] Saved product %s: %d images (%d alt preserved), %d options, "
            "%d metafields, %d translations (%d pruned)",
            node.id, len(product.images), preserved, len(product.options),
            len(product.metafields), upserted, pruned,
        )
        return product

    # =========================================================================
    # CONTENT
    # =========================================================================

    def apply_collection(self, node: CollectionNode, result: ReconcileResult) -> Collection:
        with self.transaction(f"collection {node.id}"):
            row = self._upsert(
                Collection,
                node.id,
                title=node.title,
                handle=node.handle,
                description_html=node.description_html or "",
                seo_title=node.seo.title if node.seo else None,
                seo_description=node.seo.description if node.seo else None,
                shopify_updated_at=to_naive_utc(node.updated_at),
            )
            upserted, pruned = self._write_content_translations(ResourceTypeEnum.collection, node.id, result)
        self.log.info("[CACHE_WRITER] Saved collection %s (%d translations, %d pruned)", node.id, upserted, pruned)
        return row

    def apply_article(self, node: ArticleNode, result: ReconcileResult) -> Article:
        with self.transaction(f"article {node.id}"):
            row = self._upsert(
                Article,
                node.id,
                title=node.title,
                handle=node.handle,
                body=node.body or "",
                blog_id=node.blog.id if node.blog else None,
                blog_title=node.blog.title if node.blog else None,
                seo_title=node.seo.title if node.seo else None,
                seo_description=node.seo.description if node.seo else None,
                shopify_updated_at=to_naive_utc(node.updated_at),
            )
            upserted, pruned = self._write_content_translations(ResourceTypeEnum.article, node.id, result)
        self.log.info("[CACHE_WRITER] Saved article %s (%d translations, %d pruned)", node.id, upserted, pruned)
        return row

    def apply_menu(self, node: MenuNode) -> Menu:
        """Menus carry no translations; the item tree is stored verbatim."""
        with self.transaction(f"menu {node.id}"):
            row = self._upsert(Menu, node.id, title=node.title, handle=node.handle, items=node.items)
        self.log.info("[CACHE_WRITER] Saved menu %s (%d top-level items)", node.id, len(node.items))
        return row

    def apply_page(self, node: PageNode, result: ReconcileResult) -> Page:
        with self.transaction(f"page {node.id}"):
            row = self._upsert(
                Page,
                node.id,
                title=node.title,
                handle=node.handle,
                body=node.body or "",
                shopify_updated_at=to_naive_utc(node.updated_at),
            )
            upserted, pruned = self._write_content_translations(ResourceTypeEnum.page, node.id, result)
        self.log.info("[CACHE_WRITER] Saved page %s (%d translations, %d pruned)", node.id, upserted, pruned)
        return row

    def apply_policy(self, node: PolicyNode, result: ReconcileResult) -> ShopPolicy:
        with self.transaction(f"policy {node.id}"):
            row = self._upsert(
                ShopPolicy,
                node.id,
                title=node.title,
                body=node.body or "",
                type=node.type,
                url=node.url,
            )
            upserted, pruned = self._write_content_translations(ResourceTypeEnum.policy, node.id, result)
        self.log.info("[CACHE_WRITER] Saved policy %s (%d translations, %d pruned)", node.type, upserted, pruned)
        return row

    # =========================================================================
    # DELETES & CATALOG RECONCILIATION
    # =========================================================================

    def delete_resource(self, model: Type, resource_type: ResourceTypeEnum, shopify_id: str) -> bool:
        """Delete one resource and its translations. Absent rows are a no-op.

        Returns:
            True if a row was deleted
        """
        with self.transaction(f"delete {resource_type.value} {shopify_id}"):
            row = (
                self.db.query(model)
                .filter(model.shop == self.shop, model.shopify_id == shopify_id)
                .first()
            )
            if row is not None:
                # ORM delete so Product children cascade
                self.db.delete(row)
            self.db.query(ContentTranslation).filter(
                ContentTranslation.shop == self.shop,
                ContentTranslation.resource_type == resource_type.value,
                ContentTranslation.resource_id == shopify_id,
            ).delete(synchronize_session=False)
        return row is not None

    def reconcile_catalog(
        self,
        model: Type,
        resource_type: ResourceTypeEnum,
        upstream_ids: Sequence[str],
    ) -> Tuple[int, int]:
        """Delete local rows missing from a complete upstream listing.

        An empty `upstream_ids` deletes every row of the family for the shop.
        Callers must only pass a listing that was fetched successfully.

        Returns:
            (deleted rows, deleted translations)
        """
        upstream = list(upstream_ids)
        with self.transaction(f"reconcile {resource_type.value}"):
            query = self.db.query(model).filter(model.shop == self.shop)
            if upstream:
                query = query.filter(model.shopify_id.notin_(upstream))
            stale = query.all()
            stale_ids = [row.shopify_id for row in stale]
            for row in stale:
                self.db.delete(row)

            deleted_translations = 0
            if stale_ids:
                deleted_translations = self.db.query(ContentTranslation).filter(
                    ContentTranslation.shop == self.shop,
                    ContentTranslation.resource_type == resource_type.value,
                    ContentTranslation.resource_id.in_(stale_ids),
                ).delete(synchronize_session=False)

        if stale_ids:
            self.log.info(
                "[CACHE_WRITER] Removed %d %s rows missing upstream (%d translations)",
                len(stale_ids), resource_type.value, deleted_translations,
            )
        return len(stale_ids), deleted_translations

    # =========================================================================
    # THEMES
    # =========================================================================

    def apply_theme_group(
        self,
        resource_id: str,
        resource_type: str,
        resource_type_label: str,
        group_id: str,
        group_name: str,
        group_icon: str,
        items: List[dict],
        records: Iterable[TranslationRecord],
        target_locales: Sequence[str],
        failed_locales: Iterable[str] = (),
    ) -> ThemeContent:
        """Upsert one theme group and its translations, pruning stale keys."""
        records = list(records)
        with self.transaction(f"theme group {resource_id}::{group_id}"):
            content = (
                self.db.query(ThemeContent)
                .filter(
                    ThemeContent.shop == self.shop,
                    ThemeContent.resource_id == resource_id,
                    ThemeContent.group_id == group_id,
                )
                .first()
            )
            if content is None:
                content = ThemeContent(shop=self.shop, resource_id=resource_id, group_id=group_id)
                self.db.add(content)
            content.resource_type = resource_type
            content.resource_type_label = resource_type_label
            content.group_name = group_name
            content.group_icon = group_icon
            content.translatable_content = items
            content.last_synced_at = self.clock()

            existing: Dict[Tuple[str, str], ThemeTranslation] = {
                (row.key, row.locale): row
                for row in self.db.query(ThemeTranslation).filter(
                    ThemeTranslation.shop == self.shop,
                    ThemeTranslation.resource_id == resource_id,
                    ThemeTranslation.group_id == group_id,
                )
            }
            current: Set[Tuple[str, str]] = set()
            for record in records:
                identity = (record.key, record.locale)
                current.add(identity)
                row = existing.get(identity)
                if row is None:
                    row = ThemeTranslation(
                        shop=self.shop,
                        resource_id=resource_id,
                        group_id=group_id,
                        key=record.key,
                        locale=record.locale,
                    )
                    self.db.add(row)
                    existing[identity] = row
                row.value = record.value
                row.outdated = record.outdated

            if target_locales:
                failed = set(failed_locales)
                for identity, row in existing.items():
                    if identity not in current and row.locale not in failed:
                        self.db.delete(row)
        return content

    def prune_theme_groups(self, keep: Set[Tuple[str, str]], resource_types: Iterable[str]) -> int:
        """Delete ThemeContent/ThemeTranslation for groups not seen this pass.

        Only groups of `resource_types` (the types listed successfully) are
        candidates, so a failed listing never wipes its groups.
        """
        resource_types = list(resource_types)
        if not resource_types:
            return 0

        with self.transaction("prune theme groups"):
            candidates = (
                self.db.query(ThemeContent)
                .filter(
                    ThemeContent.shop == self.shop,
                    ThemeContent.resource_type.in_(resource_types),
                )
                .all()
            )
            stale = [row for row in candidates if (row.resource_id, row.group_id) not in keep]
            for row in stale:
                self.db.query(ThemeTranslation).filter(
                    ThemeTranslation.shop == self.shop,
                    ThemeTranslation.resource_id == row.resource_id,
                    ThemeTranslation.group_id == row.group_id,
                ).delete(synchronize_session=False)
                self.db.delete(row)

        if stale:
            self.log.info("[CACHE_WRITER] Deleted %d obsolete theme groups", len(stale))
        return len(stale)
