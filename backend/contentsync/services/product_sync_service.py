"""Product sync service.

WHAT:
    Keeps the local product cache in step with Shopify:
    - sync_product: fetch -> reconcile translations -> write, for one product
    - delete_product: remove a product and its children/translations
    - sync_single_product: plan-aware reload returning the fresh row
    - sync_all_products: bulk pass over every product id

WHY:
    - Alt-text translations for all media images are fetched in ONE bulk
      call per locale (translatableResourcesByIds). Per-image lookups would
      cost images x locales calls and exhaust the rate limit on large
      catalogs.
    - Each product runs under a per-resource lock, so a webhook and a manual
      reload of the same product never write out of order.
    - Bulk sync catches per product; one bad product must not abort the
      other N-1.

REFERENCES:
    - contentsync/services/cache_writer.py (transactional write)
    - contentsync/services/translation_reconciler.py
    - contentsync/routers/shopify_webhooks.py (products/* topics)
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from contentsync.exceptions import NotFoundUpstream, SyncError
from contentsync.models import Product, ResourceTypeEnum
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.cache_writer import (
    DEFAULT_ALT_TEXT_PRESERVATION,
    AltTranslations,
    LocalCacheWriter,
)
from contentsync.services.plan_limits import limit_locales
from contentsync.services.resource_fetchers import LocaleFetcher, ProductFetcher
from contentsync.services.resource_locks import ResourceLockRegistry, resource_locks
from contentsync.services.shopify_schemas import ProductNode, ShopLocale
from contentsync.services.translation_reconciler import TranslationReconciler
from contentsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

MAX_REPORTED_ERRORS = 10


@dataclass
class BulkSyncResult:
    """Outcome of a bulk product sync."""
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    # Set when the pass was skipped because products already exist
    skipped_existing: int = 0
    total: int = 0


class ProductSyncService:
    """Product fetch -> reconcile -> write pipeline for one shop.

    Usage:
        service = ProductSyncService(gateway, db)
        product = await service.sync_product("gid://shopify/Product/123")
    """

    def __init__(
        self,
        gateway: ApiGateway,
        db: Session,
        shop: Optional[str] = None,
        log: Optional[logging.Logger] = None,
        locks: Optional[ResourceLockRegistry] = None,
        alt_text_preservation: timedelta = DEFAULT_ALT_TEXT_PRESERVATION,
        max_locales: Optional[int] = None,
    ):
        self.gateway = gateway
        self.db = db
        self.shop = shop or gateway.shop_domain
        self.log = log or logger
        self.locks = locks or resource_locks
        # Plan language cap (primary included); None syncs every locale
        self.max_locales = max_locales

        self.fetcher = ProductFetcher(gateway)
        self.locale_fetcher = LocaleFetcher(gateway)
        self.reconciler = TranslationReconciler(self.locale_fetcher, self.log)
        self.writer = LocalCacheWriter(db, self.shop, self.log, alt_text_preservation)
        self._locales: Optional[List[ShopLocale]] = None

    async def _get_locales(self) -> List[ShopLocale]:
        # Cached for the service lifetime (one request or one bulk pass)
        if self._locales is None:
            self._locales = limit_locales(await self.locale_fetcher.fetch_shop_locales(), self.max_locales)
        return self._locales

    async def _fetch_alt_translations(
        self,
        node: ProductNode,
        locales: List[ShopLocale],
    ) -> Tuple[AltTranslations, List[str]]:
        """Alt text translations for all product images, one call per locale.

        Returns:
            (media_id -> {locale: alt}, locales fetched successfully)
        """
        media_ids = [media.id for media in node.images]
        alt_translations: AltTranslations = {}
        fetched: List[str] = []
        if not media_ids:
            return alt_translations, fetched

        for locale in locales:
            if locale.primary or not locale.published:
                continue
            try:
                by_media = await self.locale_fetcher.fetch_translations_by_ids(media_ids, locale.locale)
            except (SyncError, httpx.HTTPError) as e:
                self.log.warning(
                    "[PRODUCT_SYNC] Alt-text translations for %s in %s failed: %s",
                    node.id, locale.locale, e,
                )
                continue

            fetched.append(locale.locale)
            for media_id, entries in by_media.items():
                for entry in entries:
                    if entry.key == "alt" and entry.value:
                        alt_translations.setdefault(media_id, {})[locale.locale] = entry.value

        return alt_translations, fetched

    # =========================================================================
    # SINGLE PRODUCT
    # =========================================================================

    async def sync_product(self, product_id: str, include_all_images: bool = True) -> Optional[Product]:
        """Sync one product; a product gone upstream is deleted locally.

        Returns:
            The written Product row, or None if the product no longer exists

        Raises:
            RateLimitExceeded, ShopifyAPIError, httpx.HTTPError: fetch failed
            TransactionFailure: the write rolled back
        """
        gid = self.fetcher.to_gid(product_id)

        async with self.locks.hold(self.shop, ResourceTypeEnum.product.value, gid):
            try:
                node = await self.fetcher.fetch_one(gid)
            except NotFoundUpstream:
                self.log.info(f"[PRODUCT_SYNC] {gid} gone upstream, removing local copy")
                self.writer.delete_resource(Product, ResourceTypeEnum.product, gid)
                return None

            locales = await self._get_locales()
            result = await self.reconciler.reconcile(gid, locales)
            alt_translations, alt_locales = await self._fetch_alt_translations(node, locales)

            return self.writer.apply_product(
                node,
                result,
                alt_translations,
                include_all_images=include_all_images,
                alt_locales=alt_locales,
            )

    async def delete_product(self, product_id: str) -> bool:
        """Delete a product locally. Deleting an absent product is a no-op."""
        gid = self.fetcher.to_gid(product_id)
        async with self.locks.hold(self.shop, ResourceTypeEnum.product.value, gid):
            deleted = self.writer.delete_resource(Product, ResourceTypeEnum.product, gid)
        if deleted:
            self.log.info(f"[PRODUCT_SYNC] Deleted {gid}")
        else:
            self.log.debug(f"[PRODUCT_SYNC] Delete of {gid}: not cached, nothing to do")
        return deleted

    async def sync_single_product(self, product_id: str, include_all_images: bool = True) -> Optional[Product]:
        """Manual reload: sync, then re-read the row with its children.

        Returns None when the product no longer exists upstream.
        """
        product = await self.sync_product(product_id, include_all_images=include_all_images)
        if product is None:
            return None
        return (
            self.db.query(Product)
            .filter(Product.shop == self.shop, Product.shopify_id == product.shopify_id)
            .first()
        )

    # =========================================================================
    # BULK
    # =========================================================================

    async def sync_all_products(
        self,
        max_count: Optional[int] = None,
        force: bool = False,
        reconcile: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        include_all_images: bool = True,
    ) -> BulkSyncResult:
        """Sync every product of the shop sequentially.

        Args:
            max_count: Cap on products synced (plan limit)
            force: Sync even if the shop already has cached products
            reconcile: Delete local products missing from the full listing
            on_progress: Called with (current, total, message)
            include_all_images: False keeps only featured images

        Raises:
            Listing failures propagate (no partial cleanup on a failed listing).
        """
        if not force:
            existing = self.db.query(Product).filter(Product.shop == self.shop).count()
            if existing:
                self.log.info(f"[PRODUCT_SYNC] {self.shop} already has {existing} products, skipping (force=False)")
                return BulkSyncResult(skipped_existing=existing)

        product_ids = await self.fetcher.fetch_all_ids()

        if reconcile:
            self.writer.reconcile_catalog(Product, ResourceTypeEnum.product, product_ids)

        if max_count is not None:
            product_ids = product_ids[:max_count]

        stats = BulkSyncResult(total=len(product_ids))
        self.log.info(f"[PRODUCT_SYNC] Syncing {stats.total} products for {self.shop}")

        for index, product_id in enumerate(product_ids, start=1):
            if on_progress:
                on_progress(index, stats.total, f"Syncing product {index}/{stats.total}")
            try:
                await self.sync_product(product_id, include_all_images=include_all_images)
                stats.synced += 1
            except Exception as e:
                stats.failed += 1
                message = f"{product_id}: {e}"
                if len(stats.errors) < MAX_REPORTED_ERRORS:
                    stats.errors.append(message)
                self.log.error(f"[PRODUCT_SYNC] Failed to sync {message}")
                capture_exception(e, extra={"shop": self.shop, "product_id": product_id})

        self.log.info(
            f"[PRODUCT_SYNC] Done for {self.shop}: {stats.synced} synced, {stats.failed} failed"
        )
        return stats
