"""Content sync service (collections, articles, menus).

WHAT:
    Same fetch -> reconcile -> write pipeline as ProductSyncService for the
    webhook-backed content families:
    - Collections and articles: resource row + ContentTranslation rows
    - Menus: item tree stored verbatim, no translations (the Admin API
      exposes no menu translations; this is an upstream limitation)

WHY:
    Bulk passes default to update-only because webhooks already keep these
    families fresh. `reconcile=True` applies the same full-catalog cleanup
    pages and policies use, so every family can be reconciled on demand.

REFERENCES:
    - contentsync/services/product_sync_service.py (same pipeline)
    - contentsync/services/background_sync_service.py (aggressive cleanup)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional, Type

from sqlalchemy.orm import Session

from contentsync.exceptions import NotFoundUpstream
from contentsync.models import Article, Collection, Menu, ResourceTypeEnum
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.cache_writer import DEFAULT_ALT_TEXT_PRESERVATION, LocalCacheWriter
from contentsync.services.plan_limits import PlanLimits, limit_locales
from contentsync.services.product_sync_service import MAX_REPORTED_ERRORS
from contentsync.services.resource_fetchers import (
    ArticleFetcher,
    CollectionFetcher,
    LocaleFetcher,
    MenuFetcher,
    ResourceFetcher,
)
from contentsync.services.resource_locks import ResourceLockRegistry, resource_locks
from contentsync.services.shopify_schemas import ShopLocale
from contentsync.services.translation_reconciler import TranslationReconciler
from contentsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class FamilySyncResult:
    """Counts for one bulk family pass."""
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    deleted: int = 0
    total: int = 0

    def record_failure(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append(message)


@dataclass
class ContentSyncStats:
    collections: int = 0
    articles: int = 0
    menus: int = 0
    total: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0


class ContentSyncService:
    """Collection/article/menu sync for one shop.

    Usage:
        service = ContentSyncService(gateway, db)
        await service.sync_collection("gid://shopify/Collection/42")
        await service.sync_all_articles(reconcile=True)
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
        self.max_locales = max_locales

        self.collections = CollectionFetcher(gateway)
        self.articles = ArticleFetcher(gateway)
        self.menus = MenuFetcher(gateway)
        self.locale_fetcher = LocaleFetcher(gateway)
        self.reconciler = TranslationReconciler(self.locale_fetcher, self.log)
        self.writer = LocalCacheWriter(db, self.shop, self.log, alt_text_preservation)
        self._locales: Optional[List[ShopLocale]] = None

    async def _get_locales(self) -> List[ShopLocale]:
        if self._locales is None:
            self._locales = limit_locales(await self.locale_fetcher.fetch_shop_locales(), self.max_locales)
        return self._locales

    # =========================================================================
    # SINGLE RESOURCE
    # =========================================================================

    async def _sync_one(
        self,
        fetcher: ResourceFetcher,
        model: Type,
        resource_type: ResourceTypeEnum,
        resource_id: str,
    ):
        gid = fetcher.to_gid(resource_id)
        async with self.locks.hold(self.shop, resource_type.value, gid):
            try:
                node = await fetcher.fetch_one(gid)
            except NotFoundUpstream:
                self.log.info(f"[CONTENT_SYNC] {gid} gone upstream, removing local copy")
                self.writer.delete_resource(model, resource_type, gid)
                return None

            if resource_type is ResourceTypeEnum.menu:
                return self.writer.apply_menu(node)

            result = await self.reconciler.reconcile(gid, await self._get_locales())
            if resource_type is ResourceTypeEnum.collection:
                return self.writer.apply_collection(node, result)
            return self.writer.apply_article(node, result)

    async def sync_collection(self, collection_id: str) -> Optional[Collection]:
        return await self._sync_one(self.collections, Collection, ResourceTypeEnum.collection, collection_id)

    async def sync_article(self, article_id: str) -> Optional[Article]:
        return await self._sync_one(self.articles, Article, ResourceTypeEnum.article, article_id)

    async def sync_menu(self, menu_id: str) -> Optional[Menu]:
        return await self._sync_one(self.menus, Menu, ResourceTypeEnum.menu, menu_id)

    async def delete_collection(self, collection_id: str) -> bool:
        """Delete a collection locally; absent collections are a no-op."""
        gid = self.collections.to_gid(collection_id)
        async with self.locks.hold(self.shop, ResourceTypeEnum.collection.value, gid):
            return self.writer.delete_resource(Collection, ResourceTypeEnum.collection, gid)

    async def delete_article(self, article_id: str) -> bool:
        gid = self.articles.to_gid(article_id)
        async with self.locks.hold(self.shop, ResourceTypeEnum.article.value, gid):
            return self.writer.delete_resource(Article, ResourceTypeEnum.article, gid)

    async def delete_menu(self, menu_id: str) -> bool:
        gid = self.menus.to_gid(menu_id)
        async with self.locks.hold(self.shop, ResourceTypeEnum.menu.value, gid):
            return self.writer.delete_resource(Menu, ResourceTypeEnum.menu, gid)

    def _reload(self, model: Type, row):
        if row is None:
            return None
        return (
            self.db.query(model)
            .filter(model.shop == self.shop, model.shopify_id == row.shopify_id)
            .first()
        )

    async def sync_single_collection(self, collection_id: str) -> Optional[Collection]:
        """Manual reload; None when the collection is gone upstream."""
        return self._reload(Collection, await self.sync_collection(collection_id))

    async def sync_single_article(self, article_id: str) -> Optional[Article]:
        return self._reload(Article, await self.sync_article(article_id))

    async def sync_single_menu(self, menu_id: str) -> Optional[Menu]:
        return self._reload(Menu, await self.sync_menu(menu_id))

    # =========================================================================
    # BULK
    # =========================================================================

    async def _sync_family(
        self,
        fetcher: ResourceFetcher,
        model: Type,
        resource_type: ResourceTypeEnum,
        sync_one: Callable,
        reconcile: bool,
        on_progress: Optional[ProgressCallback],
        max_count: Optional[int] = None,
    ) -> FamilySyncResult:
        label = resource_type.value.lower()
        # A failed listing raises here, before any cleanup can run
        ids = await fetcher.fetch_all_ids()

        result = FamilySyncResult()
        if reconcile:
            result.deleted, _ = self.writer.reconcile_catalog(model, resource_type, ids)

        if max_count is not None:
            ids = ids[:max_count]
        result.total = len(ids)

        for index, resource_id in enumerate(ids, start=1):
            if on_progress:
                on_progress(index, result.total, f"Syncing {label} {index}/{result.total}")
            try:
                await sync_one(resource_id)
                result.synced += 1
            except Exception as e:
                result.record_failure(f"{resource_id}: {e}")
                self.log.error(f"[CONTENT_SYNC] Failed to sync {label} {resource_id}: {e}")
                capture_exception(e, extra={"shop": self.shop, "resource_id": resource_id})

        self.log.info(
            f"[CONTENT_SYNC] {label}: {result.synced} synced, {result.failed} failed, "
            f"{result.deleted} removed for {self.shop}"
        )
        return result

    async def sync_all_collections(
        self,
        reconcile: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        max_count: Optional[int] = None,
    ) -> FamilySyncResult:
        return await self._sync_family(
            self.collections, Collection, ResourceTypeEnum.collection,
            self.sync_collection, reconcile, on_progress, max_count,
        )

    async def sync_all_articles(
        self,
        reconcile: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        max_count: Optional[int] = None,
    ) -> FamilySyncResult:
        return await self._sync_family(
            self.articles, Article, ResourceTypeEnum.article,
            self.sync_article, reconcile, on_progress, max_count,
        )

    async def sync_all_menus(
        self,
        reconcile: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FamilySyncResult:
        return await self._sync_family(
            self.menus, Menu, ResourceTypeEnum.menu,
            self.sync_menu, reconcile, on_progress,
        )

    async def sync_all(self, reconcile: bool = False, limits: Optional[PlanLimits] = None) -> ContentSyncStats:
        """Collections, articles and menus concurrently; a failing family counts 0.

        With `limits`, families the plan does not include are skipped without
        any API call (and without cleanup), and collections/articles are
        capped at the plan's maximum.
        """
        start = time.monotonic()
        stats = ContentSyncStats()

        async def _skipped() -> FamilySyncResult:
            return FamilySyncResult()

        async def _run(name: str, coro) -> FamilySyncResult:
            try:
                return await coro
            except Exception as e:
                self.log.error(f"[CONTENT_SYNC] {name} sync failed for {self.shop}: {e}")
                capture_exception(e, extra={"shop": self.shop, "family": name})
                result = FamilySyncResult()
                result.record_failure(f"{name}: {e}")
                return result

        max_collections = max_articles = None
        include_collections = include_articles = include_menus = True
        if limits is not None:
            max_collections = limits.max_collections
            max_articles = limits.max_articles
            include_collections = limits.allows("collections") and limits.max_collections > 0
            include_articles = limits.allows("articles") and limits.max_articles > 0
            include_menus = limits.allows("menus")
            skipped = [
                name for name, included in (
                    ("collections", include_collections),
                    ("articles", include_articles),
                    ("menus", include_menus),
                )
                if not included
            ]
            if skipped:
                self.log.info(f"[CONTENT_SYNC] Skipping {', '.join(skipped)} for {self.shop} by plan")

        collections, articles, menus = await asyncio.gather(
            _run(
                "collections",
                self.sync_all_collections(reconcile=reconcile, max_count=max_collections)
                if include_collections else _skipped(),
            ),
            _run(
                "articles",
                self.sync_all_articles(reconcile=reconcile, max_count=max_articles)
                if include_articles else _skipped(),
            ),
            _run("menus", self.sync_all_menus(reconcile=reconcile) if include_menus else _skipped()),
        )

        stats.collections = collections.synced
        stats.articles = articles.synced
        stats.menus = menus.synced
        stats.total = stats.collections + stats.articles + stats.menus
        for family in (collections, articles, menus):
            stats.failed += family.failed
            stats.errors.extend(family.errors)
        stats.errors = stats.errors[:MAX_REPORTED_ERRORS]
        stats.duration_ms = int((time.monotonic() - start) * 1000)
        return stats
