"""Background sync service (pages, policies, theme content).

WHAT:
    Full-catalog sync for the three families Shopify sends no webhooks for:
    - Pages and policies: list upstream, delete local rows missing from the
      listing (with their translations) in one transaction, then sync each
      remaining item
    - Themes: list translatable resources of every theme resource type,
      classify keys into groups, write one ThemeContent row per group plus
      its ThemeTranslation rows, then drop groups not seen in this pass

WHY:
    Without webhooks, a full pass is the only way deletions upstream ever
    reach the cache, hence the aggressive cleanup. Cleanup only ever runs
    against a listing that was fetched successfully: a failed listing raises
    before anything is deleted, while an EMPTY listing wipes the family.

REFERENCES:
    - contentsync/services/theme_classifier.py (key grouping)
    - contentsync/services/cache_writer.py (reconcile_catalog, theme writes)
    - contentsync/services/sync_scheduler.py (runs sync_all periodically)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from contentsync.exceptions import NotFoundUpstream, ThemeGroupNotFound
from contentsync.models import ContentTranslation, Page, ResourceTypeEnum, ShopPolicy, ThemeContent, ThemeTranslation
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.cache_writer import DEFAULT_ALT_TEXT_PRESERVATION, LocalCacheWriter
from contentsync.services.content_sync_service import MAX_REPORTED_ERRORS, FamilySyncResult
from contentsync.services.plan_limits import limit_locales
from contentsync.services.resource_fetchers import LocaleFetcher, PageFetcher, PolicyFetcher, ThemeFetcher
from contentsync.services.resource_locks import ResourceLockRegistry, resource_locks
from contentsync.services.shopify_schemas import PageNode, PolicyNode, ShopLocale, TranslatableContentEntry
from contentsync.services.theme_classifier import THEME_RESOURCE_TYPES, group_content, resource_type_label
from contentsync.services.translation_reconciler import ReconcileResult, TranslationReconciler
from contentsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class SyncStats:
    """Result of a full background pass."""
    pages: int = 0
    policies: int = 0
    themes: int = 0
    total: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class ResourceSnapshot:
    """A freshly written row plus its translations (manual reloads)."""
    row: Any
    translations: List[Any] = field(default_factory=list)


def _content_items(entries: List[TranslatableContentEntry]) -> List[Dict[str, Any]]:
    return [
        {"key": e.key, "value": e.value, "digest": e.digest, "locale": e.locale}
        for e in entries
    ]


class BackgroundSyncService:
    """Pages, policies and theme sync for one shop.

    Usage:
        service = BackgroundSyncService(gateway, db)
        stats = await service.sync_all()
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

        self.pages = PageFetcher(gateway)
        self.policies = PolicyFetcher(gateway)
        self.themes = ThemeFetcher(gateway)
        self.locale_fetcher = LocaleFetcher(gateway)
        self.reconciler = TranslationReconciler(self.locale_fetcher, self.log)
        self.writer = LocalCacheWriter(db, self.shop, self.log, alt_text_preservation)
        self._locales: Optional[List[ShopLocale]] = None

    async def _get_locales(self) -> List[ShopLocale]:
        if self._locales is None:
            self._locales = limit_locales(await self.locale_fetcher.fetch_shop_locales(), self.max_locales)
        return self._locales

    def _translations_for(self, resource_type: ResourceTypeEnum, resource_id: str) -> List[ContentTranslation]:
        return (
            self.db.query(ContentTranslation)
            .filter(
                ContentTranslation.shop == self.shop,
                ContentTranslation.resource_type == resource_type.value,
                ContentTranslation.resource_id == resource_id,
            )
            .all()
        )

    # =========================================================================
    # PAGES
    # =========================================================================

    async def _write_page(self, node: PageNode) -> Page:
        async with self.locks.hold(self.shop, ResourceTypeEnum.page.value, node.id):
            result = await self.reconciler.reconcile(node.id, await self._get_locales())
            return self.writer.apply_page(node, result)

    async def sync_all_pages(
        self,
        max_count: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FamilySyncResult:
        """Sync every page, deleting local pages missing upstream.

        Args:
            max_count: Plan limit; 0 disables pages entirely
            on_progress: Called with (current, total, message)

        Returns:
            FamilySyncResult with per-page failures and the rows removed
        """
        result = FamilySyncResult()
        if max_count == 0:
            self.log.info(f"[BACKGROUND_SYNC] Pages disabled for {self.shop} by plan, skipping")
            return result

        pages = await self.pages.fetch_all()
        self.log.info(f"[BACKGROUND_SYNC] Found {len(pages)} pages upstream for {self.shop}")
        if max_count is not None and len(pages) > max_count:
            self.log.info(f"[BACKGROUND_SYNC] Limiting to {max_count} pages (found {len(pages)})")
            pages = pages[:max_count]

        # Empty listing wipes every local page of the shop
        result.deleted, _ = self.writer.reconcile_catalog(Page, ResourceTypeEnum.page, [p.id for p in pages])

        result.total = len(pages)
        for index, page in enumerate(pages, start=1):
            if on_progress:
                on_progress(index, result.total, f"Syncing page {index}/{result.total}")
            try:
                await self._write_page(page)
                result.synced += 1
            except Exception as e:
                result.record_failure(f"{page.id}: {e}")
                self.log.error(f"[BACKGROUND_SYNC] Failed to sync page {page.id}: {e}")
                capture_exception(e, extra={"shop": self.shop, "page_id": page.id})

        self.log.info(
            f"[BACKGROUND_SYNC] Synced {result.synced}/{result.total} pages for {self.shop} "
            f"({result.failed} failed)"
        )
        return result

    async def sync_single_page(self, page_id: str) -> Optional[ResourceSnapshot]:
        """Reload one page. Returns None (and deletes locally) if it is gone."""
        gid = self.pages.to_gid(page_id)
        async with self.locks.hold(self.shop, ResourceTypeEnum.page.value, gid):
            try:
                node = await self.pages.fetch_one(gid)
            except NotFoundUpstream:
                self.log.info(f"[BACKGROUND_SYNC] {gid} gone upstream, removing local copy")
                self.writer.delete_resource(Page, ResourceTypeEnum.page, gid)
                return None

            result = await self.reconciler.reconcile(gid, await self._get_locales())
            row = self.writer.apply_page(node, result)
        return ResourceSnapshot(row=row, translations=self._translations_for(ResourceTypeEnum.page, gid))

    # =========================================================================
    # POLICIES
    # =========================================================================

    async def _write_policy(self, node: PolicyNode) -> ShopPolicy:
        async with self.locks.hold(self.shop, ResourceTypeEnum.policy.value, node.id):
            result = await self.reconciler.reconcile(node.id, await self._get_locales())
            return self.writer.apply_policy(node, result)

    async def sync_all_policies(self, on_progress: Optional[ProgressCallback] = None) -> FamilySyncResult:
        """Sync every shop policy, deleting local policies missing upstream."""
        policies = await self.policies.fetch_all()
        self.log.info(f"[BACKGROUND_SYNC] Found {len(policies)} policies upstream for {self.shop}")

        result = FamilySyncResult(total=len(policies))
        result.deleted, _ = self.writer.reconcile_catalog(
            ShopPolicy, ResourceTypeEnum.policy, [p.id for p in policies]
        )

        for index, policy in enumerate(policies, start=1):
            if on_progress:
                on_progress(index, result.total, f"Syncing policy {index}/{result.total}")
            try:
                await self._write_policy(policy)
                result.synced += 1
            except Exception as e:
                result.record_failure(f"{policy.type}: {e}")
                self.log.error(f"[BACKGROUND_SYNC] Failed to sync policy {policy.type}: {e}")
                capture_exception(e, extra={"shop": self.shop, "policy_id": policy.id})

        return result

    async def sync_single_policy(self, policy_id_or_type: str) -> Optional[ResourceSnapshot]:
        """Reload one policy by id or type (e.g. REFUND_POLICY)."""
        try:
            node = await self.policies.fetch_one(policy_id_or_type)
        except NotFoundUpstream:
            if str(policy_id_or_type).startswith("gid://"):
                async with self.locks.hold(self.shop, ResourceTypeEnum.policy.value, policy_id_or_type):
                    self.writer.delete_resource(ShopPolicy, ResourceTypeEnum.policy, policy_id_or_type)
            return None

        row = await self._write_policy(node)
        return ResourceSnapshot(row=row, translations=self._translations_for(ResourceTypeEnum.policy, node.id))

    # =========================================================================
    # THEMES
    # =========================================================================

    async def sync_all_themes(
        self,
        on_progress: Optional[ProgressCallback] = None,
        max_translations: Optional[int] = None,
    ) -> FamilySyncResult:
        """Sync all theme groups across the theme resource types.

        Translations are fetched once per resource id and shared by every
        group of that resource. Groups not touched in this pass are deleted,
        but only for resource types that were listed successfully.

        Args:
            max_translations: Plan cap on stored theme translations; groups
                past the cap are still written, with no translations

        Returns:
            FamilySyncResult counting theme groups
        """
        locales = await self._get_locales()
        target_codes = [loc.locale for loc in locales if not loc.primary and loc.published]

        result = FamilySyncResult()
        touched: Set[Tuple[str, str]] = set()
        listed_types: List[str] = []
        translation_cache: Dict[str, ReconcileResult] = {}
        budget = max_translations
        type_count = len(THEME_RESOURCE_TYPES)

        for type_index, (resource_type, label) in enumerate(THEME_RESOURCE_TYPES, start=1):
            if on_progress:
                on_progress(round((type_index - 1) / type_count * 100), 100, f"Syncing {label}...")

            try:
                resources = await self.themes.fetch_resources(resource_type)
            except Exception as e:
                self.log.error(f"[THEME_SYNC] Listing {resource_type} failed, keeping its cached groups: {e}")
                capture_exception(e, extra={"shop": self.shop, "resource_type": resource_type})
                result.record_failure(f"{resource_type}: {e}")
                continue
            listed_types.append(resource_type)
            self.log.info(f"[THEME_SYNC] {label}: {len(resources)} resources")

            for resource in resources:
                groups = group_content(resource.translatable_content)
                if not groups:
                    continue

                cache_key = f"{resource.resource_id}::{','.join(target_codes)}"
                reconciled = translation_cache.get(cache_key)
                if reconciled is None:
                    reconciled = await self.reconciler.reconcile(resource.resource_id, locales)
                    translation_cache[cache_key] = reconciled

                for group_id, (group, entries) in groups.items():
                    result.total += 1
                    keys = {entry.key for entry in entries}
                    records = [r for r in reconciled.records if r.key in keys]
                    if budget is not None:
                        records = records[:budget]
                    try:
                        self.writer.apply_theme_group(
                            resource_id=resource.resource_id,
                            resource_type=resource_type,
                            resource_type_label=label,
                            group_id=group_id,
                            group_name=group.name,
                            group_icon=group.icon,
                            items=_content_items(entries),
                            records=records,
                            target_locales=reconciled.target_locales,
                            failed_locales=reconciled.failed_locales,
                        )
                    except Exception as e:
                        self.log.error(f"[THEME_SYNC] Failed to write group {group_id} of {resource.resource_id}: {e}")
                        capture_exception(e, extra={"shop": self.shop, "group_id": group_id})
                        result.record_failure(f"{resource.resource_id}::{group_id}: {e}")
                        # Keep the cached group rather than deleting it below
                        touched.add((resource.resource_id, group_id))
                        continue
                    if budget is not None:
                        budget -= len(records)
                    touched.add((resource.resource_id, group_id))
                    result.synced += 1

        if budget is not None and budget <= 0:
            self.log.info(f"[THEME_SYNC] Theme translation limit ({max_translations}) reached for {self.shop}")
        self.writer.prune_theme_groups(touched, listed_types)

        if on_progress:
            on_progress(100, 100, "Theme sync complete")
        self.log.info(
            f"[THEME_SYNC] Synced {result.synced} theme groups for {self.shop} ({result.failed} failed)"
        )
        return result

    async def sync_single_theme_group(self, group_id: str, resource_id: Optional[str] = None) -> ResourceSnapshot:
        """Reload one cached theme group.

        Raises:
            ThemeGroupNotFound: No cached group with this id
            NotFoundUpstream: The group's resource is gone upstream
        """
        query = self.db.query(ThemeContent).filter(
            ThemeContent.shop == self.shop,
            ThemeContent.group_id == group_id,
        )
        if resource_id:
            query = query.filter(ThemeContent.resource_id == resource_id)
        content = query.first()
        if content is None:
            raise ThemeGroupNotFound(f"Theme group not found: {group_id}")

        async with self.locks.hold(self.shop, "ThemeGroup", f"{content.resource_id}::{group_id}"):
            resource = await self.locale_fetcher.fetch_translatable_content(content.resource_id)
            if resource is None:
                raise NotFoundUpstream(content.resource_type, content.resource_id)

            groups = group_content(resource.translatable_content)
            _, entries = groups.get(group_id, (None, []))
            keys = {entry.key for entry in entries}

            result = await self.reconciler.reconcile(content.resource_id, await self._get_locales())
            records = [r for r in result.records if r.key in keys]

            written = self.writer.apply_theme_group(
                resource_id=content.resource_id,
                resource_type=content.resource_type,
                resource_type_label=resource_type_label(content.resource_type),
                group_id=group_id,
                group_name=content.group_name,
                group_icon=content.group_icon,
                items=_content_items(entries),
                records=records,
                target_locales=result.target_locales,
                failed_locales=result.failed_locales,
            )

        translations = (
            self.db.query(ThemeTranslation)
            .filter(
                ThemeTranslation.shop == self.shop,
                ThemeTranslation.resource_id == written.resource_id,
                ThemeTranslation.group_id == group_id,
            )
            .all()
        )
        self.log.info(f"[THEME_SYNC] Reloaded group {group_id}: {len(entries)} keys, {len(translations)} translations")
        return ResourceSnapshot(row=written, translations=translations)

    # =========================================================================
    # FULL PASS
    # =========================================================================

    async def sync_all(
        self,
        max_pages: Optional[int] = None,
        include_policies: bool = True,
        include_themes: bool = True,
        on_progress: Optional[ProgressCallback] = None,
        max_theme_translations: Optional[int] = None,
    ) -> SyncStats:
        """Pages, policies and themes concurrently; a failing family counts 0.

        Families switched off (plan limits) count 0 without any API call.
        """
        start = time.monotonic()
        self.log.info(f"[BACKGROUND_SYNC] Full sync started for {self.shop}")

        async def _skipped() -> FamilySyncResult:
            return FamilySyncResult()

        async def _run(name: str, coro) -> FamilySyncResult:
            try:
                return await coro
            except Exception as e:
                self.log.error(f"[BACKGROUND_SYNC] {name} sync failed for {self.shop}: {e}")
                capture_exception(e, extra={"shop": self.shop, "family": name})
                result = FamilySyncResult()
                result.record_failure(f"{name}: {e}")
                return result

        pages, policies, themes = await asyncio.gather(
            _run("pages", self.sync_all_pages(max_count=max_pages, on_progress=on_progress)),
            _run("policies", self.sync_all_policies(on_progress=on_progress) if include_policies else _skipped()),
            _run(
                "themes",
                self.sync_all_themes(on_progress=on_progress, max_translations=max_theme_translations)
                if include_themes else _skipped(),
            ),
        )

        errors: List[str] = []
        for family in (pages, policies, themes):
            errors.extend(family.errors)
        stats = SyncStats(
            pages=pages.synced,
            policies=policies.synced,
            themes=themes.synced,
            total=pages.synced + policies.synced + themes.synced,
            failed=pages.failed + policies.failed + themes.failed,
            errors=errors[:MAX_REPORTED_ERRORS],
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        self.log.info(
            f"[BACKGROUND_SYNC] Full sync done for {self.shop}: {stats.pages} pages, "
            f"{stats.policies} policies, {stats.themes} theme groups, {stats.failed} failed "
            f"in {stats.duration_ms}ms"
        )
        return stats
