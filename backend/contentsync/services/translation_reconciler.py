"""Translation reconciliation.

WHAT:
    Merges per-locale `translatableResource` responses into one
    deduplicated list of TranslationRecord (key, value, locale, digest).

WHY:
    `translatableResource` returns two arms that look alike:
    - translatableContent: the SOURCE text (primary locale) + digest
    - translations(locale): the ACTUAL translated values
    Storing the first as a translation makes primary-locale text show up as
    "translated" in every language. Records are therefore built only by
    `records_from_translations`, which accepts TranslationEntry objects and
    nothing else; translatableContent contributes digests only.

REFERENCES:
    - contentsync/services/cache_writer.py (consumer)
    - https://shopify.dev/docs/api/admin-graphql/latest/objects/TranslatableResource
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import httpx

from contentsync.exceptions import PartialTranslationFailure, SyncError
from contentsync.services.resource_fetchers import LocaleFetcher
from contentsync.services.shopify_schemas import (
    ShopLocale,
    TranslatableContentEntry,
    TranslationEntry,
    TranslationRecord,
)

logger = logging.getLogger(__name__)


def digest_map(contents: Iterable[TranslatableContentEntry]) -> Dict[str, Optional[str]]:
    """key -> digest from the source arm (values are deliberately dropped)."""
    return {content.key: content.digest for content in contents}


def records_from_translations(
    translations: Iterable[TranslationEntry],
    digests: Optional[Dict[str, Optional[str]]] = None,
) -> List[TranslationRecord]:
    """Build records from the `translations` arm only.

    Raises:
        TypeError: If handed anything but TranslationEntry (e.g. source content)
    """
    digests = digests or {}
    records: List[TranslationRecord] = []
    for entry in translations:
        if not isinstance(entry, TranslationEntry):
            raise TypeError(f"Expected TranslationEntry, got {type(entry).__name__}")
        # Null values cannot be stored (value is NOT NULL)
        if entry.value is None:
            continue
        records.append(
            TranslationRecord(
                key=entry.key,
                value=entry.value,
                locale=entry.locale,
                digest=digests.get(entry.key),
                outdated=entry.outdated,
            )
        )
    return records


def dedupe_records(records: Iterable[TranslationRecord]) -> List[TranslationRecord]:
    """Keep the first record per key::locale, preserving order."""
    seen: Dict[str, TranslationRecord] = {}
    for record in records:
        if record.identity not in seen:
            seen[record.identity] = record
    return list(seen.values())


@dataclass
class ReconcileResult:
    """Outcome of reconciling one resource across the shop's locales."""

    resource_id: str
    records: List[TranslationRecord] = field(default_factory=list)
    # Published non-primary locales that were requested
    target_locales: List[str] = field(default_factory=list)
    failures: List[PartialTranslationFailure] = field(default_factory=list)

    @property
    def failed_locales(self) -> List[str]:
        return [failure.locale for failure in self.failures]

    @property
    def succeeded_locales(self) -> List[str]:
        failed = set(self.failed_locales)
        return [locale for locale in self.target_locales if locale not in failed]


class TranslationReconciler:
    """Fetches and merges translations for one resource.

    Usage:
        reconciler = TranslationReconciler(LocaleFetcher(gateway))
        result = await reconciler.reconcile(product_gid, locales)
    """

    def __init__(self, locale_fetcher: LocaleFetcher, log: Optional[logging.Logger] = None):
        self.locale_fetcher = locale_fetcher
        self.log = log or logger

    async def _fetch_locale(self, resource_id: str, locale: str):
        """(records, failure) for one locale."""
        try:
            resource = await self.locale_fetcher.fetch_translatable_resource(resource_id, locale)
        except (SyncError, httpx.HTTPError) as e:
            return [], PartialTranslationFailure(resource_id, locale, e)

        if resource is None:
            self.log.warning("[RECONCILE] No translatable resource for %s in %s", resource_id, locale)
            return [], None

        digests = digest_map(resource.translatable_content)
        return records_from_translations(resource.translations, digests), None

    async def reconcile(self, resource_id: str, locales: List[ShopLocale]) -> ReconcileResult:
        """Reconcile translations for every published non-primary locale.

        Locales are fetched concurrently; the shop's gateway bounds the
        actual request rate. A failing locale is logged, recorded on the
        result and skipped while the remaining locales still count. Records
        keep locale order.
        """
        result = ReconcileResult(resource_id=resource_id)

        for locale in locales:
            if locale.primary:
                continue
            if not locale.published:
                self.log.debug("[RECONCILE] Skipping unpublished locale %s", locale.locale)
                continue
            result.target_locales.append(locale.locale)

        outcomes = await asyncio.gather(
            *(self._fetch_locale(resource_id, code) for code in result.target_locales)
        )

        collected: List[TranslationRecord] = []
        for records, failure in outcomes:
            if failure is not None:
                result.failures.append(failure)
                self.log.warning("[RECONCILE] %s", failure.message)
                continue
            collected.extend(records)

        result.records = dedupe_records(collected)
        self.log.debug(
            "[RECONCILE] %s: %d translations across %d locales (%d failed)",
            resource_id, len(result.records), len(result.target_locales), len(result.failures),
        )
        return result
