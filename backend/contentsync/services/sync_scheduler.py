"""Sync scheduler service.

WHAT:
    Runs BackgroundSyncService.sync_all for each shop whose admin is in use,
    every SYNC_INTERVAL_SECONDS (40s by default).

WHY:
    Pages, policies and theme strings have no webhooks. Polling every shop
    forever would burn rate limit for merchants who are not looking, so a
    shop is only polled while it shows activity:
    - record_activity(shop) starts (or keeps alive) the shop's timer
    - a shop idle for SYNC_INACTIVITY_TIMEOUT_SECONDS (5 min) is stopped
    - a tick is skipped while the previous run for the shop is still going

REFERENCES:
    - contentsync/services/background_sync_service.py
    - contentsync/routers/content_sync.py (records activity)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from contentsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 40
DEFAULT_INACTIVITY_TIMEOUT_SECONDS = 300

SyncRunner = Callable[[str], Awaitable[Any]]


async def run_background_sync(shop: str):
    """Default runner: one full background pass for a shop, plan-limited."""
    from contentsync.database import get_sync_session
    from contentsync.models import ShopSession
    from contentsync.services.background_sync_service import BackgroundSyncService
    from contentsync.services.plan_limits import get_plan_limits
    from contentsync.services.shop_session_service import get_gateway_for_shop

    with get_sync_session() as db:
        session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
        limits = get_plan_limits(session.plan if session else "free")
        gateway = get_gateway_for_shop(db, shop)
        service = BackgroundSyncService(gateway, db, shop=shop, max_locales=limits.max_locales)
        return await service.sync_all(
            max_pages=limits.max_pages,
            include_policies=limits.cache_enabled.policies,
            include_themes=limits.cache_enabled.themes,
            max_theme_translations=limits.max_theme_translations,
        )


@dataclass
class _ShopSchedule:
    shop: str
    started_at: float
    last_activity: float
    running: bool = False
    loop_task: Optional[asyncio.Task] = None
    run_task: Optional[asyncio.Task] = None
    runs: int = 0
    last_error: Optional[str] = None


class SyncScheduler:
    """Per-shop periodic background sync on the running event loop.

    Usage:
        scheduler = SyncScheduler()
        scheduler.record_activity("mystore.myshopify.com")
        ...
        await scheduler.stop_all()
    """

    def __init__(
        self,
        runner: Optional[SyncRunner] = None,
        interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
        inactivity_timeout_seconds: float = DEFAULT_INACTIVITY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner or run_background_sync
        self.interval_seconds = interval_seconds
        self.inactivity_timeout_seconds = inactivity_timeout_seconds
        self.clock = clock
        self._shops: Dict[str, _ShopSchedule] = {}

    # =========================================================================
    # ACTIVITY
    # =========================================================================

    def record_activity(self, shop: str) -> None:
        """Note merchant activity; starts the shop's timer if needed."""
        schedule = self._shops.get(shop)
        if schedule is not None:
            schedule.last_activity = self.clock()
            return
        self.start(shop)

    def is_shop_active(self, shop: str) -> bool:
        schedule = self._shops.get(shop)
        if schedule is None:
            return False
        return self.clock() - schedule.last_activity < self.inactivity_timeout_seconds

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, shop: str) -> None:
        """Start polling a shop (must be called with a running loop)."""
        if shop in self._shops:
            self.stop(shop)
        now = self.clock()
        schedule = _ShopSchedule(shop=shop, started_at=now, last_activity=now)
        self._shops[shop] = schedule
        schedule.loop_task = asyncio.get_running_loop().create_task(self._loop(shop))
        logger.info(f"[SCHEDULER] Started sync for {shop} (every {self.interval_seconds}s)")

    def stop(self, shop: str) -> None:
        schedule = self._shops.pop(shop, None)
        if schedule is None:
            return
        current = asyncio.current_task()
        if schedule.loop_task is not None and schedule.loop_task is not current:
            schedule.loop_task.cancel()
        logger.info(f"[SCHEDULER] Stopped sync for {shop}")

    async def stop_all(self) -> None:
        """Cancel every timer and wait for in-flight runs to unwind."""
        schedules = list(self._shops.values())
        logger.info(f"[SCHEDULER] Stopping all sync timers ({len(schedules)} active)")
        self._shops.clear()
        tasks = []
        for schedule in schedules:
            for task in (schedule.loop_task, schedule.run_task):
                if task is not None and not task.done():
                    task.cancel()
                    tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _loop(self, shop: str) -> None:
        while shop in self._shops:
            schedule = self._shops[shop]
            if schedule.running:
                logger.info(f"[SCHEDULER] Skipping tick for {shop}, previous sync still running")
            else:
                schedule.run_task = asyncio.create_task(self.run_cycle(shop))
            await asyncio.sleep(self.interval_seconds)

    async def run_cycle(self, shop: str) -> bool:
        """Run one sync for a shop unless it is busy or inactive.

        Returns:
            True if a sync ran to completion
        """
        schedule = self._shops.get(shop)
        if schedule is None:
            return False
        if schedule.running:
            logger.info(f"[SCHEDULER] Skipping sync for {shop}, previous sync still running")
            return False
        if not self.is_shop_active(shop):
            logger.info(
                f"[SCHEDULER] {shop} inactive for {self.inactivity_timeout_seconds}s+, stopping sync"
            )
            self.stop(shop)
            return False

        schedule.running = True
        try:
            logger.info(f"[SCHEDULER] Running sync cycle for {shop}")
            stats = await self.runner(shop)
            schedule.runs += 1
            schedule.last_error = None
            logger.info(f"[SCHEDULER] Sync complete for {shop}: {stats}")
            return True
        except Exception as e:
            schedule.last_error = str(e)
            logger.error(f"[SCHEDULER] Sync cycle failed for {shop}: {e}")
            capture_exception(e, extra={"shop": shop, "job": "background_sync"})
            return False
        finally:
            schedule.running = False

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_active_shops(self) -> List[str]:
        return list(self._shops.keys())

    def get_status(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            "active_shops": len(self._shops),
            "sync_interval_seconds": self.interval_seconds,
            "inactivity_timeout_seconds": self.inactivity_timeout_seconds,
            "shops": [
                {
                    "shop": s.shop,
                    "running": s.running,
                    "runs": s.runs,
                    "idle_seconds": round(now - s.last_activity, 1),
                    "last_error": s.last_error,
                }
                for s in self._shops.values()
            ],
        }

