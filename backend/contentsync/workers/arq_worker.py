"""ARQ async worker for sync jobs and the webhook retry queue.

WHAT:
    - process_full_sync_job: products, collections/articles/menus, then
      pages/policies/themes for one shop, within its plan limits
    - process_webhook_retries (cron, every 5 seconds): replays due
      webhook retries through the webhook handlers
    - cleanup_webhook_retries (cron, daily): drops retries older than 7 days

WHY:
    - Full syncs take minutes on large catalogs; they run off the request path
    - Retries must survive API restarts, so they live in the database and a
      single cron drains them

USAGE:
    # Start worker
    arq contentsync.workers.arq_worker.WorkerSettings

    # Or use the start script
    python -m contentsync.workers.start_arq_worker

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - contentsync/services/webhook_retry_service.py
    - contentsync/workers/arq_enqueue.py
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Dict

from arq import cron

from contentsync.database import SessionLocal
from contentsync.deps import get_settings
from contentsync.models import ShopSession
from contentsync.telemetry import capture_exception, init_sentry, set_shop_context
from contentsync.workers.arq_enqueue import QUEUE_NAME, get_redis_settings

logger = logging.getLogger(__name__)


# =============================================================================
# FULL SYNC JOB
# =============================================================================

async def process_full_sync_job(ctx: Dict, shop: str, force: bool = False, reconcile: bool = True) -> Dict:
    """Sync every content family of one shop.

    Families run one after another so a large product pass does not compete
    with pages and themes for the shop's gateway slots. A failing family is
    recorded and the next one still runs.

    Returns:
        Dict with per-family results
    """
    from contentsync.services.background_sync_service import BackgroundSyncService
    from contentsync.services.content_sync_service import ContentSyncService
    from contentsync.services.plan_limits import get_plan_limits
    from contentsync.services.product_sync_service import ProductSyncService
    from contentsync.services.shop_session_service import get_gateway_for_shop

    logger.info("[ARQ] Starting full sync for %s (force=%s)", shop, force)
    set_shop_context(shop)

    db = SessionLocal()
    try:
        session = db.query(ShopSession).filter(ShopSession.shop == shop).first()
        if session is None:
            return {"success": False, "error": f"Shop not installed: {shop}"}

        limits = get_plan_limits(session.plan)
        gateway = get_gateway_for_shop(db, shop)
        preservation = timedelta(seconds=get_settings().ALT_TEXT_PRESERVATION_SECONDS)
        result: Dict = {"success": True, "shop": shop}

        try:
            products = await ProductSyncService(
                gateway, db, shop=shop, alt_text_preservation=preservation, max_locales=limits.max_locales
            ).sync_all_products(
                max_count=limits.max_products,
                force=force,
                reconcile=reconcile,
                include_all_images=limits.include_all_images,
            )
            result["products"] = asdict(products)
        except Exception as e:
            logger.exception("[ARQ] Product sync failed for %s: %s", shop, e)
            capture_exception(e, extra={"operation": "process_full_sync_job", "shop": shop, "family": "products"})
            result["success"] = False
            result["products"] = {"error": str(e)}

        content = await ContentSyncService(gateway, db, shop=shop, max_locales=limits.max_locales).sync_all(
            reconcile=reconcile, limits=limits
        )
        result["content"] = asdict(content)

        background = await BackgroundSyncService(gateway, db, shop=shop, max_locales=limits.max_locales).sync_all(
            max_pages=limits.max_pages,
            include_policies=limits.cache_enabled.policies,
            include_themes=limits.cache_enabled.themes,
            max_theme_translations=limits.max_theme_translations,
        )
        result["background"] = asdict(background)

        logger.info("[ARQ] Full sync complete for %s: success=%s", shop, result["success"])
        return result

    except Exception as e:
        logger.exception("[ARQ] Full sync failed for %s: %s", shop, e)
        capture_exception(e, extra={"operation": "process_full_sync_job", "shop": shop})
        return {"success": False, "error": str(e)}
    finally:
        db.close()


# =============================================================================
# WEBHOOK RETRIES
# =============================================================================

async def process_webhook_retries(ctx: Dict) -> Dict:
    """Replay due webhook retries (cron, every 5 seconds)."""
    from contentsync.services.webhook_retry_service import WebhookRetryService
    from contentsync.services.webhook_service import WEBHOOK_HANDLERS

    db = SessionLocal()
    try:
        service = WebhookRetryService(
            db,
            handlers=WEBHOOK_HANDLERS,
            max_attempts=get_settings().WEBHOOK_MAX_ATTEMPTS,
        )
        counts = await service.process_queue()
        if any(counts.values()):
            logger.info(f"[ARQ] Webhook retries: {counts}")
        return counts
    except Exception as e:
        logger.exception("[ARQ] Webhook retry processing failed: %s", e)
        capture_exception(e, extra={"operation": "process_webhook_retries"})
        return {"error": str(e)}
    finally:
        db.close()


async def cleanup_webhook_retries(ctx: Dict) -> Dict:
    """Delete stale and exhausted webhook retries (cron, daily)."""
    from contentsync.services.webhook_retry_service import WebhookRetryService

    db = SessionLocal()
    try:
        deleted = WebhookRetryService(db).cleanup(days=7)
        return {"deleted": deleted}
    except Exception as e:
        logger.exception("[ARQ] Webhook retry cleanup failed: %s", e)
        capture_exception(e, extra={"operation": "cleanup_webhook_retries"})
        return {"error": str(e)}
    finally:
        db.close()


# =============================================================================
# WORKER LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    """Worker startup - initialize Sentry and log config."""
    import platform

    sentry_enabled = init_sentry()

    logger.info("=" * 60)
    logger.info("[ARQ] Content sync worker starting up")
    logger.info("=" * 60)
    logger.info(f"[ARQ] Python: {platform.python_version()}")
    logger.info(f"[ARQ] Queue: {QUEUE_NAME}")
    logger.info(f"[ARQ] Sentry: {'enabled' if sentry_enabled else 'disabled'}")
    logger.info("[ARQ] Cron: webhook retries every 5s, retry cleanup daily 03:00")
    logger.info("=" * 60)

    ctx["startup_time"] = datetime.now(timezone.utc)
    ctx["jobs_processed"] = 0


async def shutdown(ctx: Dict) -> None:
    """Worker shutdown - cleanup and log stats."""
    jobs = ctx.get("jobs_processed", 0)
    uptime = datetime.now(timezone.utc) - ctx.get("startup_time", datetime.now(timezone.utc))

    logger.info("=" * 60)
    logger.info("[ARQ] Worker shutting down")
    logger.info(f"[ARQ] Jobs processed: {jobs}")
    logger.info(f"[ARQ] Uptime: {uptime}")
    logger.info("=" * 60)


async def on_job_end(ctx: Dict) -> None:
    """Called after each job completes."""
    ctx["jobs_processed"] = ctx.get("jobs_processed", 0) + 1


# =============================================================================
# WORKER SETTINGS
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration.

    - max_jobs=10: several shops sync concurrently, each behind its own gateway
    - job_timeout=1800: large catalogs with themes take a while
    - retry_jobs=False: full syncs are idempotent but expensive; the next
      enqueue (or the scheduler) picks up where this one failed
    """

    functions = [
        process_full_sync_job,
        process_webhook_retries,
        cleanup_webhook_retries,
    ]

    cron_jobs = [
        cron(process_webhook_retries, second=set(range(0, 60, 5)), run_at_startup=True, unique=True),
        cron(cleanup_webhook_retries, hour={3}, minute={0}, second={0}, unique=True),
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown
    after_job_end = on_job_end

    # Redis connection
    redis_settings = get_redis_settings()

    # Performance settings
    max_jobs = 10
    job_timeout = 1800
    keep_result = 3600
    retry_jobs = False
    health_check_interval = 30

    queue_name = QUEUE_NAME
