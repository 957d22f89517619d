"""Manual sync endpoints.

WHAT:
    Thin HTTP wrappers over the sync services for the embedded admin UI:
    - single-resource reloads returning the refreshed row + translations
    - bulk syncs per family and full passes
    - a server-sent event stream for the full background pass
    - status endpoints (gateway queue, webhook retries, scheduler)

WHY:
    - Routers handle authentication, plan limits and error mapping only
    - Business logic is shared with webhooks, arq jobs and the scheduler
    - Every call counts as merchant activity and keeps the shop's
      background sync timer alive

AUTH:
    Every endpoint takes the shop from the embedded admin's session token
    (Authorization: Bearer <jwt>, see deps.get_authenticated_shop); a
    missing or invalid token is answered with 401.

ERRORS:
    Manual reloads surface the raw error message:
    400 bad id / plan does not include the family, 404 gone upstream or
    unknown group, 429 rate limit retries exhausted, 500 anything else.

REFERENCES:
    - contentsync/services/product_sync_service.py
    - contentsync/services/content_sync_service.py
    - contentsync/services/background_sync_service.py
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Callable, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from contentsync import schemas
from contentsync.database import get_db, get_session_factory
from contentsync.deps import get_authenticated_shop, get_settings, get_shop_session
from contentsync.exceptions import (
    NotFoundUpstream,
    RateLimitExceeded,
    ShopNotInstalled,
    ThemeGroupNotFound,
)
from contentsync.models import ContentTranslation, ResourceTypeEnum, ShopSession
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.background_sync_service import BackgroundSyncService
from contentsync.services.content_sync_service import ContentSyncService
from contentsync.services.plan_limits import PlanLimits, get_plan_limits
from contentsync.services.product_sync_service import ProductSyncService
from contentsync.services.shop_session_service import get_gateway_for_shop, touch_activity
from contentsync.services.webhook_retry_service import WebhookRetryService
from contentsync.workers.arq_enqueue import enqueue_full_sync, get_job_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["Content Sync"])


# =============================================================================
# HELPERS
# =============================================================================

def _raise_http(e: Exception) -> NoReturn:
    """Map a sync failure to an HTTPException carrying the raw message."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, (NotFoundUpstream, ThemeGroupNotFound, ShopNotInstalled)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if isinstance(e, RateLimitExceeded):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e)) from e
    if isinstance(e, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e


def _gone(resource: str, resource_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource} {resource_id} no longer exists in Shopify; local copy removed",
    )


def _require(limits: PlanLimits, content_type: str, plan: str) -> None:
    if not limits.allows(content_type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Plan '{plan}' does not include {content_type}",
        )


def _translations(db: Session, shop: str, resource_type: ResourceTypeEnum, resource_id: str) -> List[schemas.ContentTranslationOut]:
    rows = (
        db.query(ContentTranslation)
        .filter(
            ContentTranslation.shop == shop,
            ContentTranslation.resource_type == resource_type.value,
            ContentTranslation.resource_id == resource_id,
        )
        .order_by(ContentTranslation.locale, ContentTranslation.key)
        .all()
    )
    return [schemas.ContentTranslationOut.model_validate(row) for row in rows]


def _preservation() -> timedelta:
    return timedelta(seconds=get_settings().ALT_TEXT_PRESERVATION_SECONDS)


def _product_service(gateway: ApiGateway, db: Session, shop_session: ShopSession) -> ProductSyncService:
    return ProductSyncService(
        gateway, db,
        shop=shop_session.shop,
        alt_text_preservation=_preservation(),
        max_locales=get_plan_limits(shop_session.plan).max_locales,
    )


def _content_service(gateway: ApiGateway, db: Session, shop_session: ShopSession) -> ContentSyncService:
    return ContentSyncService(
        gateway, db,
        shop=shop_session.shop,
        max_locales=get_plan_limits(shop_session.plan).max_locales,
    )


def _background_service(gateway: ApiGateway, db: Session, shop_session: ShopSession) -> BackgroundSyncService:
    return BackgroundSyncService(
        gateway, db,
        shop=shop_session.shop,
        max_locales=get_plan_limits(shop_session.plan).max_locales,
    )


def get_gateway(
    shop_session: ShopSession = Depends(get_shop_session),
    db: Session = Depends(get_db),
) -> ApiGateway:
    try:
        return get_gateway_for_shop(db, shop_session.shop)
    except (ShopNotInstalled, ValueError) as e:
        _raise_http(e)


def record_activity(
    request: Request,
    shop_session: ShopSession = Depends(get_shop_session),
    db: Session = Depends(get_db),
) -> ShopSession:
    """Every manual call counts as activity for the background scheduler."""
    touch_activity(db, shop_session.shop)
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.record_activity(shop_session.shop)
    return shop_session


# =============================================================================
# PRODUCTS
# =============================================================================

@router.post("/products", response_model=schemas.BulkProductSyncResponse)
async def sync_all_products(
    force: bool = Query(False, description="Sync even if products are already cached"),
    reconcile: bool = Query(False, description="Delete cached products missing upstream"),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Bulk product sync, capped by the plan's max_products."""
    limits = get_plan_limits(shop_session.plan)
    logger.info("[PRODUCT_SYNC] HTTP bulk sync requested: shop=%s force=%s", shop_session.shop, force)
    service = _product_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_products(
            max_count=limits.max_products,
            force=force,
            reconcile=reconcile,
            include_all_images=limits.include_all_images,
        )
    except Exception as e:
        _raise_http(e)
    return schemas.BulkProductSyncResponse(**asdict(result))


@router.post("/products/{product_id:path}", response_model=schemas.ProductReloadResponse)
async def sync_product(
    product_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Reload one product (numeric id or GID) with its translations."""
    limits = get_plan_limits(shop_session.plan)
    service = _product_service(gateway, db, shop_session)
    try:
        product = await service.sync_single_product(product_id, include_all_images=limits.include_all_images)
    except Exception as e:
        _raise_http(e)
    if product is None:
        raise _gone("Product", product_id)
    return schemas.ProductReloadResponse(
        product=schemas.ProductOut.model_validate(product),
        translations=_translations(db, shop_session.shop, ResourceTypeEnum.product, product.shopify_id),
    )


# =============================================================================
# COLLECTIONS / ARTICLES / MENUS
# =============================================================================

@router.post("/collections", response_model=schemas.FamilySyncResponse)
async def sync_all_collections(
    reconcile: bool = Query(False),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    limits = get_plan_limits(shop_session.plan)
    service = _content_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_collections(reconcile=reconcile, max_count=limits.max_collections)
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/collections/{collection_id:path}", response_model=schemas.CollectionReloadResponse)
async def sync_collection(
    collection_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    service = _content_service(gateway, db, shop_session)
    try:
        collection = await service.sync_single_collection(collection_id)
    except Exception as e:
        _raise_http(e)
    if collection is None:
        raise _gone("Collection", collection_id)
    return schemas.CollectionReloadResponse(
        collection=schemas.CollectionOut.model_validate(collection),
        translations=_translations(db, shop_session.shop, ResourceTypeEnum.collection, collection.shopify_id),
    )


@router.post("/articles", response_model=schemas.FamilySyncResponse)
async def sync_all_articles(
    reconcile: bool = Query(False),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    limits = get_plan_limits(shop_session.plan)
    _require(limits, "articles", shop_session.plan)
    service = _content_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_articles(reconcile=reconcile, max_count=limits.max_articles)
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/articles/{article_id:path}", response_model=schemas.ArticleReloadResponse)
async def sync_article(
    article_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "articles", shop_session.plan)
    service = _content_service(gateway, db, shop_session)
    try:
        article = await service.sync_single_article(article_id)
    except Exception as e:
        _raise_http(e)
    if article is None:
        raise _gone("Article", article_id)
    return schemas.ArticleReloadResponse(
        article=schemas.ArticleOut.model_validate(article),
        translations=_translations(db, shop_session.shop, ResourceTypeEnum.article, article.shopify_id),
    )


@router.post("/menus", response_model=schemas.FamilySyncResponse)
async def sync_all_menus(
    reconcile: bool = Query(False),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "menus", shop_session.plan)
    service = _content_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_menus(reconcile=reconcile)
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/menus/{menu_id:path}", response_model=schemas.MenuReloadResponse)
async def sync_menu(
    menu_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "menus", shop_session.plan)
    service = _content_service(gateway, db, shop_session)
    try:
        menu = await service.sync_single_menu(menu_id)
    except Exception as e:
        _raise_http(e)
    if menu is None:
        raise _gone("Menu", menu_id)
    return schemas.MenuReloadResponse(menu=schemas.MenuOut.model_validate(menu))


@router.post("/content", response_model=schemas.ContentSyncStatsResponse)
async def sync_all_content(
    reconcile: bool = Query(False),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Collections, articles and menus concurrently, within plan limits."""
    service = _content_service(gateway, db, shop_session)
    stats = await service.sync_all(reconcile=reconcile, limits=get_plan_limits(shop_session.plan))
    return schemas.ContentSyncStatsResponse(**asdict(stats))


# =============================================================================
# PAGES / POLICIES / THEMES
# =============================================================================

@router.post("/pages", response_model=schemas.FamilySyncResponse)
async def sync_all_pages(
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    limits = get_plan_limits(shop_session.plan)
    _require(limits, "pages", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_pages(max_count=limits.max_pages)
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/pages/{page_id:path}", response_model=schemas.PageReloadResponse)
async def sync_page(
    page_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "pages", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        snapshot = await service.sync_single_page(page_id)
    except Exception as e:
        _raise_http(e)
    if snapshot is None:
        raise _gone("Page", page_id)
    return schemas.PageReloadResponse(
        page=schemas.PageOut.model_validate(snapshot.row),
        translations=[schemas.ContentTranslationOut.model_validate(t) for t in snapshot.translations],
    )


@router.post("/policies", response_model=schemas.FamilySyncResponse)
async def sync_all_policies(
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "policies", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_policies()
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/policies/{policy_id:path}", response_model=schemas.PolicyReloadResponse)
async def sync_policy(
    policy_id: str,
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Reload one policy by GID or by type (e.g. REFUND_POLICY)."""
    _require(get_plan_limits(shop_session.plan), "policies", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        snapshot = await service.sync_single_policy(policy_id)
    except Exception as e:
        _raise_http(e)
    if snapshot is None:
        raise _gone("Policy", policy_id)
    return schemas.PolicyReloadResponse(
        policy=schemas.PolicyOut.model_validate(snapshot.row),
        translations=[schemas.ContentTranslationOut.model_validate(t) for t in snapshot.translations],
    )


@router.post("/themes", response_model=schemas.FamilySyncResponse)
async def sync_all_themes(
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    limits = get_plan_limits(shop_session.plan)
    _require(limits, "templates", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        result = await service.sync_all_themes(max_translations=limits.max_theme_translations)
    except Exception as e:
        _raise_http(e)
    return schemas.FamilySyncResponse(**asdict(result))


@router.post("/themes/groups/{group_id}", response_model=schemas.ThemeGroupReloadResponse)
async def sync_theme_group(
    group_id: str,
    resource_id: Optional[str] = Query(None, description="Theme resource GID when the group id is ambiguous"),
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    _require(get_plan_limits(shop_session.plan), "templates", shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    try:
        snapshot = await service.sync_single_theme_group(group_id, resource_id=resource_id)
    except Exception as e:
        _raise_http(e)
    return schemas.ThemeGroupReloadResponse(
        group=schemas.ThemeContentOut.model_validate(snapshot.row),
        translations=[schemas.ThemeTranslationOut.model_validate(t) for t in snapshot.translations],
    )


# =============================================================================
# FULL PASS
# =============================================================================

@router.post("/all", response_model=schemas.BackgroundSyncStatsResponse)
async def sync_all(
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Pages, policies and themes in one pass, within plan limits."""
    limits = get_plan_limits(shop_session.plan)
    service = _background_service(gateway, db, shop_session)
    stats = await service.sync_all(
        max_pages=limits.max_pages,
        include_policies=limits.cache_enabled.policies,
        include_themes=limits.cache_enabled.themes,
        max_theme_translations=limits.max_theme_translations,
    )
    return schemas.BackgroundSyncStatsResponse(**asdict(stats))


@router.post("/full")
async def enqueue_full_catalog_sync(
    force: bool = Query(False, description="Re-sync products even if already cached"),
    shop_session: ShopSession = Depends(record_activity),
):
    """Queue a full-catalog sync (every family) on the ARQ worker."""
    try:
        return await enqueue_full_sync(shop_session.shop, force=force)
    except Exception as e:
        logger.error(f"[ARQ] Failed to enqueue full sync for {shop_session.shop}: {e}")
        _raise_http(e)


@router.get("/jobs/{job_id:path}")
async def full_sync_job_status(job_id: str, shop: str = Depends(get_authenticated_shop)):
    """Status of the shop's own full-sync job (job ids are `full-sync:<shop>`)."""
    if job_id != f"full-sync:{shop}":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job not found: {job_id}")
    try:
        return await get_job_status(job_id)
    except Exception as e:
        _raise_http(e)


@router.get("/all/stream")
async def sync_all_stream(
    shop_session: ShopSession = Depends(record_activity),
    gateway: ApiGateway = Depends(get_gateway),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Full background pass streamed as server-sent events.

    Events:
        data: {"type": "progress", "current": 3, "total": 10, "message": "..."}
        data: {"type": "complete", "stats": {...}}
        data: {"type": "error", "message": "..."}

    A client disconnect cancels the pass.
    """
    shop = shop_session.shop
    limits = get_plan_limits(shop_session.plan)

    async def event_generator():
        events: asyncio.Queue = asyncio.Queue()

        def on_progress(current: int, total: int, message: str) -> None:
            events.put_nowait({"type": "progress", "current": current, "total": total, "message": message})

        # The request's session may be closed before the stream finishes
        db = session_factory()
        task: Optional[asyncio.Task] = None
        try:
            service = BackgroundSyncService(gateway, db, shop=shop, max_locales=limits.max_locales)
            task = asyncio.create_task(
                service.sync_all(
                    max_pages=limits.max_pages,
                    include_policies=limits.cache_enabled.policies,
                    include_themes=limits.cache_enabled.themes,
                    on_progress=on_progress,
                    max_theme_translations=limits.max_theme_translations,
                )
            )
            while not task.done() or not events.empty():
                try:
                    event = await asyncio.wait_for(events.get(), timeout=0.25)
                except asyncio.TimeoutError:
                    continue
                yield f"data: {json.dumps(event)}\n\n"

            stats = task.result()
            yield f"data: {json.dumps({'type': 'complete', 'stats': asdict(stats)})}\n\n"
        except Exception as e:
            logger.exception(f"[BACKGROUND_SYNC] SSE sync failed for {shop}: {e}")
            yield f"data: {json.dumps({'type': 'error', 'message': str(e)})}\n\n"
        finally:
            if task is not None and not task.done():
                logger.info(f"[BACKGROUND_SYNC] SSE client for {shop} went away, cancelling sync")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            db.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# =============================================================================
# STATUS
# =============================================================================

@router.get("/queue-status")
def queue_status(gateway: ApiGateway = Depends(get_gateway)):
    """Admission state of the shop's API gateway."""
    return gateway.get_queue_status()


@router.get("/webhook-retries", response_model=schemas.RetryStatsResponse)
def webhook_retry_stats(
    shop: str = Depends(get_authenticated_shop),
    db: Session = Depends(get_db),
):
    return schemas.RetryStatsResponse(**WebhookRetryService(db).get_stats(shop=shop))


@router.get("/scheduler")
def scheduler_status(request: Request, shop: str = Depends(get_authenticated_shop)):
    """Scheduler state, limited to the caller's shop."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"active_shops": 0, "shops": []}
    state = scheduler.get_status()
    state["shops"] = [entry for entry in state["shops"] if entry["shop"] == shop]
    return state
