"""FastAPI application entrypoint.
Configures CORS, includes the webhook and manual sync routers, mounts the
admin panel, owns the background sync scheduler and exposes a healthcheck.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import schemas  # noqa: E402
from .admin import mount_admin  # noqa: E402
from .database import engine, init_db  # noqa: E402
from .deps import get_settings  # noqa: E402
from .routers import content_sync as content_sync_router  # noqa: E402
from .routers import shopify_webhooks as shopify_webhooks_router  # noqa: E402
from .services.sync_scheduler import SyncScheduler  # noqa: E402
from .telemetry import init_sentry  # noqa: E402
from .workers.arq_enqueue import reset_arq_pool  # noqa: E402


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Content Sync API",
        description="""
        Keeps a local cache of a Shopify store's translatable content in sync.

        This API provides endpoints for:
        - Receiving Shopify webhooks (products, collections, app uninstall)
        - Manually reloading single resources and triggering bulk syncs
        - Streaming progress of a full background sync
        - Inspecting the API gateway queue, webhook retries and the scheduler
        """,
        version="1.0.0",
    )

    # Trust X-Forwarded-Proto from the load balancer
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    # BACKEND_CORS_ORIGINS can be a comma-separated list
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(shopify_webhooks_router.router)
    app.include_router(content_sync_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        scheduler = getattr(app.state, "scheduler", None)
        return schemas.HealthResponse(
            status="ok",
            scheduler_active_shops=len(scheduler.get_active_shops()) if scheduler else 0,
        )

    @app.on_event("startup")
    async def startup_event():
        if init_sentry():
            logger.info("[STARTUP] Sentry initialized")
        # Creates missing tables only; existing tables are left untouched
        init_db()
        app.state.scheduler = SyncScheduler(
            interval_seconds=settings.SYNC_INTERVAL_SECONDS,
            inactivity_timeout_seconds=settings.SYNC_INACTIVITY_TIMEOUT_SECONDS,
        )
        logger.info(
            "[STARTUP] Sync scheduler ready (interval=%ss, inactivity timeout=%ss)",
            settings.SYNC_INTERVAL_SECONDS,
            settings.SYNC_INACTIVITY_TIMEOUT_SECONDS,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            await scheduler.stop_all()
        await reset_arq_pool()

    mount_admin(app, engine, settings)

    return app


app = create_app()
