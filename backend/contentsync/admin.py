"""Operator admin panel (SQLAdmin).

WHAT:
    Read-only views over installed shops, the content cache and the webhook
    log / retry queue, mounted at /admin behind a username/password login.

WHY:
    Support needs to answer "did the webhook arrive, was it processed, is it
    stuck in the retry queue, what does the cache hold" without database
    access. Encrypted columns (access tokens, webhook payloads) are never
    listed.

WHEN MAKING CHANGES TO THESE VIEWS, KEEP THE __str__ METHODS IN models.py
IN SYNC; they are used to label rows in the admin interface.
"""

import hmac
import logging

from sqladmin import Admin, ModelView
from sqladmin.authentication import AuthenticationBackend
from starlette.requests import Request

from . import models
from .deps import Settings

logger = logging.getLogger(__name__)


class SimpleAuth(AuthenticationBackend):
    """Single operator account from ADMIN_USERNAME / ADMIN_PASSWORD."""

    def __init__(self, settings: Settings):
        super().__init__(secret_key=settings.ADMIN_SECRET_KEY)
        self.username = settings.ADMIN_USERNAME
        self.password = settings.ADMIN_PASSWORD

    async def login(self, request: Request) -> bool:
        if not self.password:
            logger.warning("[ADMIN] Login attempted but ADMIN_PASSWORD is not configured")
            return False
        form = await request.form()
        username = str(form.get("username", ""))
        password = str(form.get("password", ""))
        if hmac.compare_digest(username, self.username) and hmac.compare_digest(password, self.password):
            request.session.update({"admin": username})
            return True
        logger.warning(f"[ADMIN] Failed login for {username}")
        return False

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        return "admin" in request.session


class _ReadOnly(ModelView):
    can_create = False
    can_edit = False
    can_delete = False
    page_size = 50


class ShopSessionAdmin(_ReadOnly, model=models.ShopSession):
    column_list = [
        models.ShopSession.shop,
        models.ShopSession.plan,
        models.ShopSession.scope,
        models.ShopSession.installed_at,
        models.ShopSession.last_activity_at,
    ]
    column_details_exclude_list = [models.ShopSession.access_token_enc]
    column_searchable_list = [models.ShopSession.shop]
    column_sortable_list = [models.ShopSession.installed_at, models.ShopSession.last_activity_at]
    name = "Shop"
    name_plural = "Shops"
    icon = "fa-solid fa-store"
    # Deleting a session is how support forces a reinstall
    can_delete = True


class ProductAdmin(_ReadOnly, model=models.Product):
    column_list = [
        models.Product.shop,
        models.Product.title,
        models.Product.status,
        models.Product.shopify_id,
        models.Product.last_synced_at,
    ]
    column_searchable_list = [models.Product.title, models.Product.shopify_id, models.Product.shop]
    column_sortable_list = [models.Product.title, models.Product.last_synced_at]
    name = "Product"
    name_plural = "Products"
    icon = "fa-solid fa-box"


class CollectionAdmin(_ReadOnly, model=models.Collection):
    column_list = [models.Collection.shop, models.Collection.title, models.Collection.handle, models.Collection.last_synced_at]
    column_searchable_list = [models.Collection.title, models.Collection.shop]
    name = "Collection"
    name_plural = "Collections"
    icon = "fa-solid fa-layer-group"


class ArticleAdmin(_ReadOnly, model=models.Article):
    column_list = [models.Article.shop, models.Article.title, models.Article.blog_title, models.Article.last_synced_at]
    column_searchable_list = [models.Article.title, models.Article.shop]
    name = "Article"
    name_plural = "Articles"
    icon = "fa-solid fa-newspaper"


class PageAdmin(_ReadOnly, model=models.Page):
    column_list = [models.Page.shop, models.Page.title, models.Page.handle, models.Page.last_synced_at]
    column_searchable_list = [models.Page.title, models.Page.shop]
    name = "Page"
    name_plural = "Pages"
    icon = "fa-solid fa-file-lines"


class ShopPolicyAdmin(_ReadOnly, model=models.ShopPolicy):
    column_list = [models.ShopPolicy.shop, models.ShopPolicy.type, models.ShopPolicy.title, models.ShopPolicy.last_synced_at]
    column_searchable_list = [models.ShopPolicy.shop]
    name = "Policy"
    name_plural = "Policies"
    icon = "fa-solid fa-scale-balanced"


class MenuAdmin(_ReadOnly, model=models.Menu):
    column_list = [models.Menu.shop, models.Menu.title, models.Menu.handle, models.Menu.last_synced_at]
    name = "Menu"
    name_plural = "Menus"
    icon = "fa-solid fa-bars"


class ContentTranslationAdmin(_ReadOnly, model=models.ContentTranslation):
    column_list = [
        models.ContentTranslation.shop,
        models.ContentTranslation.resource_type,
        models.ContentTranslation.resource_id,
        models.ContentTranslation.key,
        models.ContentTranslation.locale,
        models.ContentTranslation.updated_at,
    ]
    column_searchable_list = [models.ContentTranslation.resource_id, models.ContentTranslation.shop]
    name = "Translation"
    name_plural = "Translations"
    icon = "fa-solid fa-language"


class ThemeContentAdmin(_ReadOnly, model=models.ThemeContent):
    column_list = [
        models.ThemeContent.shop,
        models.ThemeContent.resource_type_label,
        models.ThemeContent.group_name,
        models.ThemeContent.group_id,
        models.ThemeContent.last_synced_at,
    ]
    column_searchable_list = [models.ThemeContent.group_id, models.ThemeContent.shop]
    name = "Theme Group"
    name_plural = "Theme Groups"
    icon = "fa-solid fa-palette"


class WebhookLogAdmin(_ReadOnly, model=models.WebhookLog):
    column_list = [
        models.WebhookLog.created_at,
        models.WebhookLog.shop,
        models.WebhookLog.topic,
        models.WebhookLog.resource_id,
        models.WebhookLog.processed,
        models.WebhookLog.error,
    ]
    column_details_exclude_list = [models.WebhookLog.payload_enc]
    column_searchable_list = [models.WebhookLog.shop, models.WebhookLog.topic, models.WebhookLog.resource_id]
    column_sortable_list = [models.WebhookLog.created_at, models.WebhookLog.processed]
    column_default_sort = [(models.WebhookLog.created_at, True)]
    name = "Webhook Log"
    name_plural = "Webhook Logs"
    icon = "fa-solid fa-inbox"


class WebhookRetryAdmin(_ReadOnly, model=models.WebhookRetry):
    column_list = [
        models.WebhookRetry.shop,
        models.WebhookRetry.topic,
        models.WebhookRetry.attempt,
        models.WebhookRetry.max_attempts,
        models.WebhookRetry.next_retry_at,
        models.WebhookRetry.last_error,
    ]
    column_details_exclude_list = [models.WebhookRetry.payload_enc]
    column_sortable_list = [models.WebhookRetry.next_retry_at, models.WebhookRetry.attempt]
    name = "Webhook Retry"
    name_plural = "Webhook Retries"
    icon = "fa-solid fa-rotate"
    can_delete = True


ADMIN_VIEWS = [
    ShopSessionAdmin,
    ProductAdmin,
    CollectionAdmin,
    ArticleAdmin,
    PageAdmin,
    ShopPolicyAdmin,
    MenuAdmin,
    ContentTranslationAdmin,
    ThemeContentAdmin,
    WebhookLogAdmin,
    WebhookRetryAdmin,
]


def mount_admin(app, engine, settings: Settings) -> Admin:
    """Attach the admin panel to the app at /admin."""
    if settings.ADMIN_SECRET_KEY == "supersecretkey-change-this-in-production":
        logger.warning("[ADMIN] Using default admin secret key. Set ADMIN_SECRET_KEY for production.")

    admin = Admin(
        app,
        engine,
        title="Content Sync Admin",
        authentication_backend=SimpleAuth(settings),
    )
    for view in ADMIN_VIEWS:
        admin.add_view(view)
    return admin
