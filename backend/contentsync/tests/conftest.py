"""Pytest configuration for content sync tests

WHAT: Provides shared fixtures for service, HTTP endpoint and webhook tests
WHY: Ensures consistent test setup, database isolation and a deterministic
     stand-in for the Shopify Admin GraphQL API
REFERENCES:
    - contentsync/main.py: FastAPI application
    - contentsync/database.py: get_db / get_session_factory dependencies
    - contentsync/services/shopify_queries.py: operation names routed below
"""

import os
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import pytest

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment
# Must be URL-safe base64-encoded 32-byte string (contentsync.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-secret")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

SHOP = "test-shop.myshopify.com"
WEBHOOK_SECRET = os.environ["SHOPIFY_API_SECRET"]


def session_headers(shop: str = SHOP) -> Dict[str, str]:
    """Authorization header with a session token for `shop`, as App Bridge sends it."""
    from contentsync.security import create_session_token

    token = create_session_token(shop, WEBHOOK_SECRET, audience=os.environ["SHOPIFY_API_KEY"])
    return {"Authorization": f"Bearer {token}"}


_OPERATION = re.compile(r"\b(?:query|mutation)\s+(\w+)")


# ============================================================================
# Fake Shopify gateway
# ============================================================================

class FakeGateway:
    """In-memory Admin API keyed by GraphQL operation name.

    Holds upstream state as plain dicts shaped like the real responses, so
    the fetchers and pydantic schemas decode them exactly as in production.
    """

    def __init__(self, shop_domain: str = SHOP, locales: Optional[List[Dict[str, Any]]] = None):
        self.shop_domain = shop_domain
        self.locales = locales if locales is not None else [
            {"locale": "en", "name": "English", "primary": True, "published": True},
            {"locale": "fr", "name": "French", "primary": False, "published": True},
            {"locale": "de", "name": "German", "primary": False, "published": True},
        ]
        self.products: Dict[str, Dict[str, Any]] = {}
        self.collections: Dict[str, Dict[str, Any]] = {}
        self.articles: Dict[str, Dict[str, Any]] = {}
        self.menus: Dict[str, Dict[str, Any]] = {}
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.policies: List[Dict[str, Any]] = []
        # resource id -> source entries (translatableContent)
        self.source_content: Dict[str, List[Dict[str, Any]]] = {}
        # resource id -> translation entries across locales
        self.translations: Dict[str, List[Dict[str, Any]]] = {}
        # theme resource type -> resource ids
        self.theme_resources: Dict[str, List[str]] = {}
        self.register_response: Dict[str, Any] = {"translations": [], "userErrors": []}

        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._failures: Dict[str, Tuple[Exception, Optional[Callable[[Dict[str, Any]], bool]]]] = {}

    # ----- failure injection -------------------------------------------------

    def fail(self, operation: str, error: Exception, when: Optional[Callable[[Dict[str, Any]], bool]] = None) -> None:
        """Raise `error` for `operation` (optionally only when `when(variables)`)."""
        self._failures[operation] = (error, when)

    def heal(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [variables for name, variables in self.calls if name == operation]

    # ----- upstream state builders -------------------------------------------

    def add_product(
        self,
        numeric_id: int,
        title: str = "Shirt",
        images: Optional[List[Tuple[str, Optional[str]]]] = None,
        options: Optional[List[Dict[str, Any]]] = None,
        metafields: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        gid = f"gid://shopify/Product/{numeric_id}"
        media = [
            {
                "node": {
                    "id": f"gid://shopify/MediaImage/{numeric_id}{index}",
                    "alt": alt,
                    "image": {"url": url},
                }
            }
            for index, (url, alt) in enumerate(images or [])
        ]
        featured = None
        if images:
            featured = {"url": images[0][0], "altText": images[0][1]}
        self.products[gid] = {
            "id": gid,
            "title": title,
            "descriptionHtml": f"<p>{title} description</p>",
            "handle": title.lower().replace(" ", "-"),
            "status": "ACTIVE",
            "productType": "Apparel",
            "updatedAt": "2025-01-01T10:00:00Z",
            "seo": {"title": f"{title} SEO", "description": None},
            "featuredImage": featured,
            "media": {"edges": media},
            "options": options if options is not None else [
                {"id": f"gid://shopify/ProductOption/{numeric_id}", "name": "Size", "position": 1, "values": ["S", "M"]},
            ],
            "metafields": {"edges": [{"node": mf} for mf in (metafields or [])]},
        }
        self.source_content[gid] = [
            {"key": "title", "value": title, "digest": f"digest-{numeric_id}-title", "locale": "en"},
            {"key": "body_html", "value": f"<p>{title} description</p>", "digest": f"digest-{numeric_id}-body", "locale": "en"},
        ]
        return gid

    def add_collection(self, numeric_id: int, title: str = "Summer") -> str:
        gid = f"gid://shopify/Collection/{numeric_id}"
        self.collections[gid] = {
            "id": gid,
            "title": title,
            "handle": title.lower(),
            "descriptionHtml": f"{title} collection",
            "updatedAt": "2025-01-01T10:00:00Z",
            "seo": {"title": None, "description": None},
        }
        self.source_content[gid] = [{"key": "title", "value": title, "digest": f"digest-c{numeric_id}", "locale": "en"}]
        return gid

    def add_article(self, numeric_id: int, title: str = "News") -> str:
        gid = f"gid://shopify/OnlineStoreArticle/{numeric_id}"
        self.articles[gid] = {
            "id": gid,
            "title": title,
            "handle": title.lower(),
            "body": f"<p>{title}</p>",
            "updatedAt": "2025-01-01T10:00:00Z",
            "blog": {"id": "gid://shopify/Blog/1", "title": "Journal"},
            "seo": None,
        }
        self.source_content[gid] = [{"key": "title", "value": title, "digest": f"digest-a{numeric_id}", "locale": "en"}]
        return gid

    def add_menu(self, numeric_id: int, title: str = "Main menu", items: Optional[List[Dict[str, Any]]] = None) -> str:
        gid = f"gid://shopify/Menu/{numeric_id}"
        self.menus[gid] = {
            "id": gid,
            "title": title,
            "handle": title.lower().replace(" ", "-"),
            "items": items if items is not None else [{"id": "item-1", "title": "Home", "url": "/", "items": []}],
        }
        return gid

    def add_page(self, numeric_id: int, title: Optional[str] = None) -> str:
        gid = f"gid://shopify/OnlineStorePage/{numeric_id}"
        title = title or f"Page {numeric_id}"
        self.pages[gid] = {
            "id": gid,
            "title": title,
            "handle": f"page-{numeric_id}",
            "body": f"<p>{title}</p>",
            "updatedAt": "2025-01-01T10:00:00Z",
        }
        self.source_content[gid] = [{"key": "title", "value": title, "digest": f"digest-p{numeric_id}", "locale": "en"}]
        return gid

    def add_policy(self, numeric_id: int, policy_type: str = "REFUND_POLICY", title: str = "Refund policy") -> str:
        gid = f"gid://shopify/ShopPolicy/{numeric_id}"
        self.policies.append({
            "id": gid,
            "type": policy_type,
            "title": title,
            "body": f"<p>{title}</p>",
            "url": f"https://{self.shop_domain}/policies/{policy_type.lower()}",
        })
        self.source_content[gid] = [{"key": "body", "value": f"<p>{title}</p>", "digest": f"digest-sp{numeric_id}", "locale": "en"}]
        return gid

    def add_theme_resource(self, resource_type: str, resource_id: str, content: Dict[str, str]) -> str:
        self.theme_resources.setdefault(resource_type, []).append(resource_id)
        self.source_content[resource_id] = [
            {"key": key, "value": value, "digest": f"digest-{key}", "locale": "en"}
            for key, value in content.items()
        ]
        return resource_id

    def translate(self, resource_id: str, locale: str, key: str, value: Optional[str], outdated: bool = False) -> None:
        entries = self.translations.setdefault(resource_id, [])
        entries[:] = [e for e in entries if not (e["key"] == key and e["locale"] == locale)]
        entries.append({"key": key, "value": value, "locale": locale, "outdated": outdated})

    def untranslate(self, resource_id: str, locale: str, key: str) -> None:
        entries = self.translations.get(resource_id, [])
        entries[:] = [e for e in entries if not (e["key"] == key and e["locale"] == locale)]

    # ----- transport ---------------------------------------------------------

    async def request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        variables = dict(variables or {})
        operation = _OPERATION.search(query).group(1)
        self.calls.append((operation, variables))

        failure = self._failures.get(operation)
        if failure is not None:
            error, when = failure
            if when is None or when(variables):
                raise error

        return getattr(self, f"_op_{operation}")(variables)

    def get_queue_status(self) -> Dict[str, Any]:
        return {
            "shop": self.shop_domain,
            "queued": 0,
            "requests_in_window": len(self.calls),
            "max_requests_per_window": 10,
            "window_seconds": 1.0,
        }

    @staticmethod
    def _connection(nodes: List[Dict[str, Any]], variables: Dict[str, Any]) -> Dict[str, Any]:
        first = variables.get("first") or len(nodes) or 1
        start = int(variables.get("after") or 0)
        chunk = nodes[start:start + first]
        end = start + len(chunk)
        return {
            "pageInfo": {"hasNextPage": end < len(nodes), "endCursor": str(end) if chunk else None},
            "edges": [{"node": node} for node in chunk],
        }

    def _translations_for(self, resource_id: str, locale: str) -> List[Dict[str, Any]]:
        return [dict(e) for e in self.translations.get(resource_id, []) if e["locale"] == locale]

    def _op_getShopLocales(self, variables):
        return {"shopLocales": self.locales}

    def _op_getTranslations(self, variables):
        resource_id = variables["resourceId"]
        if resource_id not in self.source_content:
            return {"translatableResource": None}
        return {
            "translatableResource": {
                "resourceId": resource_id,
                "translatableContent": self.source_content[resource_id],
                "translations": self._translations_for(resource_id, variables["locale"]),
            }
        }

    def _op_getTranslatableContent(self, variables):
        resource_id = variables["resourceId"]
        if resource_id not in self.source_content:
            return {"translatableResource": None}
        return {
            "translatableResource": {
                "resourceId": resource_id,
                "translatableContent": self.source_content[resource_id],
            }
        }

    def _op_getTranslationsByIds(self, variables):
        edges = [
            {"node": {"resourceId": rid, "translations": self._translations_for(rid, variables["locale"])}}
            for rid in variables["resourceIds"]
        ]
        return {"translatableResourcesByIds": {"edges": edges}}

    def _op_getThemeTranslatableResources(self, variables):
        nodes = [
            {"resourceId": rid, "translatableContent": self.source_content.get(rid, [])}
            for rid in self.theme_resources.get(variables["resourceType"], [])
        ]
        return {"translatableResources": self._connection(nodes, variables)}

    def _op_translationsRegister(self, variables):
        return {"translationsRegister": self.register_response}

    def _op_getProduct(self, variables):
        return {"product": self.products.get(variables["id"])}

    def _op_getProductIds(self, variables):
        return {"products": self._connection([{"id": gid} for gid in self.products], variables)}

    def _op_getCollection(self, variables):
        return {"collection": self.collections.get(variables["id"])}

    def _op_getCollectionIds(self, variables):
        return {"collections": self._connection([{"id": gid} for gid in self.collections], variables)}

    def _op_getArticle(self, variables):
        return {"article": self.articles.get(variables["id"])}

    def _op_getArticleIds(self, variables):
        return {"articles": self._connection([{"id": gid} for gid in self.articles], variables)}

    def _op_getMenu(self, variables):
        return {"menu": self.menus.get(variables["id"])}

    def _op_getMenuIds(self, variables):
        return {"menus": self._connection([{"id": gid} for gid in self.menus], variables)}

    def _op_getPage(self, variables):
        return {"page": self.pages.get(variables["id"])}

    def _op_getPages(self, variables):
        return {"pages": self._connection(list(self.pages.values()), variables)}

    def _op_getShopPolicies(self, variables):
        return {"shop": {"shopPolicies": list(self.policies)}}


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory sqlite shared by every session of a test (StaticPool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from contentsync.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Upstream & shop Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_gateway_cache():
    """Cached gateways hold asyncio locks bound to a finished event loop."""
    from contentsync.services import shop_session_service

    shop_session_service._gateways.clear()
    yield
    shop_session_service._gateways.clear()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def installed_shop(test_db_session):
    """Installed shop on the max plan (every family enabled)."""
    from contentsync.services.shop_session_service import store_shop_session

    store_shop_session(test_db_session, SHOP, "shpat_test_token", scope="read_products", plan="max")
    return SHOP


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session, session_factory, gateway):
    """FastAPI app wired to the test database and the fake gateway."""
    from contentsync.database import get_db, get_session_factory
    from contentsync.main import create_app
    from contentsync.routers import content_sync

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_session_factory] = lambda: session_factory
    test_app.dependency_overrides[content_sync.get_gateway] = lambda: gateway

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """TestClient without lifespan: no scheduler, no Sentry."""
    return TestClient(app)
