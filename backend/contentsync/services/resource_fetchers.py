"""Per-family resource fetchers.

WHAT:
    One fetcher per upstream resource family (product, collection, article,
    menu, page, policy, theme). Each knows its GraphQL documents, decodes the
    response into typed models and walks cursor pagination to the end.

WHY:
    - `fetch_all_ids()` must traverse every page; stopping at the first page
      would make full-catalog cleanup delete live rows past item 250.
    - `fetch_one()` raises NotFoundUpstream for a vanished resource so the
      caller can take the delete path. A failed listing raises instead of
      returning [] so it can never be mistaken for an empty catalog.

REFERENCES:
    - contentsync/services/shopify_queries.py
    - https://shopify.dev/docs/api/usage/pagination-graphql
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from contentsync.exceptions import NotFoundUpstream
from contentsync.services import shopify_queries as q
from contentsync.services.api_gateway import ApiGateway
from contentsync.services.shopify_schemas import (
    ArticleNode,
    CollectionNode,
    MenuNode,
    PageInfo,
    PageNode,
    PolicyNode,
    ProductNode,
    ShopifyModel,
    ShopLocale,
    ThemeResourceNode,
    TranslatableResource,
    TranslationEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 250
# translatableResourcesByIds accepts at most 250 ids per call
MAX_IDS_PER_CALL = 250


def to_gid(resource_id: str, gid_type: str) -> str:
    """Normalise a numeric id to a GID; GIDs pass through unchanged."""
    resource_id = str(resource_id)
    if resource_id.startswith("gid://"):
        return resource_id
    return f"gid://shopify/{gid_type}/{resource_id}"


async def paginate(
    gateway: ApiGateway,
    query: str,
    root_field: str,
    variables: Optional[Dict[str, Any]] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> List[Dict[str, Any]]:
    """Collect every node of a paginated connection.

    Args:
        gateway: Gateway for the shop
        query: GraphQL document taking $first/$after
        root_field: Connection field name in `data` (e.g. "products")
        variables: Extra variables merged into each page request

    Returns:
        Raw node dicts across all pages, in upstream order
    """
    nodes: List[Dict[str, Any]] = []
    cursor: Optional[str] = None
    page_number = 0

    while True:
        page_number += 1
        page_vars = dict(variables or {})
        page_vars.update({"first": page_size, "after": cursor})

        data = await gateway.request(query, page_vars)
        connection = data.get(root_field) or {}
        edges = connection.get("edges") or []
        nodes.extend(edge.get("node") or {} for edge in edges)

        page_info = PageInfo.model_validate(connection.get("pageInfo") or {})
        if not page_info.has_next_page or not page_info.end_cursor:
            break
        cursor = page_info.end_cursor
        logger.debug(f"[FETCH] {root_field}: fetching page {page_number + 1} (cursor={cursor})")

    return nodes


class LocaleFetcher:
    """Shop locale listing and translatable-resource lookups."""

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def fetch_shop_locales(self) -> List[ShopLocale]:
        data = await self.gateway.request(q.SHOP_LOCALES_QUERY)
        return [ShopLocale.model_validate(item) for item in data.get("shopLocales") or []]

    async def fetch_translatable_resource(self, resource_id: str, locale: str) -> Optional[TranslatableResource]:
        """Source content plus translations for one locale (None if unknown)."""
        data = await self.gateway.request(
            q.TRANSLATABLE_RESOURCE_QUERY,
            {"resourceId": resource_id, "locale": locale},
        )
        raw = data.get("translatableResource")
        if raw is None:
            return None
        return TranslatableResource.model_validate(raw)

    async def fetch_translatable_content(self, resource_id: str) -> Optional[TranslatableResource]:
        data = await self.gateway.request(q.TRANSLATABLE_CONTENT_QUERY, {"resourceId": resource_id})
        raw = data.get("translatableResource")
        if raw is None:
            return None
        return TranslatableResource.model_validate(raw)

    async def fetch_translations_by_ids(
        self,
        resource_ids: List[str],
        locale: str,
    ) -> Dict[str, List[TranslationEntry]]:
        """Translations of many resources for one locale, in bulk.

        Costs one call per 250 ids instead of one call per resource.
        """
        result: Dict[str, List[TranslationEntry]] = {}
        for start in range(0, len(resource_ids), MAX_IDS_PER_CALL):
            chunk = resource_ids[start:start + MAX_IDS_PER_CALL]
            data = await self.gateway.request(
                q.TRANSLATABLE_RESOURCES_BY_IDS_QUERY,
                {"resourceIds": chunk, "locale": locale, "first": len(chunk)},
            )
            connection = data.get("translatableResourcesByIds") or {}
            for edge in connection.get("edges") or []:
                resource = TranslatableResource.model_validate(edge.get("node") or {})
                if resource.resource_id:
                    result[resource.resource_id] = resource.translations
        return result


class ResourceFetcher:
    """Base fetcher: single-resource lookup plus full id listing.

    Subclasses set the GraphQL documents, root fields and node model.
    """

    resource_type: str = ""
    gid_type: str = ""
    one_query: str = ""
    one_root: str = ""
    ids_query: str = ""
    ids_root: str = ""
    node_model: Type[ShopifyModel] = ShopifyModel

    def __init__(self, gateway: ApiGateway, page_size: int = DEFAULT_PAGE_SIZE):
        self.gateway = gateway
        self.page_size = page_size

    def to_gid(self, resource_id: str) -> str:
        return to_gid(resource_id, self.gid_type)

    async def fetch_one(self, resource_id: str):
        """Fetch one resource.

        Raises:
            NotFoundUpstream: The resource does not exist upstream
        """
        gid = self.to_gid(resource_id)
        data = await self.gateway.request(self.one_query, {"id": gid})
        raw = data.get(self.one_root)
        if raw is None:
            raise NotFoundUpstream(self.resource_type, gid)
        return self.node_model.model_validate(raw)

    async def fetch_all_ids(self) -> List[str]:
        nodes = await paginate(self.gateway, self.ids_query, self.ids_root, page_size=self.page_size)
        ids = [node["id"] for node in nodes if node.get("id")]
        logger.info(f"[FETCH] Listed {len(ids)} {self.resource_type} ids for {self.gateway.shop_domain}")
        return ids


class ProductFetcher(ResourceFetcher):
    resource_type = "Product"
    gid_type = "Product"
    one_query = q.PRODUCT_QUERY
    one_root = "product"
    ids_query = q.PRODUCT_IDS_QUERY
    ids_root = "products"
    node_model = ProductNode


class CollectionFetcher(ResourceFetcher):
    resource_type = "Collection"
    gid_type = "Collection"
    one_query = q.COLLECTION_QUERY
    one_root = "collection"
    ids_query = q.COLLECTION_IDS_QUERY
    ids_root = "collections"
    node_model = CollectionNode


class ArticleFetcher(ResourceFetcher):
    resource_type = "Article"
    gid_type = "OnlineStoreArticle"
    one_query = q.ARTICLE_QUERY
    one_root = "article"
    ids_query = q.ARTICLE_IDS_QUERY
    ids_root = "articles"
    node_model = ArticleNode


class MenuFetcher(ResourceFetcher):
    resource_type = "Menu"
    gid_type = "Menu"
    one_query = q.MENU_QUERY
    one_root = "menu"
    ids_query = q.MENU_IDS_QUERY
    ids_root = "menus"
    node_model = MenuNode


class PageFetcher(ResourceFetcher):
    resource_type = "Page"
    gid_type = "OnlineStorePage"
    one_query = q.PAGE_QUERY
    one_root = "page"
    ids_query = q.PAGES_QUERY
    ids_root = "pages"
    node_model = PageNode

    async def fetch_all(self) -> List[PageNode]:
        """Full page listing with content (one pass, no per-page refetch)."""
        nodes = await paginate(self.gateway, q.PAGES_QUERY, "pages", page_size=self.page_size)
        return [PageNode.model_validate(node) for node in nodes]


class PolicyFetcher:
    """Shop policies: one unpaginated list on `shop.shopPolicies`."""

    resource_type = "ShopPolicy"

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    async def fetch_all(self) -> List[PolicyNode]:
        data = await self.gateway.request(q.SHOP_POLICIES_QUERY)
        shop = data.get("shop") or {}
        return [PolicyNode.model_validate(item) for item in shop.get("shopPolicies") or []]

    async def fetch_all_ids(self) -> List[str]:
        return [policy.id for policy in await self.fetch_all()]

    async def fetch_one(self, policy_id_or_type: str) -> PolicyNode:
        """Find one policy by GID, numeric id or type (e.g. PRIVACY_POLICY).

        Raises:
            NotFoundUpstream: No policy matches
        """
        wanted = str(policy_id_or_type)
        gid = to_gid(wanted, "ShopPolicy")
        for policy in await self.fetch_all():
            if policy.id == gid or policy.id == wanted or policy.type == wanted.upper():
                return policy
        raise NotFoundUpstream(self.resource_type, wanted)


class ThemeFetcher:
    """Theme translatable resources, listed per resource type."""

    def __init__(self, gateway: ApiGateway, page_size: int = DEFAULT_PAGE_SIZE):
        self.gateway = gateway
        self.page_size = page_size

    async def fetch_resources(self, resource_type: str) -> List[ThemeResourceNode]:
        nodes = await paginate(
            self.gateway,
            q.THEME_RESOURCES_QUERY,
            "translatableResources",
            variables={"resourceType": resource_type},
            page_size=self.page_size,
        )
        return [ThemeResourceNode.model_validate(node) for node in nodes]


def split_locales(locales: List[ShopLocale]) -> Tuple[Optional[ShopLocale], List[ShopLocale]]:
    """Return (primary locale, published non-primary locales)."""
    primary = next((loc for loc in locales if loc.primary), None)
    targets = [loc for loc in locales if not loc.primary and loc.published]
    return primary, targets
