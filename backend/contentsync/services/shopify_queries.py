"""GraphQL documents used by the resource fetchers.

Every query sent upstream lives here so fetchers and tests agree on the
operation names (tests route fake responses by operation name).
"""

SHOP_LOCALES_QUERY = """
query getShopLocales {
  shopLocales {
    locale
    name
    primary
    published
  }
}
"""

TRANSLATABLE_RESOURCE_QUERY = """
query getTranslations($resourceId: ID!, $locale: String!) {
  translatableResource(resourceId: $resourceId) {
    resourceId
    translatableContent {
      key
      value
      digest
      locale
    }
    translations(locale: $locale) {
      key
      value
      locale
      outdated
    }
  }
}
"""

TRANSLATABLE_CONTENT_QUERY = """
query getTranslatableContent($resourceId: ID!) {
  translatableResource(resourceId: $resourceId) {
    resourceId
    translatableContent {
      key
      value
      digest
      locale
    }
  }
}
"""

TRANSLATABLE_RESOURCES_BY_IDS_QUERY = """
query getTranslationsByIds($resourceIds: [ID!]!, $locale: String!, $first: Int!) {
  translatableResourcesByIds(first: $first, resourceIds: $resourceIds) {
    edges {
      node {
        resourceId
        translations(locale: $locale) {
          key
          value
          locale
          outdated
        }
      }
    }
  }
}
"""

THEME_RESOURCES_QUERY = """
query getThemeTranslatableResources($first: Int!, $resourceType: TranslatableResourceType!, $after: String) {
  translatableResources(first: $first, resourceType: $resourceType, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        resourceId
        translatableContent {
          key
          value
          digest
          locale
        }
      }
    }
  }
}
"""

TRANSLATIONS_REGISTER_MUTATION = """
mutation translationsRegister($resourceId: ID!, $translations: [TranslationInput!]!) {
  translationsRegister(resourceId: $resourceId, translations: $translations) {
    translations {
      key
      locale
      value
    }
    userErrors {
      field
      message
    }
  }
}
"""

# =============================================================================
# PRODUCTS
# =============================================================================

PRODUCT_QUERY = """
query getProduct($id: ID!) {
  product(id: $id) {
    id
    title
    descriptionHtml
    handle
    status
    productType
    updatedAt
    seo {
      title
      description
    }
    featuredImage {
      url
      altText
    }
    media(first: 250) {
      edges {
        node {
          ... on MediaImage {
            id
            alt
            image {
              url
            }
          }
        }
      }
    }
    options {
      id
      name
      position
      values
    }
    metafields(first: 100) {
      edges {
        node {
          id
          namespace
          key
          value
          type
        }
      }
    }
  }
}
"""

PRODUCT_IDS_QUERY = """
query getProductIds($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
      }
    }
  }
}
"""

# =============================================================================
# COLLECTIONS / ARTICLES / MENUS
# =============================================================================

COLLECTION_QUERY = """
query getCollection($id: ID!) {
  collection(id: $id) {
    id
    title
    handle
    descriptionHtml
    updatedAt
    seo {
      title
      description
    }
  }
}
"""

COLLECTION_IDS_QUERY = """
query getCollectionIds($first: Int!, $after: String) {
  collections(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
      }
    }
  }
}
"""

ARTICLE_QUERY = """
query getArticle($id: ID!) {
  article(id: $id) {
    id
    title
    handle
    body
    updatedAt
    blog {
      id
      title
    }
    seo {
      title
      description
    }
  }
}
"""

ARTICLE_IDS_QUERY = """
query getArticleIds($first: Int!, $after: String) {
  articles(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
      }
    }
  }
}
"""

MENU_QUERY = """
query getMenu($id: ID!) {
  menu(id: $id) {
    id
    title
    handle
    items {
      id
      title
      url
      type
      items {
        id
        title
        url
        type
        items {
          id
          title
          url
          type
          items {
            id
            title
            url
            type
          }
        }
      }
    }
  }
}
"""

MENU_IDS_QUERY = """
query getMenuIds($first: Int!, $after: String) {
  menus(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
      }
    }
  }
}
"""

# =============================================================================
# PAGES / POLICIES
# =============================================================================

PAGE_QUERY = """
query getPage($id: ID!) {
  page(id: $id) {
    id
    title
    handle
    body
    updatedAt
  }
}
"""

PAGES_QUERY = """
query getPages($first: Int!, $after: String) {
  pages(first: $first, after: $after) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        title
        handle
        body
        updatedAt
      }
    }
  }
}
"""

SHOP_POLICIES_QUERY = """
query getShopPolicies {
  shop {
    shopPolicies {
      id
      type
      title
      body
      url
    }
  }
}
"""
