import json


# ---------------- Webhook 订阅 ----------------
_LIST_WEBHOOKS = """
query ListWebhooks($first:Int!, $topic: WebhookSubscriptionTopic){
  webhookSubscriptions(first: $first, topics: [$topic]) {
    edges {
      node {
        id
        topic
        endpoint {
          __typename
          ... on WebhookHttpEndpoint { callbackUrl }
        }
      }
    }
  }
}
""".strip()


_CREATE_WEBHOOK = """
mutation CreateWebhook($topic: WebhookSubscriptionTopic!, $cb: URL!){
  webhookSubscriptionCreate(
    topic: $topic
    webhookSubscription: { callbackUrl: $cb, format: JSON }
  ){
    userErrors { field message }
    webhookSubscription {
      id
      topic
      endpoint { __typename ... on WebhookHttpEndpoint { callbackUrl } }
    }
  }
}
""".strip()


# 简易转义器，确保 tag 放入搜索字符串安全
def escape_tag_for_query(tag: str) -> str:
    """转义 tag 供 Shopify 搜索字符串使用，并统一包裹双引号。"""
    value = json.dumps(tag or "")[1:-1]
    return f'"{value}"'


# ---------------- Bulk Operation 外层 ----------------
BULK_RUN_QUERY = """
mutation RunBulk($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message code }
  }
}
""".strip()


BULK_RUN_MUTATION = """
mutation RunBulkMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation { id status url }
    userErrors { field message code }
  }
}
""".strip()


BULK_CANCEL = """
mutation CancelBulk($id: ID!) {
  bulkOperationCancel(id: $id) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
""".strip()


BULK_BY_ID = """
query BulkById($id: ID!) {
  node(id: $id) {
    __typename
    ... on BulkOperation {
      id
      status
      errorCode
      objectCount
      rootObjectCount
      fileSize
      url
      partialDataUrl
      createdAt
      completedAt
    }
  }
}
""".strip()



STAGED_UPLOADS_CREATE = """
mutation StagedUploads($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters { name value }
    }
    userErrors { field message }
  }
}
""".strip()


# 读取型 Bulk（按标签筛选）：只需 id + tags + 展示名
# 使用时提供：{"resource": "products", "filter": json.dumps(search), "label": "title"}
BULK_RESOURCE_TAGS = r"""
{
  %(resource)s(query: %(filter)s) {
    edges {
      node {
        id
        %(label)s
        tags
      }
    }
  }
}
""".strip()


# 各资源展示名字段（预览 / 日志用）
RESOURCE_LABEL_FIELD = {
    "products": "title",
    "customers": "displayName",
    "orders": "name",
}


"""
  写入型 Bulk：每行 JSONL 是一次 mutation 的 variables。
  (mutation 文本, JSONL 里 variables 的键名)
"""
BULK_TAG_MUTATIONS = {
    "products": (
        "mutation call($product: ProductUpdateInput!) { productUpdate(product: $product) { product { id tags } userErrors { field message } } }",
        "product",
    ),
    "customers": (
        "mutation call($input: CustomerInput!) { customerUpdate(input: $input) { customer { id tags } userErrors { field message } } }",
        "input",
    ),
    "orders": (
        "mutation call($input: OrderInput!) { orderUpdate(input: $input) { order { id tags } userErrors { field message } } }",
        "input",
    ),
}


# ---------------- 单资源 mutation ----------------
TAGS_ADD = """
mutation tagsAdd($id: ID!, $tags: [String!]!) {
  tagsAdd(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
""".strip()


TAGS_REMOVE = """
mutation tagsRemove($id: ID!, $tags: [String!]!) {
  tagsRemove(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
""".strip()


METAFIELDS_SET = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id key namespace value }
    userErrors { field message code }
  }
}
""".strip()


METAFIELDS_DELETE = """
mutation metafieldsDelete($metafields: [MetafieldIdentifierInput!]!) {
  metafieldsDelete(metafields: $metafields) {
    deletedMetafields { key namespace ownerId }
    userErrors { field message }
  }
}
""".strip()


METAFIELD_LOOKUP = """
query MetafieldLookup($id: ID!, $namespace: String!, $key: String!) {
  node(id: $id) {
    ... on HasMetafields {
      metafield(namespace: $namespace, key: $key) { id }
    }
  }
}
""".strip()


ACTIVE_SUBSCRIPTIONS = """
{
  currentAppInstallation {
    activeSubscriptions { id name status }
  }
}
""".strip()


# ---------------- 规则模拟：拉少量最近资源 ----------------
SAMPLE_RESOURCES = {
    "products": """
query SampleProducts($first: Int!) {
  products(first: $first, reverse: true) {
    nodes {
      id title productType vendor tags
      variants(first: 1) { nodes { price sku inventoryQuantity } }
    }
  }
}
""".strip(),
    "customers": """
query SampleCustomers($first: Int!) {
  customers(first: $first, reverse: true) {
    nodes {
      id email displayName state verifiedEmail tags numberOfOrders
      amountSpent { amount }
      defaultAddress { countryCodeV2 }
    }
  }
}
""".strip(),
    "orders": """
query SampleOrders($first: Int!) {
  orders(first: $first, reverse: true) {
    nodes {
      id name tags currencyCode displayFinancialStatus sourceName
      totalPriceSet { shopMoney { amount } }
      subtotalPriceSet { shopMoney { amount } }
      shippingAddress { city countryCodeV2 provinceCode zip }
    }
  }
}
""".strip(),
}


# ---------------- COGS：商品成本 / 毛利 ----------------
PRODUCTS_WITH_COSTS = """
query ProductsWithCosts($first: Int, $after: String, $last: Int, $before: String, $query: String) {
  products(first: $first, after: $after, last: $last, before: $before, query: $query) {
    pageInfo { hasNextPage hasPreviousPage startCursor endCursor }
    nodes {
      id title
      featuredImage { url }
      options { id name values }
      variants(first: 100) {
        nodes {
          id title price inventoryQuantity
          selectedOptions { name value }
          inventoryItem { id unitCost { amount } }
        }
      }
    }
  }
}
""".strip()

INVENTORY_ITEM_UPDATE = """
mutation inventoryItemUpdate($id: ID!, $input: InventoryItemInput!) {
  inventoryItemUpdate(id: $id, input: $input) {
    inventoryItem { id unitCost { amount } }
    userErrors { field message }
  }
}
""".strip()
