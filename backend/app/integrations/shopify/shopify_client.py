"""面向 Admin GraphQL 的轻量 Client（每个店铺一个实例），只放和 Shopify 强相关的方法"""
from __future__ import annotations

import time, logging, requests
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional
from requests import HTTPError, Timeout, RequestException

from app.core.config import settings
from app.integrations.shopify.errors import (
    ShopifyAuthError,
    ShopifyClientError,
    ShopifyGraphQLError,
    ShopifyRateLimitError,
    ShopifyServerError,
    ShopifyUserError,
)
from app.integrations.shopify.graphql_queries import (
    _LIST_WEBHOOKS,
    _CREATE_WEBHOOK,
    ACTIVE_SUBSCRIPTIONS,
    BULK_BY_ID,
    BULK_CANCEL,
    BULK_RUN_MUTATION,
    BULK_RUN_QUERY,
    INVENTORY_ITEM_UPDATE,
    METAFIELD_LOOKUP,
    METAFIELDS_DELETE,
    METAFIELDS_SET,
    PRODUCTS_WITH_COSTS,
    SAMPLE_RESOURCES,
    STAGED_UPLOADS_CREATE,
    TAGS_ADD,
    TAGS_REMOVE,
)


logger = logging.getLogger(__name__)


# Bulk 终态 / 进行中状态
BULK_RUNNING_STATUSES = frozenset({"CREATED", "RUNNING", "CANCELING"})
BULK_FAILED_STATUSES = frozenset({"FAILED", "CANCELED", "EXPIRED"})


def _backoff_s(attempt: int) -> float:
    backoff_ms = max(50, int(settings.SHOPIFY_HTTP_BACKOFF_MS))
    return (backoff_ms / 1000.0) * (2 ** attempt)


def _normalize_counts(node: dict) -> dict:
    # Shopify 返回的计数是字符串，规范化为 int（失败保留原值）
    for key in ("objectCount", "rootObjectCount", "fileSize"):
        value = node.get(key)
        if isinstance(value, str):
            try:
                node[key] = int(value)
            except ValueError:
                pass
    return node


def _is_throttled(errors: list) -> bool:
    for e in errors or []:
        code = ((e or {}).get("extensions") or {}).get("code")
        if code == "THROTTLED":
            return True
    return False


class ShopifyClient:

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        limiter=None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not shop:
            raise ValueError("shop is required")
        if not access_token:
            raise ShopifyAuthError(f"no access token for shop={shop}")
        self.shop = shop
        self._token = access_token
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self._limiter = limiter       # RedisTokenBucketLimiter | None
        self._sleep = sleep


    # ---------------- 基础：端点 & 认证 ----------------
    @property
    def graphql_endpoint(self) -> str:
        # myshopify 域名 + 版本拼接 GraphQL Admin API 端点
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"


    def _auth_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self._token,
            "User-Agent": "ShopOpsAutomation/ShopifyClient (+python)",
        }


    '''
    通用 GraphQL POST（带日志 + 重试 + 埋点)
        - 统一 headers、json 负载、超时、HTTP 错误与 GraphQL 顶层 errors 处理
        - 返回完整 data（上层自己从 data[...] 取需要的节点）
        异常处理:
           1) HTTP 5xx / 网络异常 / 非 JSON：指数退避重试，用尽后 ShopifyServerError / ShopifyClientError
           2) 401/403 直接 ShopifyAuthError；其它 4xx 直接 ShopifyClientError
           3) 429 按 Retry-After 退避重试，用尽后 ShopifyRateLimitError
           4) 顶层 errors：THROTTLED 退避重试；其它直接 ShopifyGraphQLError
    '''
    def _post_graphql(
        self,
        query: str,
        variables: Optional[dict] = None,
        *,
        timeout: Optional[int] = None,
        op_name: str = "",
    ) -> dict:

        timeout = timeout or settings.SHOPIFY_HTTP_TIMEOUT
        max_retries = max(0, int(settings.SHOPIFY_HTTP_RETRIES))

        payload = {"query": query, "variables": variables or {}}
        # 不打印 query 全文，避免日志过大/敏感；仅打 op_name / 变量键
        safe_vars_keys = list(payload["variables"].keys())

        for attempt in range(max_retries + 1):
            if self._limiter is not None:
                self._limiter.acquire(sleep=self._sleep)

            start = time.perf_counter()
            try:
                resp = requests.post(
                    self.graphql_endpoint,
                    headers=self._auth_headers(),
                    json=payload,
                    timeout=timeout,
                )
            except Timeout as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.graphql.timeout shop=%s op=%s latency_ms=%s attempt=%s/%s",
                    self.shop, op_name, latency_ms, attempt, max_retries)
                if attempt == max_retries:
                    raise ShopifyClientError(f"{op_name} timed out after {max_retries + 1} attempts") from e
                self._sleep(_backoff_s(attempt))
                continue
            except RequestException as e:
                latency_ms = int((time.perf_counter() - start) * 1000)
                logger.warning("shopify.graphql.request_exception shop=%s op=%s latency_ms=%s attempt=%s/%s err=%s",
                    self.shop, op_name, latency_ms, attempt, max_retries, type(e).__name__)
                if attempt == max_retries:
                    raise ShopifyClientError(f"{op_name} request failed: {type(e).__name__}: {e}") from e
                self._sleep(_backoff_s(attempt))
                continue

            latency_ms = int((time.perf_counter() - start) * 1000)

            # HTTP 层错误
            try:
                resp.raise_for_status()
            except HTTPError as e:
                status = resp.status_code

                if status == 429:
                    retry_after = resp.headers.get("Retry-After")
                    logger.warning(
                        "shopify.graphql.429_throttled shop=%s op=%s latency_ms=%s attempt=%s/%s retry_after=%s",
                        self.shop, op_name, latency_ms, attempt, max_retries, retry_after)
                    if attempt == max_retries:
                        raise ShopifyRateLimitError(f"{op_name} throttled (429) after retries") from e
                    # Retry-After 可能是秒数；没有就按指数退避
                    try:
                        sleep_s = max(0.1, float(retry_after))
                    except (TypeError, ValueError):
                        sleep_s = _backoff_s(attempt)
                    self._sleep(sleep_s)
                    continue

                logger.warning(
                    "shopify.graphql.http_error shop=%s op=%s status=%s latency_ms=%s attempt=%s/%s",
                    self.shop, op_name, status, latency_ms, attempt, max_retries)

                if status in (401, 403):
                    raise ShopifyAuthError(f"{op_name} unauthorized: status={status}") from e
                if 400 <= status < 500:
                    raise ShopifyClientError(f"{op_name} client error: status={status}") from e
                if attempt == max_retries:
                    raise ShopifyServerError(f"{op_name} server error: status={status}") from e
                self._sleep(_backoff_s(attempt))
                continue

            # 解析 JSON
            try:
                data = resp.json()
            except ValueError:
                logger.warning("shopify.graphql.non_json shop=%s op=%s attempt=%s/%s",
                    self.shop, op_name, attempt, max_retries)
                if attempt < max_retries:
                    self._sleep(_backoff_s(attempt))
                    continue
                raise ShopifyServerError(f"GraphQL response is not JSON: status={resp.status_code}")

            errors = data.get("errors")
            if errors:
                # 成本超限会以顶层 errors(THROTTLED) 返回：同 429 处理
                if _is_throttled(errors):
                    logger.warning("shopify.graphql.cost_throttled shop=%s op=%s attempt=%s/%s",
                        self.shop, op_name, attempt, max_retries)
                    if attempt == max_retries:
                        raise ShopifyRateLimitError(f"{op_name} throttled (query cost) after retries")
                    self._sleep(_backoff_s(attempt))
                    continue

                logger.error(
                    "shopify.graphql.gql_errors shop=%s op=%s latency_ms=%s attempt=%s/%s errors=%s",
                    self.shop, op_name, latency_ms, attempt, max_retries, errors)
                # 顶层 errors 多为语法/权限问题，直接抛出不重试
                raise ShopifyGraphQLError(f"GraphQL top-level errors: {errors}", errors)

            logger.info("shopify.graphql.ok shop=%s op=%s latency_ms=%s attempt=%s vars=%s",
                self.shop, op_name, latency_ms, attempt, safe_vars_keys)
            return data

        # 理论不会走到这里
        raise ShopifyClientError(f"{op_name} failed after retries")


    """
        执行 mutation 并取出 data[root]；userErrors 非空 -> ShopifyUserError。
    """
    def _mutate(self, query: str, variables: dict, root: str, *, op_name: str) -> dict:
        data = self._post_graphql(query, variables, op_name=op_name)
        payload = (data.get("data") or {}).get(root) or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(op_name, user_errors)
        return payload


    # 基础连通性探测（token/域名/版本）
    def ping(self) -> dict:
        q = """
        {
          shop {
            name
            myshopifyDomain
            plan { displayName }
          }
        }
        """.strip()
        return self._post_graphql(q, op_name="shop.ping")


    # ================== Bulk Operation ==================
    """
        提交 bulk 任务（query / mutation 共用），带 userErrors 的“业务级重试”：
          - THROTTLED / INTERNAL_SERVER_ERROR：退避重试
          - 其它（含 already in progress）：直接 ShopifyUserError，由任务队列的重试决定何时再来
    """
    def _start_bulk(self, mutation: str, variables: dict, root: str, *, op_name: str) -> dict:
        max_attempts = max(1, int(settings.SHOPIFY_BULK_START_RETRIES))

        for attempt in range(max_attempts):
            data = self._post_graphql(mutation, variables, timeout=30, op_name=op_name)
            payload = (data.get("data") or {}).get(root) or {}
            user_errors = payload.get("userErrors") or []

            if not user_errors:
                bulk_op = payload.get("bulkOperation")
                if not bulk_op or not bulk_op.get("id"):
                    raise ShopifyClientError(f"{op_name} missing bulkOperation payload")
                logger.info("shopify.bulk.started shop=%s op=%s id=%s status=%s",
                    self.shop, op_name, bulk_op.get("id"), bulk_op.get("status"))
                return bulk_op

            msgs = [str(e.get("message") or "") for e in user_errors]
            codes = {str(e.get("code") or "") for e in user_errors}

            throttled = ("THROTTLED" in codes) or any("throttle" in m.lower() for m in msgs)
            transient = throttled or ("INTERNAL_SERVER_ERROR" in codes)
            if transient and attempt < max_attempts - 1:
                sleep_s = max(0.2, _backoff_s(attempt))
                logger.warning(
                    "shopify.bulk.start_retry shop=%s op=%s attempt=%s/%s sleep=%.2fs codes=%s msgs=%s",
                    self.shop, op_name, attempt + 1, max_attempts, sleep_s, sorted(codes), msgs[:1])
                self._sleep(sleep_s)
                continue

            raise ShopifyUserError(op_name, user_errors)

        raise ShopifyClientError(f"{op_name} failed after retries")


    def run_bulk_query(self, query_doc: str) -> dict:
        """bulkOperationRunQuery：内层查询文本作为变量传入；返回 {id, status}"""
        return self._start_bulk(
            BULK_RUN_QUERY, {"query": query_doc}, "bulkOperationRunQuery",
            op_name="bulkOperationRunQuery",
        )


    def run_bulk_mutation(self, mutation: str, staged_upload_path: str) -> dict:
        """bulkOperationRunMutation：mutation 文本 + 已上传 JSONL 的 staged path；返回 {id, status}"""
        return self._start_bulk(
            BULK_RUN_MUTATION,
            {"mutation": mutation, "stagedUploadPath": staged_upload_path},
            "bulkOperationRunMutation",
            op_name="bulkOperationRunMutation",
        )


    def get_bulk_operation_by_id(self, bulk_gid: str) -> dict:
        """
        通过 BulkOperation 的 GID 查询详情（轮询 + webhook 用）：
        返回：{id,status,errorCode,objectCount,url,createdAt,completedAt}
        - 任务完成(COMPLETED) 且有结果时 url 才非空
        """
        data = self._post_graphql(BULK_BY_ID, {"id": bulk_gid}, op_name="bulkOperation.node")
        node = ((data.get("data") or {}).get("node") or {})

        # 不是 BulkOperation（GID 错了）
        if node.get("__typename") != "BulkOperation":
            return {}

        node.pop("__typename", None)
        return _normalize_counts(node)


    def cancel_bulk_operation(self, bulk_gid: str) -> dict:
        payload = self._mutate(BULK_CANCEL, {"id": bulk_gid}, "bulkOperationCancel",
                               op_name="bulkOperationCancel")
        return payload.get("bulkOperation") or {}


    # ---------- Staged upload：两段式上传 mutation 变量 JSONL ----------
    def staged_upload_create(self, filename: str = "bulk_op_vars") -> dict:
        """返回 {url, resourceUrl, parameters:[{name,value}]}"""
        payload = self._mutate(
            STAGED_UPLOADS_CREATE,
            {"input": [{
                "resource": "BULK_MUTATION_VARIABLES",
                "filename": filename,
                "mimeType": "text/jsonl",
                "httpMethod": "POST",
            }]},
            "stagedUploadsCreate",
            op_name="stagedUploadsCreate",
        )
        targets = payload.get("stagedTargets") or []
        if not targets:
            raise ShopifyClientError("stagedUploadsCreate returned no targets")
        return targets[0]


    def upload_staged_file(self, target: dict, content: bytes, *, filename: str = "bulk_op_vars") -> str:
        """
        multipart POST 到 staged target；返回 bulkOperationRunMutation 需要的 stagedUploadPath（参数里的 key）。
        """
        params = {p["name"]: p["value"] for p in (target.get("parameters") or [])}
        start = time.perf_counter()
        resp = requests.post(
            target["url"],
            data=params,
            files={"file": (filename, content, "text/jsonl")},
            timeout=settings.BULK_DOWNLOAD_TIMEOUT,
        )
        latency_ms = int((time.perf_counter() - start) * 1000)
        if resp.status_code >= 400:
            logger.error("shopify.staged_upload.failed shop=%s status=%s latency_ms=%s",
                self.shop, resp.status_code, latency_ms)
            if resp.status_code >= 500:
                raise ShopifyServerError(f"staged upload failed: status={resp.status_code}")
            raise ShopifyClientError(f"staged upload failed: status={resp.status_code}")

        key = params.get("key")
        if not key:
            raise ShopifyClientError("staged upload target has no 'key' parameter")
        logger.info("shopify.staged_upload.ok shop=%s bytes=%s latency_ms=%s", self.shop, len(content), latency_ms)
        return key


    # ---------- Bulk：下载 JSONL ----------
    """
        以流式方式下载 JSONL，每次 yield 一行字符串（空行跳过）。
    """
    def download_jsonl_stream(self, url: str) -> Generator[str, None, None]:
        with requests.get(url, stream=True, timeout=settings.BULK_DOWNLOAD_TIMEOUT) as r:
            r.raise_for_status()
            for line in r.iter_lines(decode_unicode=True):
                if not line:
                    continue
                yield line


    # ================== 单资源 mutation ==================
    def tags_add(self, resource_gid: str, tags: Iterable[str]) -> dict:
        return self._mutate(TAGS_ADD, {"id": resource_gid, "tags": list(tags)}, "tagsAdd", op_name="tagsAdd")


    def tags_remove(self, resource_gid: str, tags: Iterable[str]) -> dict:
        return self._mutate(TAGS_REMOVE, {"id": resource_gid, "tags": list(tags)}, "tagsRemove", op_name="tagsRemove")


    '''
    批量写入：metafieldsSet
       metas: 列表，每项形如：
       {
           "ownerId": "gid://shopify/Product/123",
           "namespace": "custom",
           "key": "material",
           "type": "single_line_text_field",
           "value": "cotton"
       }
       失败详情在 userErrors -> ShopifyUserError
    '''
    def metafields_set(self, metas: List[dict]) -> dict:
        return self._mutate(METAFIELDS_SET, {"metafields": metas}, "metafieldsSet", op_name="metafieldsSet")


    def metafields_delete(self, identifiers: List[dict]) -> dict:
        """identifiers: [{ownerId, namespace, key}]"""
        return self._mutate(METAFIELDS_DELETE, {"metafields": identifiers}, "metafieldsDelete",
                            op_name="metafieldsDelete")


    def get_metafield_id(self, owner_gid: str, namespace: str, key: str) -> Optional[str]:
        data = self._post_graphql(
            METAFIELD_LOOKUP, {"id": owner_gid, "namespace": namespace, "key": key},
            op_name="metafield.lookup",
        )
        node = (data.get("data") or {}).get("node") or {}
        metafield = node.get("metafield") or {}
        return metafield.get("id")


    # ================== 其它查询 ==================
    def active_subscriptions(self) -> List[dict]:
        data = self._post_graphql(ACTIVE_SUBSCRIPTIONS, op_name="activeSubscriptions")
        installation = (data.get("data") or {}).get("currentAppInstallation") or {}
        return list(installation.get("activeSubscriptions") or [])


    def sample_resources(self, resource_type: str, *, first: int = 10) -> List[dict]:
        """规则模拟用：拉最近 first 条资源（GraphQL 节点原样返回）"""
        query = SAMPLE_RESOURCES.get(resource_type)
        if not query:
            raise ValueError(f"unsupported resource type for sampling: {resource_type}")
        data = self._post_graphql(query, {"first": max(1, int(first))}, op_name=f"sample.{resource_type}")
        return list(((data.get("data") or {}).get(resource_type) or {}).get("nodes") or [])


    # ================== COGS ==================
    def products_with_costs(
        self,
        *,
        first: Optional[int] = None,
        after: Optional[str] = None,
        last: Optional[int] = None,
        before: Optional[str] = None,
        query: Optional[str] = None,
    ) -> Dict[str, Any]:
        """一页商品 + 变体成本；返回 {"nodes": [...], "pageInfo": {...}}"""
        variables = {"first": first, "after": after, "last": last, "before": before, "query": query or None}
        data = self._post_graphql(PRODUCTS_WITH_COSTS, variables, op_name="products.costs")
        return (data.get("data") or {}).get("products") or {"nodes": [], "pageInfo": {}}


    def inventory_item_update(self, inventory_item_id: str, cost: str) -> dict:
        return self._mutate(
            INVENTORY_ITEM_UPDATE, {"id": inventory_item_id, "input": {"cost": cost}},
            "inventoryItemUpdate", op_name="inventoryItemUpdate",
        )



    # ⚠️ ---------- 新店铺初始化：确保 webhook 订阅存在/对齐回调地址 ----------
    """
    幂等创建工具：
       - 已存在同 callback → {"action":"noop", ...}
       - 不存在 → 创建并返回 {"action":"created", ...}
       topic 用 GraphQL 枚举名：ORDERS_CREATE / BULK_OPERATIONS_FINISH ...
    """
    def ensure_webhook(self, topic: str, callback_url: str) -> Dict[str, Any]:
        q = self._post_graphql(_LIST_WEBHOOKS, {"first": 50, "topic": topic}, op_name="webhook.list")
        edges = ((q.get("data") or {}).get("webhookSubscriptions") or {}).get("edges", [])
        for e in edges:
            node = e.get("node") or {}
            ep = node.get("endpoint") or {}
            cb = ep.get("callbackUrl") if ep.get("__typename") == "WebhookHttpEndpoint" else None
            if cb == callback_url:
                return {"action": "noop", "id": node.get("id"), "topic": topic, "callbackUrl": callback_url}

        payload = self._mutate(_CREATE_WEBHOOK, {"topic": topic, "cb": callback_url},
                               "webhookSubscriptionCreate", op_name="webhook.create")
        node = payload.get("webhookSubscription") or {}
        return {
            "action": "created",
            "id": node.get("id"),
            "topic": node.get("topic"),
            "callbackUrl": callback_url,
        }
