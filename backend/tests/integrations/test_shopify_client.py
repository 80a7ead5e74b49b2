"""ShopifyClient：HTTP / GraphQL 错误分类、重试和 bulk 相关解析（requests.post 被替换）"""

import json
import os

import pytest
import requests

from app.integrations.shopify import shopify_client as client_module
from app.integrations.shopify.errors import (
    ShopifyAuthError,
    ShopifyGraphQLError,
    ShopifyRateLimitError,
    ShopifyUserError,
)
from app.integrations.shopify.shopify_client import ShopifyClient


SHOP = "demo-store.myshopify.com"


class FakeResponse:

    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status={self.status_code}", response=self)

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


@pytest.fixture()
def responses(monkeypatch):
    """按顺序返回预设响应，同时记录每次请求"""
    queue, sent = [], []

    def fake_post(url, headers=None, json=None, timeout=None, **kwargs):
        sent.append({"url": url, "headers": headers, "json": json})
        return queue.pop(0)

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    return queue, sent


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def client(sleeps):
    return ShopifyClient(SHOP, "shpat_test", api_version="2025-07", sleep=sleeps.append)


def test_requires_shop_and_token():
    with pytest.raises(ValueError):
        ShopifyClient("", "token")
    with pytest.raises(ShopifyAuthError):
        ShopifyClient(SHOP, "")


# 方法 1：端点和认证头
def test_post_uses_versioned_endpoint_and_token(client, responses):
    queue, sent = responses
    queue.append(FakeResponse(body={"data": {"tagsAdd": {"node": {"id": "gid://shopify/Product/1"}, "userErrors": []}}}))

    out = client.tags_add("gid://shopify/Product/1", ["VIP"])

    assert out["node"]["id"] == "gid://shopify/Product/1"
    assert sent[0]["url"] == "https://demo-store.myshopify.com/admin/api/2025-07/graphql.json"
    assert sent[0]["headers"]["X-Shopify-Access-Token"] == "shpat_test"
    assert sent[0]["json"]["variables"] == {"id": "gid://shopify/Product/1", "tags": ["VIP"]}


def test_user_errors_raise(client, responses):
    queue, _ = responses
    queue.append(FakeResponse(body={"data": {"metafieldsSet": {
        "metafields": [], "userErrors": [{"field": ["metafields", "0", "value"], "message": "Value is invalid"}],
    }}}))

    with pytest.raises(ShopifyUserError) as exc:
        client.metafields_set([{"ownerId": "gid://shopify/Product/1", "namespace": "custom",
                                "key": "tier", "type": "single_line_text_field", "value": ""}])
    assert exc.value.op_name == "metafieldsSet"
    assert "Value is invalid" in str(exc.value)


# 方法 2：429 按 Retry-After 等待后重试
def test_429_retries_with_retry_after(client, responses, sleeps):
    queue, sent = responses
    queue.append(FakeResponse(status_code=429, headers={"Retry-After": "2.0"}))
    queue.append(FakeResponse(body={"data": {"currentAppInstallation": {"activeSubscriptions": [
        {"name": "Pro", "status": "ACTIVE"},
    ]}}}))

    assert client.active_subscriptions() == [{"name": "Pro", "status": "ACTIVE"}]
    assert len(sent) == 2
    assert sleeps == [2.0]


def test_429_exhausted_raises_rate_limit(client, responses, monkeypatch):
    monkeypatch.setattr(client_module.settings, "SHOPIFY_HTTP_RETRIES", 1)
    queue, _ = responses
    queue.extend([FakeResponse(status_code=429), FakeResponse(status_code=429)])

    with pytest.raises(ShopifyRateLimitError):
        client.active_subscriptions()


def test_401_is_not_retried(client, responses, sleeps):
    queue, sent = responses
    queue.append(FakeResponse(status_code=401))

    with pytest.raises(ShopifyAuthError):
        client.active_subscriptions()
    assert len(sent) == 1
    assert sleeps == []


def test_top_level_errors(client, responses):
    queue, sent = responses
    queue.append(FakeResponse(body={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}))
    queue.append(FakeResponse(body={"errors": [{"message": "Field 'nope' doesn't exist"}]}))

    with pytest.raises(ShopifyGraphQLError) as exc:
        client.active_subscriptions()
    assert len(sent) == 2
    assert exc.value.errors == [{"message": "Field 'nope' doesn't exist"}]


# 方法 3：bulk 查询节点解析
def test_bulk_by_id_normalizes_counts(client, responses):
    queue, _ = responses
    queue.append(FakeResponse(body={"data": {"node": {
        "__typename": "BulkOperation", "id": "gid://shopify/BulkOperation/1", "status": "COMPLETED",
        "objectCount": "12", "url": "https://storage.example/result.jsonl", "errorCode": None,
    }}}))
    queue.append(FakeResponse(body={"data": {"node": {"__typename": "Product", "id": "gid://shopify/Product/1"}}}))

    node = client.get_bulk_operation_by_id("gid://shopify/BulkOperation/1")
    assert node["objectCount"] == 12
    assert "__typename" not in node

    assert client.get_bulk_operation_by_id("gid://shopify/Product/1") == {}


def test_bulk_start_retries_throttled_user_error(client, responses, sleeps):
    queue, sent = responses
    queue.append(FakeResponse(body={"data": {"bulkOperationRunQuery": {
        "bulkOperation": None, "userErrors": [{"code": "THROTTLED", "message": "Throttled"}],
    }}}))
    queue.append(FakeResponse(body={"data": {"bulkOperationRunQuery": {
        "bulkOperation": {"id": "gid://shopify/BulkOperation/5", "status": "CREATED"}, "userErrors": [],
    }}}))

    op = client.run_bulk_query('{ products(query: "tag:\\"A\\"") { edges { node { id tags } } } }')

    assert op["id"] == "gid://shopify/BulkOperation/5"
    assert len(sent) == 2
    assert len(sleeps) == 1


def test_bulk_start_already_running_is_user_error(client, responses):
    queue, _ = responses
    queue.append(FakeResponse(body={"data": {"bulkOperationRunQuery": {
        "bulkOperation": None,
        "userErrors": [{"code": "OPERATION_IN_PROGRESS", "message": "A bulk query operation is already in progress"}],
    }}}))

    with pytest.raises(ShopifyUserError):
        client.run_bulk_query("{ products { edges { node { id } } } }")


def test_staged_upload_returns_key(client, monkeypatch):
    posted = {}

    def fake_post(url, data=None, files=None, timeout=None, **kwargs):
        posted.update(url=url, data=data, files=files)
        return FakeResponse(status_code=201)

    monkeypatch.setattr(client_module.requests, "post", fake_post)
    target = {"url": "https://uploads.example/", "parameters": [
        {"name": "key", "value": "tmp/1/bulk_op_vars"}, {"name": "policy", "value": "p"},
    ]}

    assert client.upload_staged_file(target, b'{"input":{}}') == "tmp/1/bulk_op_vars"
    assert posted["data"] == {"key": "tmp/1/bulk_op_vars", "policy": "p"}
    assert posted["files"]["file"][2] == "text/jsonl"


# 方法 4：真实店铺连通性（需要 SHOPIFY_TEST_SHOP + SHOPIFY_ADMIN_TOKEN，默认跳过）
@pytest.mark.skipif(
    not (os.environ.get("SHOPIFY_TEST_SHOP") and os.environ.get("SHOPIFY_ADMIN_TOKEN")),
    reason="Shopify credentials are not configured (SHOPIFY_TEST_SHOP / SHOPIFY_ADMIN_TOKEN).",
)
def test_live_ping():
    live = ShopifyClient(os.environ["SHOPIFY_TEST_SHOP"], os.environ["SHOPIFY_ADMIN_TOKEN"])
    resp = live.ping()
    shop = (resp.get("data") or {}).get("shop") or {}
    print("[ping response]", json.dumps(resp, ensure_ascii=False))
    assert shop.get("myshopifyDomain")
