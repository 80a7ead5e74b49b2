"""Webhook 入口：HMAC 校验 / topic 校验 / 只入队"""

import base64
import hashlib
import hmac
import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import webhooks_shopify as webhooks_module


SECRET = "whsec_test"
SHOP = "demo-store.myshopify.com"


def _sign(raw: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).digest()).decode()


@pytest.fixture()
def delivery_ids():
    return []


@pytest.fixture()
def enqueued(monkeypatch, delivery_ids):
    sent = []

    def fake_enqueue(topic, shop, payload, webhook_id=None):
        sent.append((topic, shop, payload))
        delivery_ids.append(webhook_id)

    monkeypatch.setattr(webhooks_module.settings, "SHOPIFY_WEBHOOK_SECRET", SECRET)
    monkeypatch.setattr(webhooks_module, "enqueue_webhook", fake_enqueue)
    return sent


@pytest.fixture()
def client() -> TestClient:
    app = FastAPI()
    app.include_router(webhooks_module.router)
    return TestClient(app)


def _post(client, raw: bytes, *, topic="orders/create", hmac_header=None, shop=SHOP):
    headers = {"X-Shopify-Topic": topic, "X-Shopify-Shop-Domain": shop}
    headers["X-Shopify-Hmac-Sha256"] = _sign(raw) if hmac_header is None else hmac_header
    return client.post(f"/webhooks/shopify/{topic}", content=raw, headers=headers)


# 方法 1：签名正确 -> 200 并入队
def test_valid_webhook_is_enqueued(client, enqueued, delivery_ids):
    raw = json.dumps({"id": 1001, "total_price": "250.00"}).encode("utf-8")
    resp = _post(client, raw)

    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "topic": "orders/create"}
    assert enqueued == [("orders/create", SHOP, {"id": 1001, "total_price": "250.00"})]
    assert delivery_ids == [None]


# 方法 2：X-Shopify-Webhook-Id 随任务投递，用于重试去重
def test_webhook_id_header_is_forwarded(client, enqueued, delivery_ids):
    raw = b'{"id": 1002}'
    headers = {
        "X-Shopify-Topic": "orders/create",
        "X-Shopify-Shop-Domain": SHOP,
        "X-Shopify-Hmac-Sha256": _sign(raw),
        "X-Shopify-Webhook-Id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
    }
    resp = client.post("/webhooks/shopify/orders/create", content=raw, headers=headers)

    assert resp.status_code == 200
    assert delivery_ids == ["b54557e4-bdd9-4b37-8a5f-bf7d70bcd043"]


def test_header_topic_is_case_insensitive(client, enqueued):
    raw = b'{"admin_graphql_api_id": "gid://shopify/BulkOperation/1"}'
    resp = _post(client, raw, topic="BULK_OPERATIONS/FINISH")
    assert resp.status_code == 200
    assert enqueued[0][0] == "bulk_operations/finish"


@pytest.mark.parametrize("hmac_header", ["", "bm90LWEtc2lnbmF0dXJl"])
def test_missing_or_invalid_hmac_is_rejected(client, enqueued, hmac_header):
    resp = _post(client, b'{"id": 1}', hmac_header=hmac_header)
    assert resp.status_code == 401
    assert enqueued == []


def test_body_tampering_is_rejected(client, enqueued):
    resp = _post(client, b'{"id": 2}', hmac_header=_sign(b'{"id": 1}'))
    assert resp.status_code == 401


def test_secret_not_configured(client, enqueued, monkeypatch):
    monkeypatch.setattr(webhooks_module.settings, "SHOPIFY_WEBHOOK_SECRET", None)
    resp = _post(client, b'{"id": 1}')
    assert resp.status_code == 503
    assert enqueued == []


def test_invalid_topic_or_missing_shop(client, enqueued):
    assert _post(client, b'{"id": 1}', topic="orders").status_code == 400
    assert _post(client, b'{"id": 1}', shop="").status_code == 400
    assert _post(client, b'[1, 2]').status_code == 400
    assert enqueued == []
