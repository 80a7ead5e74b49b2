"""cogs 路由：成本列表 / 批量改成本"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import api_v1
from app.integrations.shopify.errors import ShopifyServerError


SHOP_HEADERS = {"X-Shopify-Shop-Domain": "demo-store.myshopify.com"}


@pytest.fixture()
def client(container) -> TestClient:
    app = FastAPI()
    app.include_router(api_v1, prefix="/api/v1")
    return TestClient(app)


def _product():
    return {
        "id": "gid://shopify/Product/1", "title": "Mug", "options": [],
        "variants": {"nodes": [{
            "id": "gid://shopify/ProductVariant/1", "title": "Default", "price": "20.00",
            "inventoryQuantity": 3, "selectedOptions": [],
            "inventoryItem": {"id": "gid://shopify/InventoryItem/1", "unitCost": {"amount": "18.00"}},
        }]},
    }


# 方法 1：列表 + 翻页参数透传
def test_list_products_with_costs(client, fake_client):
    fake_client.cost_products = [_product()]

    resp = client.get(
        "/api/v1/cogs/products",
        headers=SHOP_HEADERS,
        params={"page_info": "cur-1", "direction": "previous", "filter": "low_margin"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["products"][0]["variants"][0]["margin"] == 10.0
    assert body["stats"] == {"totalValue": 54.0, "avgMargin": 10, "missingCosts": 0}
    assert fake_client.calls == [("products_with_costs", {"query": None, "last": 20, "before": "cur-1"})]


def test_list_rejects_unknown_filter_and_maps_shopify_errors(client, fake_client):
    assert client.get("/api/v1/cogs/products", headers=SHOP_HEADERS, params={"filter": "x"}).status_code == 422

    fake_client.errors["products_with_costs"] = ShopifyServerError("502 from Shopify")
    assert client.get("/api/v1/cogs/products", headers=SHOP_HEADERS).status_code == 502


# 方法 2：改成本：部分失败也返回 200，success=false 带逐条错误
def test_update_costs(client, fake_client):
    fake_client.cost_errors["gid://shopify/InventoryItem/2"] = "Inventory item does not exist"

    resp = client.post("/api/v1/cogs/costs", headers=SHOP_HEADERS, json={"updates": [
        {"inventoryItemId": "gid://shopify/InventoryItem/1", "cost": "12.50"},
        {"inventoryItemId": "gid://shopify/InventoryItem/2", "cost": 3},
    ]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["updated"] == 1
    assert body["errors"][0]["message"] == "Inventory item does not exist"
    assert fake_client.costs == {"gid://shopify/InventoryItem/1": "12.50"}


def test_update_costs_requires_shop(client):
    assert client.post("/api/v1/cogs/costs", json={"updates": []}).status_code == 401
