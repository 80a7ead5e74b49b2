"""只读 / 调试类路由：usage、activity、recipe 预览、AI 规则校验、规则模拟、health"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import api_v1
from app.repository import recipe_repo
from app.services import activity_service, usage_service


SHOP = "demo-store.myshopify.com"
SHOP_HEADERS = {"X-Shopify-Shop-Domain": SHOP}


@pytest.fixture()
def client(container) -> TestClient:
    app = FastAPI()
    app.include_router(api_v1, prefix="/api/v1")
    return TestClient(app)


def test_health(client):
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_usage_reports_plan_and_history(client, session_factory):
    with session_factory() as db:
        usage_service.record_operation(db, SHOP, 12)

    body = client.get("/api/v1/usage", headers=SHOP_HEADERS, params={"months_back": 2}).json()

    assert body["plan"] == "Free"
    assert body["limit"] == 500
    assert body["usage"]["count"] == 12
    assert [h["count"] for h in body["history"]] == [12, 0]


def test_activity_list_and_stats(client, session_factory):
    with session_factory() as db:
        activity_service.record_activity(
            db, shop=SHOP, resource_type="Products", resource_id="Bulk",
            action="Bulk Operation", detail="Started", job_id="bulk-1",
        )
        activity_service.record_activity(
            db, shop=SHOP, resource_type="Orders", resource_id="1001",
            action="Add Tag", detail="Rule 'VIP' matched", status="Success",
        )

    body = client.get("/api/v1/activity", headers=SHOP_HEADERS, params={"category": "Tags"}).json()
    assert body["totalCount"] == 1
    assert body["logs"][0]["action"] == "Add Tag"

    stats = client.get("/api/v1/activity/stats", headers=SHOP_HEADERS).json()
    assert stats["Bulk Operations"] == 1
    assert stats["Tags"] == 1


# 方法 1：recipe 预览，既可以按 id 也可以直接传草稿
def test_recipe_preview(client, session_factory):
    with session_factory() as db:
        recipe = recipe_repo.create(db, SHOP, {
            "title": "Tag VIP customers", "category": "customer", "enabled": True,
            "trigger": {"event": "customers/update"},
            "conditions": [{"field": "total_spent", "operator": ">", "value": 1000}],
            "actions": [{"type": "addTag", "params": {"tag": "VIP"}}],
        })

    by_id = client.post("/api/v1/recipes/preview", headers=SHOP_HEADERS, json={
        "recipeId": recipe.id, "resource": {"total_spent": "1500.00"},
    }).json()
    assert by_id["conditionsMatched"] is True
    assert by_id["actionsToExecute"] == [{"type": "addTag", "params": {"tag": "VIP"}}]

    draft = client.post("/api/v1/recipes/preview", headers=SHOP_HEADERS, json={
        "recipe": {"conditions": [{"field": "email", "operator": "contains", "value": "@vip"}]},
        "resource": {"email": "someone@example.com"},
    }).json()
    assert draft["conditionsMatched"] is False
    assert draft["actionsToExecute"] == []


def test_recipe_preview_errors(client):
    assert client.post("/api/v1/recipes/preview", headers=SHOP_HEADERS, json={"recipeId": "nope"}).status_code == 404
    assert client.post("/api/v1/recipes/preview", headers=SHOP_HEADERS, json={}).status_code == 422


def test_validate_generated_rule(client):
    ok = client.post("/api/v1/rules/validate-generated", headers=SHOP_HEADERS, json={
        "kind": "tagging",
        "output": '```json\n{"name": "VIP", "resourceType": "customers", "tags": ["VIP"], '
                  '"conditions": [{"field": "total_spent", "operator": "greater_than", "value": "1000"}]}\n```',
    })
    assert ok.status_code == 200
    assert ok.json()["rule"]["tags"] == ["VIP"]

    bad = client.post("/api/v1/rules/validate-generated", headers=SHOP_HEADERS, json={
        "kind": "tagging", "output": "not json at all",
    })
    assert bad.status_code == 422
    assert bad.json()["detail"]["errors"]


def test_simulate_rule_against_samples(client, fake_client):
    fake_client.samples["orders"] = [
        {"id": "gid://shopify/Order/1", "name": "#1001", "totalPriceSet": {"shopMoney": {"amount": "250.00"}}},
        {"id": "gid://shopify/Order/2", "name": "#1002", "totalPriceSet": {"shopMoney": {"amount": "20.00"}}},
    ]
    resp = client.post("/api/v1/rules/simulate", headers=SHOP_HEADERS, json={
        "rule": {"resourceType": "orders",
                 "conditions": [{"field": "total_price", "operator": "greater_than", "value": 100}]},
    })
    assert resp.status_code == 200
    assert resp.json()["count"] == 1
