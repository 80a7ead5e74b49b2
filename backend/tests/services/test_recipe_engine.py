"""recipe 引擎：动作顺序执行 / 失败隔离 / 审计日志 / 原子统计"""

from sqlalchemy import select

from app.db.model.automation_log import AutomationLog
from app.db.model.recipe import Recipe
from app.integrations.shopify.errors import ShopifyUserError
from app.repository import recipe_repo
from app.services import automation_logger
from app.services.recipe_engine import RecipeEngine, execute_actions


CUSTOMER_GID = "gid://shopify/Customer/42"


def _vip_recipe(db, shop, **overrides):
    data = {
        "title": "Tag VIP customers",
        "category": "customer",
        "enabled": True,
        "trigger": {"event": "customers/update", "resource": "customer"},
        "conditions": [{"field": "total_spent", "operator": "greater_than", "value": 1000}],
        "actions": [{"type": "addTag", "params": {"tag": "VIP"}}],
    }
    data.update(overrides)
    return recipe_repo.create(db, shop, data)


# 方法 1：第 2 个动作失败，第 1、3 个照常执行
def test_execute_actions_isolates_failures(fake_client):
    fake_client.errors["metafields_set"] = ShopifyUserError(
        "metafieldsSet", [{"field": ["value"], "message": "Value is invalid"}]
    )
    actions = [
        {"type": "addTag", "params": {"tag": "VIP"}},
        {"type": "setMetafield", "params": {"namespace": "custom", "key": "tier", "value": "gold"}},
        {"type": "removeTag", "tag": "Prospect"},
    ]

    results = execute_actions(actions, CUSTOMER_GID, fake_client)

    assert [r.success for r in results] == [True, False, True]
    assert "Value is invalid" in results[1].error
    assert fake_client.calls == [
        ("tags_add", CUSTOMER_GID, ["VIP"]),
        ("tags_remove", CUSTOMER_GID, ["Prospect"]),
    ]


def test_execute_actions_missing_params_and_unknown_type(fake_client):
    results = execute_actions(
        [{"type": "addTag", "params": {}}, {"type": "sendEmail", "params": {"to": "x"}}],
        CUSTOMER_GID, fake_client,
    )
    assert [r.success for r in results] == [False, False]
    assert results[0].error == "Missing required parameter: tag"
    assert "Unknown action type" in results[1].error
    assert fake_client.calls == []


def test_remove_metafield_absent_counts_as_success(fake_client):
    results = execute_actions(
        [{"type": "removeMetafield", "params": {"namespace": "custom", "key": "tier"}}],
        CUSTOMER_GID, fake_client,
    )
    assert results[0].success is True
    assert fake_client.calls == []


# 方法 2：VIP 例子，1500 命中加标签，500 不命中什么都不做
def test_process_event_vip_example(session_factory, fake_client, shop):
    with session_factory() as db:
        recipe = _vip_recipe(db, shop)
        _vip_recipe(db, shop, title="Disabled copy", enabled=False)

    engine = RecipeEngine(session_factory)

    hit = engine.process_event(
        shop=shop, event="customers/update", resource_id=CUSTOMER_GID,
        resource_data={"id": 42, "first_name": "Ada", "last_name": "L", "total_spent": "1500.00"},
        client=fake_client,
    )
    assert hit.recipes_evaluated == 1
    assert hit.recipes_matched == 1
    assert hit.actions_executed == 1
    assert hit.errors == []
    assert fake_client.calls == [("tags_add", CUSTOMER_GID, ["VIP"])]

    miss = engine.process_event(
        shop=shop, event="customers/update", resource_id=CUSTOMER_GID,
        resource_data={"id": 42, "total_spent": "500.00"},
        client=fake_client,
    )
    assert miss.recipes_matched == 0
    assert miss.actions_executed == 0
    assert len(fake_client.calls) == 1

    with session_factory() as db:
        logs = list(db.scalars(select(AutomationLog).where(AutomationLog.recipe_id == recipe.id)))
        stored = db.get(Recipe, recipe.id)

    evaluations = [l for l in logs if l.log_type == "system"]
    executions = [l for l in logs if l.log_type == "recipe_execution"]
    # 评估每次都记；执行日志只在命中时记（总记录 + 每个动作一条）
    assert len(evaluations) == 2
    assert len(executions) == 2
    assert {l.resource_title for l in executions} == {"Ada L"}
    assert stored.execution_count == 1
    assert stored.success_count == 1
    assert stored.error_count == 0


def test_process_event_counts_failed_actions(session_factory, fake_client, shop):
    fake_client.errors["tags_add"] = RuntimeError("boom")
    with session_factory() as db:
        recipe = _vip_recipe(db, shop)

    summary = RecipeEngine(session_factory).process_event(
        shop=shop, event="customers/update", resource_id=CUSTOMER_GID,
        resource_data={"id": 42, "total_spent": 2000},
        client=fake_client,
    )

    assert summary.recipes_matched == 1
    assert summary.errors == [{"recipeId": recipe.id, "recipeTitle": recipe.title, "error": "boom"}]
    with session_factory() as db:
        stored = db.get(Recipe, recipe.id)
    assert stored.execution_count == 1
    assert stored.error_count == 1


def test_preview_recipe_has_no_side_effects(fake_client):
    preview = RecipeEngine.preview_recipe(
        {
            "conditions": [{"field": "total_spent", "operator": ">", "value": 1000}],
            "actions": [{"type": "addTag", "tag": "VIP"}],
        },
        {"total_spent": "1500"},
    ).to_dict()

    assert preview["conditionsMatched"] is True
    assert preview["actionsToExecute"] == [{"type": "addTag", "params": {"tag": "VIP"}}]
    assert preview["evaluations"][0]["actualValue"] == "1500"
    assert fake_client.calls == []


# 方法 3：同一投递重试：已执行的跳过；只评估命中、没来得及执行的再跑一遍
def test_retry_reruns_recipe_without_execution_row(session_factory, fake_client, shop):
    with session_factory() as db:
        recipe = _vip_recipe(db, shop)
        automation_logger.log_recipe_evaluation(
            db, shop=shop, recipe=recipe, resource_id=CUSTOMER_GID, matched=True, trace=[], delivery_id="d-1",
        )

    engine = RecipeEngine(session_factory)
    data = {"id": 42, "total_spent": "1500.00"}

    first = engine.process_event(
        shop=shop, event="customers/update", resource_id=CUSTOMER_GID,
        resource_data=data, client=fake_client, delivery_id="d-1",
    )
    again = engine.process_event(
        shop=shop, event="customers/update", resource_id=CUSTOMER_GID,
        resource_data=data, client=fake_client, delivery_id="d-1",
    )

    assert (first.recipes_skipped, first.actions_executed) == (0, 1)
    assert (again.recipes_skipped, again.actions_executed) == (1, 0)
    assert again.to_dict()["recipesSkipped"] == 1
    assert fake_client.calls == [("tags_add", CUSTOMER_GID, ["VIP"])]

    with session_factory() as db:
        assert db.get(Recipe, recipe.id).execution_count == 1
        assert automation_logger.settled_recipe_ids(db, shop, "d-1") == {recipe.id}
        assert automation_logger.settled_recipe_ids(db, shop, "other") == set()
