"""
recipe 审计流水（automation_logs）：
  - log_recipe_execution：一条总记录 + 每个动作一条
  - log_recipe_evaluation：条件评估结果（type=system）
  - log_execution_error：recipe 执行抛异常（type=error）
"""
from __future__ import annotations

import logging, traceback
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from app.db.model.automation_log import AutomationLog
from app.repository import automation_log_repo
from app.services.recipe_engine.types import ActionResult, ConditionTrace


logger = logging.getLogger(__name__)

MAX_MESSAGE_LEN = 500


def _truncate(message: str, limit: int = MAX_MESSAGE_LEN) -> str:
    message = message or ""
    return message if len(message) <= limit else message[: limit - 3] + "..."


def log_recipe_execution(
    db: Session,
    *,
    shop: str,
    recipe,
    resource_id: str,
    resource_type: str,
    resource_title: str,
    conditions_matched: bool,
    action_results: Sequence[ActionResult],
    duration_ms: int,
    delivery_id: Optional[str] = None,
) -> None:
    all_ok = all(r.success for r in action_results)
    if not conditions_matched:
        overall = "skipped"
    else:
        overall = "success" if all_ok else "failure"

    rows: List[AutomationLog] = [AutomationLog(
        shop=shop,
        log_type="recipe_execution",
        severity="info" if overall != "failure" else "error",
        recipe_id=recipe.id,
        recipe_title=recipe.title,
        resource_type=resource_type,
        resource_id=resource_id,
        resource_title=_truncate(resource_title, 255),
        action={
            "type": "recipe_execution",
            "params": {"conditionsMatched": conditions_matched, "actionsExecuted": len(action_results)},
            "result": overall,
            "errorMessage": "; ".join(r.error or "" for r in action_results if not r.success) or None,
        },
        message=_truncate(f'Recipe "{recipe.title}" executed for {resource_type} {resource_id}'),
        duration_ms=duration_ms,
        delivery_id=delivery_id,
    )]

    for r in action_results:
        rows.append(AutomationLog(
            shop=shop,
            log_type="recipe_execution",
            severity="info" if r.success else "error",
            recipe_id=recipe.id,
            recipe_title=recipe.title,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_title=_truncate(resource_title, 255),
            action={
                "type": r.action.type,
                "params": dict(r.action.params),
                "result": "success" if r.success else "failure",
                "errorMessage": r.error,
            },
            message=_truncate(
                f'Action "{r.action.type}" {"succeeded" if r.success else "failed"} for {resource_type} {resource_id}'
            ),
            duration_ms=r.duration_ms,
            delivery_id=delivery_id,
        ))

    automation_log_repo.add_many(db, rows)


def log_recipe_evaluation(
    db: Session,
    *,
    shop: str,
    recipe,
    resource_id: str,
    matched: bool,
    trace: Sequence[ConditionTrace],
    delivery_id: Optional[str] = None,
) -> None:
    row = AutomationLog(
        shop=shop,
        log_type="system",
        severity="info",
        recipe_id=recipe.id,
        recipe_title=recipe.title,
        resource_id=resource_id,
        message=_truncate(
            f"Recipe evaluation: {'MATCHED' if matched else 'NOT MATCHED'} for resource {resource_id}"
        ),
        extra={"evaluations": [t.to_dict() for t in trace], "matched": matched},
        delivery_id=delivery_id,
    )
    automation_log_repo.add_many(db, [row])


def log_execution_error(
    db: Session,
    shop: str,
    recipe,
    error: BaseException,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    extra: Dict[str, Any] = {
        "recipeId": getattr(recipe, "id", None),
        "recipeTitle": getattr(recipe, "title", None),
        "errorStack": stack[-4000:],
    }
    extra.update(metadata or {})
    row = AutomationLog(
        shop=shop,
        log_type="error",
        severity="error",
        recipe_id=getattr(recipe, "id", None),
        recipe_title=getattr(recipe, "title", None),
        message=_truncate(f"Recipe execution failed: {error}"),
        extra=extra,
    )
    automation_log_repo.add_many(db, [row])


def log_webhook_received(
    db: Session,
    *,
    shop: str,
    topic: str,
    resource_id: str,
    delivery_id: Optional[str] = None,
) -> None:
    # 同一投递重试时只记一次
    if delivery_id and automation_log_repo.find_by_delivery(db, shop, delivery_id, log_type="webhook_received"):
        return
    automation_log_repo.add_many(db, [AutomationLog(
        shop=shop,
        log_type="webhook_received",
        severity="info",
        resource_id=resource_id,
        message=_truncate(f"Webhook {topic} received for resource {resource_id}"),
        extra={"topic": topic},
        delivery_id=delivery_id,
    )])


def settled_recipe_ids(db: Session, shop: str, delivery_id: Optional[str]) -> Set[str]:
    """
    这次投递里已经有结论的 recipe：执行过动作，或条件评估为不匹配。
    评估匹配但没有执行记录的（中途崩溃）不算，重试时会再跑一遍。
    """
    if not delivery_id:
        return set()
    settled: Set[str] = set()
    for row in automation_log_repo.find_by_delivery(db, shop, delivery_id):
        if not row.recipe_id:
            continue
        if row.log_type == "recipe_execution":
            settled.add(row.recipe_id)
        elif row.log_type == "system" and (row.extra or {}).get("matched") is False:
            settled.add(row.recipe_id)
    return settled


def find_by_shop(db: Session, shop: str, *, limit: int = 50) -> List[dict]:
    return [row.to_dict() for row in automation_log_repo.find_by_shop(db, shop, limit=limit)]


def find_by_recipe(db: Session, shop: str, recipe_id: str, *, limit: int = 50) -> List[dict]:
    return [row.to_dict() for row in automation_log_repo.find_by_recipe(db, shop, recipe_id, limit=limit)]
