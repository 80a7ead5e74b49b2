# Recipe 执行引擎：查 recipe -> 评估条件 -> 执行动作 -> 审计日志 -> 原子更新统计

from __future__ import annotations

import logging, time
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from app.db.model.recipe import Recipe
from app.integrations.shopify.payload_utils import resource_title, resource_type_from_gid
from app.repository import recipe_repo
from app.services import automation_logger
from app.services.recipe_engine.action_executor import execute_actions
from app.services.recipe_engine.condition_evaluator import evaluate
from app.services.recipe_engine.types import (
    Action,
    ExecutionResult,
    ExecutionSummary,
    PreviewResult,
)


logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class RecipeEngine:

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory


    def process_event(
        self,
        *,
        shop: str,
        event: str,
        resource_id: str,
        resource_data: Dict[str, Any],
        client,
        delivery_id: Optional[str] = None,
    ) -> ExecutionSummary:
        """
        webhook 入口：对 (shop, event) 下所有启用的 recipe 逐个执行。
        单个 recipe 出异常只记到 summary.errors + error 日志，不影响其它 recipe。
        delivery_id：同一投递重试时，已有结论的 recipe 直接跳过（不重复执行、不重复计数）
        """
        start = time.perf_counter()
        summary = ExecutionSummary()

        with self._session_factory() as db:
            recipes = recipe_repo.find_active_by_event(db, shop, event)
            summary.recipes_evaluated = len(recipes)
            settled = automation_logger.settled_recipe_ids(db, shop, delivery_id)

            for recipe in recipes:
                if recipe.id in settled:
                    summary.recipes_skipped += 1
                    continue
                try:
                    result = self.execute_single_recipe(
                        db,
                        recipe=recipe,
                        resource_id=resource_id,
                        resource_data=resource_data,
                        client=client,
                        delivery_id=delivery_id,
                    )
                except Exception as e:
                    db.rollback()
                    logger.exception("recipe.execute.error shop=%s recipe=%s event=%s", shop, recipe.id, event)
                    summary.errors.append({"recipeId": recipe.id, "recipeTitle": recipe.title, "error": str(e)})
                    try:
                        automation_logger.log_execution_error(
                            db, shop, recipe, e, {"resourceId": resource_id, "event": event}
                        )
                    except Exception:
                        db.rollback()
                        logger.exception("recipe.error_log.failed shop=%s recipe=%s", shop, recipe.id)
                    continue

                if result.conditions_matched:
                    summary.recipes_matched += 1
                    summary.actions_executed += result.actions_executed
                if not result.success:
                    summary.errors.append({
                        "recipeId": recipe.id,
                        "recipeTitle": recipe.title,
                        "error": "; ".join(result.errors),
                    })

        summary.duration_ms = _elapsed_ms(start)
        logger.info(
            "recipe.process_event shop=%s event=%s evaluated=%s matched=%s skipped=%s actions=%s errors=%s duration_ms=%s",
            shop, event, summary.recipes_evaluated, summary.recipes_matched, summary.recipes_skipped,
            summary.actions_executed, len(summary.errors), summary.duration_ms,
        )
        return summary


    def execute_single_recipe(
        self,
        db: Session,
        *,
        recipe: Recipe,
        resource_id: str,
        resource_data: Dict[str, Any],
        client,
        delivery_id: Optional[str] = None,
    ) -> ExecutionResult:
        start = time.perf_counter()
        evaluation = evaluate(resource_data, recipe.conditions)

        resource_type = resource_type_from_gid(resource_id)
        title = resource_title(resource_data, resource_type) or f"{resource_type} {resource_data.get('id', 'unknown')}"

        # 评估结果每次都记
        automation_logger.log_recipe_evaluation(
            db,
            shop=recipe.shop,
            recipe=recipe,
            resource_id=resource_id,
            matched=evaluation.matches,
            trace=evaluation.trace,
            delivery_id=delivery_id,
        )

        if not evaluation.matches:
            return ExecutionResult(
                recipe_id=recipe.id,
                recipe_title=recipe.title,
                conditions_matched=False,
                actions_executed=0,
                success=True,
                duration_ms=_elapsed_ms(start),
            )

        action_results = execute_actions(recipe.actions, resource_id, client)
        duration_ms = _elapsed_ms(start)
        all_ok = all(r.success for r in action_results)

        automation_logger.log_recipe_execution(
            db,
            shop=recipe.shop,
            recipe=recipe,
            resource_id=resource_id,
            resource_type=resource_type,
            resource_title=title,
            conditions_matched=True,
            action_results=action_results,
            duration_ms=duration_ms,
            delivery_id=delivery_id,
        )
        recipe_repo.increment_stats(db, recipe.id, success=all_ok)

        return ExecutionResult(
            recipe_id=recipe.id,
            recipe_title=recipe.title,
            conditions_matched=True,
            actions_executed=len(action_results),
            success=all_ok,
            errors=[r.error or "Unknown error" for r in action_results if not r.success],
            duration_ms=duration_ms,
            action_results=action_results,
        )


    @staticmethod
    def preview_recipe(recipe: Union[Recipe, Dict[str, Any]], resource_data: Dict[str, Any]) -> PreviewResult:
        """dry-run：只评估条件，不调用 Shopify，不写日志"""
        if isinstance(recipe, Recipe):
            conditions, actions = recipe.conditions, recipe.actions
        else:
            conditions, actions = recipe.get("conditions"), recipe.get("actions")

        evaluation = evaluate(resource_data, conditions)
        return PreviewResult(
            conditions_matched=evaluation.matches,
            evaluations=evaluation.trace,
            actions_to_execute=[Action.from_dict(a) for a in (actions or [])] if evaluation.matches else [],
        )
