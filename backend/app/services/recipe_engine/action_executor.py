"""
动作执行：每个动作对应一次 Shopify mutation。
  - 严格按顺序执行；单个动作失败不影响后续动作
  - 传输层异常和 userErrors 统一记为该动作失败（不往外抛）
"""
from __future__ import annotations

import logging, time
from typing import Any, Callable, Dict, List, Sequence, Union

from app.services.recipe_engine.types import Action, ActionResult, ActionType


logger = logging.getLogger(__name__)


class ActionParamError(ValueError):
    pass


def _missing(params: Dict[str, Any], *names: str) -> bool:
    return any(params.get(n) in (None, "") for n in names)


def _add_tag(client, resource_id: str, params: Dict[str, Any]) -> None:
    if _missing(params, "tag"):
        raise ActionParamError("Missing required parameter: tag")
    client.tags_add(resource_id, [str(params["tag"])])


def _remove_tag(client, resource_id: str, params: Dict[str, Any]) -> None:
    if _missing(params, "tag"):
        raise ActionParamError("Missing required parameter: tag")
    client.tags_remove(resource_id, [str(params["tag"])])


def _set_metafield(client, resource_id: str, params: Dict[str, Any]) -> None:
    if _missing(params, "namespace", "key", "value"):
        raise ActionParamError("Missing required parameters: namespace, key, value")
    client.metafields_set([{
        "ownerId": resource_id,
        "namespace": str(params["namespace"]),
        "key": str(params["key"]),
        "value": str(params["value"]),
        "type": params.get("valueType") or params.get("type") or "single_line_text_field",
    }])


def _remove_metafield(client, resource_id: str, params: Dict[str, Any]) -> None:
    if _missing(params, "namespace", "key"):
        raise ActionParamError("Missing required parameters: namespace, key")
    namespace, key = str(params["namespace"]), str(params["key"])
    # 先查是否存在：不存在视为成功（没有要删的）
    if not client.get_metafield_id(resource_id, namespace, key):
        logger.info("action.remove_metafield.absent resource=%s ns=%s key=%s", resource_id, namespace, key)
        return
    client.metafields_delete([{"ownerId": resource_id, "namespace": namespace, "key": key}])


# 动作类型 -> 处理函数；新增动作类型只改这里
ACTION_HANDLERS: Dict[str, Callable[[Any, str, Dict[str, Any]], None]] = {
    ActionType.ADD_TAG.value: _add_tag,
    ActionType.REMOVE_TAG.value: _remove_tag,
    ActionType.SET_METAFIELD.value: _set_metafield,
    ActionType.REMOVE_METAFIELD.value: _remove_metafield,
}


def execute_action(action: Union[Action, Dict[str, Any]], resource_id: str, client) -> ActionResult:
    act = action if isinstance(action, Action) else Action.from_dict(action)
    start = time.perf_counter()
    try:
        handler = ACTION_HANDLERS.get(act.type)
        if handler is None:
            raise ActionParamError(f"Unknown action type: {act.type}")
        handler(client, resource_id, act.params)
    except Exception as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.warning("action.failed type=%s resource=%s err=%s", act.type, resource_id, e)
        return ActionResult(action=act, success=False, error=str(e) or type(e).__name__, duration_ms=duration_ms)

    duration_ms = int((time.perf_counter() - start) * 1000)
    logger.info("action.ok type=%s resource=%s duration_ms=%s", act.type, resource_id, duration_ms)
    return ActionResult(action=act, success=True, duration_ms=duration_ms)


def execute_actions(actions: Sequence[Union[Action, Dict[str, Any]]], resource_id: str, client) -> List[ActionResult]:
    return [execute_action(a, resource_id, client) for a in (actions or [])]
