"""
保存前的同步校验（不进入任务队列）：
  - recipe：标题/描述长度、分类、trigger topic、启用时至少 1 条件 1 动作、动作参数
  - webhook topic 格式
  - AI 生成的规则 JSON 形状
"""
from __future__ import annotations

import json, re
from typing import Any, Dict, List, Optional

from app.db.model.recipe import RECIPE_CATEGORIES
from app.services.recipe_engine.condition_evaluator import SUPPORTED_OPERATORS, normalize_operator
from app.services.recipe_engine.types import ActionType, Action


class RecipeValidationError(ValueError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class DuplicateRuleError(ValueError):
    pass


class InvalidTopicError(ValueError):
    pass


TOPIC_RE = re.compile(r"^[a-z_]+/[a-z_]+$")


def validate_topic(topic: str) -> str:
    topic = (topic or "").strip()
    if not TOPIC_RE.match(topic):
        raise InvalidTopicError(f"Invalid webhook topic: {topic!r} (expected resource/action)")
    return topic


# ---------------- recipe ----------------
_ACTION_REQUIRED = {
    ActionType.ADD_TAG.value: ("tag",),
    ActionType.REMOVE_TAG.value: ("tag",),
    ActionType.SET_METAFIELD.value: ("namespace", "key", "value"),
    ActionType.REMOVE_METAFIELD.value: ("namespace", "key"),
}


def _action_errors(index: int, raw: Any) -> List[str]:
    if not isinstance(raw, dict):
        return [f"actions[{index}] must be an object"]
    action = Action.from_dict(raw)
    required = _ACTION_REQUIRED.get(action.type)
    if required is None:
        return [f"actions[{index}]: unknown action type {action.type!r}"]
    missing = [p for p in required if action.params.get(p) in (None, "")]
    if missing:
        return [f"actions[{index}] ({action.type}): missing {', '.join(missing)}"]
    return []


def _condition_errors(index: int, raw: Any) -> List[str]:
    if not isinstance(raw, dict):
        return [f"conditions[{index}] must be an object"]
    errors = []
    if not str(raw.get("field") or "").strip():
        errors.append(f"conditions[{index}]: field is required")
    if normalize_operator(raw.get("operator")) not in SUPPORTED_OPERATORS:
        errors.append(f"conditions[{index}]: unsupported operator {raw.get('operator')!r}")
    logical = raw.get("logicalOperator")
    if logical is not None and str(logical).upper() not in ("AND", "OR"):
        errors.append(f"conditions[{index}]: logicalOperator must be AND or OR")
    return errors


def validate_recipe(data: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []

    title = str(data.get("title") or "").strip()
    if not 3 <= len(title) <= 100:
        errors.append("title must be 3-100 characters")

    description = data.get("description")
    if description is not None and len(str(description)) > 500:
        errors.append("description must be at most 500 characters")

    if data.get("category") not in RECIPE_CATEGORIES:
        errors.append(f"category must be one of {', '.join(RECIPE_CATEGORIES)}")

    trigger = data.get("trigger") or {}
    if not TOPIC_RE.match(str(trigger.get("event") or "")):
        errors.append("trigger.event must match resource/action (e.g. orders/create)")

    conditions = data.get("conditions") or []
    actions = data.get("actions") or []
    if not isinstance(conditions, list) or not isinstance(actions, list):
        errors.append("conditions and actions must be lists")
        conditions, actions = [], []

    if data.get("enabled"):
        if not conditions:
            errors.append("an enabled recipe needs at least one condition")
        if not actions:
            errors.append("an enabled recipe needs at least one action")

    for i, c in enumerate(conditions):
        errors.extend(_condition_errors(i, c))
    for i, a in enumerate(actions):
        errors.extend(_action_errors(i, a))

    if errors:
        raise RecipeValidationError(errors)
    return data


# ---------------- AI 生成的规则 ----------------
TAGGING_FIELDS = {
    "orders": frozenset({
        "total_price", "subtotal_price", "gateway", "financial_status", "currency", "total_weight",
        "shipping_lines[0].title", "shipping_address.city", "shipping_address.country_code",
        "shipping_address.province_code", "shipping_address.zip", "source_name", "tags",
        "discount_codes[0].code", "landing_site", "referring_site",
        "line_items.sku", "line_items.vendor", "line_items.name", "line_items.quantity",
    }),
    "customers": frozenset({
        "total_spent", "orders_count", "state", "verified_email", "accepts_marketing", "tags",
        "default_address.country_code", "email",
    }),
}

METAFIELD_FIELDS = {
    "products": frozenset({
        "title", "product_type", "vendor", "tags", "variants[0].price", "variants[0].inventory_quantity",
    }),
    "customers": frozenset({
        "total_spent", "orders_count", "tags", "default_address.country_code", "email",
    }),
}

TAGGING_OPERATORS = frozenset({
    "equals", "not_equals", "contains", "starts_with", "ends_with", "greater_than", "less_than",
    "in", "not_in", "is_empty", "is_not_empty",
})
METAFIELD_OPERATORS = frozenset({
    "equals", "not_equals", "contains", "starts_with", "ends_with", "greater_than", "less_than",
})
METAFIELD_VALUE_TYPES = frozenset({"single_line_text_field", "number_integer", "number_decimal", "json"})

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_generated_json(raw: Any) -> Dict[str, Any]:
    """模型输出可能包着 ```json 代码块；去掉后再解析"""
    if isinstance(raw, dict):
        return raw
    text = _FENCE_RE.sub("", str(raw or "")).strip()
    try:
        data = json.loads(text)
    except ValueError as e:
        raise RecipeValidationError([f"generated rule is not valid JSON: {e}"]) from e
    if not isinstance(data, dict):
        raise RecipeValidationError(["generated rule must be a JSON object"])
    return data


def validate_generated_rule(raw: Any, kind: str, resource_type: Optional[str] = None) -> Dict[str, Any]:
    """
    kind: "tagging" | "metafield"
    返回解析好的 dict；不合法时 RecipeValidationError（errors 列出全部问题）
    """
    if kind not in ("tagging", "metafield"):
        raise ValueError(f"unknown rule kind: {kind}")
    data = parse_generated_json(raw)
    errors: List[str] = []

    fields_by_type = TAGGING_FIELDS if kind == "tagging" else METAFIELD_FIELDS
    operators = TAGGING_OPERATORS if kind == "tagging" else METAFIELD_OPERATORS

    rtype = data.get("resourceType") or resource_type
    if rtype not in fields_by_type:
        errors.append(f"resourceType must be one of {', '.join(sorted(fields_by_type))}")
        allowed_fields: frozenset = frozenset()
    else:
        allowed_fields = fields_by_type[rtype]
        if resource_type and rtype != resource_type:
            errors.append(f"resourceType {rtype!r} does not match requested {resource_type!r}")

    if not str(data.get("name") or "").strip():
        errors.append("name is required")

    logic = str(data.get("conditionLogic") or "AND").upper()
    if logic not in ("AND", "OR"):
        errors.append("conditionLogic must be AND or OR")

    conditions = data.get("conditions")
    if not isinstance(conditions, list) or not conditions:
        errors.append("conditions must be a non-empty list")
        conditions = []
    for i, c in enumerate(conditions):
        if not isinstance(c, dict):
            errors.append(f"conditions[{i}] must be an object")
            continue
        if allowed_fields and c.get("field") not in allowed_fields:
            errors.append(f"conditions[{i}]: field {c.get('field')!r} is not allowed")
        if c.get("operator") not in operators:
            errors.append(f"conditions[{i}]: operator {c.get('operator')!r} is not allowed")

    if kind == "tagging":
        tags = data.get("tags")
        if not isinstance(tags, list) or not [t for t in tags if isinstance(t, str) and t.strip()]:
            errors.append("tags must be a non-empty list of strings")
    else:
        definition = data.get("definition") or {}
        for key in ("namespace", "key", "value"):
            if not str(definition.get(key) or "").strip():
                errors.append(f"definition.{key} is required")
        if definition.get("valueType", "single_line_text_field") not in METAFIELD_VALUE_TYPES:
            errors.append(f"definition.valueType must be one of {', '.join(sorted(METAFIELD_VALUE_TYPES))}")

    if errors:
        raise RecipeValidationError(errors)
    data["conditionLogic"] = logic
    return data
