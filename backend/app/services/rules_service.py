"""
标签规则 / metafield 规则：
  - webhook 到达时按优先级评估（evaluate_tagging_rules / evaluate_metafield_rules）
  - 规则增删改 + 开关（metafield 规则同店铺同资源同 namespace.key 只能有一条）
  - simulate_rule：拿最近几条真实资源做 dry-run
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.model.rules import MetafieldRule, TaggingRule
from app.integrations.shopify.payload_utils import (
    flatten_product_payload,
    graphql_node_to_payload,
    normalize_tags,
    to_gid,
)
from app.repository import rules_repo
from app.services.activity_service import record_activity
from app.services.recipe_engine.condition_evaluator import SUPPORTED_OPERATORS, evaluate_all, normalize_operator
from app.services.validation import DuplicateRuleError, RecipeValidationError


logger = logging.getLogger(__name__)


TAGGING_RESOURCE_TYPES = ("orders", "customers")
METAFIELD_RESOURCE_TYPES = ("products", "customers")

_LABEL = {"orders": "Order", "customers": "Customer", "products": "Product"}


# ================== webhook 评估 ==================
def evaluate_tagging_rules(
    db: Session,
    client,
    *,
    shop: str,
    resource_type: str,
    payload: Dict[str, Any],
) -> Dict[str, Any]:
    """
    命中：加规则的 tags；未命中：移除规则的 tags；如果别的命中规则要加同一个 tag，加优先。
    已经有的不重复加、本来没有的不去删（避免 orders/updated 自己触发自己）。
    返回 {"added": [...], "removed": [...], "matchedRules": [...]}
    """
    rules = rules_repo.list_enabled(db, TaggingRule, shop, resource_type)
    result: Dict[str, Any] = {"added": [], "removed": [], "matchedRules": []}
    if not rules:
        return result

    to_add: Dict[str, None] = {}        # 有序去重
    to_remove: Dict[str, None] = {}
    logs: List[Dict[str, str]] = []

    for rule in rules:
        evaluation = evaluate_all(payload, rule.conditions, rule.condition_logic)
        tags = [t for t in (rule.tags or []) if isinstance(t, str) and t.strip()]
        if evaluation.matches:
            result["matchedRules"].append(rule.name)
            for t in tags:
                to_add[t] = None
            logs.append({"action": "Add Tag", "detail": f"Rule '{rule.name}' matched. Tags: {', '.join(tags)}"})
        else:
            for t in tags:
                to_remove[t] = None

    for t in to_add:
        to_remove.pop(t, None)

    current = {t.casefold() for t in normalize_tags(payload.get("tags"))}
    add_list = [t for t in to_add if t.casefold() not in current]
    remove_list = [t for t in to_remove if t.casefold() in current]

    gid = to_gid(resource_type, payload.get("id"))
    label = _LABEL.get(resource_type, resource_type)
    resource_id = str(payload.get("id"))

    if add_list:
        client.tags_add(gid, add_list)
    if remove_list:
        client.tags_remove(gid, remove_list)
        logs.append({"action": "Remove Tag", "detail": f"Tags removed: {', '.join(remove_list)}"})

    for entry in logs:
        record_activity(
            db, shop=shop, resource_type=label, resource_id=resource_id,
            action=entry["action"], detail=entry["detail"], status="Success",
        )

    result["added"], result["removed"] = add_list, remove_list
    logger.info("rules.tagging shop=%s type=%s id=%s matched=%s added=%s removed=%s",
        shop, resource_type, resource_id, len(result["matchedRules"]), add_list, remove_list)
    return result


def evaluate_metafield_rules(
    db: Session,
    client,
    *,
    shop: str,
    resource_type: str,
    payload: Dict[str, Any],
) -> Dict[str, Any]:
    """命中的规则合并成一次 metafieldsSet；失败只记 Failed 操作记录，不抛"""
    rules = rules_repo.list_enabled(db, MetafieldRule, shop, resource_type)
    if not rules:
        return {"applied": [], "status": "skipped"}

    resource = flatten_product_payload(payload) if resource_type == "products" else payload
    owner_id = to_gid(resource_type, payload.get("id"))

    matched: List[MetafieldRule] = [
        r for r in rules if evaluate_all(resource, r.conditions, r.condition_logic).matches
    ]
    if not matched:
        logger.info("rules.metafield.no_match shop=%s type=%s id=%s", shop, resource_type, payload.get("id"))
        return {"applied": [], "status": "skipped"}

    metas = [{
        "ownerId": owner_id,
        "namespace": r.namespace,
        "key": r.key,
        "value": r.value,
        "type": r.value_type,
    } for r in matched]
    names = [r.name for r in matched]
    label = _LABEL.get(resource_type, resource_type)

    try:
        client.metafields_set(metas)
    except Exception as e:
        logger.warning("rules.metafield.failed shop=%s id=%s err=%s", shop, payload.get("id"), e)
        record_activity(
            db, shop=shop, resource_type=label, resource_id=str(payload.get("id")),
            action="Auto-Metafield", detail=f"Failed: {e}", status="Failed",
        )
        return {"applied": [], "status": "failed", "error": str(e)}

    record_activity(
        db, shop=shop, resource_type=label, resource_id=str(payload.get("id")),
        action="Auto-Metafield", detail=f"Applied rules: {', '.join(names)}", status="Success",
    )
    return {"applied": names, "status": "success"}


# ================== 规则管理 ==================
def _validate_rule_common(data: Dict[str, Any], allowed_types: tuple) -> List[str]:
    errors = []
    if not str(data.get("name") or "").strip():
        errors.append("name is required")
    if data.get("resourceType") not in allowed_types:
        errors.append(f"resourceType must be one of {', '.join(allowed_types)}")
    if str(data.get("conditionLogic") or "AND").upper() not in ("AND", "OR"):
        errors.append("conditionLogic must be AND or OR")
    for i, c in enumerate(data.get("conditions") or []):
        if not isinstance(c, dict) or not c.get("field"):
            errors.append(f"conditions[{i}]: field is required")
        elif normalize_operator(c.get("operator")) not in SUPPORTED_OPERATORS:
            errors.append(f"conditions[{i}]: unsupported operator {c.get('operator')!r}")
    return errors


def _apply_common(row: Union[TaggingRule, MetafieldRule], data: Dict[str, Any]) -> None:
    row.name = str(data["name"]).strip()
    row.resource_type = data["resourceType"]
    row.is_enabled = bool(data.get("isEnabled", True))
    row.priority = int(data.get("priority") or 0)
    row.condition_logic = str(data.get("conditionLogic") or "AND").upper()
    row.conditions = list(data.get("conditions") or [])


def tagging_rule_to_dict(row: TaggingRule) -> Dict[str, Any]:
    return {
        "id": row.id, "name": row.name, "resourceType": row.resource_type,
        "isEnabled": row.is_enabled, "priority": row.priority,
        "conditionLogic": row.condition_logic, "conditions": list(row.conditions or []),
        "tags": list(row.tags or []),
    }


def metafield_rule_to_dict(row: MetafieldRule) -> Dict[str, Any]:
    return {
        "id": row.id, "name": row.name, "description": row.description,
        "resourceType": row.resource_type, "isEnabled": row.is_enabled, "priority": row.priority,
        "conditionLogic": row.condition_logic, "conditions": list(row.conditions or []),
        "definition": row.definition,
    }


def _rule_activity(db: Session, shop: str, row, verb: str) -> None:
    if isinstance(row, MetafieldRule):
        kind, detail = "Metafield Rule", f"{verb} rule for {row.namespace}.{row.key}"
    else:
        kind, detail = "Tagging Rule", f"{verb} rule '{row.name}'"
    record_activity(
        db, shop=shop, resource_type=kind, resource_id=row.id,
        action=f"{verb} {kind}", detail=detail, status="Success",
    )


# ---- tagging ----
def create_tagging_rule(db: Session, shop: str, data: Dict[str, Any]) -> TaggingRule:
    errors = _validate_rule_common(data, TAGGING_RESOURCE_TYPES)
    tags = [t for t in (data.get("tags") or []) if isinstance(t, str) and t.strip()]
    if not tags:
        errors.append("tags must be a non-empty list")
    if errors:
        raise RecipeValidationError(errors)

    row = TaggingRule(shop=shop)
    _apply_common(row, data)
    row.tags = tags
    rules_repo.add(db, row)
    _rule_activity(db, shop, row, "Created")
    return row


def update_tagging_rule(db: Session, shop: str, rule_id: str, data: Dict[str, Any]) -> Optional[TaggingRule]:
    row = rules_repo.get(db, TaggingRule, shop, rule_id)
    if row is None:
        return None
    merged = {**tagging_rule_to_dict(row), **data}
    errors = _validate_rule_common(merged, TAGGING_RESOURCE_TYPES)
    if not merged.get("tags"):
        errors.append("tags must be a non-empty list")
    if errors:
        raise RecipeValidationError(errors)
    _apply_common(row, merged)
    row.tags = list(merged["tags"])
    rules_repo.save(db, row)
    _rule_activity(db, shop, row, "Updated")
    return row


# ---- metafield ----
def _metafield_definition(data: Dict[str, Any]) -> Dict[str, str]:
    d = data.get("definition") or {}
    return {
        "namespace": str(d.get("namespace") or "").strip(),
        "key": str(d.get("key") or "").strip(),
        "value": str(d.get("value") if d.get("value") is not None else ""),
        "valueType": str(d.get("valueType") or "single_line_text_field"),
    }


def _check_duplicate(db: Session, shop: str, resource_type: str, definition: Dict[str, str],
                     exclude_id: Optional[str] = None) -> None:
    dup = rules_repo.find_metafield_duplicate(
        db, shop, resource_type, definition["namespace"], definition["key"], exclude_id=exclude_id,
    )
    if dup is not None:
        raise DuplicateRuleError(
            f"Duplicate Rule: A rule for {definition['namespace']}.{definition['key']} already exists."
        )


def _validate_metafield(data: Dict[str, Any], definition: Dict[str, str]) -> None:
    errors = _validate_rule_common(data, METAFIELD_RESOURCE_TYPES)
    for key in ("namespace", "key", "value"):
        if not definition[key]:
            errors.append(f"definition.{key} is required")
    if errors:
        raise RecipeValidationError(errors)


def _apply_metafield(row: MetafieldRule, data: Dict[str, Any], definition: Dict[str, str]) -> None:
    _apply_common(row, data)
    row.description = data.get("description")
    row.namespace = definition["namespace"]
    row.key = definition["key"]
    row.value = definition["value"]
    row.value_type = definition["valueType"]


def create_metafield_rule(db: Session, shop: str, data: Dict[str, Any]) -> MetafieldRule:
    definition = _metafield_definition(data)
    _validate_metafield(data, definition)
    _check_duplicate(db, shop, data["resourceType"], definition)

    row = MetafieldRule(shop=shop)
    _apply_metafield(row, data, definition)
    try:
        rules_repo.add(db, row)
    except IntegrityError as e:
        # 并发创建：唯一约束兜底
        raise DuplicateRuleError(
            f"Duplicate Rule: A rule for {definition['namespace']}.{definition['key']} already exists."
        ) from e
    _rule_activity(db, shop, row, "Created")
    return row


def update_metafield_rule(db: Session, shop: str, rule_id: str, data: Dict[str, Any]) -> Optional[MetafieldRule]:
    row = rules_repo.get(db, MetafieldRule, shop, rule_id)
    if row is None:
        return None
    merged = {**metafield_rule_to_dict(row), **data}
    definition = _metafield_definition(merged)
    _validate_metafield(merged, definition)
    _check_duplicate(db, shop, merged["resourceType"], definition, exclude_id=rule_id)

    _apply_metafield(row, merged, definition)
    try:
        rules_repo.save(db, row)
    except IntegrityError as e:
        raise DuplicateRuleError(
            f"Duplicate Rule: A rule for {definition['namespace']}.{definition['key']} already exists."
        ) from e
    _rule_activity(db, shop, row, "Updated")
    return row


# ---- 共用：开关 / 删除 ----
RuleModel = Union[Type[TaggingRule], Type[MetafieldRule]]


def toggle_rule(db: Session, model: RuleModel, shop: str, rule_id: str, enabled: bool):
    row = rules_repo.get(db, model, shop, rule_id)
    if row is None:
        return None
    row.is_enabled = bool(enabled)
    rules_repo.save(db, row)
    _rule_activity(db, shop, row, "Enabled" if enabled else "Disabled")
    return row


def delete_rule(db: Session, model: RuleModel, shop: str, rule_id: str) -> bool:
    row = rules_repo.get(db, model, shop, rule_id)
    if row is None:
        return False
    _rule_activity(db, shop, row, "Deleted")
    return rules_repo.delete(db, model, shop, rule_id)


def list_rules(db: Session, model: RuleModel, shop: str, resource_type: Optional[str] = None):
    return rules_repo.list_rules(db, model, shop, resource_type)


# ================== dry-run ==================
def simulate_rule(client, rule: Dict[str, Any], *, sample_size: int = 10) -> List[Dict[str, Any]]:
    """拉最近 sample_size 条资源，返回命中的 [{id, title, reason}]；不写任何东西"""
    resource_type = rule.get("resourceType") or "products"
    nodes = client.sample_resources(resource_type, first=sample_size)
    logic = rule.get("conditionLogic") or "AND"

    matched = []
    for node in nodes:
        payload = graphql_node_to_payload(resource_type, node)
        if evaluate_all(payload, rule.get("conditions"), logic).matches:
            matched.append({
                "id": node.get("id"),
                "title": node.get("title") or node.get("displayName") or node.get("name"),
                "reason": "Matches conditions",
            })
    return matched
