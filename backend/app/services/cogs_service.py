"""
商品成本（COGS）：
  - get_products_with_costs：一页商品 + 变体成本 / 毛利，附带本页统计；low_margin 只留毛利 < 15% 的变体
  - update_product_costs：逐个 inventoryItemUpdate，单个失败不影响其它，错误按变体收集
"""
from __future__ import annotations

import logging, math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from app.integrations.shopify.errors import ShopifyError, ShopifyUserError
from app.services.activity_service import record_activity


logger = logging.getLogger(__name__)

PAGE_SIZE = 20
LOW_MARGIN_THRESHOLD = 15
FILTER_LOW_MARGIN = "low_margin"
FILTERS = ("all", FILTER_LOW_MARGIN)

ACTION_COSTS_UPDATED = "Updated Product Costs"


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def calculate_margin(price: float, cost: float) -> float:
    if not cost or not price:
        return 0.0
    return (price - cost) / price * 100


def _js_round(value: float) -> int:
    # 半数向上取整（-2.5 -> -2），与前端展示一致
    return int(math.floor(value + 0.5))


def _variant_row(node: Dict[str, Any]) -> Dict[str, Any]:
    item = node.get("inventoryItem") or {}
    price = _to_float(node.get("price"))
    cost = _to_float((item.get("unitCost") or {}).get("amount"))
    return {
        "id": node.get("id"),
        "title": node.get("title"),
        "price": price,
        "cost": cost,
        "inventoryItemId": item.get("id"),
        "selectedOptions": list(node.get("selectedOptions") or []),
        "margin": round(calculate_margin(price, cost), 2),
        "inventoryQuantity": int(node.get("inventoryQuantity") or 0),
    }


def page_args(cursor: Optional[str], direction: str = "next", page_size: int = PAGE_SIZE) -> Dict[str, Any]:
    """游标翻页：previous -> last/before，其余 -> first/after"""
    if direction == "previous" and cursor:
        return {"last": page_size, "before": cursor}
    return {"first": page_size, "after": cursor or None}


def get_products_with_costs(
    client,
    *,
    cursor: Optional[str] = None,
    direction: str = "next",
    filter: Optional[str] = None,
    query: Optional[str] = None,
    page_size: int = PAGE_SIZE,
) -> Dict[str, Any]:
    if filter and filter not in FILTERS:
        raise ValueError(f"unsupported filter: {filter}")

    page = client.products_with_costs(query=query, **page_args(cursor, direction, page_size))

    total_value = 0.0
    margin_sum = 0.0
    margin_count = 0
    missing = 0
    products: List[Dict[str, Any]] = []

    for node in page.get("nodes") or []:
        variants = [_variant_row(v) for v in ((node.get("variants") or {}).get("nodes") or [])]
        for v in variants:
            # 统计按过滤前的整页算
            if v["cost"] > 0:
                total_value += v["cost"] * v["inventoryQuantity"]
                margin_sum += calculate_margin(v["price"], v["cost"])
                margin_count += 1
            else:
                missing += 1
        products.append({
            "id": node.get("id"),
            "title": node.get("title"),
            "image": (node.get("featuredImage") or {}).get("url"),
            "options": list(node.get("options") or []),
            "variants": variants,
        })

    if filter == FILTER_LOW_MARGIN:
        products = [
            {**p, "variants": [v for v in p["variants"] if v["margin"] < LOW_MARGIN_THRESHOLD]}
            for p in products
        ]
        products = [p for p in products if p["variants"]]

    return {
        "products": products,
        "pageInfo": page.get("pageInfo") or {},
        "stats": {
            "totalValue": round(total_value, 2),
            "avgMargin": _js_round(margin_sum / margin_count) if margin_count else 0,
            "missingCosts": missing,
        },
    }


def _parse_cost(value: Any) -> Optional[str]:
    try:
        cost = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not cost.is_finite() or cost < 0:
        return None
    return format(cost, "f")


def update_product_costs(db: Session, client, *, shop: str, updates: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """
    updates: [{"inventoryItemId": gid, "cost": "12.50"}]
    返回 {"updated": 成功数, "errors": [{"inventoryItemId", "field", "message"}]}
    """
    if not updates:
        return {"updated": 0, "errors": []}

    errors: List[Dict[str, Any]] = []
    updated = 0

    for u in updates:
        item_id = str(u.get("inventoryItemId") or "")
        cost = _parse_cost(u.get("cost"))
        if not item_id or cost is None:
            errors.append({"inventoryItemId": item_id or None, "field": ["cost"],
                           "message": f"Invalid cost for {item_id or 'unknown item'}: {u.get('cost')!r}"})
            continue
        try:
            client.inventory_item_update(item_id, cost)
        except ShopifyUserError as e:
            for ue in e.user_errors:
                errors.append({"inventoryItemId": item_id, "field": ue.get("field"), "message": ue.get("message")})
            continue
        except ShopifyError as e:
            logger.warning("cogs.update_failed shop=%s item=%s err=%s", shop, item_id, e)
            errors.append({"inventoryItemId": item_id, "field": None, "message": f"Failed to update {item_id}"})
            continue
        updated += 1

    failed = len(updates) - updated
    if failed == 0:
        status, detail = "Success", f"Updated costs for {updated} variants"
    else:
        status = "Partial" if updated else "Failed"
        first = errors[0]["message"] if errors else "unknown error"
        detail = f"Updated costs for {updated} variants, {failed} failed: {first}"

    record_activity(
        db, shop=shop, resource_type="Product", resource_id="Bulk",
        action=ACTION_COSTS_UPDATED, detail=detail, status=status,
    )
    logger.info("cogs.updated shop=%s ok=%s failed=%s", shop, updated, failed)
    return {"updated": updated, "errors": errors}
