from __future__ import annotations

from typing import Any, Dict, List, Optional


# 复数资源名 -> GID 里的类型名
_GID_TYPES = {
    "products": "Product",
    "customers": "Customer",
    "orders": "Order",
    "variants": "ProductVariant",
}


# webhook topic 前缀 / GID 类型 -> recipe 里用的单数资源名
_SINGULAR = {
    "products": "product", "product": "product",
    "customers": "customer", "customer": "customer",
    "orders": "order", "order": "order",
    "inventory_items": "inventory", "inventory_levels": "inventory", "inventoryitem": "inventory",
    "productvariant": "product",
}


def normalize_tags(value: Any) -> List[str]:
    """
    将 Shopify 返回的标签（通常为 list[str]）归一化为字符串列表。
    webhook 里的 tags 是逗号分隔字符串，也兼容。
    """
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if isinstance(v, str) and str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def to_gid(resource_type: str, resource_id: Any) -> str:
    """
    webhook payload 里是数字 id，GraphQL 需要 GID。
    已经是 GID 的原样返回。
    """
    raw = str(resource_id or "").strip()
    if raw.startswith("gid://"):
        return raw
    type_name = _GID_TYPES.get(resource_type, resource_type[:1].upper() + resource_type[1:])
    return f"gid://shopify/{type_name}/{raw}"


def gid_type(gid: str) -> Optional[str]:
    # gid://shopify/Customer/123 -> "Customer"
    parts = str(gid or "").split("/")
    if len(parts) >= 5 and parts[0] == "gid:":
        return parts[3]
    return None


def resource_type_from_gid(gid: str) -> str:
    """gid://shopify/Customer/123 -> customer；无法识别时返回 unknown"""
    t = gid_type(gid)
    if not t:
        return "unknown"
    return _SINGULAR.get(t.lower(), t.lower())


def resource_type_from_topic(topic: str) -> str:
    """orders/create -> order"""
    prefix = (topic or "").split("/", 1)[0].strip().lower()
    return _SINGULAR.get(prefix, prefix or "unknown")


def resource_title(payload: Dict[str, Any], resource_type: str) -> str:
    """日志里的资源展示名（冗余存储）"""
    if not isinstance(payload, dict):
        return ""
    if resource_type == "customer":
        first = str(payload.get("first_name") or "").strip()
        last = str(payload.get("last_name") or "").strip()
        name = f"{first} {last}".strip()
        return name or str(payload.get("email") or payload.get("displayName") or "")
    if resource_type == "order":
        return str(payload.get("name") or payload.get("order_number") or "")
    return str(payload.get("title") or payload.get("name") or "")


def flatten_product_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """商品 webhook：把第一个变体的 price / sku / inventory 拍平到顶层，方便写规则"""
    variants = payload.get("variants") or []
    first = variants[0] if variants and isinstance(variants[0], dict) else {}
    out = dict(payload)
    out["price"] = first.get("price")
    out["sku"] = first.get("sku")
    out["inventory"] = first.get("inventory_quantity")
    return out


def _money(node: Any) -> Optional[str]:
    # {shopMoney: {amount}} / {amount}
    if not isinstance(node, dict):
        return None
    if "shopMoney" in node:
        return _money(node.get("shopMoney"))
    amount = node.get("amount")
    return str(amount) if amount is not None else None


"""
  GraphQL 节点（camelCase）-> webhook 风格 payload（snake_case），
  这样规则模拟和 webhook 实际执行用的是同一套字段名。
"""
def graphql_node_to_payload(resource_type: str, node: Dict[str, Any]) -> Dict[str, Any]:
    node = node or {}
    if resource_type == "products":
        variants = ((node.get("variants") or {}).get("nodes")) or []
        payload = {
            "id": node.get("id"),
            "title": node.get("title"),
            "product_type": node.get("productType"),
            "vendor": node.get("vendor"),
            "tags": normalize_tags(node.get("tags")),
            "variants": [
                {
                    "price": v.get("price"),
                    "sku": v.get("sku"),
                    "inventory_quantity": v.get("inventoryQuantity"),
                }
                for v in variants
            ],
        }
        return flatten_product_payload(payload)

    if resource_type == "customers":
        addr = node.get("defaultAddress") or {}
        return {
            "id": node.get("id"),
            "email": node.get("email"),
            "display_name": node.get("displayName"),
            "state": (node.get("state") or "").lower() or None,
            "verified_email": node.get("verifiedEmail"),
            "tags": normalize_tags(node.get("tags")),
            "orders_count": _to_int(node.get("numberOfOrders")),
            "total_spent": _money(node.get("amountSpent")),
            "default_address": {"country_code": addr.get("countryCodeV2")} if addr else None,
        }

    if resource_type == "orders":
        ship = node.get("shippingAddress") or {}
        return {
            "id": node.get("id"),
            "name": node.get("name"),
            "tags": normalize_tags(node.get("tags")),
            "currency": node.get("currencyCode"),
            "financial_status": (node.get("displayFinancialStatus") or "").lower() or None,
            "source_name": node.get("sourceName"),
            "total_price": _money(node.get("totalPriceSet")),
            "subtotal_price": _money(node.get("subtotalPriceSet")),
            "shipping_address": {
                "city": ship.get("city"),
                "country_code": ship.get("countryCodeV2"),
                "province_code": ship.get("provinceCode"),
                "zip": ship.get("zip"),
            } if ship else None,
        }

    return dict(node)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
