"""
webhook 事件分发（在 worker 里执行，HTTP 层只负责验签 + 入队）：
  1) 记一条 webhook_received 审计
  2) recipe 引擎：(shop, topic) 下所有启用 recipe
  3) 标签规则 / metafield 规则（按 topic 选择）
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from app.integrations.shopify.payload_utils import resource_type_from_topic, to_gid
from app.services import automation_logger
from app.services.rules_service import evaluate_metafield_rules, evaluate_tagging_rules
from app.services.validation import validate_topic


logger = logging.getLogger(__name__)


# topic -> 规则评估（资源类型用复数，对应规则表里的 resource_type）
TAGGING_TOPICS = {
    "orders/create": "orders",
    "orders/updated": "orders",
    "customers/update": "customers",
}
METAFIELD_TOPICS = {
    "products/create": "products",
    "products/update": "products",
    "customers/create": "customers",
    "customers/update": "customers",
}

_PLURAL = {"order": "orders", "customer": "customers", "product": "products"}


def resource_gid_for(topic: str, payload: Dict[str, Any]) -> str:
    gid = payload.get("admin_graphql_api_id")
    if isinstance(gid, str) and gid.startswith("gid://"):
        return gid
    singular = resource_type_from_topic(topic)
    return to_gid(_PLURAL.get(singular, singular), payload.get("id"))


def handle_webhook(
    container,
    *,
    shop: str,
    topic: str,
    payload: Dict[str, Any],
    delivery_id: Optional[str] = None,
) -> Dict[str, Any]:
    topic = validate_topic(topic)
    resource_id = resource_gid_for(topic, payload)
    client = container.client_for(shop)

    with container.session_factory() as db:
        automation_logger.log_webhook_received(
            db, shop=shop, topic=topic, resource_id=resource_id, delivery_id=delivery_id,
        )

    summary = container.recipe_engine.process_event(
        shop=shop,
        event=topic,
        resource_id=resource_id,
        resource_data=payload,
        client=client,
        delivery_id=delivery_id,
    )
    out: Dict[str, Any] = {"recipes": summary.to_dict()}

    with container.session_factory() as db:
        if topic in TAGGING_TOPICS:
            out["tagging"] = evaluate_tagging_rules(
                db, client, shop=shop, resource_type=TAGGING_TOPICS[topic], payload=payload,
            )
        if topic in METAFIELD_TOPICS:
            out["metafields"] = evaluate_metafield_rules(
                db, client, shop=shop, resource_type=METAFIELD_TOPICS[topic], payload=payload,
            )

    logger.info("webhook.handled shop=%s topic=%s resource=%s", shop, topic, resource_id)
    return out
