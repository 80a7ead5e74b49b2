# app/api/v1/webhooks_shopify.py

from __future__ import annotations
import hmac, hashlib, base64, json, logging
from fastapi import APIRouter, Request, Header, HTTPException

from app.core.config import settings
from app.orchestration.webhook_tasks import enqueue_webhook
from app.services.validation import InvalidTopicError, validate_topic


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["webhooks.shopify"])


# =============== 公共：HMAC 校验（Shopify Webhook 签名） ===============
def _compute_hmac_base64(secret: str, raw_body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _verify_hmac_or_401(provided_hmac_b64: str, raw_body: bytes) -> None:
    if not settings.SHOPIFY_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Webhook secret not configured")
    if not provided_hmac_b64:  # 缺失即 401
        raise HTTPException(status_code=401, detail="Missing HMAC")

    expected = _compute_hmac_base64(settings.SHOPIFY_WEBHOOK_SECRET, raw_body)
    if not hmac.compare_digest(provided_hmac_b64, expected):
        raise HTTPException(status_code=401, detail="Invalid HMAC")



'''
Webhook 统一入口：/webhooks/shopify/{topic}，例如 /webhooks/shopify/orders/create
   - 先 HMAC 校验原始 body，再校验 topic（Header 优先，其次路径），避免用任意 topic 绕过校验
   - 只做入队：Shopify 要求 5 秒内返回 200，规则评估 / bulk 推进都在 worker 里做
   - bulk_operations/finish 也走这里：worker 里按 GID 找到等待中的 lineage 并立即推进
   - X-Shopify-Webhook-Id 随任务一起投递：同一投递重试时据此去重
'''
@router.post("/{topic:path}")
async def receive_webhook(
    topic: str,
    request: Request,
    x_shopify_hmac_sha256: str = Header(default=""),
    x_shopify_topic: str = Header(default=""),
    x_shopify_shop_domain: str = Header(default=""),
    x_shopify_webhook_id: str = Header(default=""),
):
    # 1) 先做 HMAC 校验
    raw = await request.body()
    _verify_hmac_or_401(x_shopify_hmac_sha256, raw)

    # 2) 再校验 Topic（大小写不敏感）
    try:
        topic = validate_topic((x_shopify_topic or topic or "").strip().lower())
    except InvalidTopicError as e:
        raise HTTPException(status_code=400, detail=str(e))

    shop = (x_shopify_shop_domain or "").strip().lower()
    if not shop:
        raise HTTPException(status_code=400, detail="Missing shop domain")

    # 3) 解析 payload
    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    # 4) 丢给 Celery，接口立即返回 200
    webhook_id = (x_shopify_webhook_id or "").strip() or None
    enqueue_webhook(topic, shop, payload, webhook_id)
    logger.info("webhook.enqueued shop=%s topic=%s webhook_id=%s bytes=%s", shop, topic, webhook_id, len(raw))
    return {"ok": True, "topic": topic}
