"""
webhooks 队列：HTTP 层验签后把 {topic, shop, payload} 原样投递到这里。
  - bulk_operations/finish：不跑规则，只把正在等这个 BulkOperation 的 lineage 立即推进一步
  - 其它 topic：recipe 引擎 + 标签/metafield 规则
每次执行后累加 job_metrics（按 shop/queue/天）。
"""
from __future__ import annotations

import logging, time
from typing import Any, Dict, Optional

from celery import shared_task

from app.core.config import settings
from app.repository import activity_repo, bulk_job_repo, job_metric_repo
from app.services import activity_service
from app.services.webhook_service import handle_webhook
from app.utils.backoff import calc_next_delay
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)

WEBHOOK_QUEUE = "webhooks"
BULK_FINISH_TOPIC = "bulk_operations/finish"


def handle_bulk_finish(container, *, shop: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shopify 在 bulk 结束时推送 admin_graphql_api_id；
    找到等待它的 lineage，按行上当前 seq 立即投递一次（原来的延迟消息届时会因 seq 过期被丢弃）。
    """
    from app.orchestration.bulk_jobs.tasks import enqueue

    op_id = str(payload.get("admin_graphql_api_id") or "")
    if not op_id:
        return {"status": "ignored", "reason": "no operation id"}

    with container.session_factory() as db:
        row = bulk_job_repo.find_running_by_operation(db, op_id)
        if row is None or row.shop != shop:
            logger.info("bulk.finish.no_lineage shop=%s op=%s", shop, op_id)
            return {"status": "ignored", "reason": "no running job"}
        state = dict(row.state or {})

    enqueue(state, 0, suffix=":finish")
    logger.info("bulk.finish.shortcut shop=%s op=%s job_id=%s", shop, op_id, state.get("jobId"))
    return {"status": "advanced", "jobId": state.get("jobId")}


def _record_metric(container, *, shop: str, success: bool, duration_ms: int) -> None:
    with container.session_factory() as db:
        job_metric_repo.record(
            db, shop=shop, queue=WEBHOOK_QUEUE, day=now_utc().date(),
            success=success, duration_ms=duration_ms,
        )
        db.commit()


def _delivery_job_id(webhook_id: Optional[str]) -> Optional[str]:
    # 同一投递的所有重试归到一条操作记录
    return f"webhook-{webhook_id}" if webhook_id else None


def _record_delivery_activity(container, *, shop: str, webhook_id: Optional[str], status: str, detail: str) -> None:
    job_id = _delivery_job_id(webhook_id)
    with container.session_factory() as db:
        if status == "Success" and not (job_id and activity_repo.exists_for_job(db, shop, job_id)):
            # 第一次就成功的投递不写操作记录
            return
        activity_service.record_activity(
            db,
            shop=shop,
            resource_type="System",
            resource_id="N/A",
            action="Webhook Processing",
            detail=detail,
            status=status,
            job_id=job_id,
        )


def process_webhook_logic(
    topic: str,
    shop: str,
    payload: Dict[str, Any],
    *,
    webhook_id: Optional[str] = None,
    container=None,
) -> Dict[str, Any]:
    """
    webhook_id：X-Shopify-Webhook-Id（没有时用 Celery task id）。
    同一投递重试时：recipe 不重复执行，失败记录追加到同一条操作记录里。
    """
    if container is None:
        from app.core.container import get_container
        container = get_container()

    start = time.perf_counter()
    try:
        if topic == BULK_FINISH_TOPIC:
            result = handle_bulk_finish(container, shop=shop, payload=payload)
        else:
            result = handle_webhook(container, shop=shop, topic=topic, payload=payload, delivery_id=webhook_id)
    except Exception as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("webhook.failed shop=%s topic=%s webhook_id=%s err=%s", shop, topic, webhook_id, e)
        _record_metric(container, shop=shop, success=False, duration_ms=duration_ms)
        _record_delivery_activity(
            container, shop=shop, webhook_id=webhook_id,
            status="Failed", detail=f"Failed to process {topic}: {e}",
        )
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    _record_metric(container, shop=shop, success=True, duration_ms=duration_ms)
    _record_delivery_activity(
        container, shop=shop, webhook_id=webhook_id,
        status="Success", detail=f"Processed {topic} after retry",
    )
    logger.info("webhook.processed shop=%s topic=%s webhook_id=%s took_ms=%s", shop, topic, webhook_id, duration_ms)
    return result


@shared_task(
    name="app.orchestration.webhook_tasks.process_webhook",
    bind=True,
    max_retries=settings.WEBHOOK_TASK_MAX_RETRIES,
    default_retry_delay=10,
    acks_late=True,
)
def process_webhook(self, topic: str, shop: str, payload: Dict[str, Any], webhook_id: Optional[str] = None) -> Dict[str, Any]:
    # self.retry 复用同一个 task id：没有 webhook id 时用它标识这次投递
    delivery = webhook_id or getattr(self.request, "id", None)
    try:
        return process_webhook_logic(topic, shop, payload, webhook_id=delivery)
    except Exception as e:
        attempt = getattr(self.request, "retries", 0)
        if attempt >= self.max_retries:
            raise
        raise self.retry(exc=e, countdown=calc_next_delay(attempt + 1, base_seconds=self.default_retry_delay))


def enqueue_webhook(topic: str, shop: str, payload: Dict[str, Any], webhook_id: Optional[str] = None) -> None:
    webhook_id = webhook_id or None
    if bool(getattr(settings, "SYNC_TASKS_INLINE", False)):
        process_webhook_logic(topic, shop, payload, webhook_id=webhook_id)
        return
    process_webhook.apply_async(args=[topic, shop, payload, webhook_id], queue=WEBHOOK_QUEUE)
