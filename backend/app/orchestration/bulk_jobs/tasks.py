"""
bulk / cleanup 任务的 Celery 入口：
  - start_bulk_job / start_cleanup_job：构造初始 payload 并投递第一步
  - advance_bulk_job：推进一步；未到终态就按 Transition.delay 延迟重投（countdown）
  - run_job_inline：调试/测试用，在当前进程里串行跑完整个 lineage
"""
from __future__ import annotations

import logging, time
from typing import Any, Callable, Dict, List, Optional

from celery import shared_task

from app.core.config import settings
from app.integrations.shopify.errors import BulkOperationFailedError
from app.orchestration.bulk_jobs.runner import fail_lineage_by_payload, run_step
from app.orchestration.bulk_jobs.state import JobState, OperationKind, Step, queue_for
from app.utils.backoff import calc_next_delay
from app.utils.ids import new_job_id


logger = logging.getLogger(__name__)

CLEANUP_RESOURCE_TYPES = ["products", "customers"]
BULK_RESOURCE_TYPES = {"products", "customers", "orders"}


def _inline_tasks_enabled() -> bool:
    # 调试开关：True 时整个 lineage 在当前进程内同步执行
    return bool(getattr(settings, "SYNC_TASKS_INLINE", False))


def enqueue(payload: Dict[str, Any], delay: int = 0, *, suffix: str = "") -> None:
    kind = OperationKind(payload.get("kind") or "replace")
    task_id = f"bulk:{payload['jobId']}:{payload.get('seq', 0)}{suffix}"
    advance_bulk_job.apply_async(
        args=[payload],
        countdown=max(0, int(delay or 0)),
        queue=queue_for(kind),
        task_id=task_id,
    )
    logger.info("bulk_job.enqueued job_id=%s step=%s seq=%s delay=%s",
        payload["jobId"], payload.get("step"), payload.get("seq"), delay)


def _dispatch(payload: Dict[str, Any], *, container=None, inline: Optional[bool] = None) -> None:
    if inline or (inline is None and _inline_tasks_enabled()):
        run_job_inline(payload, container=container)
        return
    enqueue(payload, 0)


def start_bulk_job(
    *,
    shop: str,
    resource_type: str,
    operation: str,
    find_tag: str = "",
    replace_tag: str = "",
    job_id: Optional[str] = None,
    container=None,
    inline: Optional[bool] = None,
) -> str:
    kind = OperationKind(operation)
    if kind not in (OperationKind.REPLACE, OperationKind.ADD, OperationKind.REMOVE):
        raise ValueError(f"unsupported bulk operation: {operation}")
    if resource_type not in BULK_RESOURCE_TYPES:
        raise ValueError(f"unsupported resource type: {resource_type}")
    if kind in (OperationKind.REPLACE, OperationKind.REMOVE) and not find_tag:
        raise ValueError("findTag is required")
    if kind in (OperationKind.REPLACE, OperationKind.ADD) and not replace_tag:
        raise ValueError("replaceTag is required")
    if kind == OperationKind.REPLACE and find_tag.strip() == replace_tag.strip():
        raise ValueError("findTag and replaceTag must differ")

    state = JobState(
        job_id=job_id or new_job_id("bulk"),
        shop=shop,
        kind=kind,
        resource_types=[resource_type],
        find_tag=find_tag.strip(),
        replace_tag=replace_tag.strip(),
    )
    logger.info("bulk_job.start job_id=%s shop=%s kind=%s type=%s", state.job_id, shop, kind.value, resource_type)
    _dispatch(state.to_payload(), container=container, inline=inline)
    return state.job_id


def start_cleanup_job(
    *,
    shop: str,
    tags_to_remove: List[str],
    job_id: Optional[str] = None,
    container=None,
    inline: Optional[bool] = None,
) -> str:
    tags = [t.strip() for t in tags_to_remove if t and t.strip()]
    if not tags:
        raise ValueError("tagsToRemove must not be empty")

    state = JobState(
        job_id=job_id or new_job_id("cleanup"),
        shop=shop,
        kind=OperationKind.CLEANUP,
        resource_types=list(CLEANUP_RESOURCE_TYPES),
        tags_to_remove=tags,
    )
    logger.info("bulk_job.start job_id=%s shop=%s kind=cleanup tags=%s", state.job_id, shop, tags)
    _dispatch(state.to_payload(), container=container, inline=inline)
    return state.job_id


def run_job_inline(
    payload: Dict[str, Any],
    *,
    container=None,
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """调试入口：串行推进，直到终态或超过最大步数。"""
    attempt = 0
    current = payload
    while True:
        outcome = run_step(current, container=container)
        if outcome.terminal or outcome.payload is None:
            return {"jobId": payload["jobId"], "dropped": outcome.dropped, "steps": attempt + 1}

        attempt += 1
        if max_attempts is not None and attempt > max_attempts:
            raise RuntimeError("run_job_inline exceeded max_attempts")

        if outcome.delay:
            sleep(outcome.delay)
        current = outcome.payload


@shared_task(
    name="app.orchestration.bulk_jobs.tasks.advance_bulk_job",
    bind=True,
    max_retries=settings.BULK_STEP_MAX_RETRIES,
    default_retry_delay=10,
    acks_late=True,
)
def advance_bulk_job(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    真实流程入口：推进一步。
      - 瞬时错误：指数退避重试这一步（同一 payload，seq 不变）
      - 远端 bulk 终态失败：lineage 已标记 failed，不再重试
      - 重试次数用尽：标记 failed
    """
    try:
        outcome = run_step(payload)
    except BulkOperationFailedError:
        raise
    except Exception as e:
        attempt = getattr(self.request, "retries", 0)
        if attempt >= self.max_retries:
            fail_lineage_by_payload(payload, f"{e} (after {attempt} retries)")
            raise
        raise self.retry(exc=e, countdown=calc_next_delay(attempt + 1, base_seconds=self.default_retry_delay))

    if outcome.payload is not None:
        enqueue(outcome.payload, outcome.delay)

    return {
        "jobId": payload.get("jobId"),
        "step": (outcome.payload or {}).get("step", Step.DONE.value if outcome.terminal else None),
        "dropped": outcome.dropped,
    }
