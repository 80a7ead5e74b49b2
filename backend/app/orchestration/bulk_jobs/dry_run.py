"""
bulk 标签操作预览（同步，在 API 请求里执行）：
跑同一个读取查询 -> 有上限地轮询 -> 下载 -> 计算会变化的行，不提交任何 mutation。
"""
from __future__ import annotations

import logging, time
from typing import Any, Callable, Dict, Optional

from app.core.config import settings
from app.integrations.shopify.errors import BulkOperationFailedError, BulkPollTimeoutError
from app.orchestration.bulk_jobs.state import JobState, OperationKind
from app.orchestration.bulk_jobs.transforms import build_query, plan_changes


logger = logging.getLogger(__name__)


def dry_run_tag_operation(
    driver,
    *,
    resource_type: str,
    operation: str,
    find_tag: str = "",
    replace_tag: str = "",
    max_polls: Optional[int] = None,
    sample_size: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    state = JobState(
        job_id="dry-run",
        shop=driver.shop,
        kind=OperationKind(operation),
        resource_types=[resource_type],
        find_tag=(find_tag or "").strip(),
        replace_tag=(replace_tag or "").strip(),
    )
    max_polls = int(max_polls or settings.PREVIEW_MAX_POLLS)
    sample_size = int(sample_size or settings.PREVIEW_SAMPLE_SIZE)

    op_id = driver.run_bulk_query(build_query(state))
    logger.info("bulk.dry_run.start shop=%s kind=%s type=%s op=%s", driver.shop, operation, resource_type, op_id)

    polls = 0
    while True:
        poll = driver.poll(op_id)
        polls += 1
        if poll.is_failed:
            raise BulkOperationFailedError(op_id, poll.status, poll.error_code)
        if poll.is_completed:
            break
        if polls >= max_polls:
            raise BulkPollTimeoutError(f"Bulk query {op_id} still {poll.status} after {polls} polls")
        sleep(settings.BULK_POLL_DELAY_SEC)

    if not poll.has_results:
        return {"count": 0, "preview": []}

    plan = plan_changes(state, driver.download_rows(poll.url))
    logger.info("bulk.dry_run.done shop=%s op=%s polls=%s scanned=%s changed=%s",
        driver.shop, op_id, polls, plan.scanned, plan.count)
    return {"count": plan.count, "preview": plan.preview[:sample_size]}
