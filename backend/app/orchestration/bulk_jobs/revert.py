"""
回滚一个 bulk 任务：读取它的备份，按原始标签重新提交 bulk mutation。
不单独写轮询逻辑：新 lineage（revert-{jobId}）直接从 polling_mutation 开始，复用状态机。
一个任务有多类资源的备份时（cleanup），后续类型由状态机的 init(revert) 依次提交。
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from app.orchestration.bulk_jobs.state import JobState, OperationKind, Step, queue_for
from app.repository import bulk_job_repo
from app.services import backup_service
from app.orchestration.bulk_jobs.runner import record_job_activity


logger = logging.getLogger(__name__)

REVERT_START_DELAY_SEC = 5


class BackupNotFoundError(LookupError):
    pass


def revert_job(shop: str, job_id: str, *, container=None, inline: Optional[bool] = None) -> Dict[str, Any]:
    from app.orchestration.bulk_jobs import tasks

    if container is None:
        from app.core.container import get_container
        container = get_container()

    revert_id = f"revert-{job_id}"
    with container.session_factory() as db:
        sets = [s for s in backup_service.load_backups(db, shop, job_id) if s.items]
        if not sets:
            raise BackupNotFoundError("Backup not found for this job.")

        existing = bulk_job_repo.get(db, revert_id)
        if existing is not None and existing.status == "running":
            return {"success": True, "jobId": revert_id, "message": "Revert already in progress"}

        first = sets[0]
        logger.info("bulk_job.revert shop=%s job_id=%s types=%s items=%s",
            shop, job_id, [s.resource_type for s in sets], sum(len(s.items) for s in sets))

        changes = [{"id": i.resource_id, "tags": list(i.original_tags)} for i in first.items]
        driver = container.driver_for(shop)
        op_id = driver.submit_tag_mutation(first.resource_type, changes)

        state = JobState(
            job_id=revert_id,
            shop=shop,
            kind=OperationKind.REVERT,
            step=Step.POLLING_MUTATION,
            resource_types=[s.resource_type for s in sets],
            mutation_op_id=op_id,
            count=len(changes),
            source_job_id=job_id,
        )
        payload = state.to_payload()

        # 重复回滚同一个 job：覆盖上一次已结束的 lineage
        if existing is not None:
            bulk_job_repo.save_state(db, existing, step=state.step.value, state=payload, operation_id=op_id)
            existing.seq = state.seq
        else:
            bulk_job_repo.create(
                db, job_id=revert_id, shop=shop, kind=state.kind.value, queue=queue_for(state.kind),
                step=state.step.value, state=payload, seq=state.seq, operation_id=op_id,
            )
        record_job_activity(
            db, state, status="Pending",
            detail=f"Started revert for job {job_id}. Operation: {op_id}",
            commit=False,
        )
        db.commit()

    if inline or (inline is None and tasks._inline_tasks_enabled()):
        tasks.run_job_inline(payload, container=container)
    else:
        tasks.enqueue(payload, REVERT_START_DELAY_SEC)
    return {"success": True, "jobId": revert_id, "operationId": op_id, "message": "Revert started"}
