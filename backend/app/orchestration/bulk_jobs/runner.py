"""
bulk 状态机的执行层：一次只推进一步。

  1) 按 jobId 锁住 lineage 行（没有就用 payload 建一行，payload 自描述，可从任意一步续跑）
  2) 消息里的 seq 落后于行上的 seq：重复/过期投递，直接丢弃
  3) 做这一步的 I/O（提交查询 / 轮询 / 下载+备份+提交 mutation）
  4) 调纯函数拿到 Transition，把副作用（操作记录、用量）和新状态放在同一个事务里提交
  5) 返回 StepOutcome，由任务层决定是否延迟重投

异常：回滚后追加一条 Failed 操作记录再抛出，由 Celery 的重试策略决定是否重跑这一步；
远端 bulk 终态失败（BulkOperationFailedError）直接把 lineage 标为 failed。
"""
from __future__ import annotations

import logging, time
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.integrations.shopify.errors import BulkOperationFailedError
from app.orchestration.bulk_jobs.state import (
    JobState,
    LogActivity,
    OperationKind,
    RecordUsage,
    Step,
    Transition,
    mark_failed,
    queue_for,
    transition_init,
    transition_mutation_submitted,
    transition_no_changes,
    transition_polling_mutation,
    transition_polling_query,
)
from app.orchestration.bulk_jobs.transforms import build_query, plan_changes
from app.repository import bulk_job_repo
from app.services import activity_service, backup_service, usage_service


logger = logging.getLogger(__name__)


class StaleStepError(Exception):
    """锁释放期间 lineage 已被别的 worker 推进"""


@dataclass(slots=True)
class StepOutcome:
    payload: Optional[Dict[str, Any]]
    terminal: bool = False
    delay: int = 0
    dropped: bool = False


def _row_status(step: Step) -> str:
    if step == Step.DONE:
        return "succeeded"
    if step == Step.FAILED:
        return "failed"
    return "running"


def _waiting_operation(state: JobState) -> Optional[str]:
    # bulk_operations/finish webhook 用它反查 lineage
    if state.step == Step.POLLING_QUERY:
        return state.query_op_id
    if state.step == Step.POLLING_MUTATION:
        return state.mutation_op_id
    return None


def _lock_or_create(db: Session, state: JobState):
    row = bulk_job_repo.lock(db, state.job_id)
    if row is not None:
        return row
    return bulk_job_repo.create(
        db,
        job_id=state.job_id,
        shop=state.shop,
        kind=state.kind.value,
        queue=queue_for(state.kind),
        step=state.step.value,
        state=state.to_payload(),
        seq=state.seq,
        operation_id=_waiting_operation(state),
    )


def _relock(db: Session, state: JobState):
    row = bulk_job_repo.lock(db, state.job_id)
    if row is None or row.status != "running" or row.seq != state.seq:
        raise StaleStepError(state.job_id)
    return row


def record_job_activity(db: Session, state: JobState, *, status: str, detail: str, commit: bool) -> None:
    activity_service.record_activity(
        db,
        shop=state.shop,
        resource_type=state.activity_resource_type,
        resource_id="Bulk",
        action=state.activity_action,
        detail=detail,
        status=status,
        job_id=state.job_id,
        commit=commit,
    )


def _apply_effects(db: Session, state: JobState, transition: Transition) -> None:
    for effect in transition.effects:
        if isinstance(effect, LogActivity):
            record_job_activity(db, state, status=effect.status, detail=effect.detail, commit=False)
        elif isinstance(effect, RecordUsage):
            if effect.count > 0:
                usage_service.record_operation(db, state.shop, effect.count, commit=False)
        else:
            raise TypeError(f"unknown effect: {effect!r}")


# ---------------- 各步 I/O ----------------
def _step_init(db: Session, driver, state: JobState) -> Transition:
    if state.kind == OperationKind.REVERT:
        return _submit_revert(db, driver, state)
    op_id = driver.run_bulk_query(build_query(state))
    return transition_init(state, op_id)


def _step_polling_query(db: Session, driver, state: JobState) -> Transition:
    return transition_polling_query(state, driver.poll(state.query_op_id))


def _step_processing(db: Session, driver, state: JobState) -> Transition:
    plan = plan_changes(state, driver.download_rows(state.result_url))
    logger.info("bulk_job.processing job_id=%s type=%s scanned=%s changed=%s",
        state.job_id, state.resource_type, plan.scanned, plan.count)

    if not plan.changes:
        return transition_no_changes(
            state, f"No changes needed for {plan.scanned} {state.resource_type}"
        )

    # 备份先落库再提交 mutation；重试时 ON CONFLICT DO NOTHING，保留第一次的快照
    backup_service.save_backup(
        db, shop=state.shop, job_id=state.job_id,
        resource_type=state.resource_type, items=plan.backups,
    )
    db.commit()
    _relock(db, state)

    op_id = driver.submit_tag_mutation(state.resource_type, plan.changes)
    return transition_mutation_submitted(state, op_id, plan.count)


def _step_polling_mutation(db: Session, driver, state: JobState) -> Transition:
    poll = driver.poll(state.mutation_op_id)
    report = None
    if poll.is_completed and poll.url:
        # 结果文件逐行带 userErrors：统计失败行
        report = driver.read_mutation_report(poll.url)
    return transition_polling_mutation(state, poll, report)


def _submit_revert(db: Session, driver, state: JobState) -> Transition:
    """revert 的 init：直接用备份构造 mutation，跳过查询阶段"""
    sets = backup_service.load_backups(db, state.shop, state.source_job_id or "")
    backup = next((s for s in sets if s.resource_type == state.resource_type), None)
    if backup is None or not backup.items:
        return transition_no_changes(state, f"No backup items for {state.resource_type}")
    changes = [{"id": i.resource_id, "tags": list(i.original_tags)} for i in backup.items]
    op_id = driver.submit_tag_mutation(state.resource_type, changes)
    return transition_mutation_submitted(state, op_id, len(changes))


STEP_HANDLERS = {
    Step.INIT: _step_init,
    Step.POLLING_QUERY: _step_polling_query,
    Step.PROCESSING: _step_processing,
    Step.POLLING_MUTATION: _step_polling_mutation,
}


def run_step(payload: Dict[str, Any], *, container=None) -> StepOutcome:
    if container is None:
        from app.core.container import get_container
        container = get_container()

    state = JobState.from_payload(payload)
    start = time.perf_counter()
    db: Session = container.session_factory()
    try:
        row = _lock_or_create(db, state)
        if row.status != "running" or state.seq < row.seq or state.step in (Step.DONE, Step.FAILED):
            logger.info("bulk_job.drop_stale job_id=%s msg_seq=%s row_seq=%s row_status=%s",
                state.job_id, state.seq, row.seq, row.status)
            db.rollback()
            return StepOutcome(payload=None, terminal=True, dropped=True)

        handler = STEP_HANDLERS[state.step]
        try:
            driver = container.driver_for(state.shop)
            transition = handler(db, driver, state)
            row = _relock(db, state)
        except StaleStepError:
            db.rollback()
            logger.info("bulk_job.drop_stale job_id=%s step=%s (advanced concurrently)", state.job_id, state.step.value)
            return StepOutcome(payload=None, terminal=True, dropped=True)
        except BulkOperationFailedError as e:
            db.rollback()
            fail_lineage(db, state, str(e))
            raise
        except Exception as e:
            db.rollback()
            _record_step_error(db, state, e)
            raise

        nxt = replace(transition.next_state, seq=state.seq + 1)
        _apply_effects(db, nxt, transition)
        bulk_job_repo.save_state(
            db, row,
            step=nxt.step.value,
            state=nxt.to_payload(),
            status=_row_status(nxt.step),
            operation_id=_waiting_operation(nxt),
        )
        db.commit()

        logger.info("bulk_job.step job_id=%s kind=%s from=%s to=%s seq=%s delay=%s took_ms=%s",
            state.job_id, state.kind.value, state.step.value, nxt.step.value, nxt.seq,
            transition.delay, int((time.perf_counter() - start) * 1000))

        return StepOutcome(
            payload=None if transition.terminal else nxt.to_payload(),
            terminal=transition.terminal,
            delay=transition.delay,
        )
    finally:
        db.close()


def _record_step_error(db: Session, state: JobState, exc: Exception) -> None:
    """瞬时错误：lineage 保持 running（等待重试），只追加 Failed 明细"""
    logger.warning("bulk_job.step_error job_id=%s step=%s err=%s", state.job_id, state.step.value, exc)
    # 第一步就失败时，建行已随回滚丢失：重建，保证 lineage 可见
    row = _lock_or_create(db, state)
    row.last_error = str(exc)[:2000]
    record_job_activity(db, state, status="Failed", detail=f"Failed at {state.step.value}: {exc}", commit=False)
    db.commit()


def fail_lineage(db: Session, state: JobState, error: str) -> None:
    """终态失败：远端 bulk 失败，或重试次数用尽"""
    logger.error("bulk_job.failed job_id=%s step=%s err=%s", state.job_id, state.step.value, error)
    failed = mark_failed(state, error)
    row = _lock_or_create(db, state)
    bulk_job_repo.save_state(
        db, row,
        step=failed.step.value,
        state=failed.to_payload(),
        status="failed",
        error=error[:2000],
    )
    record_job_activity(db, state, status="Failed", detail=f"Failed: {error}", commit=False)
    db.commit()


def fail_lineage_by_payload(payload: Dict[str, Any], error: str, *, container=None) -> None:
    if container is None:
        from app.core.container import get_container
        container = get_container()
    state = JobState.from_payload(payload)
    with container.session_factory() as db:
        fail_lineage(db, state, error)
