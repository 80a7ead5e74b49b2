# bulk_jobs 表：每条 job lineage 一行，串行推进靠行锁 + seq

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.model.bulk_job import BulkJob
from app.utils.clock import now_utc


def get(db: Session, job_id: str) -> Optional[BulkJob]:
    return db.scalars(select(BulkJob).where(BulkJob.job_id == job_id)).first()


def lock(db: Session, job_id: str) -> Optional[BulkJob]:
    """
    SELECT ... FOR UPDATE：同一 jobId 同一时刻只有一个 worker 能推进。
    （SQLite 测试库没有行锁，语句里会省略 FOR UPDATE）
    会话 expire_on_commit=False：populate_existing 保证拿到的是库里最新的 seq / status
    """
    stmt = (
        select(BulkJob)
        .where(BulkJob.job_id == job_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def create(
    db: Session,
    *,
    job_id: str,
    shop: str,
    kind: str,
    queue: str,
    step: str,
    state: dict,
    seq: int = 0,
    operation_id: Optional[str] = None,
) -> BulkJob:
    """插入新 lineage；并发下已被别人插入时回读并加锁"""
    row = BulkJob(
        job_id=job_id, shop=shop, kind=kind, queue=queue,
        step=step, status="running", seq=seq, state=state,
        current_operation_id=operation_id,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = lock(db, job_id)
        if existing is None:
            raise
        return existing
    return row


def save_state(
    db: Session,
    row: BulkJob,
    *,
    step: str,
    state: dict,
    status: str = "running",
    operation_id: Optional[str] = None,
    error: Optional[str] = None,
) -> BulkJob:
    row.step = step
    row.state = state
    row.status = status
    row.seq = int(state.get("seq") or row.seq)
    row.current_operation_id = operation_id
    row.last_error = error
    row.updated_at = now_utc()
    db.flush()
    return row


def find_running_by_operation(db: Session, operation_id: str) -> Optional[BulkJob]:
    """bulk_operations/finish webhook：按 BulkOperation GID 找到正在等它的 lineage"""
    stmt = select(BulkJob).where(
        BulkJob.current_operation_id == operation_id,
        BulkJob.status == "running",
    )
    return db.scalars(stmt).first()
