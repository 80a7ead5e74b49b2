# job_metrics 表：按 (shop, queue, day) 聚合

from __future__ import annotations

from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.model.job_metric import JobMetric
from app.db.upsert import dialect_insert
from app.utils.clock import now_utc
from app.utils.ids import new_id


def record(db: Session, *, shop: str, queue: str, day: date, success: bool, duration_ms: int) -> None:
    """
    计数、总耗时、平均耗时、成功率在同一条 UPSERT 里更新；
    SET 右侧引用的是更新前的列值，所以 avg / rate 用“旧值 + 本次”重新算。
    """
    ok = 1 if success else 0
    duration_ms = max(0, int(duration_ms))

    ins = dialect_insert(db, JobMetric).values(
        id=new_id(), shop=shop, queue=queue, day=day,
        total_jobs=1, completed_jobs=ok, failed_jobs=1 - ok,
        total_duration_ms=duration_ms, avg_duration_ms=float(duration_ms),
        success_rate=100.0 * ok, created_at=now_utc(),
    )
    new_total = JobMetric.total_jobs + 1
    db.execute(ins.on_conflict_do_update(
        index_elements=["shop", "queue", "day"],
        set_={
            "total_jobs": new_total,
            "completed_jobs": JobMetric.completed_jobs + ok,
            "failed_jobs": JobMetric.failed_jobs + (1 - ok),
            "total_duration_ms": JobMetric.total_duration_ms + duration_ms,
            "avg_duration_ms": (JobMetric.total_duration_ms + duration_ms) * 1.0 / new_total,
            "success_rate": (JobMetric.completed_jobs + ok) * 100.0 / new_total,
        },
    ))


def purge_older_than(db: Session, cutoff_day: date) -> int:
    res = db.execute(delete(JobMetric).where(JobMetric.day < cutoff_day))
    return int(res.rowcount or 0)
