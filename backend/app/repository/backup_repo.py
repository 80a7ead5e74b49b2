# backups 表读写

from __future__ import annotations

from datetime import datetime
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.model.backup import Backup
from app.db.upsert import dialect_insert
from app.utils.clock import now_utc
from app.utils.ids import new_id


def save(db: Session, *, shop: str, job_id: str, resource_type: str, items: List[dict]) -> None:
    """
    同一 (shop, job, resourceType) 只保留一份快照：
    processing 步骤被重试时，第一次写入的才是“变更前”的原始状态，冲突直接忽略。
    """
    stmt = dialect_insert(db, Backup).values(
        id=new_id(), shop=shop, job_id=job_id, resource_type=resource_type,
        items=items, created_at=now_utc(),
    ).on_conflict_do_nothing(index_elements=["shop", "job_id", "resource_type"])
    db.execute(stmt)
    db.flush()


def list_for_job(db: Session, shop: str, job_id: str) -> List[Backup]:
    stmt = (
        select(Backup)
        .where(Backup.shop == shop, Backup.job_id == job_id)
        .order_by(Backup.created_at.asc(), Backup.id.asc())
    )
    return list(db.scalars(stmt))


def purge_older_than(db: Session, cutoff: datetime) -> int:
    res = db.execute(delete(Backup).where(Backup.created_at < cutoff))
    return int(res.rowcount or 0)
