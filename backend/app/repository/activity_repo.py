# activity_logs / activity_log_details 表读写

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from app.db.model.activity_log import ActivityLog, ActivityLogDetail
from app.db.upsert import dialect_insert
from app.utils.clock import now_utc
from app.utils.ids import new_id


def upsert_with_detail(
    db: Session,
    *,
    shop: str,
    job_id: Optional[str],
    resource_type: str,
    resource_id: str,
    action: str,
    category: str,
    status: str,
    detail: str,
) -> str:
    """
    upsert 头记录 + 追加一条明细（不 commit，由调用方决定事务边界）
      - job_id 为空：每次都是新记录
      - job_id 非空：INSERT ... ON CONFLICT (shop, job_id) DO UPDATE，只改 status / detail / updated_at，
        明细单独 INSERT，并发追加不会互相覆盖
    返回头记录 id
    """
    now = now_utc()

    if not job_id:
        log_id = new_id()
        db.add(ActivityLog(
            id=log_id, shop=shop, job_id=None,
            resource_type=resource_type, resource_id=resource_id,
            action=action, category=category, status=status, detail=detail,
            created_at=now, updated_at=now,
        ))
        db.flush()
    else:
        ins = dialect_insert(db, ActivityLog).values(
            id=new_id(), shop=shop, job_id=job_id,
            resource_type=resource_type, resource_id=resource_id,
            action=action, category=category, status=status, detail=detail,
            created_at=now, updated_at=now,
        )
        db.execute(ins.on_conflict_do_update(
            index_elements=["shop", "job_id"],
            set_={"status": status, "detail": detail, "updated_at": now},
        ))
        log_id = db.scalar(
            select(ActivityLog.id).where(ActivityLog.shop == shop, ActivityLog.job_id == job_id)
        )

    db.add(ActivityLogDetail(log_id=log_id, message=detail, status=status, created_at=now))
    db.flush()
    return log_id


def exists_for_job(db: Session, shop: str, job_id: str) -> bool:
    stmt = select(ActivityLog.id).where(ActivityLog.shop == shop, ActivityLog.job_id == job_id)
    return db.scalar(stmt) is not None


def list_logs(
    db: Session,
    shop: str,
    *,
    category: Optional[str] = None,
    statuses: Optional[Sequence[str]] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[ActivityLog], int]:
    conds = [ActivityLog.shop == shop]
    if category:
        conds.append(ActivityLog.category == category)
    if statuses:
        conds.append(ActivityLog.status.in_(list(statuses)))
    if search:
        like = f"%{search}%"
        conds.append(or_(
            ActivityLog.action.ilike(like),
            ActivityLog.resource_id.ilike(like),
            ActivityLog.detail.ilike(like),
        ))
    if date_from:
        conds.append(ActivityLog.created_at >= date_from)
    if date_to:
        conds.append(ActivityLog.created_at <= date_to)

    total = db.scalar(select(func.count()).select_from(ActivityLog).where(*conds)) or 0

    page = max(1, int(page))
    page_size = max(1, min(100, int(page_size)))
    stmt = (
        select(ActivityLog)
        .where(*conds)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(db.scalars(stmt)), int(total)


def category_counts(db: Session, shop: str) -> Dict[str, int]:
    stmt = (
        select(ActivityLog.category, func.count())
        .where(ActivityLog.shop == shop)
        .group_by(ActivityLog.category)
    )
    return {cat: int(n) for cat, n in db.execute(stmt)}


def purge_older_than(db: Session, cutoff: datetime) -> int:
    # 明细先删（SQLite 默认不执行 FK 级联）
    old_ids = select(ActivityLog.id).where(ActivityLog.updated_at < cutoff)
    db.execute(delete(ActivityLogDetail).where(ActivityLogDetail.log_id.in_(old_ids)))
    res = db.execute(delete(ActivityLog).where(ActivityLog.updated_at < cutoff))
    return int(res.rowcount or 0)
