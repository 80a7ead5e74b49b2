# automation_logs 表读写（只追加）

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.model.automation_log import AutomationLog


def add_many(db: Session, rows: List[AutomationLog]) -> None:
    db.add_all(rows)
    db.commit()


def find_by_shop(db: Session, shop: str, *, limit: int = 100, log_type: Optional[str] = None) -> List[AutomationLog]:
    stmt = select(AutomationLog).where(AutomationLog.shop == shop)
    if log_type:
        stmt = stmt.where(AutomationLog.log_type == log_type)
    stmt = stmt.order_by(AutomationLog.created_at.desc(), AutomationLog.id.desc()).limit(max(1, limit))
    return list(db.scalars(stmt))


def find_by_recipe(db: Session, shop: str, recipe_id: str, *, limit: int = 50) -> List[AutomationLog]:
    stmt = (
        select(AutomationLog)
        .where(AutomationLog.shop == shop, AutomationLog.recipe_id == recipe_id)
        .order_by(AutomationLog.created_at.desc(), AutomationLog.id.desc())
        .limit(max(1, limit))
    )
    return list(db.scalars(stmt))


def purge_older_than(db: Session, cutoff: datetime) -> int:
    res = db.execute(delete(AutomationLog).where(AutomationLog.created_at < cutoff))
    return int(res.rowcount or 0)


def find_by_delivery(db: Session, shop: str, delivery_id: str, *, log_type: Optional[str] = None) -> List[AutomationLog]:
    stmt = select(AutomationLog).where(AutomationLog.shop == shop, AutomationLog.delivery_id == delivery_id)
    if log_type:
        stmt = stmt.where(AutomationLog.log_type == log_type)
    return list(db.scalars(stmt.order_by(AutomationLog.id)))
