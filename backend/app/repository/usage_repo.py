# usage 表：按月原子累计

from __future__ import annotations

from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.model.usage import Usage
from app.db.upsert import dialect_insert
from app.utils.clock import now_utc
from app.utils.ids import new_id


def get_count(db: Session, shop: str, month: str) -> int:
    stmt = select(Usage.operation_count).where(Usage.shop == shop, Usage.month == month)
    return int(db.scalar(stmt) or 0)


def increment(db: Session, shop: str, month: str, amount: int) -> None:
    """
    INSERT ... ON CONFLICT DO UPDATE SET operation_count = operation_count + :amount
    单条语句完成，并发完成的 job 不会丢更新。不 commit。
    """
    now = now_utc()
    ins = dialect_insert(db, Usage).values(
        id=new_id(), shop=shop, month=month, operation_count=amount, last_operation=now,
    )
    db.execute(ins.on_conflict_do_update(
        index_elements=["shop", "month"],
        set_={
            "operation_count": Usage.operation_count + ins.excluded.operation_count,
            "last_operation": ins.excluded.last_operation,
        },
    ))


def counts_for_months(db: Session, shop: str, months: List[str]) -> Dict[str, int]:
    if not months:
        return {}
    stmt = select(Usage.month, Usage.operation_count).where(Usage.shop == shop, Usage.month.in_(months))
    return {m: int(c) for m, c in db.execute(stmt)}
