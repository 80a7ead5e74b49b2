# recipes 表读写

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.db.model.recipe import Recipe
from app.utils.clock import now_utc


# ---------- Query ----------
def get(db: Session, shop: str, recipe_id: str) -> Optional[Recipe]:
    stmt = select(Recipe).where(Recipe.shop == shop, Recipe.id == recipe_id)
    return db.scalars(stmt).first()


def find_active_by_event(db: Session, shop: str, event: str) -> List[Recipe]:
    """某店铺某 topic 下所有启用的 recipe（创建时间顺序，保证执行顺序稳定）"""
    stmt = (
        select(Recipe)
        .where(Recipe.shop == shop, Recipe.enabled.is_(True), Recipe.trigger_event == event)
        .order_by(Recipe.created_at.asc(), Recipe.id.asc())
    )
    return list(db.scalars(stmt))


def find_by_shop_and_category(db: Session, shop: str, category: Optional[str] = None) -> List[Recipe]:
    stmt = select(Recipe).where(Recipe.shop == shop)
    if category:
        stmt = stmt.where(Recipe.category == category)
    return list(db.scalars(stmt.order_by(Recipe.created_at.desc())))


# ---------- Mutations ----------
def create(db: Session, shop: str, data: Dict[str, Any]) -> Recipe:
    trigger = data.get("trigger") or {}
    row = Recipe(
        shop=shop,
        title=data["title"],
        description=data.get("description"),
        category=data["category"],
        enabled=bool(data.get("enabled", False)),
        trigger_event=trigger["event"],
        trigger_resource=trigger.get("resource") or data["category"],
        conditions=list(data.get("conditions") or []),
        actions=list(data.get("actions") or []),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_fields(db: Session, shop: str, recipe_id: str, data: Dict[str, Any]) -> Optional[Recipe]:
    row = get(db, shop, recipe_id)
    if row is None:
        return None
    for field in ("title", "description", "category", "enabled", "conditions", "actions"):
        if field in data:
            setattr(row, field, data[field])
    trigger = data.get("trigger")
    if trigger:
        row.trigger_event = trigger.get("event", row.trigger_event)
        row.trigger_resource = trigger.get("resource", row.trigger_resource)
    db.commit()
    db.refresh(row)
    return row


def set_enabled(db: Session, shop: str, recipe_id: str, enabled: bool) -> bool:
    """单条 UPDATE 翻转开关；返回是否命中"""
    res = db.execute(
        update(Recipe)
        .where(Recipe.shop == shop, Recipe.id == recipe_id)
        .values(enabled=enabled, updated_at=now_utc())
    )
    db.commit()
    return bool(res.rowcount)


def increment_stats(db: Session, recipe_id: str, *, success: bool) -> None:
    """
    原子自增（col = col + 1），并发执行同一 recipe 不丢计数。
    executionCount 每次 +1；successCount / errorCount 二选一 +1。
    """
    values: Dict[str, Any] = {
        "execution_count": Recipe.execution_count + 1,
        "last_executed_at": now_utc(),
    }
    if success:
        values["success_count"] = Recipe.success_count + 1
    else:
        values["error_count"] = Recipe.error_count + 1

    db.execute(update(Recipe).where(Recipe.id == recipe_id).values(**values))
    db.commit()


def delete(db: Session, shop: str, recipe_id: str) -> bool:
    row = get(db, shop, recipe_id)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True
