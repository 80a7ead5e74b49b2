# tagging_rules / metafield_rules 表读写

from __future__ import annotations

from typing import List, Optional, Type, TypeVar, Union

from sqlalchemy import select, delete as sa_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.model.rules import MetafieldRule, TaggingRule


RuleT = TypeVar("RuleT", TaggingRule, MetafieldRule)
AnyRule = Union[TaggingRule, MetafieldRule]


# ---------- Query ----------
def get(db: Session, model: Type[RuleT], shop: str, rule_id: str) -> Optional[RuleT]:
    stmt = select(model).where(model.shop == shop, model.id == rule_id)
    return db.scalars(stmt).first()


def list_rules(db: Session, model: Type[RuleT], shop: str, resource_type: Optional[str] = None) -> List[RuleT]:
    stmt = select(model).where(model.shop == shop)
    if resource_type:
        stmt = stmt.where(model.resource_type == resource_type)
    return list(db.scalars(stmt.order_by(model.priority.desc(), model.created_at.asc())))


def list_enabled(db: Session, model: Type[RuleT], shop: str, resource_type: str) -> List[RuleT]:
    """启用的规则，priority 大的在前"""
    stmt = (
        select(model)
        .where(model.shop == shop, model.resource_type == resource_type, model.is_enabled.is_(True))
        .order_by(model.priority.desc(), model.created_at.asc(), model.id.asc())
    )
    return list(db.scalars(stmt))


def find_metafield_duplicate(
    db: Session,
    shop: str,
    resource_type: str,
    namespace: str,
    key: str,
    *,
    exclude_id: Optional[str] = None,
) -> Optional[MetafieldRule]:
    stmt = select(MetafieldRule).where(
        MetafieldRule.shop == shop,
        MetafieldRule.resource_type == resource_type,
        MetafieldRule.namespace == namespace,
        MetafieldRule.key == key,
    )
    if exclude_id:
        stmt = stmt.where(MetafieldRule.id != exclude_id)
    return db.scalars(stmt).first()


# ---------- Mutations ----------
def add(db: Session, row: AnyRule) -> AnyRule:
    """插入；唯一约束冲突时回滚并把 IntegrityError 抛给 service 层翻译"""
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(row)
    return row


def save(db: Session, row: AnyRule) -> AnyRule:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(row)
    return row


def delete(db: Session, model: Type[RuleT], shop: str, rule_id: str) -> bool:
    res = db.execute(sa_delete(model).where(model.shop == shop, model.id == rule_id))
    db.commit()
    return bool(res.rowcount)
