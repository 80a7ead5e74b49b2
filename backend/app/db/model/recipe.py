from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Boolean, Integer, DateTime, Text, CheckConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.clock import now_utc
from app.utils.ids import new_id


RECIPE_CATEGORIES = ("customer", "order", "product", "inventory")


"""
  recipes 表：商家定义的 trigger + conditions + actions 自动化规则
  - conditions: [{field, operator, value, logicalOperator}]，logicalOperator 连接“下一条”
  - actions:    [{type, params}]
  - 统计列只用原子自增更新（见 recipe_repo.increment_stats）
"""
class Recipe(Base):

    __tablename__ = "recipes"

    id:    Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop:  Mapped[str] = mapped_column(String(255), nullable=False)              # 多租户键 xxx.myshopify.com
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    enabled:  Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    trigger_event:    Mapped[str] = mapped_column(String(64), nullable=False)    # orders/create
    trigger_resource: Mapped[str] = mapped_column(String(32), nullable=False)    # order / customer / product

    conditions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    actions:    Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    execution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count:     Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_executed_at: Mapped[Optional[object]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now(), onupdate=now_utc)

    __table_args__ = (
        CheckConstraint(
            "category IN ('customer','order','product','inventory')", name="category"
        ),
        Index("ix_recipes_shop_enabled_event", "shop", "enabled", "trigger_event"),
        Index("ix_recipes_shop_category", "shop", "category"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop": self.shop,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "enabled": self.enabled,
            "trigger": {"event": self.trigger_event, "resource": self.trigger_resource},
            "conditions": list(self.conditions or []),
            "actions": list(self.actions or []),
            "stats": {
                "executionCount": self.execution_count,
                "successCount": self.success_count,
                "errorCount": self.error_count,
                "lastExecutedAt": self.last_executed_at.isoformat() if self.last_executed_at else None,
            },
        }
