from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Boolean, Integer, DateTime, Index, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.clock import now_utc
from app.utils.ids import new_id


"""
  tagging_rules 表（webhook 打标签）
  - resource_type: orders / customers
  - conditions: [{field, operator, value}]，按 condition_logic 组合（AND / OR）
  - tags: 命中时要加的标签，未命中时这些标签会被移除（除非别的规则命中要加）
"""
class TaggingRule(Base):

    __tablename__ = "tagging_rules"

    id:   Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)       # 大的先评估
    condition_logic: Mapped[str] = mapped_column(String(3), nullable=False, default="AND")
    conditions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    tags:       Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now(), onupdate=now_utc)

    __table_args__ = (
        CheckConstraint("condition_logic IN ('AND','OR')", name="condition_logic"),
        Index("ix_tagging_rules_shop_type_enabled", "shop", "resource_type", "is_enabled"),
    )


"""
  metafield_rules 表（webhook 自动写 metafield）
  - 同一店铺 + 资源类型 + namespace + key 只允许一条规则
"""
class MetafieldRule(Base):

    __tablename__ = "metafield_rules"

    id:   Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    resource_type: Mapped[str] = mapped_column(String(16), nullable=False)            # products / customers
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    condition_logic: Mapped[str] = mapped_column(String(3), nullable=False, default="AND")
    conditions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # definition：要写入的 metafield
    namespace:  Mapped[str] = mapped_column(String(64), nullable=False)
    key:        Mapped[str] = mapped_column(String(64), nullable=False)
    value:      Mapped[str] = mapped_column(String(2000), nullable=False)
    value_type: Mapped[str] = mapped_column(String(64), nullable=False, default="single_line_text_field")

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now(), onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("shop", "resource_type", "namespace", "key", name="uq_metafield_rules_shop_type_ns_key"),
        CheckConstraint("condition_logic IN ('AND','OR')", name="condition_logic"),
        Index("ix_metafield_rules_shop_type_enabled", "shop", "resource_type", "is_enabled"),
    )

    @property
    def definition(self) -> dict:
        return {
            "namespace": self.namespace,
            "key": self.key,
            "value": self.value,
            "valueType": self.value_type,
        }
