from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.ids import new_id


# usage 表：按店铺 + 月份（YYYY-MM）累计 bulk 操作条数，只做原子自增
class Usage(Base):

    __tablename__ = "usage"

    id:    Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop:  Mapped[str] = mapped_column(String(255), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    operation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_operation:  Mapped[Optional[object]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("shop", "month", name="uq_usage_shop_month"),
    )
