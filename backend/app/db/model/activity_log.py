from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.clock import now_utc
from app.utils.ids import new_id


ACTIVITY_STATUSES = ("Pending", "Success", "Failed", "Partial")


"""
  activity_logs 表：面向商家的操作记录（一条 job lineage 一条记录）
  - (shop, job_id) 唯一：多步 bulk 任务反复 upsert 同一条
  - 明细写在 activity_log_details（只追加），并发追加互不覆盖
  - job_id 为空的记录（webhook 打标签等）每次都是新行
"""
class ActivityLog(Base):

    __tablename__ = "activity_logs"

    id:   Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    job_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id:   Mapped[str] = mapped_column(String(255), nullable=False)
    action:   Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="System")
    status:   Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")
    detail:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)          # 最新一条明细（列表页直接展示）

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())

    details: Mapped[list["ActivityLogDetail"]] = relationship(
        back_populates="log",
        order_by="ActivityLogDetail.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("shop", "job_id", name="uq_activity_logs_shop_job_id"),
        Index("ix_activity_logs_shop_created", "shop", "created_at"),
        Index("ix_activity_logs_shop_category", "shop", "category"),
    )

    def to_dict(self, *, with_details: bool = False) -> dict:
        out = {
            "id": self.id,
            "shop": self.shop,
            "jobId": self.job_id,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "action": self.action,
            "category": self.category,
            "status": self.status,
            "detail": self.detail,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if with_details:
            out["details"] = [
                {"message": d.message, "status": d.status, "timestamp": d.created_at.isoformat()}
                for d in self.details
            ]
        return out


class ActivityLogDetail(Base):

    __tablename__ = "activity_log_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    log_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("activity_logs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status:  Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())

    log: Mapped[ActivityLog] = relationship(back_populates="details")
