from __future__ import annotations
from sqlalchemy import String, DateTime, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.clock import now_utc
from app.utils.ids import new_id


"""
  backups 表：破坏性 bulk mutation 提交前的原始标签快照
  - items: [{"resourceId": gid, "originalTags": [...]}]，只包含真正会变化的行
  - 一个 job 的每种资源类型一行；30 天后由夜间 cron 清理
"""
class Backup(Base):

    __tablename__ = "backups"

    id:     Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop:   Mapped[str] = mapped_column(String(255), nullable=False)
    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    items:  Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("shop", "job_id", "resource_type", name="uq_backups_shop_job_type"),
        Index("ix_backups_created", "created_at"),
    )
