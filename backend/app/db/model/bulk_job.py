from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Text, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.clock import now_utc
from app.utils.ids import new_id


"""
  bulk_jobs 表：每条 job lineage 一行（jobId 唯一）
  - state: 完整 JobState payload（崩溃后只靠它就能续跑）
  - seq:   每推进一步 +1；消息里的 seq 落后于行上的 seq 说明是重复/过期投递，直接丢弃
  - current_operation_id: 正在等的 Shopify BulkOperation GID（bulk_operations/finish webhook 反查用）
"""
class BulkJob(Base):

    __tablename__ = "bulk_jobs"

    id:     Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    shop:   Mapped[str] = mapped_column(String(255), nullable=False)
    kind:   Mapped[str] = mapped_column(String(16), nullable=False)               # replace/add/remove/cleanup/revert
    queue:  Mapped[str] = mapped_column(String(32), nullable=False, default="bulk_operations")

    step:   Mapped[str] = mapped_column(String(32), nullable=False, default="init")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")   # running/succeeded/failed
    seq:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state:  Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    current_operation_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now(), onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("job_id", name="uq_bulk_jobs_job_id"),
        Index("ix_bulk_jobs_operation", "current_operation_id"),
        Index("ix_bulk_jobs_shop_status", "shop", "status"),
    )
