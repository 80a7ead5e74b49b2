from __future__ import annotations
from datetime import date
from sqlalchemy import String, Integer, Float, Date, DateTime, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.clock import now_utc
from app.utils.ids import new_id


"""
  job_metrics 表：按 (shop, queue, 日期) 聚合的任务指标
  - avg_duration_ms / success_rate 在同一条 UPDATE 里由计数列算出
  - 30 天后清理
"""
class JobMetric(Base):

    __tablename__ = "job_metrics"

    id:    Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop:  Mapped[str] = mapped_column(String(255), nullable=False)
    queue: Mapped[str] = mapped_column(String(32), nullable=False)
    day:   Mapped[date] = mapped_column(Date, nullable=False)

    total_jobs:     Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_jobs:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_duration_ms:   Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    success_rate:      Mapped[float] = mapped_column(Float, nullable=False, default=0.0)   # 0..100

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("shop", "queue", "day", name="uq_job_metrics_shop_queue_day"),
        Index("ix_job_metrics_day", "day"),
    )
