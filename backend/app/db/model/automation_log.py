from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONType
from app.utils.clock import now_utc
from app.utils.ids import new_id


LOG_TYPES = ("recipe_execution", "webhook_received", "error", "system")
SEVERITIES = ("info", "warning", "error")
ACTION_RESULTS = ("success", "failure", "skipped")


"""
  automation_logs 表：recipe 执行/评估审计流水
  - recipe_title 冗余保存，recipe 删除后日志仍可读
  - 90 天过期，由夜间 cron 清理
"""
class AutomationLog(Base):

    __tablename__ = "automation_logs"

    id:   Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    log_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="info")

    recipe_id:    Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    recipe_title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    resource_type:  Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    resource_id:    Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    resource_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # action: {type, params, result, errorMessage}
    action:  Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    # "metadata" 是 DeclarativeBase 保留属性名，ORM 侧叫 extra
    extra:   Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # 同一次 webhook 投递（X-Shopify-Webhook-Id）：重试时据此跳过已处理的 recipe
    delivery_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())

    __table_args__ = (
        Index("ix_automation_logs_shop_created", "shop", "created_at"),
        Index("ix_automation_logs_shop_recipe", "shop", "recipe_id", "created_at"),
        Index("ix_automation_logs_created", "created_at"),
        Index("ix_automation_logs_shop_delivery", "shop", "delivery_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop": self.shop,
            "logType": self.log_type,
            "severity": self.severity,
            "recipeId": self.recipe_id,
            "recipeTitle": self.recipe_title,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "resourceTitle": self.resource_title,
            "action": self.action,
            "message": self.message,
            "metadata": self.extra,
            "duration": self.duration_ms,
            "deliveryId": self.delivery_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
