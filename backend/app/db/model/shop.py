from __future__ import annotations
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.clock import now_utc


# shop_installations 表：每个安装店铺的离线 access token（OAuth 流程在外部完成，这里只读）
class ShopInstallation(Base):

    __tablename__ = "shop_installations"

    shop: Mapped[str] = mapped_column(String(255), primary_key=True)
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    scope:  Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now())
    updated_at: Mapped[object] = mapped_column(DateTime, nullable=False, default=now_utc, server_default=func.now(), onupdate=now_utc)
