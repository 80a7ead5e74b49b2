from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.model.shop import ShopInstallation


def get_access_token(db: Session, shop: str) -> Optional[str]:
    stmt = select(ShopInstallation.access_token).where(
        ShopInstallation.shop == shop, ShopInstallation.is_active.is_(True)
    )
    return db.scalar(stmt)
