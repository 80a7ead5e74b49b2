# 操作记录查询（分页 + 分类/状态/关键字/日期过滤）

from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.deps import current_shop
from app.db.session import get_db
from app.services import activity_service


router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("")
def list_activity(
    shop: str = Depends(current_shop),
    db: Session = Depends(get_db),
    category: Optional[str] = Query(None, description="Tags / Data Cleaning / Bulk Operations / Metafields / System / All"),
    status: Optional[List[str]] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    return activity_service.list_logs(
        db, shop,
        category=category, statuses=status, search=search,
        date_from=date_from, date_to=date_to,
        page=page, page_size=page_size,
    )


@router.get("/stats")
def activity_stats(shop: str = Depends(current_shop), db: Session = Depends(get_db)):
    return activity_service.category_stats(db, shop)
