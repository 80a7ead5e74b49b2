# 本月用量 / 套餐 / 近几个月历史

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.deps import container, current_shop, plan_for
from app.core.config import settings
from app.core.container import AppContainer
from app.db.session import get_db
from app.services import usage_service


router = APIRouter(prefix="/usage", tags=["usage"])


@router.get("")
def get_usage(
    shop: str = Depends(current_shop),
    db: Session = Depends(get_db),
    c: AppContainer = Depends(container),
    months_back: int = Query(3, ge=1, le=12),
):
    plan = plan_for(c, shop)
    return {
        "plan": plan,
        "usage": usage_service.get_current_usage(db, shop),
        "limit": None if plan == usage_service.PLAN_PRO else settings.FREE_PLAN_MONTHLY_LIMIT,
        "history": usage_service.get_usage_history(db, shop, months_back),
    }
