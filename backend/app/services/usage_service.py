"""
按月用量 + 套餐配额：
  - Pro（订阅名含 "Pro" 且 ACTIVE）不限量
  - Free 每月 FREE_PLAN_MONTHLY_LIMIT 条（默认 500）
  - 计数只在 bulk mutation 批次成功后原子累加
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.repository import usage_repo
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)

PLAN_FREE = "Free"
PLAN_PRO = "Pro"


class QuotaExceededError(Exception):
    def __init__(self, check: "QuotaCheck"):
        self.check = check
        super().__init__(check.message or "Quota exceeded")


@dataclass(slots=True)
class QuotaCheck:
    allowed: bool
    current: int
    limit: Optional[int]
    plan: str
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "current": self.current,
            "limit": self.limit,
            "plan": self.plan,
            "message": self.message,
        }


def current_month(now: Optional[datetime] = None) -> str:
    now = now or now_utc()
    return f"{now.year:04d}-{now.month:02d}"


def _months_back(n: int, now: Optional[datetime] = None) -> List[str]:
    now = now or now_utc()
    year, month = now.year, now.month
    out = []
    for _ in range(max(0, n)):
        out.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return out


def get_plan_type(client) -> str:
    """读取 activeSubscriptions；任何异常都按 Free 处理"""
    try:
        subscriptions = client.active_subscriptions()
    except Exception as e:
        logger.warning("usage.plan_lookup_failed shop=%s err=%s", getattr(client, "shop", None), e)
        return PLAN_FREE

    for sub in subscriptions or []:
        if "Pro" in str(sub.get("name") or "") and sub.get("status") == "ACTIVE":
            return PLAN_PRO
    return PLAN_FREE


def get_current_usage(db: Session, shop: str) -> Dict[str, Any]:
    month = current_month()
    return {"count": usage_repo.get_count(db, shop, month), "month": month}


def check_quota(db: Session, shop: str, item_count: int, plan: str) -> QuotaCheck:
    current = usage_repo.get_count(db, shop, current_month())

    if plan == PLAN_PRO:
        return QuotaCheck(allowed=True, current=current, limit=None, plan=plan)

    limit = int(settings.FREE_PLAN_MONTHLY_LIMIT)
    would_exceed = current + max(0, int(item_count)) > limit
    message = None
    if would_exceed:
        message = (
            f"Quota exceeded. You have used {current}/{limit} items this month. "
            f"This operation would use {item_count} more items. Upgrade to Pro for unlimited operations."
        )
    return QuotaCheck(allowed=not would_exceed, current=current, limit=limit, plan=plan, message=message)


def ensure_quota(db: Session, shop: str, item_count: int, plan: str) -> QuotaCheck:
    check = check_quota(db, shop, item_count, plan)
    if not check.allowed:
        raise QuotaExceededError(check)
    return check


def record_operation(db: Session, shop: str, item_count: int, *, commit: bool = True) -> None:
    if item_count <= 0:
        return
    month = current_month()
    usage_repo.increment(db, shop, month, int(item_count))
    if commit:
        db.commit()
    logger.info("usage.recorded shop=%s month=%s count=%s", shop, month, item_count)


def get_usage_history(db: Session, shop: str, months_back: int = 3) -> List[Dict[str, Any]]:
    months = _months_back(months_back)
    counts = usage_repo.counts_for_months(db, shop, months)
    return [{"month": m, "count": counts.get(m, 0)} for m in months]
