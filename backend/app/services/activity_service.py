"""
面向商家的操作记录（activity_logs）。
同一个 jobId 的多步任务只有一条记录：状态随步骤变化，明细只追加。
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.orm import Session

from app.db.model.activity_log import ACTIVITY_STATUSES
from app.repository import activity_repo


logger = logging.getLogger(__name__)


class ActivityCategory(str, Enum):
    TAGS = "Tags"
    DATA_CLEANING = "Data Cleaning"
    BULK_OPERATIONS = "Bulk Operations"
    METAFIELDS = "Metafields"
    SYSTEM = "System"


DEFAULT_CATEGORY = ActivityCategory.SYSTEM

# 动作名 -> 分类（精确匹配，查不到归 System）
ACTION_TO_CATEGORY: Dict[str, ActivityCategory] = {
    "Smart Tag Applied": ActivityCategory.TAGS,
    "Tag Cleanup": ActivityCategory.DATA_CLEANING,
    "Bulk Tag Update": ActivityCategory.TAGS,
    "Auto-Tag": ActivityCategory.TAGS,
    "Add Tag": ActivityCategory.TAGS,
    "Remove Tag": ActivityCategory.TAGS,
    "Bulk Operation": ActivityCategory.BULK_OPERATIONS,
    "Bulk Update": ActivityCategory.BULK_OPERATIONS,
    "Revert": ActivityCategory.BULK_OPERATIONS,
    "Metafield Updated": ActivityCategory.METAFIELDS,
    "Metafield Created": ActivityCategory.METAFIELDS,
    "COGS Updated": ActivityCategory.METAFIELDS,
    "Updated Product Costs": ActivityCategory.METAFIELDS,
    "Auto-Metafield": ActivityCategory.METAFIELDS,
    "Created Metafield Rule": ActivityCategory.METAFIELDS,
    "Updated Metafield Rule": ActivityCategory.METAFIELDS,
    "Deleted Metafield Rule": ActivityCategory.METAFIELDS,
    "Enabled Metafield Rule": ActivityCategory.METAFIELDS,
    "Disabled Metafield Rule": ActivityCategory.METAFIELDS,
    "Created Tagging Rule": ActivityCategory.TAGS,
    "Updated Tagging Rule": ActivityCategory.TAGS,
    "Deleted Tagging Rule": ActivityCategory.TAGS,
    "Enabled Tagging Rule": ActivityCategory.TAGS,
    "Disabled Tagging Rule": ActivityCategory.TAGS,
    "Data Cleanup": ActivityCategory.DATA_CLEANING,
    "Webhook Received": ActivityCategory.SYSTEM,
    "Webhook Processing": ActivityCategory.SYSTEM,
    "Job Queued": ActivityCategory.SYSTEM,
    "Job Completed": ActivityCategory.SYSTEM,
}


def category_for_action(action: str) -> str:
    return ACTION_TO_CATEGORY.get(action, DEFAULT_CATEGORY).value


def record_activity(
    db: Session,
    *,
    shop: str,
    resource_type: str,
    resource_id: str,
    action: str,
    detail: str,
    status: str = "Pending",
    job_id: Optional[str] = None,
    commit: bool = True,
) -> str:
    """
    写一条操作记录；带 job_id 时 upsert 同一条并追加明细。
    commit=False 时由调用方（bulk 状态机）把它和状态推进放在同一个事务里提交。
    """
    if status not in ACTIVITY_STATUSES:
        raise ValueError(f"invalid activity status: {status}")

    log_id = activity_repo.upsert_with_detail(
        db,
        shop=shop,
        job_id=job_id,
        resource_type=resource_type,
        resource_id=str(resource_id),
        action=action,
        category=category_for_action(action),
        status=status,
        detail=detail,
    )
    if commit:
        db.commit()
    logger.info("activity.recorded shop=%s job_id=%s action=%s status=%s", shop, job_id, action, status)
    return log_id


def list_logs(
    db: Session,
    shop: str,
    *,
    category: Optional[str] = None,
    statuses: Optional[Sequence[str]] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    page_size: int = 20,
) -> Dict[str, Any]:
    if category == "All":
        category = None
    rows, total = activity_repo.list_logs(
        db, shop,
        category=category, statuses=statuses, search=search,
        date_from=date_from, date_to=date_to,
        page=page, page_size=page_size,
    )
    page_size = max(1, min(100, int(page_size)))
    return {
        "logs": [r.to_dict(with_details=True) for r in rows],
        "totalCount": total,
        "totalPages": (total + page_size - 1) // page_size,
        "currentPage": max(1, int(page)),
    }


def category_stats(db: Session, shop: str) -> Dict[str, int]:
    """每个分类的记录数（没有记录的分类补 0）"""
    counts = activity_repo.category_counts(db, shop)
    out = {c.value: 0 for c in ActivityCategory}
    out.update(counts)
    out["All"] = sum(counts.values())
    return out
