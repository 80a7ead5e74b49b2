# 破坏性 bulk mutation 提交前的标签快照（revert 用）

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.orm import Session

from app.repository import backup_repo


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BackupItem:
    resource_id: str
    original_tags: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"resourceId": self.resource_id, "originalTags": list(self.original_tags)}

    @classmethod
    def from_dict(cls, data: dict) -> "BackupItem":
        return cls(resource_id=str(data["resourceId"]), original_tags=list(data.get("originalTags") or []))


@dataclass(slots=True)
class BackupSet:
    resource_type: str
    items: List[BackupItem]


def save_backup(db: Session, *, shop: str, job_id: str, resource_type: str, items: List[BackupItem]) -> int:
    """只保存真正会变化的行；空列表不落库。不 commit。"""
    if not items:
        return 0
    backup_repo.save(
        db, shop=shop, job_id=job_id, resource_type=resource_type,
        items=[i.to_dict() for i in items],
    )
    logger.info("backup.saved shop=%s job_id=%s type=%s items=%s", shop, job_id, resource_type, len(items))
    return len(items)


def load_backups(db: Session, shop: str, job_id: str) -> List[BackupSet]:
    return [
        BackupSet(resource_type=row.resource_type, items=[BackupItem.from_dict(i) for i in (row.items or [])])
        for row in backup_repo.list_for_job(db, shop, job_id)
    ]
