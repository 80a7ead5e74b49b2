"""
bulk 标签任务的查询构造 + 行级标签变换（纯函数）。
变换后标签集合没变化的行直接跳过：不生成 mutation，也不进备份。
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from app.integrations.shopify.graphql_queries import BULK_RESOURCE_TAGS, RESOURCE_LABEL_FIELD, escape_tag_for_query
from app.integrations.shopify.payload_utils import normalize_tags
from app.orchestration.bulk_jobs.state import JobState, OperationKind
from app.services.backup_service import BackupItem


def search_filter(state: JobState) -> str:
    """Shopify 搜索语法：tag:X / NOT tag:Y / tag:A OR tag:B"""
    kind = state.kind
    if kind == OperationKind.CLEANUP:
        return " OR ".join(f"tag:{escape_tag_for_query(t)}" for t in state.tags_to_remove)
    if kind == OperationKind.ADD and not state.find_tag:
        return f"NOT tag:{escape_tag_for_query(state.replace_tag)}"
    if kind in (OperationKind.REPLACE, OperationKind.REMOVE, OperationKind.ADD):
        return f"tag:{escape_tag_for_query(state.find_tag)}"
    raise ValueError(f"no bulk query for operation kind: {kind.value}")


def build_query(state: JobState) -> str:
    resource = state.resource_type
    return BULK_RESOURCE_TAGS % {
        "resource": resource,
        "filter": json.dumps(search_filter(state)),
        "label": RESOURCE_LABEL_FIELD.get(resource, "id"),
    }


def transform_tags(state: JobState, tags: List[str]) -> List[str]:
    find, repl = state.find_tag, state.replace_tag
    kind = state.kind

    if kind == OperationKind.REPLACE:
        if find not in tags or find == repl:
            return list(tags)
        out = [t for t in tags if t != find]
        if repl and repl not in out:
            out.append(repl)
        return out

    if kind == OperationKind.REMOVE:
        return [t for t in tags if t != find]

    if kind == OperationKind.ADD:
        if find and find not in tags:
            return list(tags)
        out = list(tags)
        if repl and repl not in out:
            out.append(repl)
        return out

    if kind == OperationKind.CLEANUP:
        drop = set(state.tags_to_remove)
        return [t for t in tags if t not in drop]

    return list(tags)


@dataclass(slots=True)
class ChangePlan:
    changes: List[Dict[str, Any]] = field(default_factory=list)     # [{"id": gid, "tags": [...]}]
    backups: List[BackupItem] = field(default_factory=list)
    preview: List[Dict[str, Any]] = field(default_factory=list)
    scanned: int = 0

    @property
    def count(self) -> int:
        return len(self.changes)


def plan_changes(state: JobState, rows: Iterable[Dict[str, Any]]) -> ChangePlan:
    label_field = RESOURCE_LABEL_FIELD.get(state.resource_type, "id")
    plan = ChangePlan()
    for row in rows:
        gid = row.get("id")
        if not gid:
            continue
        plan.scanned += 1
        before = normalize_tags(row.get("tags"))
        after = transform_tags(state, before)
        # 只比较集合：顺序变化不算修改
        if set(after) == set(before):
            continue
        plan.changes.append({"id": gid, "tags": after})
        plan.backups.append(BackupItem(resource_id=str(gid), original_tags=before))
        plan.preview.append({
            "id": gid,
            "title": row.get(label_field) or "",
            "currentTags": before,
            "newTags": after,
        })
    return plan
