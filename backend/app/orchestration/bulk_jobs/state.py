"""
Bulk 标签任务的状态机（纯函数，不做 I/O）：

    init -> polling_query -> processing -> polling_mutation -> done
                                                            |-> failed

  - 每一步的输入是 (JobState, 外部调用结果)，输出 Transition(下一状态, 是否终态, 延迟, 副作用)
  - 副作用只是描述（写操作记录 / 记用量），由 runner 在同一事务里落库
  - 多资源类型（cleanup: products -> customers）在一个 lineage 里串行：当前类型结束后回到 init
  - 远端 FAILED/CANCELED/EXPIRED 直接抛 BulkOperationFailedError，不再轮询
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from app.core.config import settings
from app.integrations.shopify.errors import BulkOperationFailedError


class Step(str, Enum):
    INIT = "init"
    POLLING_QUERY = "polling_query"
    PROCESSING = "processing"
    POLLING_MUTATION = "polling_mutation"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STEPS = {Step.DONE, Step.FAILED}


class OperationKind(str, Enum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"
    CLEANUP = "cleanup"
    REVERT = "revert"


# 操作记录里的动作名 / 资源类型（同一个 lineage 只有一条记录）
ACTIVITY_ACTION = {
    OperationKind.REPLACE: "Bulk Operation",
    OperationKind.ADD: "Bulk Operation",
    OperationKind.REMOVE: "Bulk Operation",
    OperationKind.CLEANUP: "Tag Cleanup",
    OperationKind.REVERT: "Revert",
}


def queue_for(kind: OperationKind) -> str:
    return "cleaner" if kind == OperationKind.CLEANUP else "bulk_operations"


@dataclass(slots=True)
class JobState:
    """
    任务 payload：崩溃后只靠它就能从任意一步续跑。
    count 是当前资源类型这一轮要改的条数；total_changed 是整个 lineage 的累计。
    """
    job_id: str
    shop: str
    kind: OperationKind
    step: Step = Step.INIT
    resource_types: List[str] = field(default_factory=lambda: ["products"])
    resource_index: int = 0
    find_tag: str = ""
    replace_tag: str = ""
    tags_to_remove: List[str] = field(default_factory=list)
    query_op_id: Optional[str] = None
    result_url: Optional[str] = None
    mutation_op_id: Optional[str] = None
    count: int = 0
    total_changed: int = 0
    failed_rows: int = 0                   # 结果文件里带 userErrors 的行（整个 lineage 累计）
    source_job_id: Optional[str] = None   # revert: 被回滚的原 jobId
    seq: int = 0
    error: Optional[str] = None

    @property
    def resource_type(self) -> str:
        return self.resource_types[self.resource_index]

    @property
    def has_next_resource(self) -> bool:
        return self.resource_index + 1 < len(self.resource_types)

    @property
    def activity_action(self) -> str:
        return ACTIVITY_ACTION[self.kind]

    @property
    def activity_resource_type(self) -> str:
        return "Mixed" if len(self.resource_types) > 1 else self.resource_types[0]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "shop": self.shop,
            "kind": self.kind.value,
            "step": self.step.value,
            "resourceTypes": list(self.resource_types),
            "resourceIndex": self.resource_index,
            "findTag": self.find_tag,
            "replaceTag": self.replace_tag,
            "tagsToRemove": list(self.tags_to_remove),
            "queryOpId": self.query_op_id,
            "resultUrl": self.result_url,
            "mutationOpId": self.mutation_op_id,
            "count": self.count,
            "totalChanged": self.total_changed,
            "failedRows": self.failed_rows,
            "sourceJobId": self.source_job_id,
            "seq": self.seq,
            "error": self.error,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "JobState":
        types = data.get("resourceTypes") or [data.get("resourceType") or "products"]
        return cls(
            job_id=str(data["jobId"]),
            shop=str(data["shop"]),
            kind=OperationKind(data.get("kind") or "replace"),
            step=Step(data.get("step") or "init"),
            resource_types=[str(t) for t in types],
            resource_index=int(data.get("resourceIndex") or 0),
            find_tag=str(data.get("findTag") or ""),
            replace_tag=str(data.get("replaceTag") or ""),
            tags_to_remove=[str(t) for t in (data.get("tagsToRemove") or [])],
            query_op_id=data.get("queryOpId"),
            result_url=data.get("resultUrl"),
            mutation_op_id=data.get("mutationOpId"),
            count=int(data.get("count") or 0),
            total_changed=int(data.get("totalChanged") or 0),
            failed_rows=int(data.get("failedRows") or 0),
            source_job_id=data.get("sourceJobId"),
            seq=int(data.get("seq") or 0),
            error=data.get("error"),
        )


# ---------------- 副作用描述 ----------------
@dataclass(frozen=True, slots=True)
class LogActivity:
    status: str
    detail: str


@dataclass(frozen=True, slots=True)
class RecordUsage:
    count: int


Effect = Union[LogActivity, RecordUsage]


@dataclass(slots=True)
class Transition:
    next_state: JobState
    terminal: bool = False
    delay: int = 0
    effects: List[Effect] = field(default_factory=list)


def _poll_delay() -> int:
    return int(settings.BULK_POLL_DELAY_SEC)


def _stay(state: JobState) -> Transition:
    # 远端还在跑：原样重投，固定间隔
    return Transition(next_state=state, delay=_poll_delay())


def _raise_if_failed(poll, operation_id: Optional[str]) -> None:
    if poll.is_failed:
        raise BulkOperationFailedError(operation_id, poll.status, poll.error_code)


def final_status(state: JobState) -> str:
    """整条 lineage 的结果：有失败行时记 Partial；一行都没改成功记 Failed"""
    if state.failed_rows <= 0:
        return "Success"
    return "Partial" if state.total_changed > 0 else "Failed"


def _advance_resource(state: JobState, effects: List[Effect], final_detail: str) -> Transition:
    """当前资源类型结束：还有下一类就回 init，否则整个 lineage 结束"""
    if state.has_next_resource:
        nxt = replace(
            state,
            step=Step.INIT,
            resource_index=state.resource_index + 1,
            query_op_id=None, result_url=None, mutation_op_id=None, count=0,
        )
        return Transition(next_state=nxt, delay=0, effects=effects)

    done = replace(state, step=Step.DONE, query_op_id=None, result_url=None, mutation_op_id=None)
    return Transition(
        next_state=done, terminal=True,
        effects=effects + [LogActivity(final_status(state), final_detail)],
    )


def _cleanup_summary(state: JobState) -> str:
    tags = ", ".join(state.tags_to_remove)
    summary = f"Removed tags [{tags}] from {state.total_changed} items across {', '.join(state.resource_types)}."
    if state.failed_rows:
        summary += f" {state.failed_rows} items failed."
    return summary


# ---------------- 各步转移 ----------------
def transition_init(state: JobState, query_op_id: str) -> Transition:
    nxt = replace(state, step=Step.POLLING_QUERY, query_op_id=query_op_id, result_url=None, count=0)
    detail = f"Started bulk {state.kind.value} on {state.resource_type}. Operation: {query_op_id}"
    return Transition(next_state=nxt, delay=_poll_delay(), effects=[LogActivity("Pending", detail)])


def transition_polling_query(state: JobState, poll) -> Transition:
    if poll.is_running:
        return _stay(state)
    _raise_if_failed(poll, state.query_op_id)

    if poll.has_results:
        nxt = replace(state, step=Step.PROCESSING, result_url=poll.url)
        return Transition(next_state=nxt, delay=0)

    # COMPLETED 但没有 url / objectCount == 0：没有匹配项
    if state.kind == OperationKind.CLEANUP:
        detail = f"No {state.resource_type} found with tags [{', '.join(state.tags_to_remove)}]"
    elif state.find_tag:
        detail = f"No {state.resource_type} found with tag '{state.find_tag}'"
    else:
        detail = f"No {state.resource_type} found without tag '{state.replace_tag}'"
    return transition_no_changes(state, detail)


def transition_no_changes(state: JobState, detail: str) -> Transition:
    """当前资源类型没有需要改的行（查询无结果，或结果全是 no-op）"""
    if state.kind == OperationKind.CLEANUP:
        return _advance_resource(state, [], _cleanup_summary(state))
    if state.has_next_resource:
        return _advance_resource(state, [LogActivity("Pending", detail)], detail)
    return _advance_resource(state, [], detail)


def transition_mutation_submitted(state: JobState, mutation_op_id: str, count: int) -> Transition:
    nxt = replace(state, step=Step.POLLING_MUTATION, mutation_op_id=mutation_op_id, count=int(count))
    detail = f"Processing {count} {state.resource_type}. Operation: {mutation_op_id}"
    return Transition(next_state=nxt, delay=_poll_delay(), effects=[LogActivity("Pending", detail)])


def transition_polling_mutation(state: JobState, poll, report=None) -> Transition:
    """
    report：结果文件的逐行统计（MutationReport）；带 userErrors 的行不计入用量，
    lineage 结束时状态记 Partial / Failed
    """
    if poll.is_running:
        return _stay(state)
    _raise_if_failed(poll, state.mutation_op_id)

    if not poll.is_completed:
        # 未知状态按还在跑处理
        return _stay(state)

    failed = min(int(report.failed), state.count) if report is not None else 0
    ok = state.count - failed
    updated = replace(state, total_changed=state.total_changed + ok, failed_rows=state.failed_rows + failed)
    effects: List[Effect] = [RecordUsage(ok)]

    if state.kind == OperationKind.REVERT:
        detail = f"Revert completed: restored tags on {ok} {state.resource_type}."
    else:
        detail = f"Processed {ok} {state.resource_type}. Operation: {state.mutation_op_id}"
    if failed:
        detail += f" {failed} {state.resource_type} failed: {report.first_error}"

    if state.kind == OperationKind.CLEANUP:
        final = _cleanup_summary(updated)
    elif len(state.resource_types) > 1:
        final = f"{detail} Total items updated: {updated.total_changed}."
    else:
        final = detail

    if updated.has_next_resource:
        effects.append(LogActivity("Pending", detail))
    return _advance_resource(updated, effects, final)


def mark_failed(state: JobState, error: str) -> JobState:
    return replace(state, step=Step.FAILED, error=error)
