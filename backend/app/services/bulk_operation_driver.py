"""
Shopify Bulk Operation 的薄封装（给 bulk 状态机用）：
  - run_bulk_query / run_bulk_mutation 只负责提交，返回 operationId
  - poll 只查一次状态，不阻塞；轮询节奏由任务队列的延迟重投决定
  - COMPLETED 且 objectCount == 0 时没有 url，调用方据此区分“无结果”
"""
from __future__ import annotations

import json, logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from app.integrations.shopify.graphql_queries import BULK_TAG_MUTATIONS
from app.integrations.shopify.shopify_client import BULK_FAILED_STATUSES, BULK_RUNNING_STATUSES


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BulkPoll:
    status: str
    url: Optional[str] = None
    object_count: int = 0
    error_code: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status in BULK_RUNNING_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == "COMPLETED"

    @property
    def is_failed(self) -> bool:
        return self.status in BULK_FAILED_STATUSES

    @property
    def has_results(self) -> bool:
        return self.is_completed and bool(self.url) and self.object_count > 0


@dataclass(slots=True)
class MutationReport:
    MAX_MESSAGES = 3

    ok: int = 0
    failed: int = 0
    messages: List[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[str]:
        return self.messages[0] if self.messages else None


def _row_error_messages(row: Dict[str, Any]) -> List[str]:
    out = [str(e.get("message") if isinstance(e, dict) else e) for e in (row.get("errors") or []) if e]
    data = row.get("data")
    for payload in (data.values() if isinstance(data, dict) else []):
        if not isinstance(payload, dict):
            continue
        for e in payload.get("userErrors") or []:
            if not isinstance(e, dict):
                out.append(str(e))
                continue
            field_path = ".".join(str(f) for f in (e.get("field") or []))
            msg = str(e.get("message") or "")
            out.append(f"{field_path}: {msg}" if field_path else msg)
    return out


class BulkOperationDriver:

    def __init__(self, client):
        self._client = client

    @property
    def shop(self) -> str:
        return self._client.shop


    def run_bulk_query(self, query_doc: str) -> str:
        op = self._client.run_bulk_query(query_doc)
        return op["id"]


    def run_bulk_mutation(self, mutation: str, staged_file_key: str) -> str:
        op = self._client.run_bulk_mutation(mutation, staged_file_key)
        return op["id"]


    def poll(self, operation_id: str) -> BulkPoll:
        node = self._client.get_bulk_operation_by_id(operation_id) or {}
        if not node:
            # GID 查不到：按失败处理，避免永远轮询
            return BulkPoll(status="FAILED", error_code="NOT_FOUND")
        count = node.get("objectCount")
        try:
            count = int(count or 0)
        except (TypeError, ValueError):
            count = 0
        return BulkPoll(
            status=str(node.get("status") or "").upper(),
            url=node.get("url") or None,
            object_count=count,
            error_code=node.get("errorCode"),
        )


    def cancel(self, operation_id: str) -> Dict[str, Any]:
        return self._client.cancel_bulk_operation(operation_id)


    def stage_jsonl(self, lines: Iterable[Dict[str, Any]]) -> str:
        """两段式上传：拿 staged target -> multipart POST；返回 stagedUploadPath"""
        body = "\n".join(json.dumps(line, ensure_ascii=False) for line in lines).encode("utf-8")
        target = self._client.staged_upload_create()
        return self._client.upload_staged_file(target, body)


    def submit_tag_mutation(self, resource_type: str, changes: List[Dict[str, Any]]) -> str:
        """
        changes: [{"id": gid, "tags": [...]}] -> 每行一个 mutation variables，
        上传后提交 bulkOperationRunMutation，返回 operationId
        """
        if resource_type not in BULK_TAG_MUTATIONS:
            raise ValueError(f"unsupported resource type for bulk tag mutation: {resource_type}")
        mutation, var_name = BULK_TAG_MUTATIONS[resource_type]
        key = self.stage_jsonl({var_name: {"id": c["id"], "tags": list(c["tags"])}} for c in changes)
        op_id = self.run_bulk_mutation(mutation, key)
        logger.info("bulk.mutation.submitted shop=%s type=%s rows=%s op=%s",
            self.shop, resource_type, len(changes), op_id)
        return op_id


    def read_mutation_report(self, url: str) -> MutationReport:
        """
        bulk mutation 的结果文件：每行 {"data": {"<mutation>": {..., "userErrors": [...]}}, "__lineNumber": n}
        userErrors 非空或带顶层 errors 的行算失败
        """
        report = MutationReport()
        for row in self.download_rows(url):
            messages = _row_error_messages(row)
            if messages:
                report.failed += 1
                if len(report.messages) < MutationReport.MAX_MESSAGES:
                    report.messages.append("; ".join(messages))
            else:
                report.ok += 1
        if report.failed:
            logger.warning("bulk.mutation.row_errors shop=%s ok=%s failed=%s first=%s",
                self.shop, report.ok, report.failed, report.first_error)
        return report


    def download_rows(self, url: str) -> Iterator[Dict[str, Any]]:
        """逐行解析 JSONL；坏行跳过并记日志"""
        for line in self._client.download_jsonl_stream(url):
            try:
                row = json.loads(line)
            except ValueError:
                logger.warning("bulk.jsonl.bad_line shop=%s line=%.200s", self.shop, line)
                continue
            if isinstance(row, dict):
                yield row
