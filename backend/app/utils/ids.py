from __future__ import annotations
from uuid import uuid4


def new_id() -> str:
    """32 位 hex 主键（跨方言：sqlite 测试库和 PG 都是 String(32)）"""
    return uuid4().hex


def new_job_id(prefix: str) -> str:
    # 对外可见的 jobId，例如 bulk-3f9a1c2b7d4e / cleanup-...
    return f"{prefix}-{uuid4().hex[:12]}"
