# INSERT ... ON CONFLICT：PostgreSQL 与 SQLite（测试库）语法一致，只是 insert 构造来自不同方言

from __future__ import annotations

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, model):
    """按当前连接方言返回支持 on_conflict_do_update / on_conflict_do_nothing 的 insert()"""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"upsert not supported for dialect {name}")
