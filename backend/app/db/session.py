# Engine/Session 工厂 + FastAPI 依赖

from __future__ import annotations
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from app.core.config import settings


def _engine_kwargs(url: str) -> Dict[str, Any]:
    # sqlite（本地调试）不支持连接池参数
    if url.startswith("sqlite"):
        return {"future": True}
    return {
        "pool_size": 10,          # 常驻连接（worker 并发 8~12）
        "max_overflow": 20,
        "pool_pre_ping": True,    # 连接失效探测，避免 "server closed the connection"
        "pool_recycle": 1800,     # 半小时回收一次
        "future": True,
    }


def build_engine(url: str | None = None) -> Engine:
    url = url or settings.DATABASE_URL
    return create_engine(url, echo=False, **_engine_kwargs(url))


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # autoflush=False 便于控制 flush 时机；expire_on_commit=False 提交后对象仍可读
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        class_=Session,
        future=True,
    )


# ---- 进程级默认 Engine / Session Factory ----
engine = build_engine()
SessionLocal: sessionmaker[Session] = build_session_factory(engine)


'''
FastAPI 依赖：为每个请求提供独立会话
用法：
from app.db.session import get_db
def endpoint(db: Session = Depends(get_db)): ...
'''
def get_db() -> Generator[Session, None, None]:
    from app.core.container import get_container

    db: Session = get_container().session_factory()
    try:
        yield db    # service/repo 里显式 commit/rollback；此处不做隐式提交
    finally:
        db.close()


# 优雅关停：释放连接池（container shutdown 时调用）
def dispose_engine() -> None:
    engine.dispose()
