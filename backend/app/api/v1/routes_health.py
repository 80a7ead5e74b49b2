# 健康检查（含DB探活）

from fastapi import APIRouter, Depends
from sqlalchemy import text

from app.api.v1.deps import container
from app.core.container import AppContainer

router = APIRouter(tags=["health"])

@router.get("/health")
def health(c: AppContainer = Depends(container)):
    # 轻量 DB ping（不依赖迁移）
    with c.session_factory() as db:
        db.execute(text("SELECT 1"))
    return {"status": "ok"}
