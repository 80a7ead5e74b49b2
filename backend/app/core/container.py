"""
进程级组合根（API 进程 / 每个 Celery worker 进程各一份）：
  - session_factory：DB 会话工厂
  - client_for(shop)：按店铺构造 ShopifyClient（token 来自 shop_installations，缺省回落到 SHOPIFY_ADMIN_TOKEN）
  - driver_for(shop)：Bulk Operation 薄封装
  - recipe_engine
FastAPI lifespan 和 Celery worker_process_shutdown 调用 shutdown_container() 释放连接池。
测试里直接 AppContainer(...) 注入假客户端。
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.core.config import settings
from app.infrastructure.ratelimit import RedisTokenBucketLimiter
from app.integrations.shopify.shopify_client import ShopifyClient
from app.repository import shop_repo
from app.services.bulk_operation_driver import BulkOperationDriver
from app.services.recipe_engine import RecipeEngine


logger = logging.getLogger(__name__)


class AppContainer:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        engine: Optional[Engine] = None,
        client_factory: Optional[Callable[[str], object]] = None,
    ):
        self.session_factory = session_factory
        self._engine = engine
        self._client_factory = client_factory or self._build_client
        self.recipe_engine = RecipeEngine(session_factory)


    def _access_token(self, shop: str) -> Optional[str]:
        with self.session_factory() as db:
            token = shop_repo.get_access_token(db, shop)
        if token:
            return token
        fallback = settings.SHOPIFY_ADMIN_TOKEN
        return fallback.get_secret_value() if fallback else None


    def _build_client(self, shop: str) -> ShopifyClient:
        return ShopifyClient(
            shop,
            self._access_token(shop) or "",
            limiter=RedisTokenBucketLimiter.from_settings(shop=shop),
        )


    def client_for(self, shop: str):
        return self._client_factory(shop)


    def driver_for(self, shop: str) -> BulkOperationDriver:
        return BulkOperationDriver(self.client_for(shop))


    def shutdown(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("container.shutdown engine disposed")


_container: Optional[AppContainer] = None


def get_container() -> AppContainer:
    global _container
    if _container is None:
        from app.db.session import SessionLocal, engine
        _container = AppContainer(SessionLocal, engine=engine)
    return _container


def set_container(container: Optional[AppContainer]) -> None:
    """测试用：替换/清空进程级容器"""
    global _container
    _container = container


def shutdown_container() -> None:
    global _container
    if _container is not None:
        _container.shutdown()
        _container = None
