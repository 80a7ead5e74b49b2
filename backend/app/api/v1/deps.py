# 路由公共依赖：当前店铺 + 进程级容器

from __future__ import annotations
import logging, re

from fastapi import Header, HTTPException

from app.core.container import AppContainer, get_container
from app.integrations.shopify.errors import ShopifyError
from app.services import usage_service


logger = logging.getLogger(__name__)


SHOP_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


'''
店铺上下文：OAuth / session 由外部嵌入式 App 完成，转发请求时带上 X-Shopify-Shop-Domain
'''
def current_shop(x_shopify_shop_domain: str = Header(default="")) -> str:
    shop = (x_shopify_shop_domain or "").strip().lower()
    if not shop:
        raise HTTPException(status_code=401, detail="Missing shop")
    if not SHOP_RE.match(shop):
        raise HTTPException(status_code=400, detail="Invalid shop domain")
    return shop


def container() -> AppContainer:
    return get_container()


def plan_for(c: AppContainer, shop: str) -> str:
    # 拿不到 client（没有 token 等）也按 Free 处理
    try:
        client = c.client_for(shop)
    except ShopifyError as e:
        logger.warning("usage.plan_lookup_failed shop=%s err=%s", shop, e)
        return usage_service.PLAN_FREE
    return usage_service.get_plan_type(client)
