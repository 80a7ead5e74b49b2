from fastapi import APIRouter

# 非受保护路由
from .routes_health import router as health_router
from .webhooks_shopify import router as webhooks_router      # HMAC 验签，不走店铺上下文


# 需要店铺上下文（X-Shopify-Shop-Domain）的路由
from .bulk import router as bulk_router
from .recipes import router as recipes_router
from .rules import router as rules_router
from .activity import router as activity_router
from .usage import router as usage_router
from .cogs import router as cogs_router


api_v1 = APIRouter()
api_v1.include_router(health_router)
api_v1.include_router(webhooks_router)

api_v1.include_router(bulk_router)
api_v1.include_router(recipes_router)
api_v1.include_router(rules_router)
api_v1.include_router(activity_router)
api_v1.include_router(usage_router)
api_v1.include_router(cogs_router)
