"""
对外统一入口：
- 从这里 import 客户端和异常，内部实现可自由演进。
"""

from .shopify_client import ShopifyClient
from .errors import (
    ShopifyError, ShopifyAuthError, ShopifyClientError, ShopifyServerError,
    ShopifyRateLimitError, ShopifyGraphQLError, ShopifyUserError,
    BulkOperationFailedError, BulkPollTimeoutError,
)


__all__ = [
    "ShopifyClient",
    "ShopifyError", "ShopifyAuthError", "ShopifyClientError", "ShopifyServerError",
    "ShopifyRateLimitError", "ShopifyGraphQLError", "ShopifyUserError",
    "BulkOperationFailedError", "BulkPollTimeoutError",
]
