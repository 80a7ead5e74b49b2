"""
   Shopify 集成层专用异常类型。
   HTTP / 限流 / GraphQL 顶层 errors / userErrors / Bulk 终态失败 各自一类，
   上层（action executor / bulk 状态机 / API）按类型决定重试、记失败或返回 4xx。
"""
from __future__ import annotations
from typing import Any, Optional


class ShopifyError(Exception):
    """Base for all Shopify errors."""

class ShopifyAuthError(ShopifyError):
    """401/403: token invalid, revoked, or missing scopes."""

class ShopifyClientError(ShopifyError):
    """Other 4xx, or network/client-side errors after retries."""

class ShopifyServerError(ShopifyError):
    """Server-side (5xx) errors after retries."""

class ShopifyRateLimitError(ShopifyError):
    """429 Too Many Requests not resolved after retries."""

class ShopifyGraphQLError(ShopifyError):
    """Top-level GraphQL `errors` (syntax / permission / cost), not retried."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class ShopifyUserError(ShopifyError):
    """In-band `userErrors` returned by a mutation payload."""

    def __init__(self, op_name: str, user_errors: list[dict[str, Any]]):
        self.op_name = op_name
        self.user_errors = list(user_errors or [])
        msgs = [str(e.get("message") or e) for e in self.user_errors]
        super().__init__(f"{op_name} userErrors: {'; '.join(msgs)}")


class BulkOperationFailedError(ShopifyError):
    """Bulk operation reached FAILED / CANCELED / EXPIRED."""

    def __init__(self, operation_id: str | None, status: str, error_code: str | None = None):
        self.operation_id = operation_id
        self.status = status
        self.error_code = error_code
        super().__init__(
            f"Bulk operation {operation_id} {status.lower()}"
            + (f" (errorCode={error_code})" if error_code else "")
        )


class BulkPollTimeoutError(ShopifyError):
    """Dry-run polling hit the hard poll-count ceiling."""
