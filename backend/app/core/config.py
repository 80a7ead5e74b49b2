# 环境变量和配置
# pydantic‑settings 读取 .env = core/config.py

from typing import Optional
from pydantic import SecretStr, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# 本机直接跑 uvicorn / celery 时（不走 Docker），才会用到 model_config.env_file=".env"：
# 此时它会读取 backend/.env

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "Shop Ops Automation"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"


    # ========= Database =========
    # 容器内默认连 docker 网络里的 "db" 服务；测试用 sqlite 内存库，不读这里
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://ops_user:ops_pass@db:5432/shop_ops",
        alias="DATABASE_URL",
    )
    REDIS_URL: Optional[str] = Field(default=None, alias="REDIS_URL")


    # ========= celery config =========
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "UTC"
    CRON_NIGHTLY_CLEANUP: str = "0 0 * * *"       # 每晚 0 点清理过期日志/备份
    SYNC_TASKS_INLINE: bool = Field(default=False, alias="SYNC_TASKS_INLINE")   # True=所有后续步骤在当前进程内执行（调试用）
    WEBHOOK_TASK_MAX_RETRIES: int = Field(default=3, alias="WEBHOOK_TASK_MAX_RETRIES")
    BULK_STEP_MAX_RETRIES: int = Field(default=3, alias="BULK_STEP_MAX_RETRIES")


    # ========= Shopify API Config =========
    SHOPIFY_API_VERSION: str = Field("2025-07", alias="SHOPIFY_API_VERSION")
    SHOPIFY_ADMIN_TOKEN: Optional[SecretStr] = Field(None, alias="SHOPIFY_ADMIN_TOKEN")     # 单店开发环境兜底 token；多店走 shop_installations 表
    SHOPIFY_WEBHOOK_HOST: Optional[str] = Field(None, alias="SHOPIFY_WEBHOOK_HOST")
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = Field(None, alias="SHOPIFY_WEBHOOK_SECRET")
    BULK_DOWNLOAD_TIMEOUT: int = Field(180, ge=30, le=300, alias="SHOPIFY_BULK_DOWNLOAD_TIMEOUT")  # 下载 JSONL 超时秒数

    # 网络/HTTP 层 配置
    SHOPIFY_HTTP_TIMEOUT: int = Field(30, alias="SHOPIFY_HTTP_TIMEOUT")
    SHOPIFY_HTTP_RETRIES: int = Field(3, alias="SHOPIFY_HTTP_RETRIES")
    SHOPIFY_HTTP_BACKOFF_MS: int = Field(200, alias="SHOPIFY_HTTP_BACKOFF_MS")
    SHOPIFY_BULK_START_RETRIES: int = Field(3, alias="SHOPIFY_BULK_START_RETRIES")     # 业务级 Bulk 发起重试

    # ========= Shopify 全局限流（按店铺共享令牌桶） =========
    SHOPIFY_RL_ENABLED: bool = False
    SHOPIFY_RL_MAX_RPM: int = 120
    SHOPIFY_RL_BURST: int = 10
    SHOPIFY_RL_MAX_WAIT_MS: int = 5000
    SHOPIFY_RL_KEY_PREFIX: str = "shopify:rl"


    # ========= Automation =========
    BULK_POLL_DELAY_SEC: int = Field(5, ge=1, alias="BULK_POLL_DELAY_SEC")         # 轮询固定间隔，不做指数退避
    PREVIEW_MAX_POLLS: int = Field(60, ge=1, alias="PREVIEW_MAX_POLLS")            # dry-run 最多轮询次数
    PREVIEW_SAMPLE_SIZE: int = Field(10, ge=1, alias="PREVIEW_SAMPLE_SIZE")
    LOG_RETENTION_DAYS: int = Field(90, ge=1, alias="LOG_RETENTION_DAYS")
    BACKUP_RETENTION_DAYS: int = Field(30, ge=1, alias="BACKUP_RETENTION_DAYS")
    JOB_METRIC_RETENTION_DAYS: int = Field(30, ge=1, alias="JOB_METRIC_RETENTION_DAYS")
    FREE_PLAN_MONTHLY_LIMIT: int = Field(500, ge=0, alias="FREE_PLAN_MONTHLY_LIMIT")


    # 计数器/限流/锁用的 Redis 地址：未单独配置时复用 broker
    @property
    def redis_for_counters(self) -> Optional[str]:
        return self.REDIS_URL or self.CELERY_BROKER_URL


settings = Settings()  # 只从环境读取（含 .env）
