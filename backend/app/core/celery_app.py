# Celery 应用：webhook 分发 + bulk 状态机 + 夜间清理

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_shutdown
from kombu import Exchange, Queue
from app.core.config import settings
from app.core.logging import configure_logging

configure_logging()


'''
初始化 Celery 应用/实例
   - Beat: 1 台
   - Worker: 按队列拆分（webhooks 高并发；bulk_operations / cleaner 低并发，Shopify 每店同时只允许一个 bulk）
'''
celery_app = Celery(
    "shop_ops_automation",
    broker=settings.CELERY_BROKER_URL,          # 队列位置 (Redis)
    backend=settings.CELERY_RESULT_BACKEND,     # 结果存储 (Redis)
    include=[
        # 让 Celery 在启动时就加载这些模块, include 告诉 Celery 这些模块里定义的任务函数要自动注册
        "app.orchestration.webhook_tasks",          # webhook 分发（recipe / 规则）
        "app.orchestration.bulk_jobs.tasks",        # bulk 标签状态机（含 cleanup / revert）
        "app.orchestration.nightly_cleanup",        # 夜间过期清理
    ],
)


'''
  通用 Celery 配置
'''
celery_app.conf.update(
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,                             # 内部还是存 UTC
    task_serializer="json",                      # 序列化格式 JSON
    accept_content=["json"],
    result_serializer="json",
    task_track_started=True,
    broker_connection_retry_on_startup=True,     # 启动时如果 broker 挂了会重试
    # === 容错 ===
    worker_prefetch_multiplier=1,    # 一个 worker 一次只取一个任务（一步）
    task_acks_late=True,             # worker crash 后任务回队列；状态机靠 seq 丢弃重复投递
    task_default_queue="default",
    broker_heartbeat=30,
    broker_pool_limit=10,
)



'''
不同任务配置不同队列
   - webhooks: 量大、单次短
   - bulk_operations / cleaner: 一步一投递，大部分时间在 countdown 里等待
   - cron: 夜间清理
'''
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("webhooks", Exchange("webhooks"), routing_key="webhooks"),
    Queue("bulk_operations", Exchange("bulk_operations"), routing_key="bulk_operations"),
    Queue("cleaner", Exchange("cleaner"), routing_key="cleaner"),
    Queue("cron", Exchange("cron"), routing_key="cron"),
)


'''
celery 路由规则：cleanup lineage 在投递时显式指定 queue="cleaner"，覆盖这里的默认路由
'''
celery_app.conf.task_routes = {
    "app.orchestration.webhook_tasks.process_webhook": {"queue": "webhooks"},
    "app.orchestration.bulk_jobs.tasks.advance_bulk_job": {"queue": "bulk_operations"},
    "app.orchestration.nightly_cleanup.nightly_cleanup": {"queue": "cron"},
}


def _crontab_from_expr(expr: str) -> crontab:
    # "m h dom mon dow"
    minute, hour, day_of_month, month_of_year, day_of_week = expr.split()
    return crontab(
        minute=minute, hour=hour,
        day_of_month=day_of_month, month_of_year=month_of_year, day_of_week=day_of_week,
    )


# 默认的静态调度
celery_app.conf.beat_schedule = {
    # 每晚清理过期日志 / 备份 / 指标
    "nightly-cleanup": {
        "task": "app.orchestration.nightly_cleanup.nightly_cleanup",
        "schedule": _crontab_from_expr(settings.CRON_NIGHTLY_CLEANUP),
        "options": {"queue": "cron"},
    },
}


@worker_process_shutdown.connect
def _release_container(**_kwargs):
    from app.core.container import shutdown_container
    shutdown_container()
