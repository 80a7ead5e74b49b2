# feature: 每晚由 beat 触发（CRON_NIGHTLY_CLEANUP），按保留天数清理过期数据
# 关系型库没有 TTL 索引，这里代替它：automation/activity 日志 90 天，备份 30 天，job_metrics 30 天

from __future__ import annotations
import datetime as dt
import logging
from typing import Dict, Optional

import pytz
from celery import shared_task

from app.core.config import settings
from app.repository import activity_repo, automation_log_repo, backup_repo, job_metric_repo
from app.utils.clock import now_utc


logger = logging.getLogger(__name__)


def purge_expired(*, container=None, now: Optional[dt.datetime] = None) -> Dict[str, int]:
    if container is None:
        from app.core.container import get_container
        container = get_container()

    now = now or now_utc()
    log_cutoff = now - dt.timedelta(days=settings.LOG_RETENTION_DAYS)
    backup_cutoff = now - dt.timedelta(days=settings.BACKUP_RETENTION_DAYS)
    metric_cutoff = (now - dt.timedelta(days=settings.JOB_METRIC_RETENTION_DAYS)).date()

    with container.session_factory() as db:
        try:
            out = {
                "automation_logs": automation_log_repo.purge_older_than(db, log_cutoff),
                "activity_logs": activity_repo.purge_older_than(db, log_cutoff),
                "backups": backup_repo.purge_older_than(db, backup_cutoff),
                "job_metrics": job_metric_repo.purge_older_than(db, metric_cutoff),
            }
            db.commit()
        except Exception:
            db.rollback()
            raise
    return out


@shared_task(name="app.orchestration.nightly_cleanup.nightly_cleanup")
def nightly_cleanup() -> Dict[str, int]:
    tz_local = pytz.timezone(getattr(settings, "CELERY_TIMEZONE", "UTC") or "UTC")
    started_local = dt.datetime.now(tz_local)

    out = purge_expired()
    logger.info("nightly_cleanup.done local_time=%s %s",
        started_local.isoformat(timespec="seconds"),
        " ".join(f"{k}={v}" for k, v in out.items()))
    return out
