import datetime as dt

from sqlalchemy import func, select

from app.db.model.activity_log import ActivityLog, ActivityLogDetail
from app.db.model.automation_log import AutomationLog
from app.db.model.backup import Backup
from app.db.model.job_metric import JobMetric
from app.orchestration.nightly_cleanup import purge_expired
from app.repository import job_metric_repo
from app.services import activity_service


NOW = dt.datetime(2026, 6, 30, 0, 0, 0)


def _count(session_factory, model):
    with session_factory() as db:
        return db.scalar(select(func.count()).select_from(model))


def test_purge_expired_respects_retention_windows(container, session_factory, shop):
    old_log = NOW - dt.timedelta(days=91)
    old_backup = NOW - dt.timedelta(days=31)

    with session_factory() as db:
        db.add_all([
            AutomationLog(shop=shop, log_type="system", message="old", created_at=old_log),
            AutomationLog(shop=shop, log_type="system", message="fresh", created_at=NOW - dt.timedelta(days=1)),
            Backup(shop=shop, job_id="bulk-old", resource_type="products", items=[], created_at=old_backup),
            Backup(shop=shop, job_id="bulk-new", resource_type="products", items=[], created_at=NOW),
            # 日志保留 90 天：40 天前的日志不删
            AutomationLog(shop=shop, log_type="system", message="40 days", created_at=NOW - dt.timedelta(days=40)),
        ])
        db.commit()

        stale_id = activity_service.record_activity(
            db, shop=shop, resource_type="Products", resource_id="Bulk",
            action="Bulk Replace", detail="started", job_id="bulk-old",
        )
        activity_service.record_activity(
            db, shop=shop, resource_type="Products", resource_id="Bulk",
            action="Bulk Replace", detail="started", job_id="bulk-new",
        )
        db.get(ActivityLog, stale_id).updated_at = old_log
        db.commit()

        job_metric_repo.record(db, shop=shop, queue="webhooks", day=(NOW - dt.timedelta(days=31)).date(),
                               success=True, duration_ms=10)
        job_metric_repo.record(db, shop=shop, queue="webhooks", day=NOW.date(), success=True, duration_ms=10)
        db.commit()

    out = purge_expired(container=container, now=NOW)

    assert out == {"automation_logs": 1, "activity_logs": 1, "backups": 1, "job_metrics": 1}
    assert _count(session_factory, AutomationLog) == 2
    assert _count(session_factory, Backup) == 1
    assert _count(session_factory, ActivityLog) == 1
    assert _count(session_factory, ActivityLogDetail) == 1
    assert _count(session_factory, JobMetric) == 1


def test_purge_expired_on_empty_tables(container):
    assert purge_expired(container=container, now=NOW) == {
        "automation_logs": 0, "activity_logs": 0, "backups": 0, "job_metrics": 0,
    }
