"""
bulk 状态机端到端（sqlite 内存库 + 内存版 Shopify）：
  - 不连 broker：enqueue 被替换成收集 payload，再用 run_job_inline 串行跑完
  - 轮询间隔用 no-op sleep 跳过
"""

import pytest
from sqlalchemy import select

from app.db.model.activity_log import ActivityLog, ActivityLogDetail
from app.db.model.backup import Backup
from app.db.model.bulk_job import BulkJob
from app.integrations.shopify.errors import BulkOperationFailedError, ShopifyServerError
from app.orchestration.bulk_jobs import (
    BackupNotFoundError,
    JobState,
    OperationKind,
    Step,
    revert_job,
    run_job_inline,
    run_step,
    start_bulk_job,
    start_cleanup_job,
)
from app.orchestration.bulk_jobs import tasks
from app.services import usage_service


def _no_sleep(_seconds):
    return None


@pytest.fixture()
def queued(monkeypatch):
    sent = []
    monkeypatch.setattr(tasks, "enqueue", lambda payload, delay=0, **kw: sent.append((payload, delay, kw)))
    return sent


@pytest.fixture()
def catalog(fake_client):
    return {
        "p1": fake_client.add_resource("products", 1, ["A", "x"], "Mug"),
        "p2": fake_client.add_resource("products", 2, ["B"], "Cap"),
        "p3": fake_client.add_resource("products", 3, ["A", "B"], "Tee"),
    }


def _run(container, queued):
    payload = queued[-1][0]
    return run_job_inline(payload, container=container, sleep=_no_sleep)


def _job_row(session_factory, job_id):
    with session_factory() as db:
        return db.scalar(select(BulkJob).where(BulkJob.job_id == job_id))


def _activity(session_factory, job_id):
    with session_factory() as db:
        log = db.scalar(select(ActivityLog).where(ActivityLog.job_id == job_id))
        details = list(db.scalars(
            select(ActivityLogDetail).where(ActivityLogDetail.log_id == log.id).order_by(ActivityLogDetail.id)
        ))
    return log, details


def _usage(session_factory, shop):
    with session_factory() as db:
        return usage_service.get_current_usage(db, shop)["count"]


# 方法 1：A -> B 替换，完整跑一遍
def test_replace_job_end_to_end(container, session_factory, fake_client, catalog, queued, shop):
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="replace",
                            find_tag="A", replace_tag="B", container=container, inline=False)

    assert job_id.startswith("bulk-")
    assert queued[0][0]["step"] == "init" and queued[0][0]["seq"] == 0

    result = _run(container, queued)
    assert result == {"jobId": job_id, "dropped": False, "steps": 4}

    assert fake_client.tags_of(catalog["p1"]) == ["x", "B"]
    assert fake_client.tags_of(catalog["p2"]) == ["B"]
    assert fake_client.tags_of(catalog["p3"]) == ["B"]
    assert len(fake_client.mutations) == 1

    row = _job_row(session_factory, job_id)
    assert row.status == "succeeded"
    assert row.step == "done"
    assert row.seq == 4
    assert row.current_operation_id is None

    log, details = _activity(session_factory, job_id)
    assert log.status == "Success"
    assert log.action == "Bulk Operation"
    assert log.category == "Bulk Operations"
    assert [d.status for d in details] == ["Pending", "Pending", "Success"]
    assert details[1].message.startswith("Processing 2 products.")

    with session_factory() as db:
        backups = list(db.scalars(select(Backup).where(Backup.job_id == job_id)))
    assert len(backups) == 1
    assert sorted(i["originalTags"] for i in backups[0].items) == [["A", "B"], ["A", "x"]]

    assert _usage(session_factory, shop) == 2


def test_second_run_is_a_noop(container, session_factory, fake_client, catalog, queued, shop):
    start_bulk_job(shop=shop, resource_type="products", operation="replace",
                   find_tag="A", replace_tag="B", container=container, inline=False)
    _run(container, queued)

    second = start_bulk_job(shop=shop, resource_type="products", operation="replace",
                            find_tag="A", replace_tag="B", container=container, inline=False)
    _run(container, queued)

    assert len(fake_client.mutations) == 1
    with session_factory() as db:
        assert db.scalar(select(Backup).where(Backup.job_id == second)) is None
    log, _ = _activity(session_factory, second)
    assert log.status == "Success"
    assert log.detail == "No products found with tag 'A'"
    assert _usage(session_factory, shop) == 2


def test_add_without_find_tag_targets_untagged(container, fake_client, catalog, queued, shop):
    start_bulk_job(shop=shop, resource_type="products", operation="add",
                   replace_tag="B", container=container, inline=False)
    _run(container, queued)

    assert 'NOT tag:\\"B\\"' in fake_client.queries[0]
    assert fake_client.tags_of(catalog["p1"]) == ["A", "x", "B"]
    assert fake_client.tags_of(catalog["p3"]) == ["A", "B"]


@pytest.mark.parametrize("kwargs", [
    {"operation": "replace", "find_tag": "", "replace_tag": "B"},
    {"operation": "replace", "find_tag": "A", "replace_tag": "A"},
    {"operation": "remove", "find_tag": ""},
    {"operation": "add", "replace_tag": ""},
    {"operation": "cleanup", "find_tag": "A"},
    {"operation": "replace", "find_tag": "A", "replace_tag": "B", "resource_type": "variants"},
])
def test_start_bulk_job_validates(kwargs, queued, shop):
    kwargs.setdefault("resource_type", "products")
    with pytest.raises(ValueError):
        start_bulk_job(shop=shop, inline=False, **kwargs)
    assert queued == []


def test_replace_onto_existing_tag_changes_nothing(container, session_factory, fake_client, shop):
    gid = fake_client.add_resource("products", 1, ["A", "C"], "Mug")
    # 入口校验之外直接投递的 payload 也不会改动数据
    payload = JobState(job_id="bulk-same", shop=shop, kind=OperationKind.REPLACE,
                       find_tag="A", replace_tag="A").to_payload()

    run_job_inline(payload, container=container, sleep=_no_sleep)

    assert fake_client.mutations == []
    assert fake_client.tags_of(gid) == ["A", "C"]
    with session_factory() as db:
        assert db.scalar(select(Backup).where(Backup.job_id == "bulk-same")) is None
    log, _ = _activity(session_factory, "bulk-same")
    assert log.status == "Success"
    assert log.detail == "No changes needed for 1 products"
    assert _usage(session_factory, shop) == 0


def test_row_errors_are_recorded_as_partial(container, session_factory, fake_client, catalog, queued, shop):
    fake_client.row_errors[catalog["p3"]] = "Tags is invalid"
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="replace",
                            find_tag="A", replace_tag="B", container=container, inline=False)
    _run(container, queued)

    assert fake_client.tags_of(catalog["p1"]) == ["x", "B"]
    assert fake_client.tags_of(catalog["p3"]) == ["A", "B"]

    assert _job_row(session_factory, job_id).status == "succeeded"
    log, details = _activity(session_factory, job_id)
    assert log.status == "Partial"
    assert [d.status for d in details] == ["Pending", "Pending", "Partial"]
    assert "1 products failed: tags: Tags is invalid" in log.detail
    # 只按成功的行计用量
    assert _usage(session_factory, shop) == 1


def test_all_rows_failing_marks_activity_failed(container, session_factory, fake_client, catalog, queued, shop):
    for gid in (catalog["p1"], catalog["p3"]):
        fake_client.row_errors[gid] = "Access denied"
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="remove",
                            find_tag="A", container=container, inline=False)
    _run(container, queued)

    log, _ = _activity(session_factory, job_id)
    assert log.status == "Failed"
    assert _usage(session_factory, shop) == 0


# 方法 2：payload 自描述，丢了行也能从 polling_mutation 续跑
def test_resume_from_polling_mutation_payload(container, session_factory, fake_client, catalog, shop):
    op_id = container.driver_for(shop).submit_tag_mutation(
        "products", [{"id": catalog["p1"], "tags": ["x", "B"]}],
    )
    payload = JobState(
        job_id="bulk-resumed", shop=shop, kind=OperationKind.REPLACE, step=Step.POLLING_MUTATION,
        resource_types=["products"], find_tag="A", replace_tag="B",
        mutation_op_id=op_id, count=1, seq=7,
    ).to_payload()

    outcome = run_step(payload, container=container)

    assert outcome.terminal is True and outcome.dropped is False
    row = _job_row(session_factory, "bulk-resumed")
    assert row.status == "succeeded" and row.seq == 8
    assert _usage(session_factory, shop) == 1


def test_stale_and_duplicate_messages_are_dropped(container, session_factory, fake_client, catalog, queued, shop):
    fake_client.running_polls = 1
    start_bulk_job(shop=shop, resource_type="products", operation="replace",
                   find_tag="A", replace_tag="B", container=container, inline=False)
    first = queued[-1][0]

    step1 = run_step(first, container=container)
    assert step1.payload["step"] == "polling_query" and step1.payload["seq"] == 1

    # 同一条消息重复投递
    dup = run_step(first, container=container)
    assert dup.dropped is True
    assert len(fake_client.queries) == 1

    # 轮询到 RUNNING：原地重投，seq 仍然前进
    step2 = run_step(step1.payload, container=container)
    assert step2.payload["step"] == "polling_query" and step2.payload["seq"] == 2
    assert step2.delay > 0
    assert run_step(step1.payload, container=container).dropped is True

    run_job_inline(step2.payload, container=container, sleep=_no_sleep)
    assert _job_row(session_factory, first["jobId"]).status == "succeeded"
    # 结束后的迟到消息
    assert run_step(step2.payload, container=container).dropped is True


def test_remote_failure_marks_lineage_failed(container, session_factory, fake_client, catalog, queued, shop):
    fake_client.status_override = "FAILED"
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="remove",
                            find_tag="A", container=container, inline=False)

    with pytest.raises(BulkOperationFailedError):
        _run(container, queued)

    row = _job_row(session_factory, job_id)
    assert row.status == "failed" and row.step == "failed"
    assert "failed" in row.last_error
    log, details = _activity(session_factory, job_id)
    assert log.status == "Failed"
    assert details[-1].message.startswith("Failed: Bulk operation")
    assert fake_client.mutations == []


def test_transient_error_keeps_lineage_running(container, session_factory, fake_client, catalog, queued, shop):
    fake_client.errors["run_bulk_query"] = ShopifyServerError("bulkOperationRunQuery server error: status=502")
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="replace",
                            find_tag="A", replace_tag="B", container=container, inline=False)
    payload = queued[-1][0]

    with pytest.raises(ShopifyServerError):
        run_step(payload, container=container)

    row = _job_row(session_factory, job_id)
    assert row.status == "running" and row.seq == 0
    log, details = _activity(session_factory, job_id)
    assert log.status == "Failed"
    assert details[-1].message == "Failed at init: bulkOperationRunQuery server error: status=502"

    # 重试同一个 payload 成功
    del fake_client.errors["run_bulk_query"]
    run_job_inline(payload, container=container, sleep=_no_sleep)
    assert _job_row(session_factory, job_id).status == "succeeded"
    assert fake_client.tags_of(catalog["p1"]) == ["x", "B"]


# 方法 3：cleanup 在一个 lineage 里先 products 再 customers
def test_cleanup_runs_each_resource_type(container, session_factory, fake_client, queued, shop):
    p = fake_client.add_resource("products", 11, ["old", "keep"])
    c1 = fake_client.add_resource("customers", 21, ["old"], "Ada")
    c2 = fake_client.add_resource("customers", 22, ["legacy", "vip"], "Bob")
    fake_client.add_resource("customers", 23, ["vip"], "Cy")

    job_id = start_cleanup_job(shop=shop, tags_to_remove=["old", "legacy", " "], container=container, inline=False)
    assert queued[-1][0]["tagsToRemove"] == ["old", "legacy"]
    _run(container, queued)

    assert fake_client.tags_of(p) == ["keep"]
    assert fake_client.tags_of(c1) == []
    assert fake_client.tags_of(c2) == ["vip"]
    assert len(fake_client.mutations) == 2

    row = _job_row(session_factory, job_id)
    assert row.status == "succeeded" and row.queue == "cleaner"
    log, _ = _activity(session_factory, job_id)
    assert log.action == "Tag Cleanup"
    assert log.category == "Data Cleaning"
    assert log.resource_type == "Mixed"
    assert log.detail == "Removed tags [old, legacy] from 3 items across products, customers."
    assert _usage(session_factory, shop) == 3


def test_cleanup_skips_resource_type_without_matches(container, session_factory, fake_client, queued, shop):
    c = fake_client.add_resource("customers", 21, ["old"])
    job_id = start_cleanup_job(shop=shop, tags_to_remove=["old"], container=container, inline=False)
    _run(container, queued)

    assert fake_client.tags_of(c) == []
    assert len(fake_client.queries) == 2
    log, _ = _activity(session_factory, job_id)
    assert log.detail == "Removed tags [old] from 1 items across products, customers."


# 方法 4：回滚：按备份恢复原始标签
def test_revert_restores_original_tags(container, session_factory, fake_client, catalog, queued, shop):
    job_id = start_bulk_job(shop=shop, resource_type="products", operation="replace",
                            find_tag="A", replace_tag="B", container=container, inline=False)
    _run(container, queued)

    out = revert_job(shop, job_id, container=container, inline=False)
    assert out["success"] is True
    assert out["jobId"] == f"revert-{job_id}"
    assert out["message"] == "Revert started"
    payload, delay, _ = queued[-1]
    assert payload["step"] == "polling_mutation" and delay == 5

    # 回滚进行中再点一次
    again = revert_job(shop, job_id, container=container, inline=False)
    assert again["message"] == "Revert already in progress"

    run_job_inline(payload, container=container, sleep=_no_sleep)

    assert fake_client.tags_of(catalog["p1"]) == ["A", "x"]
    assert fake_client.tags_of(catalog["p2"]) == ["B"]
    assert fake_client.tags_of(catalog["p3"]) == ["A", "B"]

    log, details = _activity(session_factory, f"revert-{job_id}")
    assert log.action == "Revert"
    assert log.status == "Success"
    assert details[0].message.startswith(f"Started revert for job {job_id}.")
    assert log.detail == "Revert completed: restored tags on 2 products."


def test_revert_multi_type_cleanup(container, fake_client, queued, shop):
    p = fake_client.add_resource("products", 11, ["old", "keep"])
    c = fake_client.add_resource("customers", 21, ["old"])
    job_id = start_cleanup_job(shop=shop, tags_to_remove=["old"], container=container, inline=False)
    _run(container, queued)

    revert_job(shop, job_id, container=container, inline=False)
    _run(container, queued)

    assert fake_client.tags_of(p) == ["old", "keep"]
    assert fake_client.tags_of(c) == ["old"]


def test_revert_without_backup(container, shop):
    with pytest.raises(BackupNotFoundError):
        revert_job(shop, "bulk-unknown", container=container, inline=False)
