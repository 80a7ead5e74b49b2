import json

import pytest

from app.services.bulk_operation_driver import BulkOperationDriver, BulkPoll


def test_poll_unknown_operation_counts_as_failed(fake_client):
    poll = BulkOperationDriver(fake_client).poll("gid://shopify/BulkOperation/404")
    assert poll.is_failed
    assert poll.error_code == "NOT_FOUND"


@pytest.mark.parametrize("poll,running,completed,failed,has_results", [
    (BulkPoll(status="CREATED"), True, False, False, False),
    (BulkPoll(status="COMPLETED", url=None, object_count=0), False, True, False, False),
    (BulkPoll(status="COMPLETED", url="https://r", object_count=3), False, True, False, True),
    (BulkPoll(status="EXPIRED"), False, False, True, False),
])
def test_poll_flags(poll, running, completed, failed, has_results):
    assert (poll.is_running, poll.is_completed, poll.is_failed, poll.has_results) == (
        running, completed, failed, has_results
    )


def test_submit_tag_mutation_stages_one_line_per_change(fake_client):
    gid = fake_client.add_resource("customers", 7, ["old"])
    driver = BulkOperationDriver(fake_client)

    op_id = driver.submit_tag_mutation("customers", [{"id": gid, "tags": ["new"]}])

    assert op_id.startswith("gid://shopify/BulkOperation/")
    staged = next(iter(fake_client.uploads.values())).decode("utf-8").splitlines()
    assert [json.loads(line) for line in staged] == [{"input": {"id": gid, "tags": ["new"]}}]
    assert fake_client.tags_of(gid) == ["new"]

    with pytest.raises(ValueError):
        driver.submit_tag_mutation("collections", [{"id": gid, "tags": []}])


def test_download_rows_skips_bad_lines(fake_client, monkeypatch):
    monkeypatch.setattr(fake_client, "download_jsonl_stream",
                        lambda url: iter(['{"id": "a"}', "not json", "[1, 2]", '{"id": "b"}']))
    rows = list(BulkOperationDriver(fake_client).download_rows("https://r"))
    assert rows == [{"id": "a"}, {"id": "b"}]


def test_cancel(fake_client):
    assert BulkOperationDriver(fake_client).cancel("gid://shopify/BulkOperation/1")["status"] == "CANCELING"


def test_read_mutation_report_counts_user_errors(fake_client, monkeypatch):
    lines = [
        '{"data": {"productUpdate": {"product": {"id": "p1"}, "userErrors": []}}, "__lineNumber": 0}',
        '{"data": {"productUpdate": {"product": null, "userErrors": [{"field": ["tags"], "message": "Too long"}]}},'
        ' "__lineNumber": 1}',
        '{"errors": [{"message": "Throttled"}], "__lineNumber": 2}',
        "broken",
    ]
    monkeypatch.setattr(fake_client, "download_jsonl_stream", lambda url: iter(lines))

    report = BulkOperationDriver(fake_client).read_mutation_report("https://r")

    assert (report.ok, report.failed) == (1, 2)
    assert report.messages == ["tags: Too long", "Throttled"]
    assert report.first_error == "tags: Too long"
