from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List

import pytest
import yaml

from issue_scheduler.errors import ExternalCallError, IssueSchedulerError
from issue_scheduler.execution import ExecutionHandler, build_issue_request
from issue_scheduler.jira import IssueRequest
from issue_scheduler.loader import TemplateSource, reload_templates
from issue_scheduler.reconciler import reconcile
from issue_scheduler.scheduler import LocalScheduler
from issue_scheduler.templates import TemplateStore

UTC = timezone.utc
FIRED_AT = datetime(2026, 1, 5, 7, 0, tzinfo=UTC)


class FakeIssueClient:
    def __init__(self, fail: bool = False) -> None:
        self.requests: List[IssueRequest] = []
        self.fail = fail

    def create_issue(self, issue: IssueRequest) -> str:
        self.requests.append(issue)
        if self.fail:
            raise ExternalCallError("Jira rejected issue (HTTP 500)")
        return f"{issue.project}-{len(self.requests)}"


class SourceDir:
    """Mutable set of template sources standing in for files on disk."""

    def __init__(self) -> None:
        self.files: Dict[str, Dict[str, Any]] = {}

    def __call__(self) -> List[TemplateSource]:
        return [
            TemplateSource(identifier=name, data=yaml.safe_dump(fields).encode("utf-8"))
            for name, fields in self.files.items()
        ]


def _setup(fail: bool = False):
    sources = SourceDir()
    sources.files["a.yaml"] = {
        "schedule": "0 7 * * 1-5",
        "project": "myproj",
        "summary": "Take out trash",
        "issue_type": "Story",
        "due_date": "2022-05-03",
    }
    store = TemplateStore()
    reload_templates(store, sources())
    client = FakeIssueClient(fail=fail)
    return sources, store, client, ExecutionHandler(store=store, sources=sources, issue_client=client)


def test_on_fire_creates_issue() -> None:
    _, _, client, handler = _setup()
    result = handler.on_fire("a.yaml", FIRED_AT)

    assert result.status == "created"
    assert result.issue_key == "MYPROJ-1"
    assert result.logical_time == FIRED_AT
    assert client.requests == [
        IssueRequest(
            project="MYPROJ",
            summary="Take out trash",
            issue_type="Story",
            component=None,
            description=None,
            due_date=date(2022, 5, 3),
        )
    ]


def test_on_fire_for_deleted_template_reports_missing() -> None:
    sources, store, client, handler = _setup()
    del sources.files["a.yaml"]
    reload_templates(store, sources())

    result = handler.on_fire("a.yaml", FIRED_AT)

    assert result.status == "missing"
    assert result.issue_key is None
    assert client.requests == []


def test_on_fire_rereads_edited_templates() -> None:
    sources, store, client, handler = _setup()
    sources.files["a.yaml"]["summary"] = "Take out recycling"
    sources.files["b.yaml"] = {"schedule": "0 9 * * *", "project": "other", "summary": "New"}

    handler.on_fire("a.yaml", FIRED_AT)
    handler.on_fire("b.yaml", FIRED_AT)

    assert [request.summary for request in client.requests] == ["Take out recycling", "New"]
    assert store.names() == ["a.yaml", "b.yaml"]


def test_failed_issue_creation_is_reported_not_retried() -> None:
    _, _, client, handler = _setup(fail=True)
    with pytest.raises(ExternalCallError):
        handler.on_fire("a.yaml", FIRED_AT)
    assert len(client.requests) == 1


def test_handle_job_payload() -> None:
    _, _, client, handler = _setup()
    result = handler.handle_job({"template_name": "a.yaml", "logical_time": FIRED_AT})
    assert result.issue_key == "MYPROJ-1"
    with pytest.raises(IssueSchedulerError, match="template_name"):
        handler.handle_job({"logical_time": FIRED_AT})


def test_build_issue_request_fields_order() -> None:
    _, store, _, _ = _setup()
    fields = build_issue_request(store.find("a.yaml")).to_fields()
    assert list(fields) == ["project", "summary", "issuetype", "duedate"]
    assert fields["project"] == {"key": "MYPROJ"}
    assert fields["duedate"] == "2022-05-03"


def test_end_to_end_through_local_scheduler() -> None:
    sources, store, client, handler = _setup()
    scheduler = LocalScheduler(clock=lambda: datetime(2026, 1, 5, 0, 0, tzinfo=UTC))
    scheduler.on_fire(handler.handle_job)
    reconcile(store, scheduler)

    events = scheduler.run_pending(FIRED_AT)

    assert [(event.job_name, event.success) for event in events] == [("a.yaml", True)]
    assert client.requests[0].summary == "Take out trash"

    del sources.files["a.yaml"]
    events = scheduler.run_pending(datetime(2026, 1, 6, 7, 0, tzinfo=UTC))
    assert events[0].success is True
    assert len(client.requests) == 1
