"""
Fire-time handling: re-resolve a template and create its issue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from issue_scheduler.errors import ExternalCallError, IssueSchedulerError, NotFoundError
from issue_scheduler.jira import IssueRequest
from issue_scheduler.loader import TemplateSource, reload_templates
from issue_scheduler.templates import Template, TemplateStore

logger = logging.getLogger(__name__)

STATUS_CREATED = "created"
STATUS_MISSING = "missing"


class IssueClient(Protocol):
    def create_issue(self, issue: IssueRequest) -> str:
        ...


@dataclass(frozen=True)
class ExecutionResult:
    template_name: str
    logical_time: Optional[datetime]
    status: str
    issue_key: Optional[str] = None


def build_issue_request(template: Template) -> IssueRequest:
    return IssueRequest(
        project=template.project,
        summary=template.summary,
        issue_type=template.issue_type,
        component=template.component,
        description=template.description,
        due_date=template.due_date,
    )


class ExecutionHandler:
    def __init__(
        self,
        store: TemplateStore,
        sources: Callable[[], Iterable[TemplateSource]],
        issue_client: IssueClient,
    ):
        self.store = store
        self.sources = sources
        self.issue_client = issue_client

    def on_fire(self, template_name: str, logical_time: Optional[datetime]) -> ExecutionResult:
        when = logical_time.isoformat() if logical_time else "now"
        # Templates may have changed since the schedule was reconciled.
        reload_templates(self.store, self.sources())
        try:
            template = self.store.find(template_name)
        except NotFoundError:
            logger.warning(
                "Issue template %s no longer exists; skipping run for %s.",
                template_name,
                when,
            )
            return ExecutionResult(template_name=template_name, logical_time=logical_time, status=STATUS_MISSING)

        try:
            issue_key = self.issue_client.create_issue(build_issue_request(template))
        except ExternalCallError as exc:
            logger.error("Failed to create issue for %s (%s): %s", template_name, when, exc)
            raise
        logger.info("Created issue %s from template %s (%s)", issue_key, template_name, when)
        return ExecutionResult(
            template_name=template_name,
            logical_time=logical_time,
            status=STATUS_CREATED,
            issue_key=issue_key,
        )

    def handle_job(self, payload: Dict[str, Any]) -> ExecutionResult:
        """Scheduler callback: unpack a job payload and fire it."""
        template_name = payload.get("template_name")
        if not isinstance(template_name, str) or not template_name:
            raise IssueSchedulerError(f"Job payload has no template_name: {payload!r}")
        return self.on_fire(template_name, payload.get("logical_time"))
