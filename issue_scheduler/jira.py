"""
Minimal Jira REST client for creating issues.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib import error as urllib_error
from urllib import request as urllib_request

from issue_scheduler.errors import ExternalCallError

if TYPE_CHECKING:
    from issue_scheduler.config import Config

logger = logging.getLogger(__name__)

DEFAULT_ISSUE_TYPE = "Task"


@dataclass(frozen=True)
class IssueRequest:
    project: str
    summary: str
    issue_type: Optional[str] = None
    component: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = None

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "project": {"key": self.project},
            "summary": self.summary,
            "issuetype": {"name": self.issue_type or DEFAULT_ISSUE_TYPE},
        }
        if self.component:
            fields["components"] = [{"name": self.component}]
        if self.description:
            fields["description"] = self.description
        if self.due_date:
            fields["duedate"] = self.due_date.isoformat()
        return fields


class JiraClient:
    def __init__(
        self,
        site: str,
        username: str,
        password: str,
        context_path: str = "",
        auth_type: str = "basic",
        timeout_seconds: int = 30,
    ):
        self.site = site.rstrip("/")
        self.context_path = context_path.strip("/")
        self.username = username
        self.password = password
        self.auth_type = auth_type
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: "Config") -> "JiraClient":
        return cls(**config.to_jira_options())

    @property
    def base_url(self) -> str:
        if self.context_path:
            return f"{self.site}/{self.context_path}"
        return self.site

    def _auth_header(self) -> str:
        if self.auth_type == "bearer":
            return f"Bearer {self.password}"
        token = base64.b64encode(f"{self.username}:{self.password}".encode("utf-8")).decode("ascii")
        return f"Basic {token}"

    def create_issue(self, issue: IssueRequest) -> str:
        """Create an issue and return its key, e.g. ``MYPROJ-42``."""
        url = self.base_url + "/rest/api/2/issue"
        body = json.dumps({"fields": issue.to_fields()}).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": self._auth_header(),
        }
        req = urllib_request.Request(url=url, data=body, method="POST", headers=headers)
        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace").strip()
            raise ExternalCallError(
                f"Jira rejected issue for project {issue.project} (HTTP {exc.code}): {detail}"
            ) from exc
        except urllib_error.URLError as exc:
            raise ExternalCallError(f"Failed to reach Jira at {self.base_url}: {exc.reason}") from exc
        except (ValueError, OSError) as exc:
            raise ExternalCallError(f"Unexpected response from Jira at {self.base_url}: {exc}") from exc

        key = payload.get("key") if isinstance(payload, dict) else None
        if not key:
            raise ExternalCallError(f"Jira response did not include an issue key: {payload!r}")
        logger.info("Created Jira issue %s", key)
        return key
