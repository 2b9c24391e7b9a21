from __future__ import annotations

from typing import List, Optional


class IssueSchedulerError(Exception):
    """Base error for issue_scheduler."""


class ConfigError(IssueSchedulerError):
    """Config validation error."""


class ParseError(IssueSchedulerError):
    """Raw template bytes could not be decoded into a field map."""


class ValidationError(IssueSchedulerError):
    """One or more template fields failed validation."""

    def __init__(self, errors: List[str], name: Optional[str] = None):
        self.errors = list(errors)
        self.name = name
        prefix = f"Invalid issue template {name}" if name else "Invalid issue template"
        super().__init__(f"{prefix}: {', '.join(self.errors)}")


class DuplicateNameError(IssueSchedulerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Duplicate issue template name "{name}".')


class NotFoundError(IssueSchedulerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Unknown issue template "{name}".')


class SchedulerRegistrationError(IssueSchedulerError):
    def __init__(self, job_name: str, reason: str):
        self.job_name = job_name
        self.reason = reason
        super().__init__(f'Scheduler rejected job "{job_name}": {reason}')


class ExternalCallError(IssueSchedulerError):
    """The issue tracker call failed."""
