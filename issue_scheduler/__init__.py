"""
Create issues in Jira on a schedule from declarative YAML issue templates.
"""

from issue_scheduler.errors import (
    ConfigError,
    DuplicateNameError,
    ExternalCallError,
    IssueSchedulerError,
    NotFoundError,
    ParseError,
    SchedulerRegistrationError,
    ValidationError,
)
from issue_scheduler.execution import ExecutionHandler, ExecutionResult
from issue_scheduler.loader import LoadReport, SkipEntry, TemplateSource, load_templates, reload_templates
from issue_scheduler.reconciler import JobDescriptor, ReconcileResult, reconcile
from issue_scheduler.templates import Template, TemplateStore, build_template

__version__ = "0.1.0"

__all__ = [
    "ConfigError",
    "DuplicateNameError",
    "ExecutionHandler",
    "ExecutionResult",
    "ExternalCallError",
    "IssueSchedulerError",
    "JobDescriptor",
    "LoadReport",
    "NotFoundError",
    "ParseError",
    "ReconcileResult",
    "SchedulerRegistrationError",
    "SkipEntry",
    "Template",
    "TemplateSource",
    "TemplateStore",
    "ValidationError",
    "build_template",
    "load_templates",
    "reconcile",
    "reload_templates",
]
