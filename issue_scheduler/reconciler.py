"""
Replace a scheduler's recurring job set with one job per stored template.

Reconciliation is full replace, not incremental diff: every existing job is
removed, then the desired jobs are registered in store order. A rejected
registration fails the whole pass and leaves the scheduler empty rather than
holding a partial schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from issue_scheduler.errors import SchedulerRegistrationError
from issue_scheduler.templates import Template, TemplateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDescriptor:
    name: str
    schedule: str
    payload: Dict[str, Any]


class SchedulerHandle(Protocol):
    def list_jobs(self) -> List[JobDescriptor]:
        ...

    def delete_all_jobs(self) -> None:
        ...

    def register_job(self, name: str, schedule: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class ReconcileResult:
    removed: int
    registered: List[str] = field(default_factory=list)


def build_job(template: Template) -> JobDescriptor:
    # logical_time is filled in by the scheduler with the occurrence it fires.
    return JobDescriptor(
        name=template.name,
        schedule=template.schedule,
        payload={"template_name": template.name, "logical_time": None},
    )


def desired_jobs(store: TemplateStore) -> List[JobDescriptor]:
    return [build_job(template) for template in store.list()]


def is_in_sync(store: TemplateStore, scheduler: SchedulerHandle) -> bool:
    """True when the scheduler already holds exactly the store's jobs, in order."""
    current = [(job.name, job.schedule) for job in scheduler.list_jobs()]
    return current == [(job.name, job.schedule) for job in desired_jobs(store)]


def _clear_after_rejection(scheduler: SchedulerHandle, job_name: str) -> None:
    try:
        scheduler.delete_all_jobs()
    except Exception as exc:
        logger.error("Failed to clear jobs after %s was rejected: %s", job_name, exc)


def reconcile(store: TemplateStore, scheduler: SchedulerHandle) -> ReconcileResult:
    jobs = desired_jobs(store)
    removed = len(scheduler.list_jobs())
    scheduler.delete_all_jobs()
    logger.info("Removed %s existing scheduled job(s).", removed)

    result = ReconcileResult(removed=removed)
    for job in jobs:
        try:
            scheduler.register_job(job.name, job.schedule, dict(job.payload))
        except Exception as exc:
            logger.error(
                "Failed to register job %s: %s; clearing %s job(s) registered in this pass.",
                job.name,
                exc,
                len(result.registered),
            )
            _clear_after_rejection(scheduler, job.name)
            if isinstance(exc, SchedulerRegistrationError):
                raise
            raise SchedulerRegistrationError(job.name, str(exc)) from exc
        result.registered.append(job.name)
        logger.info("Registered job %s (%s)", job.name, job.schedule)

    logger.info("Reconciled %s scheduled job(s).", len(result.registered))
    return result
