"""
In-process scheduler host.

LocalScheduler keeps the recurring job set in memory, computes next fire
times from each job's recurrence expression and invokes the registered fire
callback when a job is due. Firings are serialized: one callback runs at a
time, in registration order.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Tuple

from issue_scheduler import recurrence
from issue_scheduler.errors import SchedulerRegistrationError
from issue_scheduler.reconciler import JobDescriptor

logger = logging.getLogger(__name__)
UTC = timezone.utc

FireCallback = Callable[[Dict[str, Any]], Any]


@dataclass
class JobState:
    job: JobDescriptor
    next_fire: Optional[datetime]
    anchor: datetime
    fire_count: int = 0


@dataclass(frozen=True)
class FireEvent:
    job_name: str
    scheduled_for: datetime
    success: bool
    error: Optional[str] = None


class LocalScheduler:
    def __init__(self, default_tz: tzinfo = UTC, clock: Optional[Callable[[], datetime]] = None):
        self.default_tz = default_tz
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._states: Dict[str, JobState] = {}
        # First registration time per (name, schedule); survives delete_all_jobs.
        self._anchors: Dict[Tuple[str, str], datetime] = {}
        self._callback: Optional[FireCallback] = None
        self._fire_lock = threading.Lock()

    def on_fire(self, callback: FireCallback) -> None:
        self._callback = callback

    def list_jobs(self) -> List[JobDescriptor]:
        return [state.job for state in self._states.values()]

    def delete_all_jobs(self) -> None:
        self._states.clear()

    def register_job(self, name: str, schedule: str, payload: Dict[str, Any]) -> None:
        if not isinstance(name, str) or not name.strip():
            raise SchedulerRegistrationError(str(name), "job name must be a non-empty string")
        if name in self._states:
            raise SchedulerRegistrationError(name, "a job with this name is already registered")
        if not recurrence.is_valid(schedule):
            raise SchedulerRegistrationError(name, f"invalid schedule '{schedule}'")
        if not isinstance(payload, dict) or payload.get("template_name") != name:
            raise SchedulerRegistrationError(name, "payload must carry the job's template_name")

        now = self._clock()
        anchor = self._anchors.setdefault((name, schedule), now)
        job = JobDescriptor(name=name, schedule=schedule, payload=dict(payload))
        next_fire = recurrence.next_fire_after(schedule, now, self.default_tz, anchor=anchor)
        self._states[name] = JobState(job=job, next_fire=next_fire, anchor=anchor)

    def next_fire_time(self, name: str) -> Optional[datetime]:
        state = self._states.get(name)
        return state.next_fire if state else None

    def run_pending(self, now: Optional[datetime] = None) -> List[FireEvent]:
        """Fire every job that is due at ``now``.

        A job that missed several occurrences fires once, for the latest
        missed occurrence; there is no catch-up.
        """
        now = now or self._clock()
        events: List[FireEvent] = []
        for state in list(self._states.values()):
            if state.next_fire is None or state.next_fire > now:
                continue
            schedule = state.job.schedule
            latest = recurrence.latest_fire_at_or_before(schedule, now, self.default_tz, anchor=state.anchor)
            scheduled_for = max(latest, state.next_fire) if latest is not None else state.next_fire
            state.next_fire = recurrence.next_fire_after(schedule, now, self.default_tz, anchor=state.anchor)
            state.fire_count += 1
            events.append(self._fire(state.job, scheduled_for))
        return events

    def _fire(self, job: JobDescriptor, scheduled_for: datetime) -> FireEvent:
        payload = dict(job.payload, logical_time=scheduled_for)
        if self._callback is None:
            logger.warning("No fire callback registered; dropping %s at %s", job.name, scheduled_for.isoformat())
            return FireEvent(job_name=job.name, scheduled_for=scheduled_for, success=False, error="no callback")

        logger.info("Firing %s (scheduled_for=%s)", job.name, scheduled_for.isoformat())
        with self._fire_lock:
            try:
                self._callback(payload)
            except Exception as exc:
                logger.error("Job %s failed: %s", job.name, exc)
                return FireEvent(job_name=job.name, scheduled_for=scheduled_for, success=False, error=str(exc))
        return FireEvent(job_name=job.name, scheduled_for=scheduled_for, success=True)

    def run_forever(
        self,
        poll_seconds: int,
        stop_event: Optional[threading.Event] = None,
        refresh: Optional[Callable[[], Any]] = None,
    ) -> None:
        """Poll until ``stop_event`` is set.

        ``refresh`` runs after each poll, once due jobs have fired, so a job
        set it replaces never loses an occurrence that fell inside the poll.
        """
        logger.info("Starting scheduler with %s job(s), poll_seconds=%s", len(self._states), poll_seconds)
        for state in self._states.values():
            if state.next_fire is not None:
                logger.info("  %s: next run %s", state.job.name, state.next_fire.isoformat())
        while stop_event is None or not stop_event.is_set():
            self.run_pending()
            if refresh is not None:
                refresh()
            if stop_event is not None:
                stop_event.wait(poll_seconds)
            else:
                time.sleep(poll_seconds)
