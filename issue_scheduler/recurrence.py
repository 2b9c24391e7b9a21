"""
Recurrence expression validation and next-fire computation.

Two syntaxes are accepted for a template schedule:

* cron: 5 fields, or 6 with a trailing seconds field, optionally followed by
  an IANA timezone name (``0 7 * * 1-5 America/Los_Angeles``)
* iCalendar recurrence rules (``RRULE:FREQ=WEEKLY;BYDAY=MO,WE,FR``)
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from dateutil.rrule import rrulestr

UTC = timezone.utc
CRON_FIELD_COUNTS = (5, 6)
TIMEZONE_TOKEN_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_+\-]*(/[A-Za-z0-9_+\-]+)*$")
RRULE_PREFIXES = ("RRULE:", "FREQ=", "DTSTART")


def _zone(name: str) -> Optional[ZoneInfo]:
    if not TIMEZONE_TOKEN_RE.match(name):
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def split_timezone(expr: str) -> Tuple[str, Optional[str]]:
    """Split a trailing timezone name off a cron expression."""
    tokens = expr.split()
    if len(tokens) > min(CRON_FIELD_COUNTS) and _zone(tokens[-1]) is not None:
        return " ".join(tokens[:-1]), tokens[-1]
    return " ".join(tokens), None


def is_rrule(expr: object) -> bool:
    if not isinstance(expr, str) or not expr.strip():
        return False
    if not expr.strip().upper().startswith(RRULE_PREFIXES):
        return False
    try:
        rrulestr(expr.strip(), dtstart=datetime(2000, 1, 1), ignoretz=True)
    except Exception:
        return False
    return True


def is_cron(expr: object) -> bool:
    if not isinstance(expr, str) or not expr.strip():
        return False
    cron_expr, _ = split_timezone(expr)
    if len(cron_expr.split()) not in CRON_FIELD_COUNTS:
        return False
    try:
        return bool(croniter.is_valid(cron_expr))
    except Exception:
        return False


def is_valid(expr: object) -> bool:
    return is_cron(expr) or is_rrule(expr)


def schedule_kind(expr: object) -> str:
    if is_cron(expr):
        return "cron"
    if is_rrule(expr):
        return "rrule"
    return "invalid"


def _ensure_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def rrule_anchor(reference: datetime, default_tz: tzinfo = UTC) -> datetime:
    """Return the naive local midnight following ``reference``.

    A rule without DTSTART starts there, so COUNT, UNTIL and INTERVAL are
    counted from one fixed point for as long as the caller keeps the same
    reference.
    """
    local = _ensure_aware_utc(reference).astimezone(default_tz).replace(tzinfo=None)
    return local.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)


def _rule(expr: str, anchor: datetime, default_tz: tzinfo):
    # An explicit DTSTART in the expression takes precedence over the anchor.
    return rrulestr(expr.strip(), dtstart=rrule_anchor(anchor, default_tz), ignoretz=True)


def next_fire_after(
    expr: str,
    after: datetime,
    default_tz: tzinfo = UTC,
    anchor: Optional[datetime] = None,
) -> Optional[datetime]:
    """Return the first occurrence strictly after ``after`` as an aware UTC datetime.

    ``anchor`` is the reference time for rules without DTSTART and defaults
    to ``after``. Returns None when the expression is invalid or the
    recurrence has ended.
    """
    after_utc = _ensure_aware_utc(after)
    if is_cron(expr):
        cron_expr, tz_name = split_timezone(expr)
        tz = ZoneInfo(tz_name) if tz_name else default_tz
        iterator = croniter(cron_expr, after_utc.astimezone(tz))
        nxt = iterator.get_next(datetime)
        if nxt.tzinfo is None:
            nxt = nxt.replace(tzinfo=tz)
        return nxt.astimezone(UTC)

    if is_rrule(expr):
        local_after = after_utc.astimezone(default_tz).replace(tzinfo=None)
        rule = _rule(expr, anchor or after_utc, default_tz)
        nxt = rule.after(local_after, inc=False)
        if nxt is None:
            return None
        return nxt.replace(tzinfo=default_tz).astimezone(UTC)

    return None


def latest_fire_at_or_before(
    expr: str,
    at: datetime,
    default_tz: tzinfo = UTC,
    anchor: Optional[datetime] = None,
) -> Optional[datetime]:
    """Return the last occurrence at or before ``at`` as an aware UTC datetime.

    Returns None when there is none, or the expression is invalid.
    """
    at_utc = _ensure_aware_utc(at)
    if is_cron(expr):
        cron_expr, tz_name = split_timezone(expr)
        tz = ZoneInfo(tz_name) if tz_name else default_tz
        # get_prev is strict; start one second late so an occurrence at ``at`` counts.
        iterator = croniter(cron_expr, (at_utc + timedelta(seconds=1)).astimezone(tz))
        prev = iterator.get_prev(datetime)
        if prev.tzinfo is None:
            prev = prev.replace(tzinfo=tz)
        if prev.astimezone(UTC) > at_utc:
            prev = iterator.get_prev(datetime)
            if prev.tzinfo is None:
                prev = prev.replace(tzinfo=tz)
        return prev.astimezone(UTC)

    if is_rrule(expr):
        local_at = at_utc.astimezone(default_tz).replace(tzinfo=None)
        rule = _rule(expr, anchor or at_utc, default_tz)
        prev = rule.before(local_at, inc=True)
        if prev is None:
            return None
        return prev.replace(tzinfo=default_tz).astimezone(UTC)

    return None


def next_fire_times(
    expr: str,
    count: int,
    now: Optional[datetime] = None,
    default_tz: tzinfo = UTC,
    anchor: Optional[datetime] = None,
) -> List[datetime]:
    cursor = _ensure_aware_utc(now or datetime.now(tz=UTC))
    anchor = anchor or cursor
    runs: List[datetime] = []
    while len(runs) < count:
        nxt = next_fire_after(expr, cursor, default_tz, anchor=anchor)
        if nxt is None:
            break
        runs.append(nxt)
        cursor = nxt + timedelta(microseconds=1)
    return runs
