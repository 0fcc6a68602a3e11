"""
Cron and interval schedule arithmetic.

Everything here is a pure function of its arguments: the Job Registry passes
``from_time`` and the Scheduler passes ``now``, both read from an injected
Clock (AU-8).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from school_kernel.exceptions import InvalidCronExpressionError, InvalidScheduleError

from school_automation.domain.types import JobDefinition

# Next-match search horizon; long enough for expressions such as "0 0 29 2 *".
MAX_SEARCH_DAYS = 366 * 5

# (lowest, highest) accepted per field, in expression order.
_FIELD_BOUNDS = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 7))

# "*", "N" or "N-M", optionally followed by "/STEP".
_TERM = re.compile(r"^(?:(?P<star>\*)|(?P<lo>\d+)(?:-(?P<hi>\d+))?)(?:/(?P<step>\d+))?$")


def _every(lo: int, hi: int) -> frozenset[int]:
    return frozenset(range(lo, hi + 1))


@dataclass(frozen=True)
class CronSpec:
    """
    A parsed ``minute hour day-of-month month day-of-week`` expression.

    Weekdays count from 0=Sunday.  A ``*`` day field is "unrestricted"; when
    both day fields are restricted a date needs to satisfy only one of them,
    as in Vixie cron.
    """

    minutes: frozenset[int] = field(default_factory=lambda: _every(0, 59))
    hours: frozenset[int] = field(default_factory=lambda: _every(0, 23))
    days_of_month: frozenset[int] = field(default_factory=lambda: _every(1, 31))
    months: frozenset[int] = field(default_factory=lambda: _every(1, 12))
    days_of_week: frozenset[int] = field(default_factory=lambda: _every(0, 6))
    dom_restricted: bool = False
    dow_restricted: bool = False


def _parse_cron_field(text: str, lowest: int, highest: int) -> frozenset[int]:
    """
    Expand one comma-separated field into the set of values it selects.

    ``N/S`` runs from N up to ``highest``.  Raises ValueError on bad syntax,
    a zero step, a reversed range or a value outside [lowest, highest].
    """
    selected: set[int] = set()
    for term in text.split(","):
        m = _TERM.match(term.strip())
        if m is None:
            raise ValueError(f"cannot parse '{term}' in '{text}'")

        if m["star"]:
            lo, hi = lowest, highest
        else:
            lo = int(m["lo"])
            if m["hi"] is not None:
                hi = int(m["hi"])
            elif m["step"] is not None:
                hi = highest
            else:
                hi = lo
        step = int(m["step"]) if m["step"] is not None else 1

        if step == 0:
            raise ValueError(f"zero step in '{term}'")
        if lo > hi:
            raise ValueError(f"reversed range '{term}'")
        if lo < lowest or hi > highest:
            raise ValueError(f"'{term}' is outside {lowest}-{highest}")
        selected.update(range(lo, hi + 1, step))
    return frozenset(selected)


def parse_cron(expression: str) -> CronSpec:
    """
    Parse a five-field cron expression.

    Raises:
        InvalidCronExpressionError: Wrong field count or an unparseable field.
    """
    fields = expression.split()
    if len(fields) != len(_FIELD_BOUNDS):
        raise InvalidCronExpressionError(
            expression, f"expected 5 fields, got {len(fields)}",
        )
    try:
        minute, hour, dom, month, dow = (
            _parse_cron_field(text, *bounds) for text, bounds in zip(fields, _FIELD_BOUNDS)
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from None

    return CronSpec(
        minutes=minute,
        hours=hour,
        days_of_month=dom,
        months=month,
        days_of_week=frozenset(d % 7 for d in dow),  # 7 is Sunday too
        dom_restricted=fields[2] != "*",
        dow_restricted=fields[4] != "*",
    )


def _day_allowed(spec: CronSpec, moment: datetime) -> bool:
    if moment.month not in spec.months:
        return False
    by_date = moment.day in spec.days_of_month
    by_weekday = moment.isoweekday() % 7 in spec.days_of_week
    if spec.dom_restricted and spec.dow_restricted:
        return by_date or by_weekday
    return by_date and by_weekday


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """True if ``dt``'s minute is selected by ``spec``; seconds are ignored."""
    return _day_allowed(spec, dt) and dt.hour in spec.hours and dt.minute in spec.minutes


def next_cron_match(spec: CronSpec, after: datetime) -> datetime | None:
    """
    First selected minute strictly after ``after``, or None if there is
    none within ``MAX_SEARCH_DAYS``.
    """
    limit = after + timedelta(days=MAX_SEARCH_DAYS)
    moment = after.replace(second=0, microsecond=0) + timedelta(minutes=1)

    while moment <= limit:
        if not _day_allowed(spec, moment):
            moment = moment.replace(hour=0, minute=0) + timedelta(days=1)
            continue
        if moment.hour not in spec.hours:
            moment = moment.replace(minute=0) + timedelta(hours=1)
            continue
        if moment.minute in spec.minutes:
            return moment
        moment += timedelta(minutes=1)
    return None


# -----------------------------------------------------------------------------
# Job schedules
# -----------------------------------------------------------------------------


def validate_schedule(definition: JobDefinition) -> None:
    """Check that a definition carries exactly one usable schedule.

    Raises:
        InvalidScheduleError: Neither or both of cron/interval given, or a
            non-positive interval.
        InvalidCronExpressionError: Malformed cron expression.
    """
    has_cron = definition.schedule is not None
    has_interval = definition.interval_seconds is not None
    if has_cron == has_interval:
        raise InvalidScheduleError(
            definition.job_id,
            "exactly one of schedule (cron) or interval_seconds is required",
        )
    if has_cron:
        parse_cron(definition.schedule)
    elif definition.interval_seconds <= 0:
        raise InvalidScheduleError(
            definition.job_id,
            f"interval_seconds must be positive, got {definition.interval_seconds}",
        )


def compute_next_run(definition: JobDefinition, from_time: datetime) -> datetime:
    """Compute the next run time strictly after ``from_time``.

    Cron schedules return the next matching minute; interval schedules
    return ``from_time + interval_seconds``.

    Raises:
        InvalidScheduleError: No schedule, or the cron never matches within
            the search window.
        InvalidCronExpressionError: Malformed cron expression.
    """
    validate_schedule(definition)

    if definition.interval_seconds is not None:
        return from_time + timedelta(seconds=definition.interval_seconds)

    next_run = next_cron_match(parse_cron(definition.schedule), from_time)
    if next_run is None:
        raise InvalidScheduleError(
            definition.job_id,
            f"cron '{definition.schedule}' has no match within "
            f"{MAX_SEARCH_DAYS} days of {from_time.isoformat()}",
        )
    return next_run


def is_due(definition: JobDefinition, now: datetime) -> bool:
    """True when an active job's next_run has been reached."""
    return (
        definition.is_active
        and definition.next_run is not None
        and definition.next_run <= now
    )
