"""
Pure schedule evaluation functions.

Contract:
    ``compute_next_run()``, ``is_due()`` and ``validate_schedule()`` are
    PURE -- no I/O.  All timestamps come from the caller.

Architecture: erp_jobs/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta

from erp_jobs.domain.cron import next_cron_run, parse_cron
from erp_jobs.domain.types import JobSchedule, ScheduleType
from erp_kernel.exceptions import ValidationError

_FIXED_DELTAS = {
    ScheduleType.DAILY: timedelta(days=1),
    ScheduleType.WEEKLY: timedelta(weeks=1),
    ScheduleType.MONTHLY: timedelta(days=30),  # Approximate
}


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` (UTC).

    Raises:
        ValidationError: If the value is not a valid time of day.
    """
    try:
        return time.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time of day: {value!r} (expected HH:MM or HH:MM:SS)") from None


def next_specific_time(times: tuple[str, ...], after: datetime) -> datetime | None:
    """The first listed time of day strictly after ``after``, today or tomorrow."""
    if not times:
        return None
    parsed = sorted(parse_time_of_day(t) for t in times)
    day = after.date()
    for offset in (0, 1):
        for moment in parsed:
            candidate = datetime.combine(day + timedelta(days=offset), moment, tzinfo=after.tzinfo)
            if candidate > after:
                return candidate
    return None


def validate_schedule(schedule: JobSchedule) -> list[str]:
    """Return a list of problems with a schedule definition (empty if valid)."""
    errors: list[str] = []
    if not schedule.name or not schedule.name.strip():
        errors.append("name is required")
    if not schedule.handler or not schedule.handler.strip():
        errors.append("handler is required")

    if schedule.schedule_type is ScheduleType.CRON:
        if not schedule.cron_expression:
            errors.append("cron_expression is required for Cron schedules")
        else:
            try:
                parse_cron(schedule.cron_expression)
            except ValidationError as exc:
                errors.append(str(exc))
    elif schedule.schedule_type is ScheduleType.INTERVAL:
        if schedule.interval_seconds is None or schedule.interval_seconds <= 0:
            errors.append("interval_seconds must be positive for Interval schedules")
    elif schedule.schedule_type is ScheduleType.SPECIFIC_TIMES:
        if not schedule.specific_times:
            errors.append("specific_times is required for SpecificTimes schedules")
        for value in schedule.specific_times:
            try:
                parse_time_of_day(value)
            except ValidationError as exc:
                errors.append(str(exc))
    return errors


def compute_next_run(schedule: JobSchedule, now: datetime) -> datetime | None:
    """Compute when ``schedule`` should next fire, measured from ``now``.

    Cron follows the expression, Interval adds ``interval_seconds``, Daily,
    Weekly and Monthly add 1, 7 and 30 days, and SpecificTimes picks the
    next listed UTC time of day.
    """
    if schedule.schedule_type is ScheduleType.CRON:
        if not schedule.cron_expression:
            return None
        return next_cron_run(schedule.cron_expression, now)

    if schedule.schedule_type is ScheduleType.INTERVAL:
        if not schedule.interval_seconds:
            return None
        return now + timedelta(seconds=schedule.interval_seconds)

    if schedule.schedule_type is ScheduleType.SPECIFIC_TIMES:
        return next_specific_time(schedule.specific_times, now)

    delta = _FIXED_DELTAS.get(schedule.schedule_type)
    if delta is None:
        return None
    return now + delta


def is_due(schedule: JobSchedule, as_of: datetime) -> bool:
    """Enabled schedules fire once ``as_of`` reaches ``next_scheduled_run``."""
    if not schedule.enabled:
        return False
    if schedule.next_scheduled_run is None:
        return False
    return schedule.next_scheduled_run <= as_of
