"""
Cron dialect used by cron jobs and cron schedules.

Contract:
    ``parse_cron(expression)`` and ``next_run_after(spec, after)`` are PURE --
    no I/O, all instants supplied by the caller and evaluated in UTC.

Dialect:
    Six fields ``second minute hour day-of-month month day-of-week``.  A
    five-field expression is accepted and treated as ``0 <expression>``.

    Each field supports ``*``, ``?`` (same as ``*``), single values, ranges
    (``1-5``), lists (``1,15,30``) and steps (``*/15``, ``10-40/10``,
    ``5/20``).  Months accept ``JAN``..``DEC`` and days of week accept
    ``SUN``..``SAT``; ``0`` and ``7`` are both Sunday.

    A time matches when every field matches.  Day-of-month and day-of-week
    are combined with AND.

Failure modes:
    InvalidCronExpressionError for malformed expressions and for
    expressions that can never fire (e.g. 30 February).
"""

from __future__ import annotations

import calendar
from bisect import bisect_left
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from erp_kernel.exceptions import InvalidCronExpressionError

_MONTH_NAMES = {
    name.upper(): index for index, name in enumerate(calendar.month_abbr) if name
}
_DAY_NAMES = {"SUN": 0, "MON": 1, "TUE": 2, "WED": 3, "THU": 4, "FRI": 5, "SAT": 6}

# A valid expression fires at least once in any eight-year window
# (29 February included).
_SEARCH_YEARS = 8


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression.  Each field is a frozenset of allowed values."""

    seconds: frozenset[int] = field(default_factory=lambda: frozenset({0}))
    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))
    expression: str = ""


def _value(token: str, names: dict[str, int]) -> int:
    upper = token.upper()
    if upper in names:
        return names[upper]
    if not token.isdigit():
        raise ValueError(f"Not a number: {token!r}")
    return int(token)


def _parse_cron_field(
    field_str: str,
    min_val: int,
    max_val: int,
    names: dict[str, int] | None = None,
) -> frozenset[int]:
    """Parse one cron field into the set of values it allows.

    Raises:
        ValueError: If the field is syntactically invalid or out of range.
    """
    names = names or {}
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError("Empty list element")

        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            if not step_str.isdigit() or int(step_str) <= 0:
                raise ValueError(f"Step must be a positive integer: {step_str!r}")
            step = int(step_str)
            # "5/20" means "from 5 to the end, every 20"
            if part not in ("*", "?") and "-" not in part:
                part = f"{part}-{max_val}"

        if part in ("*", "?"):
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = _value(s, names), _value(e, names)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = end = _value(part, names)

        if start < min_val or end > max_val:
            raise ValueError(f"Value outside range [{min_val}, {max_val}]: {part!r}")
        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a six-field (or five-field) cron expression.

    Raises:
        InvalidCronExpressionError: If the expression is malformed.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidCronExpressionError(str(expression), "expression is empty")

    parts = expression.split()
    if len(parts) == 5:
        parts = ["0", *parts]
    if len(parts) != 6:
        raise InvalidCronExpressionError(
            expression, f"expected 6 fields (or 5 without seconds), got {len(parts)}",
        )

    labels = ("second", "minute", "hour", "day-of-month", "month", "day-of-week")
    bounds = ((0, 59, None), (0, 59, None), (0, 23, None), (1, 31, None),
              (1, 12, _MONTH_NAMES), (0, 7, _DAY_NAMES))
    parsed: list[frozenset[int]] = []
    for label, part, (low, high, names) in zip(labels, parts, bounds):
        try:
            parsed.append(_parse_cron_field(part, low, high, names))
        except ValueError as exc:
            raise InvalidCronExpressionError(expression, f"{label} field: {exc}") from None

    days_of_week = frozenset(0 if d == 7 else d for d in parsed[5])
    spec = CronSpec(
        seconds=parsed[0],
        minutes=parsed[1],
        hours=parsed[2],
        days_of_month=parsed[3],
        months=parsed[4],
        days_of_week=days_of_week,
        expression=" ".join(parts),
    )
    if not any(
        day <= calendar.monthrange(2000, month)[1]
        for month in spec.months
        for day in spec.days_of_month
    ):
        raise InvalidCronExpressionError(expression, "day-of-month never occurs in the given months")
    return spec


def _cron_weekday(dt: datetime) -> int:
    # Python: Monday=0 .. Sunday=6.  Cron: Sunday=0 .. Saturday=6.
    return (dt.weekday() + 1) % 7


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """True when ``dt`` (UTC, whole seconds) satisfies every field."""
    return (
        dt.second in spec.seconds
        and dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and _cron_weekday(dt) in spec.days_of_week
    )


def _next_in(values: frozenset[int], current: int) -> int | None:
    ordered = sorted(values)
    index = bisect_left(ordered, current)
    return ordered[index] if index < len(ordered) else None


def next_run_after(spec: CronSpec, after: datetime) -> datetime:
    """The earliest instant strictly after ``after`` that matches ``spec``.

    Walks field by field (month, day, hour, minute, second), jumping
    straight to the next allowed value instead of scanning every second.

    Raises:
        InvalidCronExpressionError: If nothing matches within eight years.
    """
    if after.tzinfo is None:
        after = after.replace(tzinfo=UTC)
    candidate = after.astimezone(UTC).replace(microsecond=0) + timedelta(seconds=1)
    limit_year = candidate.year + _SEARCH_YEARS

    while candidate.year <= limit_year:
        if candidate.month not in spec.months:
            month = _next_in(spec.months, candidate.month)
            if month is None:
                candidate = datetime(candidate.year + 1, min(spec.months), 1, tzinfo=UTC)
            else:
                candidate = datetime(candidate.year, month, 1, tzinfo=UTC)
            continue

        if (
            candidate.day not in spec.days_of_month
            or _cron_weekday(candidate) not in spec.days_of_week
        ):
            candidate = candidate.replace(hour=0, minute=0, second=0) + timedelta(days=1)
            continue

        if candidate.hour not in spec.hours:
            hour = _next_in(spec.hours, candidate.hour)
            if hour is None:
                candidate = candidate.replace(hour=0, minute=0, second=0) + timedelta(days=1)
            else:
                candidate = candidate.replace(hour=hour, minute=0, second=0)
            continue

        if candidate.minute not in spec.minutes:
            minute = _next_in(spec.minutes, candidate.minute)
            if minute is None:
                candidate = candidate.replace(minute=0, second=0) + timedelta(hours=1)
            else:
                candidate = candidate.replace(minute=minute, second=0)
            continue

        if candidate.second not in spec.seconds:
            second = _next_in(spec.seconds, candidate.second)
            if second is None:
                candidate = candidate.replace(second=0) + timedelta(minutes=1)
            else:
                candidate = candidate.replace(second=second)
            continue

        return candidate

    raise InvalidCronExpressionError(
        spec.expression, f"no matching time within {_SEARCH_YEARS} years after {after.isoformat()}",
    )


def next_cron_run(expression: str, after: datetime) -> datetime:
    """Parse ``expression`` and return its next fire time after ``after``."""
    return next_run_after(parse_cron(expression), after)


def upcoming_runs(expression: str, after: datetime, count: int) -> list[datetime]:
    """The next ``count`` fire times after ``after``, in order."""
    spec = parse_cron(expression)
    runs: list[datetime] = []
    current = after
    for _ in range(count):
        current = next_run_after(spec, current)
        runs.append(current)
    return runs
