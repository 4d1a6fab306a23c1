"""Pure schedule evaluation: next run, due check and definition validation."""

from datetime import UTC, datetime, time, timedelta

import pytest

from erp_jobs.domain.schedule import (
    compute_next_run,
    is_due,
    next_specific_time,
    parse_time_of_day,
    validate_schedule,
)
from erp_jobs.domain.types import JobSchedule, ScheduleType
from erp_kernel.exceptions import ValidationError

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)


def make_schedule(schedule_type: ScheduleType, **overrides) -> JobSchedule:
    fields = {
        "name": "nightly-report",
        "job_name": "nightly-report",
        "handler": "reports.nightly",
        "schedule_type": schedule_type,
    }
    fields.update(overrides)
    return JobSchedule(**fields)


class TestComputeNextRun:

    def test_cron(self):
        schedule = make_schedule(ScheduleType.CRON, cron_expression="0 30 * * * *")
        assert compute_next_run(schedule, NOW) == NOW + timedelta(minutes=30)

    def test_interval(self):
        schedule = make_schedule(ScheduleType.INTERVAL, interval_seconds=90)
        assert compute_next_run(schedule, NOW) == NOW + timedelta(seconds=90)

    @pytest.mark.parametrize(
        "schedule_type,delta",
        [
            (ScheduleType.DAILY, timedelta(days=1)),
            (ScheduleType.WEEKLY, timedelta(days=7)),
            (ScheduleType.MONTHLY, timedelta(days=30)),
        ],
    )
    def test_fixed_periods(self, schedule_type, delta):
        assert compute_next_run(make_schedule(schedule_type), NOW) == NOW + delta

    def test_specific_times_later_today(self):
        schedule = make_schedule(
            ScheduleType.SPECIFIC_TIMES, specific_times=("08:00", "18:30", "13:15:30"),
        )
        assert compute_next_run(schedule, NOW) == datetime(2026, 2, 1, 13, 15, 30, tzinfo=UTC)

    def test_specific_times_wrap_to_tomorrow(self):
        schedule = make_schedule(ScheduleType.SPECIFIC_TIMES, specific_times=("08:00",))
        assert compute_next_run(schedule, NOW) == datetime(2026, 2, 2, 8, 0, tzinfo=UTC)

    def test_missing_definition_has_no_next_run(self):
        assert compute_next_run(make_schedule(ScheduleType.CRON), NOW) is None
        assert compute_next_run(make_schedule(ScheduleType.INTERVAL), NOW) is None


class TestSpecificTimes:

    def test_parse_time_of_day(self):
        assert parse_time_of_day(" 07:05 ") == time(7, 5)
        assert parse_time_of_day("23:59:59") == time(23, 59, 59)

    @pytest.mark.parametrize("value", ["25:00", "noon", "", "7"])
    def test_parse_rejects_garbage(self, value):
        with pytest.raises(ValidationError):
            parse_time_of_day(value)

    def test_exact_time_is_not_after(self):
        assert next_specific_time(("12:00",), NOW) == NOW + timedelta(days=1)

    def test_empty_list(self):
        assert next_specific_time((), NOW) is None


class TestIsDue:

    def test_due_when_next_run_reached(self):
        schedule = make_schedule(ScheduleType.DAILY, next_scheduled_run=NOW)
        assert is_due(schedule, NOW) is True
        assert is_due(schedule, NOW - timedelta(seconds=1)) is False

    def test_disabled_never_due(self):
        schedule = make_schedule(ScheduleType.DAILY, next_scheduled_run=NOW, enabled=False)
        assert is_due(schedule, NOW) is False

    def test_without_next_run_never_due(self):
        assert is_due(make_schedule(ScheduleType.DAILY), NOW) is False


class TestValidateSchedule:

    def test_valid_definitions(self):
        assert validate_schedule(make_schedule(ScheduleType.CRON, cron_expression="0 0 * * *")) == []
        assert validate_schedule(make_schedule(ScheduleType.INTERVAL, interval_seconds=5)) == []
        assert validate_schedule(make_schedule(ScheduleType.WEEKLY)) == []

    def test_cron_requires_valid_expression(self):
        assert validate_schedule(make_schedule(ScheduleType.CRON))
        errors = validate_schedule(make_schedule(ScheduleType.CRON, cron_expression="bad"))
        assert any("Invalid cron expression" in e for e in errors)

    def test_interval_must_be_positive(self):
        assert validate_schedule(make_schedule(ScheduleType.INTERVAL, interval_seconds=0))

    def test_specific_times_checked(self):
        assert validate_schedule(make_schedule(ScheduleType.SPECIFIC_TIMES))
        errors = validate_schedule(
            make_schedule(ScheduleType.SPECIFIC_TIMES, specific_times=("09:00", "9am")),
        )
        assert len(errors) == 1

    def test_blank_name_and_handler(self):
        errors = validate_schedule(make_schedule(ScheduleType.DAILY, name=" ", handler=""))
        assert "name is required" in errors
        assert "handler is required" in errors
