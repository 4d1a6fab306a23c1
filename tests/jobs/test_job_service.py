"""
Tests for JobService.

Covers:
- Submitting one-time, cron and interval jobs
- Due-job selection and priority ordering
- Run bookkeeping (counters, average duration, rescheduling)
- Retry back-off and exhaustion
- Cancel / pause / resume / retry / delete
- Lock arbitration and abandoned-lock recovery
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from erp_jobs.domain.types import ExecutionStatus, JobPriority, JobStatus, JobType
from erp_jobs.services import JobService
from erp_jobs.tasks import HandlerRegistry
from erp_kernel.domain.pagination import Pagination
from erp_kernel.exceptions import (
    DuplicateKeyError,
    HandlerNotRegisteredError,
    InvalidCronExpressionError,
    JobStateError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def job_service(session, deterministic_clock) -> JobService:
    return JobService(session, deterministic_clock)


def run(service: JobService, job_id, worker_id="worker-a", success=True, duration_ms=5, error=None):
    """Drive one attempt through the same calls the worker makes."""
    assert service.acquire_lock(job_id, worker_id)
    execution = service.start_execution(job_id, worker_id)
    service.finish_execution(
        execution.id,
        ExecutionStatus.COMPLETED if success else ExecutionStatus.FAILED,
        duration_ms,
        error_message=error,
    )
    service.update_after_run(job_id, success=success, error=error, duration_ms=duration_ms)
    if not success:
        service.requeue_for_retry(job_id)
    service.release_lock(job_id)
    return execution, service.get(job_id)


class TestSubmit:

    def test_submit_without_time_is_pending_and_due(self, job_service, test_actor_id):
        job = job_service.submit("email-blast", "send_email", {"batch": 1}, created_by=test_actor_id)

        assert job.job_type is JobType.ONE_TIME
        assert job.status is JobStatus.PENDING
        assert job.priority is JobPriority.NORMAL
        assert job.payload == {"batch": 1}
        assert job.created_by == test_actor_id
        assert [j.id for j in job_service.process_due_jobs()] == [job.id]

    def test_submit_for_later_is_scheduled(self, job_service, deterministic_clock):
        run_at = deterministic_clock.now() + timedelta(hours=1)
        job = job_service.submit("later", "send_email", scheduled_at=run_at)

        assert job.status is JobStatus.SCHEDULED
        assert job.next_run_at == run_at
        assert job_service.process_due_jobs() == []

        deterministic_clock.set_time(run_at)
        assert [j.id for j in job_service.process_due_jobs()] == [job.id]

    def test_defaults_come_from_service(self, session, deterministic_clock):
        service = JobService(
            session,
            deterministic_clock,
            default_max_retries=7,
            default_retry_delay_seconds=15,
            default_timeout_seconds=30,
        )
        job = service.submit("configured", "noop")
        assert (job.max_retries, job.retry_delay_seconds, job.timeout_seconds) == (7, 15, 30)

    def test_tags_stored(self, job_service):
        job = job_service.submit("tagged", "noop", tags=("billing", "nightly"))
        assert job_service.get(job.id).tags == ("billing", "nightly")

    def test_unknown_handler_rejected_when_registry_given(self, session, deterministic_clock):
        registry = HandlerRegistry()
        registry.register("known", lambda payload, deadline: None)
        service = JobService(session, deterministic_clock, registry=registry)

        service.submit("ok", "known")
        with pytest.raises(HandlerNotRegisteredError):
            service.submit("bad", "unknown")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": " ", "handler": "noop"},
            {"name": "x", "handler": ""},
            {"name": "x", "handler": "noop", "payload": ["not", "a", "dict"]},
            {"name": "x", "handler": "noop", "timeout_seconds": 0},
            {"name": "x", "handler": "noop", "timeout_seconds": 600},
            {"name": "x", "handler": "noop", "max_retries": -1},
            {"name": "x", "handler": "noop", "retry_delay_seconds": -5},
        ],
    )
    def test_invalid_input(self, job_service, kwargs):
        with pytest.raises(ValidationError):
            job_service.submit(**kwargs)

    def test_timeout_bounded_by_configured_staleness(self, session, deterministic_clock):
        service = JobService(session, deterministic_clock, lock_stale_after=timedelta(minutes=2))
        assert service.submit("quick", "noop", timeout_seconds=119).timeout_seconds == 119
        with pytest.raises(ValidationError, match="staleness"):
            service.submit("slow", "noop", timeout_seconds=120)

    def test_submission_logged_with_job_name(self, job_service, captured_logs):
        job = job_service.submit("email-blast", "send_email")

        record = next(r for r in captured_logs() if r["message"] == "job_submitted")
        assert record["job_name"] == "email-blast"
        assert record["job_id"] == str(job.id)
        assert record["logger"] == "erp.jobs.service"

    def test_duplicate_active_name_rejected(self, job_service):
        job_service.submit("email-blast", "send_email")
        with pytest.raises(DuplicateKeyError):
            job_service.submit("email-blast", "send_email")

    def test_name_reusable_once_finished(self, job_service):
        first = job_service.submit("email-blast", "send_email")
        run(job_service, first.id)

        second = job_service.submit("email-blast", "send_email")
        assert second.id != first.id
        assert job_service.find_active_by_name("email-blast").id == second.id


class TestRecurringJobs:

    def test_cron_job_reschedules_after_run(self, job_service, deterministic_clock):
        deterministic_clock.set_time(datetime(2026, 2, 1, 10, 30, 15, tzinfo=UTC))
        job = job_service.schedule_cron("hourly-sync", "sync", "0 0 * * * *")

        assert job.status is JobStatus.SCHEDULED
        assert job.next_run_at == datetime(2026, 2, 1, 11, 0, 0, tzinfo=UTC)
        assert job_service.process_due_jobs() == []

        deterministic_clock.set_time(datetime(2026, 2, 1, 11, 0, 0, tzinfo=UTC))
        assert [j.id for j in job_service.process_due_jobs()] == [job.id]
        _, after = run(job_service, job.id)

        assert after.status is JobStatus.SCHEDULED
        assert after.next_run_at == datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)
        assert after.last_run_at == datetime(2026, 2, 1, 11, 0, 0, tzinfo=UTC)

    def test_failed_cron_run_still_reschedules(self, job_service, deterministic_clock):
        deterministic_clock.set_time(datetime(2026, 2, 1, 11, 0, 0, tzinfo=UTC))
        job = job_service.schedule_cron("hourly-sync", "sync", "0 0 * * * *")
        deterministic_clock.set_time(job.next_run_at)

        _, after = run(job_service, job.id, success=False, error="boom")

        assert after.status is JobStatus.SCHEDULED
        assert after.retry_count == 0
        assert after.last_error == "boom"
        assert after.next_run_at == datetime(2026, 2, 1, 13, 0, 0, tzinfo=UTC)

    def test_invalid_cron_rejected(self, job_service):
        with pytest.raises(InvalidCronExpressionError):
            job_service.schedule_cron("bad", "sync", "every tuesday")

    def test_interval_job(self, job_service, deterministic_clock):
        job = job_service.schedule_interval("heartbeat", "ping", 300)
        assert job.job_type is JobType.RECURRING
        assert job.next_run_at == deterministic_clock.now() + timedelta(seconds=300)

        deterministic_clock.advance(300)
        _, after = run(job_service, job.id)
        assert after.next_run_at == deterministic_clock.now() + timedelta(seconds=300)

    @pytest.mark.parametrize("interval", [0, -10])
    def test_interval_must_be_positive(self, job_service, interval):
        with pytest.raises(ValidationError):
            job_service.schedule_interval("heartbeat", "ping", interval)


class TestDueJobs:

    def test_priority_then_fifo(self, job_service, deterministic_clock):
        low = job_service.submit("low", "noop", priority=JobPriority.LOW)
        deterministic_clock.tick()
        normal_1 = job_service.submit("normal-1", "noop")
        deterministic_clock.tick()
        critical = job_service.submit("critical", "noop", priority="critical")
        deterministic_clock.tick()
        high = job_service.submit("high", "noop", priority=JobPriority.HIGH)
        deterministic_clock.tick()
        normal_2 = job_service.submit("normal-2", "noop")

        due = job_service.process_due_jobs(limit=10)

        assert [j.id for j in due] == [critical.id, high.id, normal_1.id, normal_2.id, low.id]

    def test_limit(self, job_service):
        for i in range(5):
            job_service.submit(f"job-{i}", "noop")
        assert len(job_service.process_due_jobs(limit=3)) == 3

    def test_limit_must_be_positive(self, job_service):
        with pytest.raises(ValidationError):
            job_service.process_due_jobs(limit=0)

    def test_locked_and_paused_jobs_not_due(self, job_service):
        locked = job_service.submit("locked", "noop")
        paused = job_service.submit("paused", "noop")
        free = job_service.submit("free", "noop")
        job_service.acquire_lock(locked.id, "worker-a")
        job_service.pause(paused.id)

        assert [j.id for j in job_service.process_due_jobs()] == [free.id]


class TestRunBookkeeping:

    def test_one_time_success(self, job_service):
        job = job_service.submit("email-blast", "send_email")

        execution, after = run(job_service, job.id, duration_ms=42)

        assert after.status is JobStatus.COMPLETED
        assert after.run_count == 1
        assert after.success_count == 1
        assert after.failure_count == 0
        assert after.avg_duration_ms == 42
        assert after.last_duration_ms == 42
        assert after.completed_at is not None
        assert after.locked_by is None
        stored = job_service.list_executions(job.id).items[0]
        assert stored.id == execution.id
        assert stored.status is ExecutionStatus.COMPLETED
        assert stored.duration_ms == 42
        assert stored.worker_id == "worker-a"

    def test_average_duration_is_integer_mean(self, job_service):
        job = job_service.schedule_interval("tick", "noop", 60)
        job_service.update_after_run(job.id, success=True, duration_ms=10)
        after = job_service.update_after_run(job.id, success=True, duration_ms=21)
        assert after.avg_duration_ms == 15

    def test_negative_duration_rejected(self, job_service):
        job = job_service.submit("x", "noop")
        with pytest.raises(ValidationError):
            job_service.update_after_run(job.id, success=True, duration_ms=-1)

    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        outcomes=st.lists(
            st.tuples(st.booleans(), st.integers(min_value=0, max_value=10_000)),
            min_size=1,
            max_size=12,
        )
    )
    def test_run_count_is_successes_plus_failures(self, job_service, outcomes):
        job = job_service.schedule_interval(f"prop-{uuid4()}", "noop", 60)
        for success, duration_ms in outcomes:
            job = job_service.update_after_run(job.id, success=success, duration_ms=duration_ms)
            assert job.run_count == job.success_count + job.failure_count

        assert job.run_count == len(outcomes)
        assert job.success_count == sum(1 for ok, _ in outcomes if ok)
        assert job.avg_duration_ms <= max(d for _, d in outcomes)

    def test_non_mapping_result_wrapped(self, job_service):
        job = job_service.submit("x", "noop")
        job_service.acquire_lock(job.id, "worker-a")
        execution = job_service.start_execution(job.id, "worker-a")
        finished = job_service.finish_execution(execution.id, ExecutionStatus.COMPLETED, 1, result=17)
        assert finished.result == {"value": 17}

    def test_cannot_start_finished_job(self, job_service):
        job = job_service.submit("x", "noop")
        run(job_service, job.id)
        with pytest.raises(JobStateError):
            job_service.start_execution(job.id, "worker-a")


class TestRetries:

    def test_retry_then_succeed(self, job_service, deterministic_clock):
        job = job_service.submit("email-blast", "send_email", max_retries=2, retry_delay_seconds=1)

        first, after_failure = run(job_service, job.id, success=False, error="smtp down")
        assert after_failure.status is JobStatus.PENDING
        assert after_failure.retry_count == 1
        assert after_failure.next_run_at == deterministic_clock.now() + timedelta(seconds=1)
        assert job_service.process_due_jobs() == []

        deterministic_clock.advance(1)
        assert [j.id for j in job_service.process_due_jobs()] == [job.id]
        second, final = run(job_service, job.id)

        assert final.status is JobStatus.COMPLETED
        assert final.run_count == 2
        assert final.failure_count == 1
        assert final.success_count == 1
        executions = job_service.list_executions(job.id).items
        assert [e.id for e in executions] == [second.id, first.id]
        assert executions[0].retry_of_id == first.id
        assert executions[0].retry_number == 1
        assert executions[1].retry_of_id is None
        assert executions[1].error_message == "smtp down"

    def test_backoff_doubles(self, job_service, deterministic_clock):
        job = job_service.submit("flaky", "noop", max_retries=3, retry_delay_seconds=10)
        delays = []
        for _ in range(3):
            deterministic_clock.set_time(job_service.get(job.id).next_run_at or deterministic_clock.now())
            start = deterministic_clock.now()
            _, after = run(job_service, job.id, success=False, error="x")
            delays.append(after.next_run_at - start)

        assert delays == [timedelta(seconds=10), timedelta(seconds=20), timedelta(seconds=40)]

    def test_retries_exhausted(self, job_service, deterministic_clock, captured_logs):
        job = job_service.submit("doomed", "noop", max_retries=1, retry_delay_seconds=0)
        run(job_service, job.id, success=False, error="x")
        _, final = run(job_service, job.id, success=False, error="x")

        assert final.status is JobStatus.FAILED
        assert final.failure_count == 2
        assert job_service.process_due_jobs() == []
        assert any(r["message"] == "job_retries_exhausted" for r in captured_logs())

    def test_no_retry_for_recurring(self, job_service):
        job = job_service.schedule_interval("tick", "noop", 60)
        job_service.update_after_run(job.id, success=False, error="x")
        assert job_service.requeue_for_retry(job.id) is None


class TestLifecycleCommands:

    def test_cancel(self, job_service):
        job = job_service.submit("x", "noop")
        cancelled = job_service.cancel(job.id)
        assert cancelled.status is JobStatus.CANCELLED
        assert cancelled.next_run_at is None
        assert job_service.cancel(job.id).status is JobStatus.CANCELLED
        assert job_service.process_due_jobs() == []

    def test_running_job_cannot_be_cancelled_paused_or_deleted(self, job_service):
        job = job_service.submit("x", "noop")
        job_service.acquire_lock(job.id, "worker-a")
        job_service.start_execution(job.id, "worker-a")

        with pytest.raises(JobStateError):
            job_service.cancel(job.id)
        with pytest.raises(JobStateError):
            job_service.pause(job.id)
        with pytest.raises(JobStateError):
            job_service.delete(job.id)

    def test_pause_and_resume_one_time(self, job_service):
        job = job_service.submit("x", "noop")
        assert job_service.pause(job.id).status is JobStatus.PAUSED
        assert job_service.process_due_jobs() == []

        resumed = job_service.resume(job.id)
        assert resumed.status is JobStatus.PENDING

    def test_resume_cron_recomputes_missed_run(self, job_service, deterministic_clock):
        job = job_service.schedule_cron("hourly", "sync", "0 0 * * * *")
        job_service.pause(job.id)
        deterministic_clock.advance(timedelta(hours=5, minutes=10))

        resumed = job_service.resume(job.id)

        assert resumed.status is JobStatus.SCHEDULED
        assert resumed.next_run_at == datetime(2026, 2, 1, 18, 0, tzinfo=UTC)

    def test_resume_requires_paused(self, job_service):
        job = job_service.submit("x", "noop")
        with pytest.raises(JobStateError):
            job_service.resume(job.id)

    def test_pause_finished_job_rejected(self, job_service):
        job = job_service.submit("x", "noop")
        run(job_service, job.id)
        with pytest.raises(JobStateError):
            job_service.pause(job.id)

    def test_manual_retry_of_failed_job(self, job_service, deterministic_clock):
        job = job_service.submit("x", "noop", max_retries=0)
        _, failed = run(job_service, job.id, success=False, error="x")
        assert failed.status is JobStatus.FAILED

        retried = job_service.retry(job.id)
        assert retried.status is JobStatus.PENDING
        assert retried.retry_count == 0
        assert retried.next_run_at == deterministic_clock.now()
        assert [j.id for j in job_service.process_due_jobs()] == [job.id]

    def test_manual_retry_blocked_by_newer_job_with_same_name(self, job_service):
        job = job_service.submit("x", "noop", max_retries=0)
        run(job_service, job.id, success=False)
        job_service.submit("x", "noop")
        with pytest.raises(DuplicateKeyError):
            job_service.retry(job.id)

    def test_delete_removes_executions(self, job_service):
        job = job_service.submit("x", "noop")
        run(job_service, job.id)

        job_service.delete(job.id)

        with pytest.raises(NotFoundError):
            job_service.get(job.id)
        with pytest.raises(NotFoundError):
            job_service.list_executions(job.id)

    def test_list_jobs_by_status(self, job_service):
        done = job_service.submit("done", "noop")
        run(job_service, done.id)
        job_service.submit("waiting", "noop")

        completed = job_service.list_jobs(Pagination(per_page=10), status=JobStatus.COMPLETED)
        assert [j.id for j in completed.items] == [done.id]
        assert job_service.list_jobs().total_count == 2

    def test_get_unknown(self, job_service):
        with pytest.raises(NotFoundError):
            job_service.get(uuid4())


class TestLocking:

    def test_only_one_holder(self, job_service):
        job = job_service.submit("x", "noop")
        assert job_service.acquire_lock(job.id, "worker-a") is True
        assert job_service.acquire_lock(job.id, "worker-b") is False
        assert job_service.get(job.id).locked_by == "worker-a"

    def test_release_frees_lock(self, job_service):
        job = job_service.submit("x", "noop")
        job_service.acquire_lock(job.id, "worker-a")
        job_service.release_lock(job.id)
        assert job_service.acquire_lock(job.id, "worker-b") is True

    def test_stale_lock_taken_over(self, job_service, deterministic_clock):
        job = job_service.submit("x", "noop")
        job_service.acquire_lock(job.id, "worker-a")

        deterministic_clock.advance(timedelta(minutes=9))
        assert job_service.acquire_lock(job.id, "worker-b") is False

        deterministic_clock.advance(timedelta(minutes=2))
        assert job_service.acquire_lock(job.id, "worker-b") is True
        assert job_service.get(job.id).locked_by == "worker-b"

    def test_abandoned_job_recovered(self, job_service, deterministic_clock, captured_logs):
        job = job_service.submit("x", "noop")
        job_service.acquire_lock(job.id, "worker-a")
        abandoned = job_service.start_execution(job.id, "worker-a")
        # worker-a dies here: no update_after_run, no release_lock

        assert job_service.process_due_jobs() == []
        deterministic_clock.advance(timedelta(minutes=11))
        due = job_service.process_due_jobs()
        assert [j.id for j in due] == [job.id]
        assert due[0].status is JobStatus.RUNNING

        assert job_service.acquire_lock(job.id, "worker-b") is True
        resumed = job_service.start_execution(job.id, "worker-b")

        executions = {e.id: e for e in job_service.list_executions(job.id).items}
        assert executions[abandoned.id].status is ExecutionStatus.FAILED
        assert "worker-a" in executions[abandoned.id].error_message
        assert executions[resumed.id].execution_number == 2
        assert any(r["message"] == "job_execution_abandoned" for r in captured_logs())
