"""
JobService -- durable job scheduling and run bookkeeping.

Contract:
    Submits one-time, cron and interval jobs; answers "what is due";
    arbitrates worker locks; and applies the outcome of each run to the
    job's counters and schedule.

Architecture: erp_jobs/services.  Uses erp_jobs.domain for pure cron
    evaluation and erp_jobs.repositories for persistence.

Invariants enforced:
    - All timestamps from the injected Clock.
    - ``run_count == success_count + failure_count`` after every
      ``update_after_run``.
    - ``avg_duration_ms`` is the running integer mean of run durations.
    - OneTime jobs finish as Completed or Failed; Recurring and Cron jobs
      return to Scheduled with a recomputed ``next_run_at``.
    - A lock is held by at most one worker; a lock older than the staleness
      threshold (default 10 minutes) may be taken over.
    - A job's timeout_seconds is shorter than the staleness threshold, so a
      live handler's lock is never reclaimed.
    - Running jobs cannot be cancelled, paused or deleted.

Failure modes:
    - InvalidCronExpressionError, ValidationError on bad input.
    - HandlerNotRegisteredError when a registry is supplied and lacks the
      handler key.
    - DuplicateKeyError when an unfinished job already has the name.
    - JobStateError when the job's status forbids the operation.
    - NotFoundError for an unknown job id.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
    - Does NOT run handlers -- that is JobWorker's job.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_jobs.domain.cron import next_cron_run
from erp_jobs.domain.types import (
    RUNNABLE_STATUSES,
    ExecutionStatus,
    JobExecution,
    JobPriority,
    JobStatus,
    JobType,
    ScheduledJob,
)
from erp_jobs.models.jobs import ScheduledJobModel
from erp_jobs.repositories import JobExecutionRepository, ScheduledJobRepository
from erp_jobs.tasks.base import HandlerRegistry
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.exceptions import (
    DuplicateKeyError,
    HandlerNotRegisteredError,
    JobStateError,
    ValidationError,
)
from erp_kernel.logging_config import get_logger

logger = get_logger("jobs.service")

DEFAULT_LOCK_STALE_AFTER = timedelta(minutes=10)


class JobService:
    """Job scheduling service.

    Contract:
        - ``submit`` / ``schedule_cron`` / ``schedule_interval`` create jobs.
        - ``process_due_jobs`` lists what workers should pick up.
        - ``acquire_lock`` / ``release_lock`` arbitrate workers.
        - ``start_execution`` / ``finish_execution`` / ``update_after_run``
          / ``requeue_for_retry`` record a run.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: HandlerRegistry | None = None,
        lock_stale_after: timedelta = DEFAULT_LOCK_STALE_AFTER,
        default_max_retries: int = 3,
        default_retry_delay_seconds: int = 60,
        default_timeout_seconds: int = 300,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._registry = registry
        self._lock_stale_after = lock_stale_after
        self._default_max_retries = default_max_retries
        self._default_retry_delay = default_retry_delay_seconds
        self._default_timeout = default_timeout_seconds
        self._jobs = ScheduledJobRepository(session, self._clock)
        self._executions = JobExecutionRepository(session, self._clock)

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit(
        self,
        name: str,
        handler: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority | str | None = None,
        scheduled_at: datetime | None = None,
        created_by: UUID | None = None,
        max_retries: int | None = None,
        retry_delay_seconds: int | None = None,
        timeout_seconds: int | None = None,
        tags: tuple[str, ...] = (),
    ) -> ScheduledJob:
        """Create a OneTime job.

        Status is Scheduled when ``scheduled_at`` is given, else Pending
        (due immediately).
        """
        job = self._new_job(
            name=name,
            handler=handler,
            job_type=JobType.ONE_TIME,
            payload=payload,
            priority=priority,
            created_by=created_by,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
            timeout_seconds=timeout_seconds,
            tags=tags,
            status=JobStatus.SCHEDULED if scheduled_at is not None else JobStatus.PENDING,
            scheduled_at=scheduled_at,
            next_run_at=scheduled_at,
        )
        return self._create(job)

    def schedule_cron(
        self,
        name: str,
        handler: str,
        cron_expression: str,
        payload: dict[str, Any] | None = None,
        priority: JobPriority | str | None = None,
        created_by: UUID | None = None,
        max_retries: int | None = None,
        timeout_seconds: int | None = None,
        tags: tuple[str, ...] = (),
    ) -> ScheduledJob:
        """Create a Cron job; ``next_run_at`` is the expression's next fire time."""
        next_run = next_cron_run(cron_expression, self._clock.now())
        job = self._new_job(
            name=name,
            handler=handler,
            job_type=JobType.CRON,
            payload=payload,
            priority=priority,
            created_by=created_by,
            max_retries=max_retries,
            retry_delay_seconds=None,
            timeout_seconds=timeout_seconds,
            tags=tags,
            status=JobStatus.SCHEDULED,
            cron_expression=cron_expression.strip(),
            next_run_at=next_run,
        )
        return self._create(job)

    def schedule_interval(
        self,
        name: str,
        handler: str,
        interval_seconds: int,
        payload: dict[str, Any] | None = None,
        priority: JobPriority | str | None = None,
        created_by: UUID | None = None,
        max_retries: int | None = None,
        timeout_seconds: int | None = None,
        tags: tuple[str, ...] = (),
    ) -> ScheduledJob:
        """Create a Recurring job that runs every ``interval_seconds``."""
        if not isinstance(interval_seconds, int) or interval_seconds <= 0:
            raise ValidationError(f"interval_seconds must be a positive integer, got {interval_seconds!r}")
        job = self._new_job(
            name=name,
            handler=handler,
            job_type=JobType.RECURRING,
            payload=payload,
            priority=priority,
            created_by=created_by,
            max_retries=max_retries,
            retry_delay_seconds=None,
            timeout_seconds=timeout_seconds,
            tags=tags,
            status=JobStatus.SCHEDULED,
            interval_seconds=interval_seconds,
            next_run_at=self._clock.now() + timedelta(seconds=interval_seconds),
        )
        return self._create(job)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, job_id: UUID) -> ScheduledJob:
        return self._jobs.find_by_id(job_id)

    def find_active_by_name(self, name: str) -> ScheduledJob | None:
        """The unfinished job called ``name``, if any."""
        return self._jobs.find_active_by_name(name)

    def list_jobs(
        self,
        pagination: Pagination | None = None,
        status: JobStatus | None = None,
    ) -> Paginated[ScheduledJob]:
        criteria = []
        if status is not None:
            criteria.append(ScheduledJobModel.status == status)
        return self._jobs.find_all(pagination or Pagination(), *criteria)

    def list_executions(
        self,
        job_id: UUID,
        pagination: Pagination | None = None,
    ) -> Paginated[JobExecution]:
        self._jobs.find_by_id(job_id)
        return self._executions.list_by_job(job_id, pagination or Pagination())

    def process_due_jobs(self, limit: int = 10) -> list[ScheduledJob]:
        """Jobs due at the clock's now, highest priority first, then FIFO.

        Includes Running jobs whose lock went stale, so a job left behind by
        a crashed worker is offered again.
        """
        if limit <= 0:
            raise ValidationError(f"limit must be positive, got {limit}")
        now = self._clock.now()
        return self._jobs.find_due(now, now - self._lock_stale_after, limit)

    # -------------------------------------------------------------------------
    # Lifecycle commands
    # -------------------------------------------------------------------------

    def cancel(self, job_id: UUID) -> ScheduledJob:
        job = self._jobs.find_by_id(job_id)
        if job.status is JobStatus.RUNNING:
            raise JobStateError(job_id, job.status.value, "cancel")
        if job.status is JobStatus.CANCELLED:
            return job
        saved = self._jobs.update(job.evolve(status=JobStatus.CANCELLED, next_run_at=None))
        self._jobs.clear_lock(job_id, self._clock.now())
        logger.info(
            "job_cancelled",
            extra={"job_id": str(job_id), "job_name": job.name, "from_status": job.status.value},
        )
        return self._jobs.find_by_id(saved.id)

    def retry(self, job_id: UUID) -> ScheduledJob:
        """Re-queue a job by hand: retry_count reset, Pending, due now."""
        job = self._jobs.find_by_id(job_id)
        if job.status is JobStatus.RUNNING:
            raise JobStateError(job_id, job.status.value, "retry")
        active = self._jobs.find_active_by_name(job.name)
        if active is not None and active.id != job.id:
            raise DuplicateKeyError("ScheduledJob", f"name={job.name}")
        now = self._clock.now()
        saved = self._jobs.update(
            job.evolve(
                status=JobStatus.PENDING,
                retry_count=0,
                scheduled_at=now,
                next_run_at=now,
                completed_at=None,
            )
        )
        logger.info(
            "job_retry_requested",
            extra={"job_id": str(job_id), "job_name": job.name, "from_status": job.status.value},
        )
        return saved

    def pause(self, job_id: UUID) -> ScheduledJob:
        job = self._jobs.find_by_id(job_id)
        if job.status is JobStatus.PAUSED:
            return job
        if job.status not in RUNNABLE_STATUSES:
            raise JobStateError(job_id, job.status.value, "pause")
        saved = self._jobs.update(job.evolve(status=JobStatus.PAUSED))
        logger.info("job_paused", extra={"job_id": str(job_id), "job_name": job.name})
        return saved

    def resume(self, job_id: UUID) -> ScheduledJob:
        """Return a Paused job to Scheduled (or Pending when it has no run time)."""
        job = self._jobs.find_by_id(job_id)
        if job.status is not JobStatus.PAUSED:
            raise JobStateError(job_id, job.status.value, "resume")
        now = self._clock.now()
        next_run = job.next_run_at
        if job.job_type is JobType.CRON and (next_run is None or next_run < now):
            next_run = next_cron_run(job.cron_expression, now)
        elif job.job_type is JobType.RECURRING and (next_run is None or next_run < now):
            next_run = now + timedelta(seconds=job.interval_seconds)
        status = JobStatus.SCHEDULED if next_run is not None else JobStatus.PENDING
        saved = self._jobs.update(job.evolve(status=status, next_run_at=next_run))
        logger.info(
            "job_resumed",
            extra={"job_id": str(job_id), "job_name": job.name, "next_run_at": next_run},
        )
        return saved

    def delete(self, job_id: UUID) -> None:
        job = self._jobs.find_by_id(job_id)
        if job.status is JobStatus.RUNNING:
            raise JobStateError(job_id, job.status.value, "delete")
        removed = self._executions.delete_for_job(job_id)
        self._jobs.delete(job_id)
        logger.info(
            "job_deleted",
            extra={"job_id": str(job_id), "job_name": job.name, "executions_removed": removed},
        )

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def acquire_lock(self, job_id: UUID, worker_id: str) -> bool:
        """Take the job's lock iff it is free or stale.  Exactly one caller wins."""
        now = self._clock.now()
        acquired = self._jobs.try_lock(job_id, worker_id, now, now - self._lock_stale_after)
        logger.debug(
            "job_lock_acquired" if acquired else "job_lock_contended",
            extra={"job_id": str(job_id), "worker_id": worker_id},
        )
        return acquired

    def release_lock(self, job_id: UUID) -> None:
        self._jobs.clear_lock(job_id, self._clock.now())
        logger.debug("job_lock_released", extra={"job_id": str(job_id)})

    # -------------------------------------------------------------------------
    # Run bookkeeping
    # -------------------------------------------------------------------------

    def start_execution(self, job_id: UUID, worker_id: str) -> JobExecution:
        """Mark a locked job Running and open its execution row.

        Executions left Running by a crashed worker are closed as Failed
        first.  When the job is a retry, the new execution points at the
        previous attempt.
        """
        job = self._jobs.find_by_id(job_id)
        if job.status not in RUNNABLE_STATUSES and job.status is not JobStatus.RUNNING:
            raise JobStateError(job_id, job.status.value, "start")

        now = self._clock.now()
        for abandoned in self._executions.running_for_job(job_id):
            self._executions.update(
                abandoned.evolve(
                    status=ExecutionStatus.FAILED,
                    completed_at=now,
                    error_message=f"Abandoned by worker {abandoned.worker_id}; lock expired",
                )
            )
            logger.warning(
                "job_execution_abandoned",
                extra={
                    "job_id": str(job_id),
                    "execution_id": str(abandoned.id),
                    "previous_worker_id": abandoned.worker_id,
                },
            )

        previous = self._executions.latest_for_job(job_id)
        self._jobs.update(job.evolve(status=JobStatus.RUNNING, started_at=now, completed_at=None))
        execution = self._executions.create(
            JobExecution(
                job_id=job_id,
                execution_number=self._executions.next_execution_number(job_id),
                started_at=now,
                status=ExecutionStatus.RUNNING,
                retry_of_id=previous.id if previous is not None and job.retry_count > 0 else None,
                retry_number=job.retry_count,
                worker_id=worker_id,
            )
        )
        logger.info(
            "job_run_started",
            extra={
                "job_id": str(job_id),
                "execution_id": str(execution.id),
                "execution_number": execution.execution_number,
                "worker_id": worker_id,
                "retry_number": job.retry_count,
            },
        )
        return execution

    def finish_execution(
        self,
        execution_id: UUID,
        status: ExecutionStatus,
        duration_ms: int,
        result: Any = None,
        error_message: str | None = None,
        error_stack_trace: str | None = None,
    ) -> JobExecution:
        execution = self._executions.find_by_id(execution_id)
        if result is not None and not isinstance(result, dict):
            result = {"value": result}
        return self._executions.update(
            execution.evolve(
                status=status,
                completed_at=self._clock.now(),
                duration_ms=duration_ms,
                result=result,
                error_message=error_message,
                error_stack_trace=error_stack_trace,
            )
        )

    def update_after_run(
        self,
        job_id: UUID,
        success: bool,
        error: str | None = None,
        duration_ms: int = 0,
    ) -> ScheduledJob:
        """Apply one run's outcome to counters and schedule.

        OneTime jobs become Completed or Failed.  Recurring and Cron jobs go
        back to Scheduled with the next run computed from now.
        """
        if duration_ms < 0:
            raise ValidationError(f"duration_ms must be non-negative, got {duration_ms}")
        job = self._jobs.find_by_id(job_id)
        now = self._clock.now()

        run_count = job.run_count + 1
        avg = ((job.avg_duration_ms or 0) * (run_count - 1) + duration_ms) // run_count
        changes: dict[str, Any] = {
            "run_count": run_count,
            "last_run_at": now,
            "last_duration_ms": duration_ms,
            "avg_duration_ms": avg,
        }
        if success:
            changes.update(
                success_count=job.success_count + 1, last_success_at=now, last_error=None,
            )
        else:
            changes.update(
                failure_count=job.failure_count + 1, last_failure_at=now, last_error=error,
            )

        if job.job_type is JobType.ONE_TIME:
            changes.update(
                status=JobStatus.COMPLETED if success else JobStatus.FAILED,
                completed_at=now,
            )
        else:
            changes.update(status=JobStatus.SCHEDULED, next_run_at=self._next_recurring_run(job, now))

        saved = self._jobs.update(job.evolve(**changes))
        logger.info(
            "job_run_succeeded" if success else "job_run_failed",
            extra={
                "job_id": str(job_id),
                "job_name": job.name,
                "duration_ms": duration_ms,
                "run_count": saved.run_count,
                "status": saved.status.value,
                "next_run_at": saved.next_run_at,
                "error": error,
            },
        )
        return saved

    def requeue_for_retry(self, job_id: UUID) -> ScheduledJob | None:
        """Schedule another attempt of a Failed OneTime job, if retries remain.

        The delay doubles with each attempt:
        ``retry_delay_seconds * 2 ** retry_count``.  Returns None when the
        job is not eligible (recurring, not Failed, or retries exhausted).
        """
        job = self._jobs.find_by_id(job_id)
        if job.job_type is not JobType.ONE_TIME or job.status is not JobStatus.FAILED:
            return None
        if job.retry_count >= job.max_retries:
            logger.warning(
                "job_retries_exhausted",
                extra={"job_id": str(job_id), "job_name": job.name, "retry_count": job.retry_count},
            )
            return None

        delay = timedelta(seconds=job.retry_delay_seconds * 2 ** job.retry_count)
        run_at = self._clock.now() + delay
        saved = self._jobs.update(
            job.evolve(
                status=JobStatus.PENDING,
                retry_count=job.retry_count + 1,
                scheduled_at=run_at,
                next_run_at=run_at,
                completed_at=None,
            )
        )
        logger.info(
            "job_retry_scheduled",
            extra={
                "job_id": str(job_id),
                "job_name": job.name,
                "retry_count": saved.retry_count,
                "delay_seconds": delay.total_seconds(),
                "next_run_at": run_at,
            },
        )
        return saved

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _new_job(
        self,
        *,
        name: str,
        handler: str,
        job_type: JobType,
        payload: dict[str, Any] | None,
        priority: JobPriority | str | None,
        created_by: UUID | None,
        max_retries: int | None,
        retry_delay_seconds: int | None,
        timeout_seconds: int | None,
        tags: tuple[str, ...],
        **fields: Any,
    ) -> ScheduledJob:
        if not name or not name.strip():
            raise ValidationError("Job name is required")
        if not handler or not handler.strip():
            raise ValidationError("Job handler is required")
        if self._registry is not None and handler not in self._registry:
            raise HandlerNotRegisteredError(handler)
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("Job payload must be a mapping")

        job = ScheduledJob(
            name=name.strip(),
            handler=handler,
            job_type=job_type,
            payload=payload,
            priority=JobPriority.parse(priority) if priority is not None else JobPriority.NORMAL,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            retry_delay_seconds=(
                self._default_retry_delay if retry_delay_seconds is None else retry_delay_seconds
            ),
            timeout_seconds=self._default_timeout if timeout_seconds is None else timeout_seconds,
            tags=tuple(tags),
            created_by=created_by,
            updated_by=created_by,
            **fields,
        )
        if job.max_retries < 0:
            raise ValidationError("max_retries must be non-negative")
        if job.retry_delay_seconds < 0:
            raise ValidationError("retry_delay_seconds must be non-negative")
        if job.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive")
        if job.timeout_seconds >= self._lock_stale_after.total_seconds():
            raise ValidationError(
                f"timeout_seconds ({job.timeout_seconds}) must be shorter than the lock "
                f"staleness threshold ({int(self._lock_stale_after.total_seconds())}s)"
            )
        return job

    def _create(self, job: ScheduledJob) -> ScheduledJob:
        if self._jobs.find_active_by_name(job.name) is not None:
            raise DuplicateKeyError("ScheduledJob", f"name={job.name}")
        created = self._jobs.create(job)
        logger.info(
            "job_submitted",
            extra={
                "job_id": str(created.id),
                "job_name": created.name,
                "handler": created.handler,
                "job_type": created.job_type.value,
                "priority": created.priority.value,
                "status": created.status.value,
                "next_run_at": created.next_run_at,
            },
        )
        return created

    def _next_recurring_run(self, job: ScheduledJob, now: datetime) -> datetime | None:
        if job.cron_expression:
            return next_cron_run(job.cron_expression, now)
        if job.interval_seconds:
            return now + timedelta(seconds=job.interval_seconds)
        return None
