"""
JobScheduleService -- operator-managed recurring schedules.

Contract:
    Creates, enables, disables and lists JobSchedules, and fires due ones:
    each firing submits a OneTime job through JobService, stamps
    ``last_run`` and computes ``next_scheduled_run`` (pure, see
    erp_jobs.domain.schedule).

Architecture: erp_jobs/services.

Invariants enforced:
    - All timestamps from injected Clock.
    - A schedule never has two unfinished jobs at once: if the job it
      submitted last time is still pending or running, the firing is
      skipped and the schedule still advances.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from erp_jobs.domain.schedule import compute_next_run, validate_schedule
from erp_jobs.domain.types import JobPriority, JobSchedule, ScheduledJob, ScheduleType
from erp_jobs.repositories import JobScheduleRepository, ScheduledJobRepository
from erp_jobs.services.job_service import JobService
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.exceptions import DuplicateKeyError, ValidationError
from erp_kernel.logging_config import get_logger

logger = get_logger("jobs.schedules")


class JobScheduleService:
    """Manage JobSchedules and fire the due ones.

    Non-goals:
        - Does NOT run jobs; fired jobs are picked up by JobWorker.
        - Does NOT handle timezone conversions (expects UTC).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        job_service: JobService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._job_service = job_service or JobService(session, self._clock)
        self._schedules = JobScheduleRepository(session, self._clock)
        self._jobs = ScheduledJobRepository(session, self._clock)

    def create_schedule(
        self,
        name: str,
        handler: str,
        schedule_type: ScheduleType | str,
        cron_expression: str | None = None,
        interval_seconds: int | None = None,
        specific_times: tuple[str, ...] | list[str] = (),
        payload: dict[str, Any] | None = None,
        job_name: str | None = None,
        priority: JobPriority | str = JobPriority.NORMAL,
        created_by: UUID | None = None,
    ) -> JobSchedule:
        schedule = JobSchedule(
            name=name,
            job_name=job_name or name,
            handler=handler,
            schedule_type=ScheduleType.parse(schedule_type),
            cron_expression=cron_expression,
            interval_seconds=interval_seconds,
            specific_times=tuple(specific_times),
            default_payload=payload,
            priority=JobPriority.parse(priority),
            created_by=created_by,
            updated_by=created_by,
        )
        errors = validate_schedule(schedule)
        if errors:
            raise ValidationError(f"Invalid schedule {name!r}: " + "; ".join(errors))
        if self._schedules.name_exists(name):
            raise DuplicateKeyError("JobSchedule", f"name={name}")

        schedule = schedule.evolve(
            next_scheduled_run=compute_next_run(schedule, self._clock.now()),
        )
        created = self._schedules.create(schedule)
        logger.info(
            "job_schedule_created",
            extra={
                "schedule_id": str(created.id),
                "schedule_name": created.name,
                "schedule_type": created.schedule_type.value,
                "next_scheduled_run": created.next_scheduled_run,
            },
        )
        return created

    def get_schedule(self, schedule_id: UUID) -> JobSchedule:
        return self._schedules.find_by_id(schedule_id)

    def list_schedules(self, pagination: Pagination | None = None) -> Paginated[JobSchedule]:
        return self._schedules.find_all(pagination or Pagination())

    def enable(self, schedule_id: UUID) -> JobSchedule:
        """Enable a schedule.  Its next run is recomputed from now."""
        schedule = self._schedules.find_by_id(schedule_id)
        if schedule.enabled:
            return schedule
        saved = self._schedules.update(
            schedule.evolve(
                enabled=True,
                next_scheduled_run=compute_next_run(schedule, self._clock.now()),
            )
        )
        logger.info("job_schedule_enabled", extra={"schedule_id": str(schedule_id)})
        return saved

    def disable(self, schedule_id: UUID) -> JobSchedule:
        schedule = self._schedules.find_by_id(schedule_id)
        if not schedule.enabled:
            return schedule
        saved = self._schedules.update(schedule.evolve(enabled=False))
        logger.info("job_schedule_disabled", extra={"schedule_id": str(schedule_id)})
        return saved

    def delete_schedule(self, schedule_id: UUID) -> None:
        self._schedules.delete(schedule_id)
        logger.info("job_schedule_deleted", extra={"schedule_id": str(schedule_id)})

    def trigger_due_schedules(self) -> list[ScheduledJob]:
        """Fire every enabled schedule whose next run has come.

        Returns the jobs submitted.
        """
        now = self._clock.now()
        submitted: list[ScheduledJob] = []

        for schedule in self._schedules.find_due(now):
            if self._jobs.find_active_by_name(schedule.job_name) is not None:
                logger.warning(
                    "job_schedule_skipped",
                    extra={
                        "schedule_id": str(schedule.id),
                        "job_name": schedule.job_name,
                        "reason": "previous job still active",
                    },
                )
                job = None
            else:
                job = self._job_service.submit(
                    name=schedule.job_name,
                    handler=schedule.handler,
                    payload=schedule.default_payload,
                    priority=schedule.priority,
                    created_by=schedule.created_by,
                )
                submitted.append(job)

            next_run = compute_next_run(schedule, now)
            self._schedules.update(schedule.evolve(last_run=now, next_scheduled_run=next_run))
            logger.info(
                "job_schedule_fired",
                extra={
                    "schedule_id": str(schedule.id),
                    "schedule_name": schedule.name,
                    "job_id": str(job.id) if job is not None else None,
                    "next_scheduled_run": next_run,
                },
            )

        return submitted
