"""
ORM models for job persistence.

Contract:
    ScheduledJobModel, JobExecutionModel and JobScheduleModel persist jobs,
    per-attempt executions and operator-managed schedules.  Each has
    ``to_dto()`` / ``from_dto()`` / ``apply_dto()``.

Architecture: erp_jobs/models.  Imports from erp_kernel.db only.

Invariants enforced:
    - ``name`` is UNIQUE among jobs that are not Completed, Failed or
      Cancelled (partial unique index).
    - UNIQUE(job_id, execution_number) on executions.
    - ``locked_by`` / ``locked_at`` are only written through the
      repository's conditional UPDATE, never through ``apply_dto``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from erp_jobs.domain.types import (
    ExecutionStatus,
    JobExecution,
    JobPriority,
    JobSchedule,
    JobStatus,
    JobType,
    ScheduledJob,
    ScheduleType,
)
from erp_kernel.db.base import TrackedBase, UUIDString
from erp_kernel.db.types import TextEnumType, UTCDateTime

_ACTIVE_NAME_PREDICATE = text("status NOT IN ('Completed', 'Failed', 'Cancelled')")


class ScheduledJobModel(TrackedBase):
    """Persistent scheduled job."""

    __tablename__ = "scheduled_jobs"

    __table_args__ = (
        Index("ix_scheduled_jobs_due", "status", "next_run_at"),
        Index("ix_scheduled_jobs_locked", "locked_by", "locked_at"),
        Index(
            "uq_scheduled_jobs_active_name",
            "name",
            unique=True,
            sqlite_where=_ACTIVE_NAME_PREDICATE,
            postgresql_where=_ACTIVE_NAME_PREDICATE,
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    job_type: Mapped[JobType] = mapped_column(
        TextEnumType(JobType), nullable=False, default=JobType.ONE_TIME,
    )
    handler: Mapped[str] = mapped_column(String(200), nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[JobPriority] = mapped_column(
        TextEnumType(JobPriority), nullable=False, default=JobPriority.NORMAL,
    )
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    interval_seconds: Mapped[int | None] = mapped_column(nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_failure_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[JobStatus] = mapped_column(
        TextEnumType(JobStatus), nullable=False, default=JobStatus.PENDING,
    )
    run_count: Mapped[int] = mapped_column(nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retry_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_duration_ms: Mapped[int | None] = mapped_column(nullable=True)
    avg_duration_ms: Mapped[int | None] = mapped_column(nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<ScheduledJob {self.name} {self.job_type} {self.status}>"

    def to_dto(self) -> ScheduledJob:
        return ScheduledJob(
            **self.envelope(),
            name=self.name,
            job_type=self.job_type,
            handler=self.handler,
            payload=self.payload,
            priority=self.priority,
            cron_expression=self.cron_expression,
            interval_seconds=self.interval_seconds,
            scheduled_at=self.scheduled_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            next_run_at=self.next_run_at,
            last_run_at=self.last_run_at,
            last_success_at=self.last_success_at,
            last_failure_at=self.last_failure_at,
            status=self.status,
            run_count=self.run_count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            max_retries=self.max_retries,
            retry_count=self.retry_count,
            retry_delay_seconds=self.retry_delay_seconds,
            timeout_seconds=self.timeout_seconds,
            last_error=self.last_error,
            last_duration_ms=self.last_duration_ms,
            avg_duration_ms=self.avg_duration_ms,
            tags=tuple(self.tags or ()),
            locked_by=self.locked_by,
            locked_at=self.locked_at,
        )

    @classmethod
    def from_dto(cls, dto: ScheduledJob) -> ScheduledJobModel:
        model = cls()
        model.apply_envelope(dto)
        model.name = dto.name
        model.job_type = dto.job_type
        model.handler = dto.handler
        model.locked_by = dto.locked_by
        model.locked_at = dto.locked_at
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: ScheduledJob) -> None:
        self.payload = dto.payload
        self.priority = dto.priority
        self.cron_expression = dto.cron_expression
        self.interval_seconds = dto.interval_seconds
        self.scheduled_at = dto.scheduled_at
        self.started_at = dto.started_at
        self.completed_at = dto.completed_at
        self.next_run_at = dto.next_run_at
        self.last_run_at = dto.last_run_at
        self.last_success_at = dto.last_success_at
        self.last_failure_at = dto.last_failure_at
        self.status = dto.status
        self.run_count = dto.run_count
        self.success_count = dto.success_count
        self.failure_count = dto.failure_count
        self.max_retries = dto.max_retries
        self.retry_count = dto.retry_count
        self.retry_delay_seconds = dto.retry_delay_seconds
        self.timeout_seconds = dto.timeout_seconds
        self.last_error = dto.last_error
        self.last_duration_ms = dto.last_duration_ms
        self.avg_duration_ms = dto.avg_duration_ms
        self.tags = list(dto.tags) or None


class JobExecutionModel(TrackedBase):
    """One attempt at running a job."""

    __tablename__ = "job_executions"

    __table_args__ = (
        UniqueConstraint("job_id", "execution_number", name="uq_job_execution_number"),
        Index("ix_job_executions_status", "job_id", "status"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("scheduled_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    execution_number: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[ExecutionStatus] = mapped_column(
        TextEnumType(ExecutionStatus), nullable=False, default=ExecutionStatus.RUNNING,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stack_trace: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_of_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    retry_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    worker_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dto(self) -> JobExecution:
        return JobExecution(
            **self.envelope(),
            job_id=self.job_id,
            execution_number=self.execution_number,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
            status=self.status,
            result=self.result,
            error_message=self.error_message,
            error_stack_trace=self.error_stack_trace,
            retry_of_id=self.retry_of_id,
            retry_number=self.retry_number,
            worker_id=self.worker_id,
        )

    @classmethod
    def from_dto(cls, dto: JobExecution) -> JobExecutionModel:
        model = cls()
        model.apply_envelope(dto)
        model.job_id = dto.job_id
        model.execution_number = dto.execution_number
        model.started_at = dto.started_at
        model.retry_of_id = dto.retry_of_id
        model.retry_number = dto.retry_number
        model.worker_id = dto.worker_id
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: JobExecution) -> None:
        self.completed_at = dto.completed_at
        self.duration_ms = dto.duration_ms
        self.status = dto.status
        self.result = dto.result
        self.error_message = dto.error_message
        self.error_stack_trace = dto.error_stack_trace


class JobScheduleModel(TrackedBase):
    """Operator-managed recurring definition."""

    __tablename__ = "job_schedules"

    __table_args__ = (
        Index("ix_job_schedules_due", "enabled", "next_scheduled_run"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    handler: Mapped[str] = mapped_column(String(200), nullable=False)
    schedule_type: Mapped[ScheduleType] = mapped_column(
        TextEnumType(ScheduleType), nullable=False,
    )
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    interval_seconds: Mapped[int | None] = mapped_column(nullable=True)
    specific_times: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    default_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[JobPriority] = mapped_column(
        TextEnumType(JobPriority), nullable=False, default=JobPriority.NORMAL,
    )
    enabled: Mapped[bool] = mapped_column(nullable=False, default=True)
    next_scheduled_run: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_run: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> JobSchedule:
        return JobSchedule(
            **self.envelope(),
            name=self.name,
            job_name=self.job_name,
            handler=self.handler,
            schedule_type=self.schedule_type,
            cron_expression=self.cron_expression,
            interval_seconds=self.interval_seconds,
            specific_times=tuple(self.specific_times or ()),
            default_payload=self.default_payload,
            priority=self.priority,
            enabled=self.enabled,
            next_scheduled_run=self.next_scheduled_run,
            last_run=self.last_run,
        )

    @classmethod
    def from_dto(cls, dto: JobSchedule) -> JobScheduleModel:
        model = cls()
        model.apply_envelope(dto)
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: JobSchedule) -> None:
        self.name = dto.name
        self.job_name = dto.job_name
        self.handler = dto.handler
        self.schedule_type = dto.schedule_type
        self.cron_expression = dto.cron_expression
        self.interval_seconds = dto.interval_seconds
        self.specific_times = list(dto.specific_times) or None
        self.default_payload = dto.default_payload
        self.priority = dto.priority
        self.enabled = dto.enabled
        self.next_scheduled_run = dto.next_scheduled_run
        self.last_run = dto.last_run
