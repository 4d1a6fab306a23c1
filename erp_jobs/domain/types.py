"""
erp_jobs.domain.types -- Frozen dataclasses and enums for the job system.

ZERO I/O.  Follows the record pattern of ``erp_kernel.domain``: frozen
dataclasses carrying the audit envelope, tuples for immutable collections,
text enums with documented defaults.

Invariants enforced:
    - ``run_count == success_count + failure_count`` (maintained by
      JobService.update_after_run).
    - A OneTime job's ``next_run_at`` equals its ``scheduled_at``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from erp_kernel.domain.enums import TextEnum
from erp_kernel.domain.records import Record

# =============================================================================
# Enums
# =============================================================================


class JobType(TextEnum):
    ONE_TIME = "OneTime"
    RECURRING = "Recurring"
    CRON = "Cron"


class JobPriority(TextEnum):
    CRITICAL = "Critical"
    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"

    @classmethod
    def default(cls) -> JobPriority:
        return cls.NORMAL

    @property
    def rank(self) -> int:
        """Sort rank; lower runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    JobPriority.CRITICAL: 1,
    JobPriority.HIGH: 2,
    JobPriority.NORMAL: 3,
    JobPriority.LOW: 4,
}


class JobStatus(TextEnum):
    PENDING = "Pending"
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    PAUSED = "Paused"

    @classmethod
    def default(cls) -> JobStatus:
        # A job whose stored status is unreadable is held, not run.
        return cls.PAUSED


# Statuses a worker may pick up.
RUNNABLE_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.PENDING, JobStatus.SCHEDULED})

# Statuses after which a OneTime job never runs again (unless retried by hand).
FINISHED_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})


class ExecutionStatus(TextEnum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMEOUT = "Timeout"

    @classmethod
    def default(cls) -> ExecutionStatus:
        return cls.FAILED


class ScheduleType(TextEnum):
    CRON = "Cron"
    INTERVAL = "Interval"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    SPECIFIC_TIMES = "SpecificTimes"


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True, kw_only=True)
class ScheduledJob(Record):
    """Immutable snapshot of a scheduled job row."""

    name: str
    handler: str
    job_type: JobType = JobType.ONE_TIME
    payload: dict[str, Any] | None = None
    priority: JobPriority = JobPriority.NORMAL
    cron_expression: str | None = None
    interval_seconds: int | None = None
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    status: JobStatus = JobStatus.PENDING
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    max_retries: int = 3
    retry_count: int = 0
    retry_delay_seconds: int = 60
    timeout_seconds: int = 300
    last_error: str | None = None
    last_duration_ms: int | None = None
    avg_duration_ms: int | None = None
    tags: tuple[str, ...] = ()
    locked_by: str | None = None
    locked_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def is_recurring(self) -> bool:
        return self.job_type is not JobType.ONE_TIME

    @property
    def is_locked(self) -> bool:
        return self.locked_by is not None

    def is_due(self, as_of: datetime) -> bool:
        """Runnable with its run time reached, or Running behind a reclaimed lock."""
        if self.status is JobStatus.RUNNING:
            return True
        if self.status not in RUNNABLE_STATUSES:
            return False
        return self.next_run_at is None or self.next_run_at <= as_of


@dataclass(frozen=True, kw_only=True)
class JobExecution(Record):
    """One attempt at running a job."""

    job_id: UUID
    execution_number: int
    started_at: datetime
    status: ExecutionStatus = ExecutionStatus.RUNNING
    completed_at: datetime | None = None
    duration_ms: int | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    error_stack_trace: str | None = None
    retry_of_id: UUID | None = None
    retry_number: int = 0
    worker_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class JobSchedule(Record):
    """
    Operator-managed recurring definition.

    Each firing submits a OneTime job named ``job_name`` that runs
    ``handler`` with ``default_payload``.  ``specific_times`` holds UTC times
    of day as ``HH:MM`` or ``HH:MM:SS``.
    """

    name: str
    job_name: str
    handler: str
    schedule_type: ScheduleType
    cron_expression: str | None = None
    interval_seconds: int | None = None
    specific_times: tuple[str, ...] = ()
    default_payload: dict[str, Any] | None = None
    priority: JobPriority = JobPriority.NORMAL
    enabled: bool = True
    next_scheduled_run: datetime | None = None
    last_run: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.specific_times, tuple):
            object.__setattr__(self, "specific_times", tuple(self.specific_times))
