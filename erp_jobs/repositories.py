"""
Repositories for scheduled jobs, executions and schedules.

Contract:
    Thin finders over ``SqlRepository``.  Locking is a single conditional
    UPDATE so that two workers racing for the same job cannot both win,
    whatever the isolation level.

Architecture: erp_jobs.  Imports from erp_kernel.repositories, erp_jobs.models.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.orm import Session

from erp_jobs.domain.types import (
    RUNNABLE_STATUSES,
    ExecutionStatus,
    JobExecution,
    JobPriority,
    JobSchedule,
    JobStatus,
    ScheduledJob,
)
from erp_jobs.models.jobs import JobExecutionModel, JobScheduleModel, ScheduledJobModel
from erp_kernel.db.errors import translate_db_errors
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.repositories.base import SqlRepository

_PRIORITY_ORDER = case(
    (ScheduledJobModel.priority == JobPriority.CRITICAL, 1),
    (ScheduledJobModel.priority == JobPriority.HIGH, 2),
    (ScheduledJobModel.priority == JobPriority.NORMAL, 3),
    else_=4,
)


class ScheduledJobRepository(SqlRepository[ScheduledJobModel, ScheduledJob]):
    model = ScheduledJobModel
    entity_name = "ScheduledJob"

    def find_active_by_name(self, name: str) -> ScheduledJob | None:
        """The job named ``name`` that is not Completed, Failed or Cancelled."""
        with translate_db_errors(self.entity_name):
            row = self._session.scalars(
                select(ScheduledJobModel).where(
                    ScheduledJobModel.name == name,
                    ScheduledJobModel.status.not_in([
                        JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED,
                    ]),
                )
            ).first()
        return row.to_dto() if row is not None else None

    def find_due(self, now: datetime, stale_before: datetime, limit: int) -> list[ScheduledJob]:
        """
        Jobs a worker may pick up at ``now``.

        Pending/Scheduled jobs whose run time has come and whose lock is
        absent or older than ``stale_before``, plus Running jobs whose lock
        went stale (the worker holding them died).  Ordered Critical, High,
        Normal, Low, then oldest first.
        """
        lock_free = or_(
            ScheduledJobModel.locked_by.is_(None),
            ScheduledJobModel.locked_at < stale_before,
        )
        runnable = and_(
            ScheduledJobModel.status.in_(list(RUNNABLE_STATUSES)),
            or_(
                ScheduledJobModel.next_run_at.is_(None),
                ScheduledJobModel.next_run_at <= now,
            ),
            lock_free,
        )
        abandoned = and_(
            ScheduledJobModel.status == JobStatus.RUNNING,
            ScheduledJobModel.locked_by.is_not(None),
            ScheduledJobModel.locked_at < stale_before,
        )
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(ScheduledJobModel)
                .where(or_(runnable, abandoned))
                .order_by(_PRIORITY_ORDER, ScheduledJobModel.created_at, ScheduledJobModel.id)
                .limit(limit)
            ).all()
        return [row.to_dto() for row in rows]

    def try_lock(
        self,
        job_id: UUID,
        worker_id: str,
        now: datetime,
        stale_before: datetime,
    ) -> bool:
        """Set the lock iff it is absent or stale.  True when this call won."""
        with translate_db_errors(self.entity_name):
            result = self._session.execute(
                update(ScheduledJobModel)
                .where(
                    ScheduledJobModel.id == job_id,
                    or_(
                        ScheduledJobModel.locked_by.is_(None),
                        ScheduledJobModel.locked_at < stale_before,
                    ),
                )
                .values(locked_by=worker_id, locked_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        self._expire_cached(job_id)
        return result.rowcount == 1

    def clear_lock(self, job_id: UUID, now: datetime) -> None:
        with translate_db_errors(self.entity_name):
            self._session.execute(
                update(ScheduledJobModel)
                .where(ScheduledJobModel.id == job_id)
                .values(locked_by=None, locked_at=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        self._expire_cached(job_id)

    def _expire_cached(self, job_id: UUID) -> None:
        # Conditional UPDATEs bypass the identity map.
        cached = self._session.identity_map.get(
            Session.identity_key(ScheduledJobModel, job_id)
        )
        if cached is not None:
            self._session.expire(cached)


class JobExecutionRepository(SqlRepository[JobExecutionModel, JobExecution]):
    model = JobExecutionModel
    entity_name = "JobExecution"

    def next_execution_number(self, job_id: UUID) -> int:
        with translate_db_errors(self.entity_name):
            current = self._session.scalar(
                select(func.max(JobExecutionModel.execution_number)).where(
                    JobExecutionModel.job_id == job_id,
                )
            )
        return (current or 0) + 1

    def latest_for_job(self, job_id: UUID) -> JobExecution | None:
        with translate_db_errors(self.entity_name):
            row = self._session.scalars(
                select(JobExecutionModel)
                .where(JobExecutionModel.job_id == job_id)
                .order_by(JobExecutionModel.execution_number.desc())
                .limit(1)
            ).first()
        return row.to_dto() if row is not None else None

    def running_for_job(self, job_id: UUID) -> list[JobExecution]:
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(JobExecutionModel).where(
                    JobExecutionModel.job_id == job_id,
                    JobExecutionModel.status == ExecutionStatus.RUNNING,
                )
            ).all()
        return [row.to_dto() for row in rows]

    def list_by_job(self, job_id: UUID, pagination: Pagination) -> Paginated[JobExecution]:
        """Executions of one job, newest attempt first."""
        return self._paginate(
            select(JobExecutionModel).where(JobExecutionModel.job_id == job_id),
            pagination,
            order_by=(JobExecutionModel.execution_number.desc(),),
        )

    def delete_for_job(self, job_id: UUID) -> int:
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(JobExecutionModel).where(JobExecutionModel.job_id == job_id)
            ).all()
        for row in rows:
            self._session.delete(row)
        self._flush()
        return len(rows)


class JobScheduleRepository(SqlRepository[JobScheduleModel, JobSchedule]):
    model = JobScheduleModel
    entity_name = "JobSchedule"

    def name_exists(self, name: str) -> bool:
        with translate_db_errors(self.entity_name):
            return self._session.scalar(
                select(func.count()).select_from(JobScheduleModel).where(
                    JobScheduleModel.name == name,
                )
            ) > 0

    def find_due(self, now: datetime) -> list[JobSchedule]:
        """Enabled schedules whose next run has come, earliest first."""
        with translate_db_errors(self.entity_name):
            rows = self._session.scalars(
                select(JobScheduleModel)
                .where(
                    JobScheduleModel.enabled == True,  # noqa: E712
                    JobScheduleModel.next_scheduled_run.is_not(None),
                    JobScheduleModel.next_scheduled_run <= now,
                )
                .order_by(JobScheduleModel.next_scheduled_run, JobScheduleModel.id)
            ).all()
        return [row.to_dto() for row in rows]
