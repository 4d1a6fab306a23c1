"""Job services: scheduling bookkeeping, operator schedules and the worker."""

from erp_jobs.services.job_service import JobService
from erp_jobs.services.schedule_service import JobScheduleService
from erp_jobs.services.worker import JobRunOutcome, JobWorker

__all__ = ["JobRunOutcome", "JobScheduleService", "JobService", "JobWorker"]
