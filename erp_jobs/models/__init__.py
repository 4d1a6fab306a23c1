"""ORM models for scheduled jobs, executions and schedules."""

from erp_jobs.models.jobs import JobExecutionModel, JobScheduleModel, ScheduledJobModel

__all__ = ["JobExecutionModel", "JobScheduleModel", "ScheduledJobModel"]
