"""Job handlers and the process-local handler registry."""

from erp_jobs.tasks.base import FunctionHandler, HandlerRegistry, JobHandler

__all__ = ["FunctionHandler", "HandlerRegistry", "JobHandler"]
