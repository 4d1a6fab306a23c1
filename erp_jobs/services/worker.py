"""
JobWorker -- claims due jobs and runs their handlers.

Contract:
    ``run_once()`` performs one polling pass: fire due schedules, list due
    jobs, and for each job acquire its lock, run the handler with the
    job's timeout, then record the outcome.  ``start()`` / ``stop()`` run
    the pass in a background thread every ``poll_interval_seconds``.

    Each job is handled in two short transactions: one to lock it, mark it
    Running and open a JobExecution row, and one to close the execution,
    apply ``update_after_run``, schedule a retry and release the lock.  The
    handler itself runs outside any transaction.

Architecture: erp_jobs/services.  Uses JobService / JobScheduleService for
    every state change and the HandlerRegistry for dispatch.

Invariants enforced:
    - All timestamps from injected Clock (durations are wall-clock).
    - A job runs only while this worker holds its lock.
    - Handler timeouts are enforced here, not by the store; a timed-out
      handler yields a Timeout execution and counts as a failed run.
    - The timeout clock starts when the handler's thread starts; at most
      ``concurrency`` jobs are dispatched at once.
    - Graceful shutdown: ``stop()`` lets the current pass finish.

Non-goals:
    - Cannot interrupt a handler thread that ignores its deadline; the
      worker stops waiting for it and moves on.
"""

from __future__ import annotations

import contextvars
import os
import socket
import threading
import time
import traceback
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from erp_jobs.domain.types import ExecutionStatus, ScheduledJob
from erp_jobs.services.job_service import DEFAULT_LOCK_STALE_AFTER, JobService
from erp_jobs.services.schedule_service import JobScheduleService
from erp_jobs.tasks.base import HandlerRegistry, JobHandler
from erp_kernel.db.engine import session_scope
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.exceptions import ErpError, HandlerNotRegisteredError, HandlerTimeoutError
from erp_kernel.logging_config import LogContext, get_logger

logger = get_logger("jobs.worker")


@dataclass(frozen=True)
class JobRunOutcome:
    """What happened to one job during a pass."""

    job_id: UUID
    execution_id: UUID
    status: ExecutionStatus
    duration_ms: int
    error: str | None = None
    retry_scheduled: bool = False


@dataclass(frozen=True)
class _HandlerResult:
    status: ExecutionStatus
    duration_ms: int
    result: Any = None
    error: str | None = None
    stack_trace: str | None = None


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class JobWorker:
    """Polling job worker.

    Contract:
        - ``run_once()`` returns one JobRunOutcome per job it ran.
        - ``start()`` / ``stop()`` for background thread operation.
        - Usable as a context manager; exiting stops the loop and shuts
          down the dispatch pool.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: HandlerRegistry,
        clock: Clock | None = None,
        worker_id: str | None = None,
        concurrency: int = 4,
        batch_size: int = 10,
        poll_interval_seconds: float = 5.0,
        lock_stale_after: timedelta = DEFAULT_LOCK_STALE_AFTER,
        trigger_schedules: bool = True,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._session_factory = session_factory
        self._registry = registry
        self._clock = clock or SystemClock()
        self.worker_id = worker_id or default_worker_id()
        self._concurrency = concurrency
        self._batch_size = batch_size
        self._poll_interval = poll_interval_seconds
        self._lock_stale_after = lock_stale_after
        self._trigger_schedules = trigger_schedules
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._dispatch_pool = (
            ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"{self.worker_id}-job")
            if concurrency > 1
            else None
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_once(self) -> list[JobRunOutcome]:
        """One polling pass (public for testing)."""
        if self._trigger_schedules:
            with session_scope(self._session_factory) as session:
                JobScheduleService(session, self._clock, self._job_service(session)).trigger_due_schedules()

        with session_scope(self._session_factory) as session:
            due = self._job_service(session).process_due_jobs(self._batch_size)
        if not due:
            return []

        logger.debug("worker_jobs_due", extra={"worker_id": self.worker_id, "count": len(due)})
        job_ids = [job.id for job in due]
        if self._dispatch_pool is None or len(job_ids) == 1:
            outcomes = [self._run_guarded(job_id) for job_id in job_ids]
        else:
            outcomes = list(self._dispatch_pool.map(self._run_guarded, job_ids))
        return [outcome for outcome in outcomes if outcome is not None]

    def start(self) -> None:
        """Start the polling loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"job-worker-{self.worker_id}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "worker_started",
            extra={
                "worker_id": self.worker_id,
                "concurrency": self._concurrency,
                "poll_interval": self._poll_interval,
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current pass to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("worker_stopped", extra={"worker_id": self.worker_id})

    def close(self) -> None:
        self.stop()
        if self._dispatch_pool is not None:
            self._dispatch_pool.shutdown(wait=True)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> JobWorker:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _job_service(self, session: Session) -> JobService:
        return JobService(
            session,
            self._clock,
            lock_stale_after=self._lock_stale_after,
        )

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("worker_pass_failed", extra={"worker_id": self.worker_id})
            self._stop_event.wait(timeout=self._poll_interval)

    def _run_guarded(self, job_id: UUID) -> JobRunOutcome | None:
        with LogContext.bind(job_id=job_id, worker_id=self.worker_id):
            try:
                return self._run_job(job_id)
            except Exception:
                # The lock stays; the job is offered again once it goes stale.
                logger.exception("job_run_crashed", extra={"job_id": str(job_id)})
                return None

    def _run_job(self, job_id: UUID) -> JobRunOutcome | None:
        with session_scope(self._session_factory) as session:
            service = self._job_service(session)
            if not service.acquire_lock(job_id, self.worker_id):
                return None
            # The due list may be stale.
            job = service.get(job_id)
            if not job.is_due(self._clock.now()):
                service.release_lock(job_id)
                logger.info(
                    "job_skipped",
                    extra={
                        "job_id": str(job_id),
                        "status": job.status.value,
                        "next_run_at": job.next_run_at,
                    },
                )
                return None
            execution = service.start_execution(job_id, self.worker_id)

        outcome = self._invoke(job)

        with session_scope(self._session_factory) as session:
            service = self._job_service(session)
            service.finish_execution(
                execution.id,
                outcome.status,
                outcome.duration_ms,
                result=outcome.result,
                error_message=outcome.error,
                error_stack_trace=outcome.stack_trace,
            )
            succeeded = outcome.status is ExecutionStatus.COMPLETED
            service.update_after_run(
                job_id, success=succeeded, error=outcome.error, duration_ms=outcome.duration_ms,
            )
            retried = None if succeeded else service.requeue_for_retry(job_id)
            service.release_lock(job_id)

        return JobRunOutcome(
            job_id=job_id,
            execution_id=execution.id,
            status=outcome.status,
            duration_ms=outcome.duration_ms,
            error=outcome.error,
            retry_scheduled=retried is not None,
        )

    def _invoke(self, job: ScheduledJob) -> _HandlerResult:
        try:
            handler = self._registry.get(job.handler)
        except HandlerNotRegisteredError as exc:
            logger.error("job_handler_missing", extra={"handler": job.handler})
            return _HandlerResult(ExecutionStatus.FAILED, 0, error=str(exc))

        deadline = self._clock.now() + timedelta(seconds=job.timeout_seconds)
        started = time.perf_counter()
        future = self._start_handler(job, handler, deadline)
        try:
            result = future.result(timeout=job.timeout_seconds)
        except FutureTimeoutError:
            error = HandlerTimeoutError(job.handler, job.timeout_seconds)
            logger.error(
                "job_handler_timeout",
                extra={"handler": job.handler, "timeout_seconds": job.timeout_seconds},
            )
            return _HandlerResult(ExecutionStatus.TIMEOUT, _elapsed_ms(started), error=str(error))
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "job_handler_failed",
                extra={
                    "handler": job.handler,
                    "error": message,
                    "error_code": exc.code if isinstance(exc, ErpError) else None,
                },
            )
            return _HandlerResult(
                ExecutionStatus.FAILED,
                _elapsed_ms(started),
                error=message,
                stack_trace="".join(traceback.format_exception(exc)),
            )
        return _HandlerResult(ExecutionStatus.COMPLETED, _elapsed_ms(started), result=result)

    def _start_handler(self, job: ScheduledJob, handler: JobHandler, deadline: datetime) -> Future:
        """Run the handler on its own daemon thread, started immediately.

        A handler that overruns its timeout keeps its thread but no longer
        holds up the jobs after it.
        """
        future: Future = Future()
        context = contextvars.copy_context()
        payload = dict(job.payload or {})

        def _target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(context.run(handler.invoke, payload, deadline))
            except Exception as exc:
                future.set_exception(exc)

        threading.Thread(
            target=_target,
            name=f"{self.worker_id}-handler-{job.id.hex[:8]}",
            daemon=True,
        ).start()
        return future


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
