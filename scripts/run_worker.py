#!/usr/bin/env python3
"""
Run a job worker until interrupted.

Registers the built-in handlers, makes sure the approval escalation scan is
scheduled, then polls for due jobs.  SIGINT / SIGTERM stop the worker after
its current pass.

Usage:
    python3 scripts/run_worker.py [--config settings.yaml] [--db-url URL]
                                  [--worker-id ID] [--concurrency N] [--once]

Examples:
    # One polling pass, then exit (cron-driven deployments)
    python3 scripts/run_worker.py --once

    # Long-running worker with 8 handler threads
    python3 scripts/run_worker.py --concurrency 8
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Poll for due jobs and run their handlers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file.")
    parser.add_argument("--db-url", default=None, help="Database URL; overrides settings.")
    parser.add_argument("--worker-id", default=None, help="Worker id (default: host-pid-random).")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Handler threads (default: worker_count setting).",
    )
    parser.add_argument("--once", action="store_true", help="Run one polling pass and exit.")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from erp_config import load_settings
    from erp_jobs.services import JobService, JobWorker
    from erp_jobs.tasks import HandlerRegistry
    from erp_jobs.tasks.approval_tasks import ESCALATE_OVERDUE_HANDLER, register_approval_tasks
    from erp_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url, session_scope
    from erp_kernel.domain.clock import SystemClock
    from erp_kernel.logging_config import configure_logging

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1

    configure_logging(level=settings.log_level.upper())
    engine = init_engine_from_url(args.db_url or settings.database_url)
    create_tables(engine)
    factory = get_session_factory()
    clock = SystemClock()

    registry = HandlerRegistry()
    register_approval_tasks(
        registry, factory, clock, approaching_window=settings.approaching_window,
    )
    registry.freeze()

    with session_scope(factory) as session:
        jobs = JobService(
            session,
            clock,
            registry=registry,
            lock_stale_after=settings.lock_stale_after,
            default_max_retries=settings.default_max_retries,
            default_retry_delay_seconds=settings.default_retry_delay_seconds,
            default_timeout_seconds=settings.default_timeout_seconds,
        )
        if jobs.find_active_by_name(ESCALATE_OVERDUE_HANDLER) is None:
            jobs.schedule_cron(
                ESCALATE_OVERDUE_HANDLER,
                ESCALATE_OVERDUE_HANDLER,
                settings.escalation_scan_cron,
            )

    worker = JobWorker(
        factory,
        registry,
        clock,
        worker_id=args.worker_id,
        concurrency=args.concurrency or settings.worker_count,
        batch_size=settings.worker_batch_size,
        poll_interval_seconds=settings.poll_interval_seconds,
        lock_stale_after=settings.lock_stale_after,
    )

    with worker:
        if args.once:
            outcomes = worker.run_once()
            print(f"Ran {len(outcomes)} job(s).")
            return 0

        stopping = threading.Event()

        def _handle_signal(signum, frame):
            stopping.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        print(f"Worker {worker.worker_id} running; Ctrl-C to stop.")
        worker.start()
        stopping.wait()
        print("Stopping...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
