"""
erp_jobs -- durable background job scheduling.

One-time, interval and cron jobs are stored in ``scheduled_jobs``; workers
claim them with a row lock (``locked_by`` / ``locked_at``), run the
registered handler with a timeout, and record one ``job_executions`` row per
attempt.  ``job_schedules`` holds operator-managed definitions that spawn
one-time jobs.
"""
