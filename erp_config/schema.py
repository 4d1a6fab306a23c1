"""
ErpSettings schema.

One frozen dataclass holding every deployment setting: store connection,
worker sizing and timing, job defaults, pagination cap, approval timing
and log level.  Services never read it directly; entry points pass the
relevant values into service constructors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from erp_jobs.domain.cron import parse_cron
from erp_kernel.exceptions import InvalidCronExpressionError

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ErpSettings:
    """Deployment settings with their defaults."""

    database_url: str = "sqlite:///erp.db"

    # Worker
    worker_count: int = 4
    worker_batch_size: int = 10
    poll_interval_seconds: float = 5.0
    lock_stale_minutes: int = 10

    # Job defaults
    default_retry_delay_seconds: int = 60
    default_timeout_seconds: int = 300
    default_max_retries: int = 3

    # Queries
    max_page_size: int = 200

    # Approvals
    approval_approaching_hours: int = 24
    escalation_scan_cron: str = "0 */15 * * * *"

    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url cannot be empty")

        for name in ("worker_count", "worker_batch_size", "lock_stale_minutes", "default_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be positive, got {self.poll_interval_seconds}")
        if self.default_retry_delay_seconds < 0:
            raise ValueError("default_retry_delay_seconds cannot be negative")
        if self.default_max_retries < 0:
            raise ValueError("default_max_retries cannot be negative")
        if self.default_timeout_seconds >= self.lock_stale_minutes * 60:
            raise ValueError(
                f"default_timeout_seconds ({self.default_timeout_seconds}) must be shorter than "
                f"lock_stale_minutes ({self.lock_stale_minutes} min) or a live lock can be reclaimed"
            )

        if not 1 <= self.max_page_size <= 200:
            raise ValueError(f"max_page_size must be between 1 and 200, got {self.max_page_size}")
        if self.approval_approaching_hours < 0:
            raise ValueError("approval_approaching_hours cannot be negative")

        try:
            parse_cron(self.escalation_scan_cron)
        except InvalidCronExpressionError as exc:
            raise ValueError(f"escalation_scan_cron is invalid: {exc}") from exc

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got '{self.log_level}'")

    @property
    def lock_stale_after(self) -> timedelta:
        return timedelta(minutes=self.lock_stale_minutes)

    @property
    def approaching_window(self) -> timedelta:
        return timedelta(hours=self.approval_approaching_hours)
