"""
Approval job handlers.

``EscalateOverdueApprovalsHandler`` runs ``ApprovalService.escalate_overdue``
in its own transaction.  Schedule it as a cron job (for example every 15
minutes) so overdue approval requests are flagged without anyone polling.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from erp_jobs.tasks.base import HandlerRegistry
from erp_kernel.db.engine import session_scope
from erp_kernel.domain.approval import ApprovalDirectory, Notifier
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.exceptions import ValidationError
from erp_kernel.logging_config import get_logger
from erp_kernel.services.approval_service import ApprovalService

logger = get_logger("jobs.approval_tasks")

ESCALATE_OVERDUE_HANDLER = "approvals.escalate_overdue"


class EscalateOverdueApprovalsHandler:
    """Escalate approval requests past their due date.

    Payload:
        ``limit`` (optional, default 100): most requests handled per run.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        directory: ApprovalDirectory | None = None,
        notifier: Notifier | None = None,
        approaching_window: timedelta = timedelta(hours=24),
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._directory = directory
        self._notifier = notifier
        self._approaching_window = approaching_window

    def invoke(self, payload: Mapping[str, Any], deadline: datetime) -> dict[str, int]:
        limit = payload.get("limit", 100)
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        with session_scope(self._session_factory) as session:
            service = ApprovalService(
                session,
                self._clock,
                directory=self._directory,
                notifier=self._notifier,
                approaching_window=self._approaching_window,
            )
            escalated = service.escalate_overdue(limit=limit)

        logger.info("approval_escalation_run", extra={"escalated": len(escalated), "limit": limit})
        return {"escalated": len(escalated)}


def register_approval_tasks(
    registry: HandlerRegistry,
    session_factory: Callable[[], Session],
    clock: Clock | None = None,
    directory: ApprovalDirectory | None = None,
    notifier: Notifier | None = None,
    approaching_window: timedelta = timedelta(hours=24),
) -> None:
    """Register the approval handlers under their well-known keys."""
    registry.register(
        ESCALATE_OVERDUE_HANDLER,
        EscalateOverdueApprovalsHandler(
            session_factory, clock, directory, notifier, approaching_window,
        ),
    )
