"""Default notifier: writes notifications to the structured log."""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from erp_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


class LoggingNotifier:
    """Notifier that records each notification as a ``notification_sent`` log line."""

    def notify(
        self,
        recipient_id: UUID,
        subject: str,
        body: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient_id": str(recipient_id),
                "subject": subject,
                "body": body,
                "context": dict(context or {}),
            },
        )
