"""
AuditService -- append-only audit log.

Responsibility:
    Records who changed what, with before/after values, for every
    significant state change in the approval workflow and the job
    scheduler, and reads the trail back per entity.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ApprovalService and
    the escalation handler.

Invariants enforced:
    - Entries are append-only (ORM listener on AuditLogModel).
    - ``seq`` comes from SequenceService, so entries order totally.

Non-goals:
    - Does NOT call ``session.commit()`` -- an audit entry commits or
      rolls back together with the change it describes.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from erp_kernel.db.errors import translate_db_errors
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.enums import AuditAction
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.logging_config import get_logger
from erp_kernel.models.audit_log import AuditLogModel
from erp_kernel.services.sequence_service import SequenceService

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditLogEntry:
    id: UUID
    seq: int
    entity_type: str
    entity_id: UUID
    action: AuditAction
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    user_id: UUID | None
    created_at: datetime


def _entry(model: AuditLogModel) -> AuditLogEntry:
    return AuditLogEntry(
        id=model.id,
        seq=model.seq,
        entity_type=model.entity_type,
        entity_id=model.entity_id,
        action=model.action,
        old_values=model.old_values,
        new_values=model.new_values,
        user_id=model.user_id,
        created_at=model.created_at,
    )


def _jsonable(values: dict[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        elif isinstance(value, UUID):
            out[key] = str(value)
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


class AuditService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        user_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        model = AuditLogModel(
            seq=self._sequence.next_value(SequenceService.AUDIT_LOG),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_values=_jsonable(old_values),
            new_values=_jsonable(new_values),
            user_id=user_id,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        with translate_db_errors("AuditLog"):
            self._session.flush()

        logger.info(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": model.seq,
            },
        )
        return _entry(model)

    def list_for_entity(
        self,
        entity_type: str,
        entity_id: UUID,
        pagination: Pagination | None = None,
    ) -> Paginated[AuditLogEntry]:
        """Entries for one entity, oldest first."""
        pagination = pagination or Pagination()
        criteria = (
            AuditLogModel.entity_type == entity_type,
            AuditLogModel.entity_id == entity_id,
        )
        with translate_db_errors("AuditLog"):
            total = self._session.scalar(
                select(func.count()).select_from(AuditLogModel).where(*criteria)
            ) or 0
            rows = self._session.scalars(
                select(AuditLogModel)
                .where(*criteria)
                .order_by(AuditLogModel.seq)
                .offset(pagination.offset)
                .limit(pagination.limit)
            ).all()
        return Paginated(
            items=tuple(_entry(r) for r in rows),
            total_count=total,
            page=pagination.page,
            per_page=pagination.per_page,
        )
