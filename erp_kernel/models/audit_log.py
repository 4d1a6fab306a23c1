"""
Module: erp_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit log.

Every significant state change (workflow edits, request decisions,
escalations, cancellations) writes one row with the before/after values
the change touched and the acting user.  ``seq`` comes from the locked
``audit_log`` counter so rows order totally even when timestamps tie.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, UUIDString
from erp_kernel.db.types import TextEnumType, UTCDateTime
from erp_kernel.domain.enums import AuditAction
from erp_kernel.exceptions import ConflictError


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id", "seq"),
        Index("ix_audit_logs_user", "user_id", "created_at"),
    )

    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[AuditAction] = mapped_column(TextEnumType(AuditAction), nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog #{self.seq} {self.entity_type}:{self.entity_id} {self.action}>"


@event.listens_for(AuditLogModel, "before_update")
def _reject_audit_update(mapper, connection, target: AuditLogModel) -> None:
    raise ConflictError(f"Audit log entry {target.seq} is append-only")


@event.listens_for(AuditLogModel, "before_delete")
def _reject_audit_delete(mapper, connection, target: AuditLogModel) -> None:
    raise ConflictError(f"Audit log entry {target.seq} is append-only")
