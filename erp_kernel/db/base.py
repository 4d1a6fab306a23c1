"""
Module: erp_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map for
    consistent column types, and the TrackedBase mixin carrying the audit
    envelope.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel; every model file imports from here.  MUST NOT import from
    models/, repositories/, services/ or outer packages.

Invariants enforced:
    - UUID primary keys stored in canonical hyphenated text form.
    - Instants stored as fixed-width RFC-3339 UTC strings (see db/types.py).
    - TrackedBase rows carry created_at, updated_at, created_by and
      updated_by.  Timestamps are written by repositories from an injected
      Clock, never by the server, so ``updated_at >= created_at`` holds
      under a deterministic clock too.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from erp_kernel.db.types import UTCDateTime


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is a uuid4 stored as String(36).
        - datetime maps to UTCDateTime -- always timezone-aware UTC.
        - int maps to BigInteger -- minor-unit amounts and counters.
        - dict / list map to JSON -- structured payloads.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
        dict[str, Any]: JSON,
        list[str]: JSON,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """Abstract base carrying the audit envelope."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_by: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)
    updated_by: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)

    def envelope(self) -> dict[str, Any]:
        """Audit envelope fields as DTO keyword arguments."""
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    def apply_envelope(self, record: Any) -> None:
        self.id = record.id
        self.created_at = record.created_at
        self.updated_at = record.updated_at
        self.created_by = record.created_by
        self.updated_by = record.updated_by
