"""
Record -- the audit envelope every persistent record carries.

Every domain DTO is a frozen, keyword-only dataclass that subclasses
``Record``.  Identity is assigned when the record is constructed, so a
record has its final id before it is ever persisted.  ``created_at`` and
``updated_at`` stay ``None`` until a repository stamps them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Self
from uuid import UUID, uuid4


@dataclass(frozen=True, kw_only=True)
class Record:
    id: UUID = field(default_factory=uuid4)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: UUID | None = None
    updated_by: UUID | None = None

    def evolve(self, **changes: Any) -> Self:
        """Copy with ``changes`` applied; identity and creation stamp are kept."""
        return replace(self, **changes)
