"""
SqlRepository -- the record <-> row contract every entity repository shares.

Responsibility:
    Maps frozen domain records to ORM rows and back, and implements the
    uniform operation set: find_by_id, find_all (paginated), create,
    update, delete.  Per-entity subclasses add their own finders
    (``find_by_code``, ``find_due`` ...) on top.

Architecture position:
    Kernel > Repositories.  Imported by services; imports db/ and domain/.

Invariants enforced:
    - Audit timestamps come from the injected Clock.  ``create`` fills
      missing created_at/updated_at; ``update`` refreshes updated_at and
      never lets it fall below created_at.
    - ``find_all`` orders by created_at DESC, id DESC and computes the
      total count and the page slice in the same session transaction.
    - Every store failure surfaces as DuplicateKeyError (a ConflictError)
      or DatabaseError; a missing row surfaces as NotFoundError.
    - Update is last-writer-wins.  Records that need optimistic
      concurrency carry an explicit ``version``.

Non-goals:
    - Does NOT call ``session.commit()`` -- the caller owns the transaction.
"""

from __future__ import annotations

from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from erp_kernel.db.base import TrackedBase
from erp_kernel.db.errors import translate_db_errors
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.pagination import Paginated, Pagination
from erp_kernel.domain.records import Record
from erp_kernel.exceptions import NotFoundError
from erp_kernel.logging_config import get_logger

logger = get_logger("repositories")

ModelType = TypeVar("ModelType", bound=TrackedBase)
RecordType = TypeVar("RecordType", bound=Record)


class SqlRepository(Generic[ModelType, RecordType]):
    """
    Generic repository over one TrackedBase model.

    Subclasses set ``model`` and ``entity_name``.  The model class must
    provide ``to_dto()``, ``from_dto(record)`` and ``apply_dto(record)``.
    """

    model: ClassVar[type]
    entity_name: ClassVar[str]

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, record_id: UUID) -> RecordType:
        return self._load(record_id).to_dto()

    def exists(self, record_id: UUID) -> bool:
        with translate_db_errors(self.entity_name):
            return self._session.get(self.model, record_id) is not None

    def find_all(self, pagination: Pagination, *criteria: Any) -> Paginated[RecordType]:
        stmt = select(self.model)
        if criteria:
            stmt = stmt.where(*criteria)
        return self._paginate(stmt, pagination)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, record: RecordType) -> RecordType:
        now = self._clock.now()
        created_at = record.created_at or now
        updated_at = max(record.updated_at or created_at, created_at)
        record = record.evolve(created_at=created_at, updated_at=updated_at)

        model = self.model.from_dto(record)
        self._session.add(model)
        self._flush()
        logger.debug(
            "record_created",
            extra={"entity": self.entity_name, "record_id": str(record.id)},
        )
        return model.to_dto()

    def update(self, record: RecordType) -> RecordType:
        model = self._load(record.id)
        self._apply(model, record)
        model.updated_at = max(self._clock.now(), model.created_at)
        model.updated_by = record.updated_by
        self._flush()
        logger.debug(
            "record_updated",
            extra={"entity": self.entity_name, "record_id": str(record.id)},
        )
        return model.to_dto()

    def delete(self, record_id: UUID) -> None:
        model = self._load(record_id)
        self._session.delete(model)
        self._flush()
        logger.debug(
            "record_deleted",
            extra={"entity": self.entity_name, "record_id": str(record_id)},
        )

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _apply(self, model: ModelType, record: RecordType) -> None:
        model.apply_dto(record)

    def _load(self, record_id: UUID) -> ModelType:
        with translate_db_errors(self.entity_name):
            model = self._session.get(self.model, record_id)
        if model is None:
            raise NotFoundError(self.entity_name, record_id)
        return model

    def _find_one(self, key: Any, *criteria: Any) -> RecordType:
        with translate_db_errors(self.entity_name):
            model = self._session.scalars(select(self.model).where(*criteria)).first()
        if model is None:
            raise NotFoundError(self.entity_name, key)
        return model.to_dto()

    def _flush(self) -> None:
        with translate_db_errors(self.entity_name):
            self._session.flush()

    def _default_order(self) -> tuple:
        return (self.model.created_at.desc(), self.model.id.desc())

    def _paginate(
        self,
        stmt: Select,
        pagination: Pagination,
        order_by: tuple | None = None,
    ) -> Paginated[RecordType]:
        """
        Count and slice ``stmt`` in one session transaction.

        A page past the end yields no items but still reports total_count.
        """
        with translate_db_errors(self.entity_name):
            total = self._session.scalar(
                select(func.count()).select_from(stmt.order_by(None).subquery())
            ) or 0
            rows = self._session.scalars(
                stmt.order_by(*(order_by or self._default_order()))
                .offset(pagination.offset)
                .limit(pagination.limit)
            ).all()
        return Paginated(
            items=tuple(row.to_dto() for row in rows),
            total_count=total,
            page=pagination.page,
            per_page=pagination.per_page,
        )
