"""
Module: erp_kernel.db.errors
Responsibility: Translate SQLAlchemy exceptions into the kernel's closed
    error taxonomy at the repository boundary.

Failure modes:
    - IntegrityError     -> DuplicateKeyError (a ConflictError)
    - any SQLAlchemyError -> DatabaseError
    ErpError raised inside the block passes through untouched.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from erp_kernel.exceptions import DatabaseError, DuplicateKeyError
from erp_kernel.logging_config import get_logger

logger = get_logger("db.errors")


@contextmanager
def translate_db_errors(entity: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        detail = str(exc.orig) if exc.orig is not None else str(exc)
        logger.warning("db_integrity_violation", extra={"entity": entity, "detail": detail})
        raise DuplicateKeyError(entity, detail) from exc
    except SQLAlchemyError as exc:
        logger.error("db_operation_failed", extra={"entity": entity, "error": str(exc)})
        raise DatabaseError(str(exc)) from exc
