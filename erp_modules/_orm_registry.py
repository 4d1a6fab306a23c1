"""
Module ORM registry (``erp_modules._orm_registry``).

Responsibility
--------------
Import every SQLAlchemy model so that ``Base.metadata`` holds the full
schema before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Imported lazily by
``erp_kernel.db.engine.create_tables`` / ``drop_tables``.
"""


def import_all_orm_models() -> None:
    """Import kernel, job and module ORM models.  Idempotent."""
    # Kernel tables first (approval, audit log, sequences)
    import erp_kernel.models  # noqa: F401
    import erp_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import erp_jobs.models  # noqa: F401
    import erp_modules.parties.orm  # noqa: F401
