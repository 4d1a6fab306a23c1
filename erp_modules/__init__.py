"""
ERP business modules.

Each module is a thin slab over the kernel substrate: frozen records in
``models.py``, ORM rows in ``orm.py``, finders in ``repository.py`` and
status transitions in ``service.py``.
"""
