"""Repositories: typed-record persistence over SQLAlchemy sessions."""

from erp_kernel.repositories.base import SqlRepository

__all__ = ["SqlRepository"]
