"""Page requests and paginated results."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from erp_kernel.exceptions import InvalidPaginationError

T = TypeVar("T")

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 200


@dataclass(frozen=True, slots=True)
class Pagination:
    """
    A page request.

    ``page`` is 1-based; ``per_page`` is bounded by ``max_per_page``
    (200 unless a smaller configured cap is passed).
    """

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    max_per_page: int = field(default=MAX_PER_PAGE, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.page < 1 or not 1 <= self.per_page <= self.max_per_page:
            raise InvalidPaginationError(self.page, self.per_page, self.max_per_page)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page


@dataclass(frozen=True, slots=True)
class Paginated(Generic[T]):
    items: tuple[T, ...]
    total_count: int
    page: int
    per_page: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.per_page) if self.per_page else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @classmethod
    def empty(cls, pagination: Pagination) -> Paginated[T]:
        return cls(items=(), total_count=0, page=pagination.page, per_page=pagination.per_page)
