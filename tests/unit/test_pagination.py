"""Page requests and paginated results."""

import pytest

from erp_kernel.domain.pagination import MAX_PER_PAGE, Paginated, Pagination
from erp_kernel.exceptions import InvalidPaginationError, ValidationError


class TestPagination:

    def test_defaults(self):
        page = Pagination()
        assert page.page == 1
        assert page.per_page == 20
        assert page.offset == 0

    def test_offset(self):
        assert Pagination(page=3, per_page=25).offset == 50

    @pytest.mark.parametrize("page,per_page", [(0, 10), (1, 0), (1, MAX_PER_PAGE + 1), (-1, 5)])
    def test_invalid_requests_rejected(self, page, per_page):
        with pytest.raises(InvalidPaginationError):
            Pagination(page=page, per_page=per_page)

    def test_invalid_pagination_is_validation_error(self):
        with pytest.raises(ValidationError):
            Pagination(page=0)

    def test_configured_cap(self):
        Pagination(per_page=50, max_per_page=50)
        with pytest.raises(InvalidPaginationError):
            Pagination(per_page=51, max_per_page=50)


class TestPaginated:

    def test_total_pages_and_has_next(self):
        result = Paginated(items=("a", "b"), total_count=5, page=1, per_page=2)
        assert result.total_pages == 3
        assert result.has_next is True

    def test_last_page(self):
        result = Paginated(items=("e",), total_count=5, page=3, per_page=2)
        assert result.has_next is False

    def test_empty(self):
        result = Paginated.empty(Pagination(page=2, per_page=10))
        assert result.items == ()
        assert result.total_count == 0
        assert result.page == 2
