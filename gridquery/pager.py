from sqlalchemy import Select
from gridquery.config import DatatableConfig
from gridquery.exceptions import DatatableError, RequestValidationError
from gridquery.query import QueryHandle
from gridquery.request import DatatableRequest


class Pager:
    """
    Offset/limit paging and row counts of a query handle.

    Paging is applied at most once per handle, a second call raises instead of
    adding the offset again.
    """

    def __init__(self, handle: QueryHandle, request: DatatableRequest, config: DatatableConfig) -> None:
        self.handle = handle
        self.request = request
        self.config = config
        self.applied = False

    def page_size(self) -> int:
        size = self.request.page_size()
        return size if size > 0 else self.config.default_page_size

    def offset(self) -> int:
        """
        Row offset of the requested page.

        Raises:
            RequestValidationError: If the page number is below 1
        """
        page = self.request.page()
        if page < 1:
            raise RequestValidationError(f"Page must be 1 or greater, got {page}")
        return (page - 1) * self.page_size()

    def paging(self) -> None:
        if self.applied:
            raise DatatableError("Paging was already applied to this query")
        self.handle.skip(self.offset()).take(self.page_size())
        self.applied = True

    def count_query(self) -> Select:
        return self.handle.count_statement()

    def count(self) -> int:
        """Number of rows the current query returns."""
        handle = self.handle.clone()
        return int(handle.scalar(handle.count_statement()) or 0)
