"""
Query compiler facade.

`QueryBuilderEngine` takes a SQLAlchemy statement and the parameters of one
grid refresh, and compiles search, filters, ordering and paging onto it:

    engine = QueryBuilderEngine(select(Customer.__table__), params, bind=session)
    engine.add_column('actions', '<a href="/customers/{customer_id}">edit</a>')
    result = engine.make()
    return result.to_dict()

An engine instance serves exactly one request.
"""

import datetime
import decimal
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union
from uuid import UUID
from sqlalchemy import Select
from sqlalchemy.engine import Dialect
from sqlalchemy.engine.row import Row
from gridquery import get_logger
from gridquery.config import DatatableConfig
from gridquery.filters import FilterTreeCompiler, parse_filter_tree
from gridquery.operations import Callback, NamedOp, Override, QueryOperation, make_override
from gridquery.ordering import OrderCompiler
from gridquery.pager import Pager
from gridquery.query import QueryHandle
from gridquery.relations import RelationRegistry, RelationResolver, expand_eager_loads
from gridquery.request import DatatableRequest
from gridquery.search import SearchCompiler

logger = get_logger('gridquery')

DEFAULT_BLACKLIST = ('password', 'remember_token')


class JSONEncoder(json.JSONEncoder):
    """
    JSON encoder for the column types SQLAlchemy returns that json cannot
    serialize on its own.
    """
    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime.datetime, datetime.date, datetime.time)):
            return obj.isoformat()
        elif isinstance(obj, decimal.Decimal):
            return float(obj)
        elif isinstance(obj, UUID):
            return str(obj)
        elif isinstance(obj, bytes):
            return obj.decode('utf-8')
        elif isinstance(obj, Row):
            return dict(obj._mapping)
        return super(JSONEncoder, self).default(obj)


@dataclass
class DatatableResult:
    """
    Outcome of one grid refresh.

    Attributes:
        total: Rows before any search or filter
        filtered: Rows after search and filters
        data: Rows of the requested page
        draw: Request counter echoed back to the grid
    """
    total: int
    filtered: int
    data: List[Dict[str, Any]] = field(default_factory=list)
    draw: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'draw': self.draw,
            'recordsTotal': self.total,
            'recordsFiltered': self.filtered,
            'data': self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), cls=JSONEncoder)


class QueryBuilderEngine:
    """
    Compiles a grid request onto a SQLAlchemy statement and runs it.

    Args:
        query: Base statement, its own WHERE clauses and joins are kept
        request: DatatableRequest or the raw request parameters
        bind: Session, Connection or Engine used to execute
        config: Engine configuration, defaults when omitted
        relations: Relations used to resolve dotted column names
        eager_loads: Relation paths joinable for dotted column names
        dialect: Dialect used for compiling when there is no bind
    """

    def __init__(self, query: Select, request: Union[DatatableRequest, Mapping[str, Any]], bind: Any = None,
                 config: Optional[DatatableConfig] = None, relations: Optional[RelationRegistry] = None,
                 eager_loads: Iterable[str] = (), dialect: Optional[Dialect] = None) -> None:
        if not isinstance(request, DatatableRequest):
            request = DatatableRequest(request)
        self.request = request
        self.config = config or DatatableConfig()
        self.handle = QueryHandle(query, bind=bind, dialect=dialect, oracle=self.config.oracle)
        self.relations = relations or RelationRegistry()
        self.eager_loads: Set[str] = expand_eager_loads(eager_loads)

        self.filters: Dict[str, Override] = {}
        self.orders: Dict[str, Override] = {}
        self.blacklisted: Set[str] = set(DEFAULT_BLACKLIST)
        self.whitelisted: Union[str, Set[str]] = '*'
        self.appends: List[tuple] = []

        self.auto_filter = True
        self.filter_callback: Optional[Callable[[QueryHandle], Any]] = None
        self.order_callback: Optional[Callable[[QueryHandle], Any]] = None
        self.is_filter_applied = False
        self.total_records: Optional[int] = None
        self.filtered_records: Optional[int] = None
        self.pager = Pager(self.handle, self.request, self.config)

    @property
    def resolver(self) -> RelationResolver:
        return RelationResolver(self.relations, self.handle, self.eager_loads)

    def filter(self, callback: Callable[[QueryHandle], Any], global_search: bool = False) -> 'QueryBuilderEngine':
        """
        Register a filter callback run on every request.

        Args:
            callback: Called with the query handle
            global_search: Keep the automatic global search as well
        """
        self.auto_filter = global_search
        self.filter_callback = callback
        return self

    def filter_column(self, name: str, method: Union[str, QueryOperation, Callable[..., Any]],
                      *parameters: Any) -> 'QueryBuilderEngine':
        """
        Replace the search of one column.

        ``method`` is a callable receiving a predicate group and the keyword, or
        a query operation followed by its parameter template where ``$1`` is
        the keyword. A trailing False keeps the column out of global search.

        Raises:
            ConfigurationError: If the operation is unknown or given too many parameters
        """
        self.filters[name] = make_override(method, parameters)
        return self

    def order_column(self, name: str, sql: Union[str, Callable[..., Any]],
                     bindings: Iterable[Any] = ()) -> 'QueryBuilderEngine':
        """
        Replace the ordering of one column.

        Args:
            name: Column name as sent by the grid
            sql: Raw ORDER BY fragment where ``$1`` is the direction, or a
                callable receiving the query handle and the direction
            bindings: Values for ``?`` placeholders in the fragment
        """
        if callable(sql):
            self.orders[name] = Callback(sql)
        else:
            self.orders[name] = NamedOp(QueryOperation.ORDER_BY_RAW, (sql, list(bindings)))
        return self

    def order(self, callback: Callable[[QueryHandle], Any]) -> 'QueryBuilderEngine':
        """Replace the automatic ordering entirely."""
        self.order_callback = callback
        return self

    def blacklist(self, names: Iterable[str]) -> 'QueryBuilderEngine':
        self.blacklisted.update(names)
        return self

    def whitelist(self, names: Union[str, Iterable[str]] = '*') -> 'QueryBuilderEngine':
        self.whitelisted = names if names == '*' else set(names)
        return self

    def is_blacklisted(self, column: str) -> bool:
        if column in self.blacklisted:
            return True
        if self.whitelisted == '*' or column in self.whitelisted:
            return False
        return True

    def add_column(self, name: str, content: Union[str, Callable[[Dict[str, Any]], Any]],
                   order: Optional[int] = None) -> 'QueryBuilderEngine':
        """
        Add a computed column to every row of the result.

        The column is not searchable nor orderable.

        Args:
            name: Key of the new column
            content: Callable of the row, or a template formatted with the row
            order: Position of the column in the row, last when omitted
        """
        self.blacklisted.add(name)
        self.appends.append((name, content, order))
        return self

    def order_by_nulls_last(self) -> 'QueryBuilderEngine':
        self.config = replace(self.config, nulls_last=True)
        return self

    def with_relations(self, *paths: str) -> 'QueryBuilderEngine':
        self.eager_loads |= expand_eager_loads(paths)
        return self

    def _search_compiler(self) -> SearchCompiler:
        return SearchCompiler(self.handle, self.request, self.config, self.resolver,
                              self.filters, self.is_blacklisted)

    def _debug(self, step: str) -> None:
        if self.config.debug and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{step}: {self.handle.to_sql()}")

    def filtering(self) -> None:
        """Global search over every searchable column."""
        compiler = self._search_compiler()
        compiler.filtering()
        self.is_filter_applied |= compiler.is_filter_applied
        self._debug('filtering')

    def column_search(self) -> None:
        """Search of the columns carrying their own keyword."""
        compiler = self._search_compiler()
        compiler.column_search()
        self.is_filter_applied |= compiler.is_filter_applied
        self._debug('column_search')

    def multi_column_filter(self) -> None:
        """
        Compile the filter tree of the request.

        Raises:
            ConfigurationError: If a group uses an unknown logic token
        """
        tree = parse_filter_tree(self.request.filters())
        if tree is None:
            return
        FilterTreeCompiler(self.handle.adapter).compile(tree, self.handle.wheres)
        self.is_filter_applied = True
        self._debug('multi_column_filter')

    def filter_records(self) -> None:
        """Run every filtering pass and count the filtered rows."""
        if self.auto_filter and self.request.is_searchable():
            self.filtering()

        if self.filter_callback is not None:
            self.filter_callback(self.handle)
            self.is_filter_applied = True

        self.column_search()
        self.multi_column_filter()

        if self.is_filter_applied:
            self.filtered_records = self.count()
        else:
            self.filtered_records = self.total_count()

    def ordering(self) -> None:
        OrderCompiler(self.handle, self.request, self.config, self.resolver, self.orders,
                      self.is_blacklisted, self.order_callback).ordering()
        self._debug('ordering')

    def paging(self) -> None:
        """
        Apply offset and limit of the requested page.

        Raises:
            RequestValidationError: If the page number is below 1
            DatatableError: If paging was already applied
        """
        self.pager.paging()
        self._debug('paging')

    def paginate(self) -> None:
        if self.request.is_paginationable():
            self.paging()

    def count_query(self) -> Select:
        return self.pager.count_query()

    def count(self) -> int:
        return self.pager.count()

    def total_count(self) -> int:
        """Unfiltered row count, computed once."""
        if self.total_records is None:
            self.total_records = self.count()
        return self.total_records

    def results(self) -> List[Dict[str, Any]]:
        return [self._append_columns(row) for row in self.handle.fetch_all()]

    def _append_columns(self, row: Dict[str, Any]) -> Dict[str, Any]:
        for name, content, order in self.appends:
            value = content(row) if callable(content) else str(content).format_map(row)
            if order is None:
                row[name] = value
            else:
                items = [item for item in row.items() if item[0] != name]
                items.insert(order, (name, value))
                row = dict(items)
        return row

    def make(self) -> DatatableResult:
        """
        Run the whole cycle: counts, search, filters, ordering, paging, results.

        Raises:
            RequestValidationError: For legacy or incomplete requests
        """
        self.request.check_legacy_code()

        total = self.total_count()
        if total:
            self.filter_records()
            self.ordering()
            self.paginate()
        else:
            self.filtered_records = 0

        try:
            draw = int(self.request.params.get('draw') or 0)
        except (TypeError, ValueError):
            draw = 0

        return DatatableResult(total=total, filtered=self.filtered_records, data=self.results(), draw=draw)
