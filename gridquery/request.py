"""
Read-only view over the parameters a data grid sends to the server.

The grid posts four structures, usually JSON encoded:

    columns  [{"data": "name", "name": "name", "searchable": true,
               "json": "address.city", "fallback": "city",
               "search": {"value": "", "regex": false}}, ...]
    sort     {"sortBy": "name", "descending": false, "page": 1, "rowsPerPage": 10}
    search   {"value": "free text"}
    filter   {"logic": "and", "filters": [{"field": "age", "operator": "gt", "value": 30}, ...]}

`DatatableRequest` accepts them either as JSON strings or already decoded, so it
can sit behind any web framework.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Union
from gridquery.exceptions import RequestValidationError


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def _as_int(value: Any, key: str, default: int) -> int:
    if value is None or value == '':
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"Parameter '{key}' must be an integer, got {value!r}")


@dataclass(frozen=True)
class ColumnSpec:
    """One column of the grid, identified by its position in the request."""
    name: str
    data_key: str
    searchable: bool = False
    orderable: bool = True
    json_path: Optional[str] = None
    fallback_column: Optional[str] = None
    search_value: str = ''
    is_regex: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnSpec':
        """
        Build a column from the grid payload.

        Args:
            data: Column definition as sent by the grid

        Returns:
            A new ColumnSpec

        Raises:
            RequestValidationError: If the column has neither a name nor a data key
        """
        if not isinstance(data, dict):
            raise RequestValidationError(f"Invalid column definition: {data!r}")

        data_key = data.get('data') or ''
        name = data.get('name') or data_key
        if not name:
            raise RequestValidationError(f"Column without name or data key: {data!r}")

        search = data.get('search') or {}
        if not isinstance(search, dict):
            search = {}
        value = search.get('value')

        return cls(name=str(name),
                   data_key=str(data_key or name),
                   searchable=_as_bool(data.get('searchable', False)),
                   orderable=_as_bool(data.get('orderable', True)),
                   json_path=data.get('json') or None,
                   fallback_column=data.get('fallback') or None,
                   search_value='' if value is None else str(value),
                   is_regex=_as_bool(search.get('regex', False)))


@dataclass(frozen=True)
class SortSpec:
    """Active sort field and pagination window; page_size 0 means no explicit size."""
    sort_by: str = ''
    descending: bool = False
    page: int = 1
    page_size: int = 0

    @property
    def direction(self) -> str:
        return 'desc' if self.descending else 'asc'


class Orderable(NamedTuple):
    column: str
    json_path: Optional[str]
    fallback: Optional[str]
    direction: str


class DatatableRequest:
    """
    Parsed request of a single grid refresh.

    Decoding happens lazily and is cached, every accessor is side effect free.
    """

    def __init__(self, params: Mapping[str, Any]) -> None:
        """
        Args:
            params: Raw request parameters (query string or JSON body)
        """
        self.params = params or {}
        self._cache: Dict[str, Any] = {}

    def _decode(self, key: str, expected: type) -> Any:
        if key in self._cache:
            return self._cache[key]

        value = self.params.get(key)
        if isinstance(value, (str, bytes)):
            if not value:
                value = None
            else:
                try:
                    value = json.loads(value)
                except json.JSONDecodeError as e:
                    raise RequestValidationError(f"Parameter '{key}' is not valid JSON: {str(e)}")

        if not isinstance(value, expected):
            value = expected()

        self._cache[key] = value
        return value

    def check_legacy_code(self) -> None:
        """
        Reject requests this engine cannot serve.

        Raises:
            RequestValidationError: For legacy (sEcho) requests or when neither
                draw nor columns were sent
        """
        if not self.params.get('draw') and self.params.get('sEcho'):
            raise RequestValidationError(
                'DataTables legacy code is not supported! Please use DataTables 1.10++ coding convention.')
        if not self.params.get('draw') and not self.params.get('columns'):
            raise RequestValidationError('Insufficient parameters')

    def columns(self) -> List[ColumnSpec]:
        """Columns in request order."""
        if 'columns_spec' not in self._cache:
            self._cache['columns_spec'] = [ColumnSpec.from_dict(c) for c in self._decode('columns', list)]
        return self._cache['columns_spec']

    def column(self, index: int) -> Optional[ColumnSpec]:
        columns = self.columns()
        if 0 <= index < len(columns):
            return columns[index]
        return None

    def sort_spec(self) -> SortSpec:
        sort = self._decode('sort', dict)
        return SortSpec(sort_by=str(sort.get('sortBy') or ''),
                        descending=_as_bool(sort.get('descending', False)),
                        page=_as_int(sort.get('page'), 'page', 1),
                        page_size=_as_int(sort.get('rowsPerPage'), 'rowsPerPage', 0))

    def global_search(self) -> Dict[str, str]:
        search = self._decode('search', dict)
        value = search.get('value')
        return {'value': '' if value is None else str(value)}

    def keyword(self) -> str:
        """Global search keyword."""
        return self.global_search()['value']

    def filters(self) -> Optional[Union[Dict[str, Any], List[Any]]]:
        """Raw filter tree, None when the grid sent none."""
        value = self.params.get('filter')
        if isinstance(value, (str, bytes)):
            if not value:
                return None
            try:
                return json.loads(value)
            except json.JSONDecodeError as e:
                raise RequestValidationError(f"Parameter 'filter' is not valid JSON: {str(e)}")
        return value or None

    def is_searchable(self) -> bool:
        """Check if a global search was requested."""
        if not self._decode('search', dict):
            return False
        return self.keyword() != '' or bool(self.filters())

    def searchable_column_index(self) -> List[int]:
        return [i for i in range(len(self.columns())) if self.is_column_searchable(i, False)]

    def is_column_searchable(self, index: int, column_search: bool = True) -> bool:
        """
        Check if a column is searchable.

        Args:
            index: Column position
            column_search: Also require a per-column keyword

        Returns:
            True when the column takes part in the search
        """
        column = self.column(index)
        if column is None or not column.searchable:
            return False
        if column_search:
            return self.column_keyword(index) != ''
        return True

    def column_keyword(self, index: int) -> str:
        column = self.column(index)
        return column.search_value if column else ''

    def column_name(self, index: int) -> str:
        return self.columns()[index].name

    def is_regex(self, index: int) -> bool:
        column = self.column(index)
        return bool(column and column.is_regex)

    def is_json(self, index: int) -> Union[str, bool]:
        """JSON path of the column, False for plain columns."""
        column = self.column(index)
        if column and column.json_path:
            return column.json_path
        return False

    def is_orderable(self) -> bool:
        return self.sort_spec().sort_by != ''

    def orderable_columns(self) -> List[Orderable]:
        """
        The single active sort column with its JSON path and fallback.

        A column explicitly declared with orderable false yields nothing.
        """
        if not self.is_orderable():
            return []

        sort = self.sort_spec()
        spec = next((c for c in self.columns() if c.name == sort.sort_by), None)
        if spec is not None and not spec.orderable:
            return []

        return [Orderable(column=sort.sort_by,
                          json_path=spec.json_path if spec else None,
                          fallback=spec.fallback_column if spec else None,
                          direction=sort.direction)]

    def is_paginationable(self) -> bool:
        sort = self._decode('sort', dict)
        return sort.get('page') not in (None, '') and sort.get('rowsPerPage') not in (None, '')

    def page(self) -> int:
        return self.sort_spec().page

    def page_size(self) -> int:
        return self.sort_spec().page_size
