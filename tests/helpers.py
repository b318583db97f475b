import json
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.dialects import sqlite


def col(name: str, searchable: bool = True, orderable: bool = True, search: str = '', regex: bool = False,
        **extra: Any) -> Dict[str, Any]:
    """Column definition as the grid sends it."""
    column = {'data': name, 'name': name, 'searchable': searchable, 'orderable': orderable,
              'search': {'value': search, 'regex': regex}}
    column.update(extra)
    return column


def grid_params(columns: List[Union[str, Dict[str, Any]]], search: str = '', sort: Optional[Dict[str, Any]] = None,
                filter: Any = None, draw: int = 1, encode: bool = True) -> Dict[str, Any]:
    """Request parameters of one grid refresh, JSON encoded like a query string."""
    params = {
        'draw': draw,
        'columns': [col(c) if isinstance(c, str) else c for c in columns],
        'search': {'value': search},
        'sort': sort or {},
    }
    if filter is not None:
        params['filter'] = filter
    if encode:
        params = {k: v if k == 'draw' else json.dumps(v) for k, v in params.items()}
    return params


def sql(stmt: Any, dialect: Any = None) -> str:
    """Compile with inline values, single line."""
    compiled = stmt.compile(dialect=dialect or sqlite.dialect(), compile_kwargs={"literal_binds": True})
    return ' '.join(str(compiled).split())
