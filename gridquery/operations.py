"""
Column overrides and the query operations they may name.

An override replaces the automatic search or ordering of one column. It is
either a `Callback`, called with a predicate group (or the query handle for
ordering) and the keyword, or a `NamedOp`: one of the `QueryOperation`
members plus a parameter template in which ``$1`` stands for the keyword.

    engine.filter_column('fullname', 'where_raw', "first_name || ' ' || last_name like ?", ['%$1%'])
    engine.order_column('fullname', 'last_name $1, first_name $1')
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Sequence, Union
from gridquery.exceptions import ConfigurationError

KEYWORD_PLACEHOLDER = '$1'


class QueryOperation(Enum):
    """
    Operations an override can name.

    Each value is (name, arity, takes_column, or_variant). The arity counts
    every positional parameter, the column included.
    """
    WHERE = ('where', 4, True, 'or_where')
    OR_WHERE = ('or_where', 3, True, 'or_where')
    WHERE_RAW = ('where_raw', 3, False, 'or_where_raw')
    OR_WHERE_RAW = ('or_where_raw', 2, False, 'or_where_raw')
    WHERE_IN = ('where_in', 4, True, 'or_where_in')
    OR_WHERE_IN = ('or_where_in', 3, True, 'or_where_in')
    WHERE_NULL = ('where_null', 3, True, 'or_where_null')
    OR_WHERE_NULL = ('or_where_null', 2, True, 'or_where_null')
    WHERE_NOT_NULL = ('where_not_null', 2, True, 'or_where_not_null')
    OR_WHERE_NOT_NULL = ('or_where_not_null', 1, True, 'or_where_not_null')
    ORDER_BY = ('order_by', 2, True, 'order_by')
    ORDER_BY_RAW = ('order_by_raw', 2, False, 'order_by_raw')

    def __init__(self, op_name: str, arity: int, takes_column: bool, or_name: str) -> None:
        self.op_name = op_name
        self.arity = arity
        self.takes_column = takes_column
        self.or_name = or_name

    @classmethod
    def from_name(cls, name: Union[str, 'QueryOperation']) -> 'QueryOperation':
        """
        Resolve an operation from its name, camelCase names included.

        Raises:
            ConfigurationError: If no operation has that name
        """
        if isinstance(name, QueryOperation):
            return name
        normalized = ''.join('_' + c.lower() if c.isupper() else c for c in name).lstrip('_')
        for op in cls:
            if op.op_name == normalized:
                return op
        raise ConfigurationError(f"Unknown query operation: {name}")

    @property
    def or_variant(self) -> 'QueryOperation':
        return QueryOperation.from_name(self.or_name)

    @property
    def is_order(self) -> bool:
        return self in (QueryOperation.ORDER_BY, QueryOperation.ORDER_BY_RAW)


@dataclass(frozen=True)
class Callback:
    fn: Callable[..., Any]


@dataclass(frozen=True)
class NamedOp:
    operation: QueryOperation
    parameters: Sequence[Any] = field(default_factory=tuple)

    @property
    def search_exempt(self) -> bool:
        """A trailing literal False keeps the column out of global search."""
        return len(self.parameters) > 0 and self.parameters[-1] is False

    @property
    def template(self) -> List[Any]:
        params = list(self.parameters)
        if self.search_exempt:
            params.pop()
        return params


Override = Union[Callback, NamedOp]


def make_override(method: Union[str, QueryOperation, Callable[..., Any]], parameters: Sequence[Any] = ()) -> Override:
    """
    Build an override from what the caller registered.

    Args:
        method: Callable, QueryOperation or operation name
        parameters: Parameter template for named operations

    Returns:
        Callback or NamedOp

    Raises:
        ConfigurationError: For unknown operations or too many parameters
    """
    if callable(method) and not isinstance(method, QueryOperation):
        return Callback(method)

    override = NamedOp(QueryOperation.from_name(method), tuple(parameters))
    _check_arity(override.operation, override.template)
    return override


def _check_arity(op: QueryOperation, template: Sequence[Any]) -> None:
    given = len(template) + (1 if op.takes_column else 0)
    if given > op.arity:
        raise ConfigurationError(f"{op.op_name} takes at most {op.arity} parameters, {given} given")


def substitute(parameters: Sequence[Any], keyword: str) -> List[Any]:
    """
    Replace the keyword placeholder in a parameter template.

    Strings are searched for ``$1``, lists one level deep too. Other values
    pass through unchanged.
    """
    def replace(value: Any) -> Any:
        if isinstance(value, str):
            return value.replace(KEYWORD_PLACEHOLDER, keyword)
        return value

    result = []
    for param in parameters:
        if isinstance(param, (list, tuple)):
            result.append([replace(p) for p in param])
        else:
            result.append(replace(param))
    return result


def _where(group, column, *args):
    if len(args) == 1:
        return group.where(column, '=', args[0])
    return group.where(column, *args)


def _or_where(group, column, *args):
    if len(args) == 1:
        return group.or_where(column, '=', args[0])
    return group.or_where(column, *args)


def _where_in(group, column, values, boolean='and', negate=False):
    return group.where_in(column, values, boolean, negate)


def _where_null(group, column, boolean='and', negate=False):
    return group.where_null(column, boolean, negate)


def _order_by(handle, column, direction='asc'):
    expression = handle.adapter.column(column)
    return handle.order_by(expression.asc() if direction == 'asc' else expression.desc())


OPERATIONS: Dict[QueryOperation, Callable[..., Any]] = {
    QueryOperation.WHERE: _where,
    QueryOperation.OR_WHERE: _or_where,
    QueryOperation.WHERE_RAW: lambda g, sql, bindings=(), boolean='and': g.where_raw(sql, bindings, boolean),
    QueryOperation.OR_WHERE_RAW: lambda g, sql, bindings=(): g.or_where_raw(sql, bindings),
    QueryOperation.WHERE_IN: _where_in,
    QueryOperation.OR_WHERE_IN: lambda g, column, values, negate=False: g.where_in(column, values, 'or', negate),
    QueryOperation.WHERE_NULL: _where_null,
    QueryOperation.OR_WHERE_NULL: lambda g, column, negate=False: g.where_null(column, 'or', negate),
    QueryOperation.WHERE_NOT_NULL: lambda g, column, boolean='and': g.where_not_null(column, boolean),
    QueryOperation.OR_WHERE_NOT_NULL: lambda g, column: g.where_not_null(column, 'or'),
    QueryOperation.ORDER_BY: _order_by,
    QueryOperation.ORDER_BY_RAW: lambda h, sql, bindings=(): h.order_by_raw(sql, bindings),
}


def apply_override(override: NamedOp, target: Any, column: str, keyword: str, use_or: bool = False) -> None:
    """
    Run a named operation override.

    Args:
        override: The override to run
        target: Predicate group for filters, query handle for ordering
        column: Column the override is registered for
        keyword: Search keyword or sort direction
        use_or: Use the OR variant of the operation

    Raises:
        ConfigurationError: If the template has more parameters than the operation takes
    """
    op = override.operation.or_variant if use_or else override.operation
    _check_arity(op, override.template)
    parameters = substitute(override.template, keyword)
    if op.takes_column:
        parameters.insert(0, column)
    OPERATIONS[op](target, *parameters)
