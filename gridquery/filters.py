"""
Nested multi-column filters.

The grid sends a tree of groups and leaves:

    {"logic": "and", "filters": [
        {"field": "country", "operator": "eq", "value": "Germany"},
        {"logic": "or", "filters": [
            {"field": "city", "operator": "startswith", "value": "Ber"},
            {"field": "city", "operator": "contains", "value": "furt"}]}]}

which compiles to

    (country = 'Germany' AND (city LIKE 'Ber%' OR city LIKE '%furt%'))

Every group renders inside parentheses, leaves never do. Malformed leaves
and unknown operators are logged and skipped, an unknown group logic aborts
the compilation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union
from sqlalchemy.sql.elements import ColumnElement
from gridquery import get_logger
from gridquery.dialects import DialectAdapter
from gridquery.exceptions import ConfigurationError
from gridquery.query import ConditionGroup, compare

logger = get_logger('gridquery')


class FilterOperator(Enum):
    EQ = 'eq'
    NEQ = 'neq'
    GT = 'gt'
    GTE = 'gte'
    LT = 'lt'
    LTE = 'lte'
    STARTSWITH = 'startswith'
    CONTAINS = 'contains'
    DOESNOTCONTAIN = 'doesnotcontain'
    ENDSWITH = 'endswith'
    ISNULL = 'isnull'
    ISNOTNULL = 'isnotnull'
    ISEMPTY = 'isempty'
    ISNOTEMPTY = 'isnotempty'


OPERATORS: Dict[FilterOperator, Callable[[ColumnElement, Any], ColumnElement]] = {
    FilterOperator.EQ: lambda c, v: c == v,
    FilterOperator.NEQ: lambda c, v: compare(c, '<>', v),
    FilterOperator.GT: lambda c, v: c > v,
    FilterOperator.GTE: lambda c, v: c >= v,
    FilterOperator.LT: lambda c, v: c < v,
    FilterOperator.LTE: lambda c, v: c <= v,
    FilterOperator.STARTSWITH: lambda c, v: c.like(f"{v}%"),
    FilterOperator.CONTAINS: lambda c, v: c.like(f"%{v}%"),
    FilterOperator.DOESNOTCONTAIN: lambda c, v: c.not_like(f"%{v}%"),
    FilterOperator.ENDSWITH: lambda c, v: c.like(f"%{v}"),
    FilterOperator.ISNULL: lambda c, v: c.is_(None),
    FilterOperator.ISNOTNULL: lambda c, v: c.is_not(None),
    FilterOperator.ISEMPTY: lambda c, v: c == '',
    FilterOperator.ISNOTEMPTY: lambda c, v: compare(c, '<>', ''),
}


@dataclass(frozen=True)
class FilterLeaf:
    field: Any = None
    operator: Any = None
    value: Any = None


@dataclass(frozen=True)
class FilterGroup:
    logic: str
    children: Tuple[Union['FilterGroup', FilterLeaf], ...] = ()


FilterNode = Union[FilterGroup, FilterLeaf]


def normalize_logic(logic: Any) -> str:
    """
    Normalize a group logic token.

    Raises:
        ConfigurationError: If the token is neither "and" nor "or"
    """
    token = str(logic).strip().lower()
    if token not in ('and', 'or'):
        raise ConfigurationError(f"{logic} is a unknown operator")
    return token


def _is_group(data: Any) -> bool:
    return isinstance(data, dict) and 'logic' in data and 'filters' in data


def _parse_node(data: Any) -> FilterNode:
    if _is_group(data):
        children = data['filters'] if isinstance(data['filters'], (list, tuple)) else []
        return FilterGroup(normalize_logic(data['logic']), tuple(_parse_node(c) for c in children))
    if isinstance(data, dict):
        return FilterLeaf(data.get('field'), data.get('operator'), data.get('value'))
    return FilterLeaf()


def parse_filter_tree(data: Any) -> Optional[FilterGroup]:
    """
    Parse the raw filter structure sent by the grid.

    A root without ``logic`` or ``filters`` is skipped with a warning, nested
    dicts without them are treated as leaves.

    Args:
        data: Decoded filter parameter

    Returns:
        The root group, None when there is nothing to compile

    Raises:
        ConfigurationError: If a group uses an unknown logic token
    """
    if not data:
        return None
    if not _is_group(data):
        logger.warning(f"Filter tree without logic or filters skipped: {data}")
        return None
    return _parse_node(data)


def _missing(value: Any) -> bool:
    return value is None or value == ''


class FilterTreeCompiler:
    """Compiles a filter tree into nested predicate groups."""

    def __init__(self, adapter: DialectAdapter) -> None:
        self.adapter = adapter

    def compile(self, node: FilterNode, scope: ConditionGroup, boolean: str = 'and') -> None:
        """
        Compile a node into a predicate scope.

        Args:
            node: Group or leaf
            scope: Predicate group receiving the node
            boolean: How the node joins its siblings
        """
        if isinstance(node, FilterGroup):
            group = scope.nested(boolean)
            for child in node.children:
                self.compile(child, group, node.logic)
        else:
            self.compile_leaf(node, scope, boolean)

    def compile_leaf(self, leaf: FilterLeaf, scope: ConditionGroup, boolean: str = 'and') -> bool:
        """
        Add the predicate of a single comparison.

        Returns:
            False when the leaf was skipped
        """
        if _missing(leaf.field) or _missing(leaf.operator) or _missing(leaf.value):
            logger.error(f"Filter skipped, some important value is not set: {leaf}")
            return False

        try:
            operator = FilterOperator(str(leaf.operator).strip())
        except ValueError:
            logger.error(f"Filter skipped, {leaf.operator} is unknown")
            return False

        column = self.adapter.column(str(leaf.field))
        scope.add(OPERATORS[operator](column, leaf.value), boolean)
        return True
