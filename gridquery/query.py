"""
Mutable query handle built on top of a SQLAlchemy `Select`.

SQLAlchemy statements are immutable, while the compilation passes of the
engine add predicates, joins and ordering one at a time, possibly from user
callbacks. `QueryHandle` collects those pieces and materialises a fresh
`Select` whenever `statement` is read. Predicates are gathered in
`ConditionGroup` scopes which can be nested to any depth.
"""

import re
from typing import Any, Iterable, List, Optional, Set, Tuple, Union
from sqlalchemy import Select, and_, bindparam, func, literal_column, or_, select, table, text
from sqlalchemy.engine import Connection, Dialect, Engine
from sqlalchemy.engine.default import DefaultDialect
from sqlalchemy.sql.elements import ColumnElement, Grouping
from sqlalchemy.sql.selectable import FromClause, Join
from gridquery.dialects import DialectAdapter, get_adapter
from gridquery.exceptions import ConfigurationError, DatatableError

COUNT_BLOCKERS = ('union', 'having', 'distinct', 'order by', 'group by')

Condition = Union[ColumnElement, 'ConditionGroup']


def raw_clause(sql: str, bindings: Iterable[Any] = ()) -> Any:
    """
    Build a text clause from SQL using positional "?" placeholders.

    Every placeholder becomes a unique bound parameter, so the same raw
    fragment can appear several times in one statement.

    Args:
        sql: Raw SQL fragment
        bindings: One value for each placeholder

    Returns:
        SQLAlchemy text clause

    Raises:
        ConfigurationError: If placeholders and bindings do not match
    """
    bindings = list(bindings)
    if sql.count('?') != len(bindings):
        raise ConfigurationError(
            f"Raw SQL expects {sql.count('?')} bindings, got {len(bindings)}: {sql}")

    params = []

    def replace(match: re.Match) -> str:
        key = f"raw_{len(params)}"
        params.append(bindparam(key, bindings[len(params)], unique=True))
        return f":{key}"

    return text(re.sub(r'\?', replace, sql)).bindparams(*params)


def compare(expression: ColumnElement, operator: str, value: Any) -> ColumnElement:
    """
    Apply a comparison operator as written in SQL.

    Args:
        expression: Left side of the comparison
        operator: One of =, <>, !=, >, >=, <, <=, like, not like
        value: Right side, bound as a parameter

    Returns:
        SQLAlchemy boolean expression
    """
    op = operator.strip().lower()
    if op == '=':
        return expression == value
    elif op in ('<>', '!='):
        return expression.op('<>', is_comparison=True)(value)
    elif op == '>':
        return expression > value
    elif op == '>=':
        return expression >= value
    elif op == '<':
        return expression < value
    elif op == '<=':
        return expression <= value
    elif op == 'like':
        return expression.like(value)
    elif op == 'not like':
        return expression.not_like(value)
    raise ConfigurationError(f"Unsupported comparison operator: {operator}")


class ConditionGroup:
    """
    An ordered list of predicates joined by AND/OR, like the body of a
    parenthesised WHERE group.

    Predicates fold with SQL precedence: AND binds tighter than OR, the
    boolean of the first predicate is ignored. Nested groups always render
    inside parentheses, empty nested groups disappear.
    """

    def __init__(self, adapter: DialectAdapter) -> None:
        self.adapter = adapter
        self.conditions: List[Tuple[str, Condition]] = []

    def add(self, condition: Condition, boolean: str = 'and') -> 'ConditionGroup':
        if boolean not in ('and', 'or'):
            raise ConfigurationError(f"{boolean} is a unknown operator")
        self.conditions.append((boolean, condition))
        return self

    def where(self, column: Union[str, ColumnElement], operator: str = '=', value: Any = None,
              boolean: str = 'and') -> 'ConditionGroup':
        return self.add(compare(self._column(column), operator, value), boolean)

    def or_where(self, column: Union[str, ColumnElement], operator: str = '=',
                 value: Any = None) -> 'ConditionGroup':
        return self.where(column, operator, value, 'or')

    def where_raw(self, sql: str, bindings: Iterable[Any] = (), boolean: str = 'and') -> 'ConditionGroup':
        return self.add(raw_clause(sql, bindings), boolean)

    def or_where_raw(self, sql: str, bindings: Iterable[Any] = ()) -> 'ConditionGroup':
        return self.where_raw(sql, bindings, 'or')

    def where_in(self, column: Union[str, ColumnElement], values: Iterable[Any],
                 boolean: str = 'and', negate: bool = False) -> 'ConditionGroup':
        expression = self._column(column)
        clause = expression.not_in(list(values)) if negate else expression.in_(list(values))
        return self.add(clause, boolean)

    def where_null(self, column: Union[str, ColumnElement], boolean: str = 'and',
                   negate: bool = False) -> 'ConditionGroup':
        expression = self._column(column)
        return self.add(expression.is_not(None) if negate else expression.is_(None), boolean)

    def where_not_null(self, column: Union[str, ColumnElement], boolean: str = 'and') -> 'ConditionGroup':
        return self.where_null(column, boolean, negate=True)

    def nested(self, boolean: str = 'and') -> 'ConditionGroup':
        """Open a parenthesised sub-group and return it."""
        group = ConditionGroup(self.adapter)
        self.add(group, boolean)
        return group

    def add_nested(self, group: 'ConditionGroup', boolean: str = 'and') -> 'ConditionGroup':
        return self.add(group, boolean)

    def is_empty(self) -> bool:
        return all(isinstance(c, ConditionGroup) and c.is_empty() for _, c in self.conditions)

    def copy(self) -> 'ConditionGroup':
        group = ConditionGroup(self.adapter)
        group.conditions = [(b, c.copy() if isinstance(c, ConditionGroup) else c)
                            for b, c in self.conditions]
        return group

    def to_clause(self) -> Optional[ColumnElement]:
        """
        Fold the group into one SQLAlchemy expression.

        Returns:
            The expression, None when the group holds nothing
        """
        chunks: List[List[ColumnElement]] = []
        for boolean, condition in self.conditions:
            if isinstance(condition, ConditionGroup):
                if condition.is_empty():
                    continue
                condition = Grouping(condition.to_clause())
            if boolean == 'or' or not chunks:
                chunks.append([condition])
            else:
                chunks[-1].append(condition)

        if not chunks:
            return None
        terms = [and_(*chunk) if len(chunk) > 1 else chunk[0] for chunk in chunks]
        return or_(*terms) if len(terms) > 1 else terms[0]

    def _column(self, column: Union[str, ColumnElement]) -> ColumnElement:
        if isinstance(column, str):
            return self.adapter.column(column)
        return column


def _dialect_of(bind: Any) -> Optional[Dialect]:
    if bind is None:
        return None
    if hasattr(bind, 'get_bind'):
        return bind.get_bind().dialect
    return getattr(bind, 'dialect', None)


def _leftmost(from_clause: FromClause) -> FromClause:
    while isinstance(from_clause, Join):
        from_clause = from_clause.left
    return from_clause


def _joined_names(from_clause: FromClause) -> Set[str]:
    if isinstance(from_clause, Join):
        names = _joined_names(from_clause.left) | _joined_names(from_clause.right)
        right = _leftmost(from_clause.right)
        if getattr(right, 'name', None):
            names.add(right.name)
        return names
    return set()


class QueryHandle:
    """
    The query being compiled for one request.

    Owned by a single engine instance, never shared between requests.

    Attributes:
        base: Statement the handle started from
        bind: Session, Connection or Engine used for execution
        dialect: SQLAlchemy dialect used for compiling
        adapter: Dialect adapter for raw fragments
        wheres: Root predicate group, AND-ed to the base WHERE clause
        joined_tables: Names of the tables already joined (the join registry)
    """

    def __init__(self, statement: Select, bind: Any = None, dialect: Optional[Dialect] = None,
                 oracle: bool = False) -> None:
        self.base = statement
        self.bind = bind
        self.dialect = dialect or _dialect_of(bind) or DefaultDialect()
        self.adapter = get_adapter(self.dialect, oracle)
        self.wheres = ConditionGroup(self.adapter)
        self.joins: List[Tuple[FromClause, ColumnElement]] = []
        self.joined_tables: Set[str] = set()
        self.extra_columns: List[ColumnElement] = []
        self.orders: List[Any] = []
        self.offset_value: Optional[int] = None
        self.limit_value: Optional[int] = None

        for from_clause in statement.get_final_froms():
            self.joined_tables |= _joined_names(from_clause)

    @property
    def from_table(self) -> Optional[str]:
        """Name of the main table, None when the query selects from an expression."""
        froms = self.base.get_final_froms()
        if not froms:
            return None
        return getattr(_leftmost(froms[0]), 'name', None)

    def new_group(self) -> ConditionGroup:
        """A fresh, detached predicate scope."""
        return ConditionGroup(self.adapter)

    def where(self, column: Union[str, ColumnElement], operator: str = '=', value: Any = None,
              boolean: str = 'and') -> 'QueryHandle':
        self.wheres.where(column, operator, value, boolean)
        return self

    def where_clause(self, clause: Condition, boolean: str = 'and') -> 'QueryHandle':
        self.wheres.add(clause, boolean)
        return self

    def where_raw(self, sql: str, bindings: Iterable[Any] = (), boolean: str = 'and') -> 'QueryHandle':
        self.wheres.where_raw(sql, bindings, boolean)
        return self

    def nested(self, boolean: str = 'and') -> ConditionGroup:
        return self.wheres.nested(boolean)

    def has_join(self, table_name: str) -> bool:
        return table_name in self.joined_tables

    def left_join(self, target: Union[str, FromClause], first: str, second: str,
                  extra: Optional[ColumnElement] = None) -> bool:
        """
        LEFT JOIN a table unless a table with the same name is already joined.

        Args:
            target: Table name or FROM clause to join
            first: Qualified column of the join condition
            second: Qualified column compared with first
            extra: Additional ON condition AND-ed to the key match

        Returns:
            True when a join was added
        """
        if isinstance(target, str):
            target = table(target)
        if self.has_join(target.name):
            return False
        onclause = self.adapter.column(first) == self.adapter.column(second)
        if extra is not None:
            onclause = and_(onclause, extra)
        self.joins.append((target, onclause))
        self.joined_tables.add(target.name)
        return True

    def add_select(self, column: Union[str, ColumnElement]) -> 'QueryHandle':
        if isinstance(column, str):
            column = self.adapter.column(column)
        self.extra_columns.append(column)
        return self

    def order_by(self, clause: Any) -> 'QueryHandle':
        self.orders.append(clause)
        return self

    def order_by_raw(self, sql: str, bindings: Iterable[Any] = ()) -> 'QueryHandle':
        if '?' in sql:
            self.orders.append(raw_clause(sql, bindings))
        else:
            self.orders.append(literal_column(sql))
        return self

    def skip(self, offset: int) -> 'QueryHandle':
        self.offset_value = offset
        return self

    def take(self, limit: int) -> 'QueryHandle':
        self.limit_value = limit
        return self

    @property
    def statement(self) -> Select:
        """Materialise the current state as a new SQLAlchemy statement."""
        stmt = self.base
        if self.joins:
            anchor = self.base.get_final_froms()[0]
            for target, onclause in self.joins:
                stmt = stmt.outerjoin_from(anchor, target, onclause)
        if self.extra_columns:
            stmt = stmt.add_columns(*self.extra_columns)
        clause = self.wheres.to_clause()
        if clause is not None:
            stmt = stmt.where(clause)
        if self.orders:
            stmt = stmt.order_by(*self.orders)
        if self.offset_value is not None:
            stmt = stmt.offset(self.offset_value)
        if self.limit_value is not None:
            stmt = stmt.limit(self.limit_value)
        return stmt

    def clone(self) -> 'QueryHandle':
        other = QueryHandle.__new__(QueryHandle)
        other.__dict__.update(self.__dict__)
        other.wheres = self.wheres.copy()
        other.joins = list(self.joins)
        other.joined_tables = set(self.joined_tables)
        other.extra_columns = list(self.extra_columns)
        other.orders = list(self.orders)
        return other

    def to_sql(self, stmt: Optional[Select] = None, literal_binds: bool = False) -> str:
        """
        Compile to SQL for the bound dialect.

        Args:
            stmt: Statement to compile, the current one by default
            literal_binds: Render bound values inline

        Returns:
            SQL string
        """
        if stmt is None:
            stmt = self.statement
        return str(stmt.compile(dialect=self.dialect, compile_kwargs={"literal_binds": literal_binds}))

    def count_statement(self) -> Select:
        """
        SELECT COUNT(*) over the current query wrapped as a derived table.

        Plain queries get their select list replaced by a constant, queries
        whose SQL mentions UNION, HAVING, DISTINCT, ORDER BY or GROUP BY keep it.
        """
        stmt = self.statement
        sql = self.to_sql(stmt).lower()
        if not any(word in sql for word in COUNT_BLOCKERS):
            stmt = stmt.with_only_columns(literal_column("'1'").label('row_count'),
                                          maintain_column_froms=True)
        return select(func.count()).select_from(stmt.subquery('count_row_table'))

    def scalar(self, stmt: Select) -> Any:
        if isinstance(self.bind, Engine):
            with self.bind.connect() as connection:
                return connection.execute(stmt).scalar()
        return self._require_bind().execute(stmt).scalar()

    def fetch_all(self, stmt: Optional[Select] = None) -> List[dict]:
        """Execute and return every row as a dict."""
        if stmt is None:
            stmt = self.statement
        if isinstance(self.bind, Engine):
            with self.bind.connect() as connection:
                return [dict(row) for row in connection.execute(stmt).mappings()]
        return [dict(row) for row in self._require_bind().execute(stmt).mappings()]

    def _require_bind(self) -> Union[Connection, Any]:
        if self.bind is None:
            raise DatatableError("The query is not bound to a database")
        return self.bind
