"""
Global and per-column search compilation.

Global search adds one parenthesised OR group per pass, every searchable
column contributing one alternative. With smart search each whitespace
separated term gets its own pass, so all terms have to match somewhere:

    WHERE (lower(customers.name) LIKE '%alice%' OR lower(customers.city) LIKE '%alice%')
      AND (lower(customers.name) LIKE '%bob%' OR lower(customers.city) LIKE '%bob%')

Per-column search AND-combines one predicate for each column that carries
its own keyword.
"""

from typing import Any, Dict, Optional
from sqlalchemy import func, or_
from sqlalchemy.sql.elements import ColumnElement, Grouping
from gridquery import get_logger
from gridquery.config import DatatableConfig
from gridquery.operations import Callback, NamedOp, Override, apply_override
from gridquery.query import ConditionGroup, QueryHandle
from gridquery.relations import RelationResolver
from gridquery.request import DatatableRequest

logger = get_logger('gridquery')


class SearchCompiler:
    """
    Compiles the search part of a request into predicates on a query handle.

    Args:
        handle: Query being compiled
        request: Parsed grid request
        config: Engine configuration
        resolver: Relation resolver bound to the same handle
        filters: Custom filter overrides keyed by column name
        is_blacklisted: Predicate telling whether a column is excluded
    """

    def __init__(self, handle: QueryHandle, request: DatatableRequest, config: DatatableConfig,
                 resolver: RelationResolver, filters: Dict[str, Override], is_blacklisted: Any) -> None:
        self.handle = handle
        self.request = request
        self.config = config
        self.resolver = resolver
        self.filters = filters
        self.is_blacklisted = is_blacklisted
        self.adapter = handle.adapter
        self.is_filter_applied = False

    def prepare_keyword(self, keyword: str) -> str:
        """
        Turn a user keyword into a LIKE pattern.

        Case folding comes first, then wildcard expansion (``*`` and ``?``),
        then the smart search ``%...%`` wrapping.
        """
        if self.config.case_insensitive:
            keyword = keyword.lower()
        if self.config.use_wildcards:
            keyword = keyword.replace('*', '%').replace('?', '_')
        if self.config.smart:
            keyword = f"%{keyword}%"
        return keyword

    def add_table_prefix(self, column: str, table_name: Optional[str] = None) -> str:
        """Qualify a bare column with the main table so joins cannot make it ambiguous."""
        if '.' in column:
            return column
        table_name = table_name or self.handle.from_table
        if table_name:
            return f"{table_name}.{column}"
        return column

    def _like(self, expression: ColumnElement, pattern: str) -> ColumnElement:
        expression = self.adapter.cast_text(expression)
        if self.config.case_insensitive:
            expression = func.lower(expression)
        return expression.like(pattern)

    def filtering(self) -> None:
        """Global search, one pass per term in smart mode."""
        keyword = self.request.keyword()
        if self.config.smart:
            for term in keyword.split():
                self.global_search(term)
        elif keyword != '':
            self.global_search(keyword)

    def global_search(self, keyword: str) -> None:
        """
        Add one OR group matching the keyword against every searchable column.

        Args:
            keyword: Raw search term
        """
        group = self.handle.nested('and')

        for index in self.request.searchable_column_index():
            column = self.request.column_name(index)
            override = self.filters.get(column)
            if override is None and self.is_blacklisted(column):
                continue

            if isinstance(override, Callback):
                scope = self.handle.new_group()
                override.fn(scope, keyword)
                group.add_nested(scope, 'or')
            elif isinstance(override, NamedOp):
                if override.search_exempt:
                    continue
                apply_override(override, group, column, keyword, use_or=True)
            else:
                split = self.resolver.split(column)
                if split:
                    relation, name = split
                    group.add(self.compile_relation_search(relation, name, keyword, index), 'or')
                else:
                    self.compile_query_search(group, column, keyword, index, 'or')

            self.is_filter_applied = True

    def compile_relation_search(self, relation: str, column: str, keyword: str, index: int) -> ColumnElement:
        """EXISTS subquery searching a column reached through eager loaded relations."""
        def inner(scope: ConditionGroup, table_name: str) -> None:
            self.compile_query_search(scope, column, keyword, index, 'and', table_name)

        return self.resolver.exists(relation, inner)

    def compile_query_search(self, scope: ConditionGroup, column: str, keyword: str, index: int,
                             boolean: str = 'and', table_name: Optional[str] = None) -> None:
        json_path = self.request.is_json(index)
        if json_path:
            self.compile_json_search(scope, column, keyword, json_path, boolean, index, table_name)
        else:
            self.compile_normal_search(scope, column, keyword, boolean, table_name)

    def compile_normal_search(self, scope: ConditionGroup, column: str, keyword: str, boolean: str = 'and',
                              table_name: Optional[str] = None) -> None:
        expression = self.adapter.column(self.add_table_prefix(column, table_name))
        scope.add(self._like(expression, self.prepare_keyword(keyword)), boolean)

    def compile_json_search(self, scope: ConditionGroup, column: str, keyword: str, json_path: str,
                            boolean: str = 'and', index: int = 0, table_name: Optional[str] = None) -> None:
        """
        Search inside a JSON column, optionally falling back to a plain column.

        Without a fallback one LIKE predicate is added, with a fallback the
        predicate becomes ``(json LIKE ? OR fallback LIKE ?)`` with the same
        keyword bound twice.

        Raises:
            ConfigurationError: If the dialect cannot address JSON paths
        """
        pattern = self.prepare_keyword(keyword)
        field = self.adapter.json_field(self.add_table_prefix(column, table_name), json_path)
        clause = self._like(field, pattern)

        spec = self.request.column(index)
        if spec is not None and spec.fallback_column:
            fallback = self.adapter.column(spec.fallback_column)
            clause = Grouping(or_(clause, self._like(fallback, pattern)))

        scope.add(clause, boolean)

    def column_search(self) -> None:
        """AND one predicate per column carrying its own keyword."""
        for index in range(len(self.request.columns())):
            if not self.request.is_column_searchable(index):
                continue

            column = self.request.column_name(index)
            keyword = self.request.column_keyword(index)
            override = self.filters.get(column)

            if isinstance(override, Callback):
                scope = self.handle.new_group()
                override.fn(scope, keyword)
                self.handle.wheres.add_nested(scope)
            elif isinstance(override, NamedOp):
                apply_override(override, self.handle.wheres, column, keyword)
            else:
                split = self.resolver.split(column)
                if split:
                    column = self.resolver.join(*split)
                self.compile_column_search(index, column, keyword)

            self.is_filter_applied = True

    def compile_column_search(self, index: int, column: str, keyword: str) -> None:
        if self.request.is_regex(index):
            self.regex_column_search(column, keyword)
        else:
            self.compile_query_search(self.handle.wheres, column, keyword, index)

    def regex_column_search(self, column: str, keyword: str) -> None:
        expression = self.adapter.column(column)
        self.handle.wheres.add(self.adapter.regex(expression, keyword, self.config.case_insensitive))
