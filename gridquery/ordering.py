"""ORDER BY compilation for the single active sort column."""

from typing import Any, Callable, Dict, Optional
from sqlalchemy import literal_column
from gridquery.config import DatatableConfig
from gridquery.operations import Callback, NamedOp, Override, apply_override
from gridquery.query import QueryHandle
from gridquery.relations import RelationResolver
from gridquery.request import DatatableRequest, Orderable


def normalize_direction(direction: Any) -> str:
    return 'asc' if direction == 'asc' else 'desc'


class OrderCompiler:
    """
    Resolves the sort column of a request into an ORDER BY clause.

    Resolution order: the engine wide order callback, then the blacklist, then
    a custom order override, then relation columns, and finally JSON path,
    NULLS LAST or plain ordering.

    Args:
        handle: Query being compiled
        request: Parsed grid request
        config: Engine configuration
        resolver: Relation resolver bound to the same handle
        orders: Custom order overrides keyed by column name
        is_blacklisted: Predicate telling whether a column is excluded
        callback: Engine wide order callback, replaces everything else
    """

    def __init__(self, handle: QueryHandle, request: DatatableRequest, config: DatatableConfig,
                 resolver: RelationResolver, orders: Dict[str, Override], is_blacklisted: Any,
                 callback: Optional[Callable[[QueryHandle], Any]] = None) -> None:
        self.handle = handle
        self.request = request
        self.config = config
        self.resolver = resolver
        self.orders = orders
        self.is_blacklisted = is_blacklisted
        self.callback = callback
        self.adapter = handle.adapter

    def ordering(self) -> None:
        if self.callback is not None:
            self.callback(self.handle)
            return

        for orderable in self.request.orderable_columns():
            column = orderable.column
            override = self.orders.get(column)
            if override is None and self.is_blacklisted(column):
                continue

            if isinstance(override, Callback):
                override.fn(self.handle, orderable.direction)
                continue
            if isinstance(override, NamedOp):
                apply_override(override, self.handle, column, orderable.direction)
                continue

            split = self.resolver.split(column)
            if split:
                relation, name = split
                # only paths made entirely of polymorphic relations are skipped
                if not self.resolver.is_join_orderable(relation):
                    continue
                column = self.resolver.join(relation, name)

            self.order_column(column, orderable)

    def order_column(self, column: str, orderable: Orderable) -> None:
        direction = normalize_direction(orderable.direction)
        if orderable.json_path:
            sql = self.json_order_sql(column, orderable.json_path, orderable.fallback, direction)
        elif self.config.nulls_last:
            sql = self.adapter.nulls_last(self.adapter.quote_identifier(column), direction,
                                          self.config.nulls_last_sql)
        else:
            sql = f"{self.adapter.quote_identifier(column)} {direction}"
        self.handle.order_by(literal_column(sql))

    def json_order_sql(self, column: str, json_path: str, fallback: Optional[str], direction: str) -> str:
        """
        ORDER BY fragment for a value inside a JSON column.

        Raises:
            ConfigurationError: If the dialect cannot address JSON paths
        """
        sql = f"{self.adapter.json_path(column, json_path)} {direction}"
        if fallback:
            sql += f", {self.adapter.quote_identifier(fallback)} {direction}"
        return sql
