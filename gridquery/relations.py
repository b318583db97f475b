"""
Relation metadata and join resolution for dotted column references.

A grid column named ``customer.country.name`` refers to the ``name`` column
reached by walking the ``customer`` relation of the main table and then the
``country`` relation of the customers table. The walk only happens for
relation paths that were declared eager loaded, every other dotted name is a
plain ``table.column`` reference.

Relations are described by four kinds, each carrying the qualified keys it
needs to build a LEFT JOIN or a correlated EXISTS subquery:

    BelongsTo        orders.customer_id -> customers.customer_id
    HasOneOrMany     customers.customer_id <- orders.customer_id
    BelongsToMany    products -> product_tags -> tags
    PolymorphicMany  products.product_id <- comments.commentable_id (+ type column)
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union
from sqlalchemy import inspect, literal_column, select, table
from sqlalchemy.orm import RelationshipDirection
from sqlalchemy.sql.elements import ColumnElement
from gridquery import get_logger
from gridquery.dialects import DialectAdapter
from gridquery.exceptions import ConfigurationError

logger = get_logger('gridquery')


@dataclass(frozen=True)
class BelongsTo:
    """The main row holds a foreign key to the related row."""
    table: str
    foreign_key: str
    owner_key: str

    def joins(self) -> List[Tuple[str, str, str]]:
        return [(self.table, self.foreign_key, self.owner_key)]

    def correlation(self, adapter: DialectAdapter) -> ColumnElement:
        return adapter.column(self.owner_key) == adapter.column(self.foreign_key)

    def source(self, adapter: DialectAdapter) -> Any:
        return table(self.table)


@dataclass(frozen=True)
class HasOneOrMany:
    """The related rows hold a foreign key to the main row."""
    table: str
    foreign_key: str
    local_key: str

    def joins(self) -> List[Tuple[str, str, str]]:
        return [(self.table, self.foreign_key, self.local_key)]

    def correlation(self, adapter: DialectAdapter) -> ColumnElement:
        return adapter.column(self.foreign_key) == adapter.column(self.local_key)

    def source(self, adapter: DialectAdapter) -> Any:
        return table(self.table)


@dataclass(frozen=True)
class BelongsToMany:
    """Main and related rows are linked through a pivot table."""
    table: str
    pivot: str
    parent_key: str
    pivot_parent_key: str
    pivot_related_key: str
    related_key: str

    def joins(self) -> List[Tuple[str, str, str]]:
        return [(self.pivot, self.pivot_parent_key, self.parent_key),
                (self.table, self.pivot_related_key, self.related_key)]

    def correlation(self, adapter: DialectAdapter) -> ColumnElement:
        return adapter.column(self.pivot_parent_key) == adapter.column(self.parent_key)

    def source(self, adapter: DialectAdapter) -> Any:
        related = table(self.table)
        pivot = table(self.pivot)
        return related.join(pivot, adapter.column(self.pivot_related_key) == adapter.column(self.related_key))


@dataclass(frozen=True)
class PolymorphicMany:
    """
    Related rows point to the main row through an id and a type column.

    Attributes:
        table: Related table
        foreign_key: Qualified id column on the related table
        other_key: Qualified key of the main table
        morph_type: Qualified type column on the related table
        morph_class: Value of the type column for the main table
    """
    table: str
    foreign_key: str
    other_key: str
    morph_type: Optional[str] = None
    morph_class: Optional[str] = None

    def joins(self) -> List[Tuple[str, str, str]]:
        return [(self.table, self.foreign_key, self.other_key)]

    def morph_condition(self, adapter: DialectAdapter) -> Optional[ColumnElement]:
        if self.morph_type and self.morph_class is not None:
            return adapter.column(self.morph_type) == self.morph_class
        return None

    def correlation(self, adapter: DialectAdapter) -> ColumnElement:
        clause = adapter.column(self.foreign_key) == adapter.column(self.other_key)
        morph = self.morph_condition(adapter)
        if morph is not None:
            clause = clause & morph
        return clause

    def source(self, adapter: DialectAdapter) -> Any:
        return table(self.table)


RelationKind = Union[BelongsTo, HasOneOrMany, BelongsToMany, PolymorphicMany]


def _qualified(column: Any) -> str:
    return f"{column.table.name}.{column.name}"


class RelationRegistry:
    """
    Relations known to the engine, keyed by table name and relation name.
    """

    def __init__(self) -> None:
        self.relations: Dict[str, Dict[str, RelationKind]] = {}

    def register(self, table_name: str, name: str, kind: RelationKind) -> 'RelationRegistry':
        self.relations.setdefault(table_name, {})[name] = kind
        return self

    def get(self, table_name: str, name: str) -> RelationKind:
        """
        Look up a relation of a table.

        Raises:
            ConfigurationError: If the table has no relation with that name
        """
        try:
            return self.relations[table_name][name]
        except KeyError:
            raise ConfigurationError(f"Call to undefined relationship [{name}] on table [{table_name}]")

    @classmethod
    def from_models(cls, models: Iterable[Any]) -> 'RelationRegistry':
        """
        Build the registry from SQLAlchemy mapped classes.

        Many-to-one relationships become BelongsTo, one-to-many HasOneOrMany and
        many-to-many with a secondary table BelongsToMany. A relationship whose
        ``info`` carries a ``morph_type`` entry becomes PolymorphicMany.

        Args:
            models: Mapped classes

        Returns:
            A populated registry
        """
        registry = cls()
        for model in models:
            mapper = inspect(model)
            source = mapper.local_table.name
            for rel in mapper.relationships:
                target = rel.mapper.local_table.name
                if 'morph_type' in rel.info:
                    local, remote = rel.local_remote_pairs[0]
                    kind = PolymorphicMany(table=target,
                                           foreign_key=_qualified(remote),
                                           other_key=_qualified(local),
                                           morph_type=rel.info['morph_type'],
                                           morph_class=rel.info.get('morph_class', mapper.class_.__name__))
                elif rel.direction is RelationshipDirection.MANYTOONE:
                    local, remote = rel.local_remote_pairs[0]
                    kind = BelongsTo(table=target, foreign_key=_qualified(local), owner_key=_qualified(remote))
                elif rel.direction is RelationshipDirection.ONETOMANY:
                    local, remote = rel.local_remote_pairs[0]
                    kind = HasOneOrMany(table=target, foreign_key=_qualified(remote), local_key=_qualified(local))
                elif rel.secondary is not None:
                    parent, pivot_parent = rel.synchronize_pairs[0]
                    related, pivot_related = rel.secondary_synchronize_pairs[0]
                    kind = BelongsToMany(table=target,
                                         pivot=rel.secondary.name,
                                         parent_key=_qualified(parent),
                                         pivot_parent_key=_qualified(pivot_parent),
                                         pivot_related_key=_qualified(pivot_related),
                                         related_key=_qualified(related))
                else:
                    logger.warning(f"Relationship {source}.{rel.key} has an unsupported shape, skipped")
                    continue
                registry.register(source, rel.key, kind)
        return registry


def expand_eager_loads(paths: Iterable[str]) -> Set[str]:
    """
    Eager loaded relation paths including every parent path.

    ``customer.country`` also makes ``customer`` eager loaded.
    """
    expanded = set()
    for path in paths:
        parts = path.split('.')
        for i in range(1, len(parts) + 1):
            expanded.add('.'.join(parts[:i]))
    return expanded


class RelationResolver:
    """
    Resolves dotted column references of one query handle.

    Args:
        registry: Known relations
        handle: Query handle receiving the joins
        eager_loads: Relation paths that can be joined
    """

    def __init__(self, registry: RelationRegistry, handle: Any, eager_loads: Iterable[str] = ()) -> None:
        self.registry = registry
        self.handle = handle
        self.eager_loads = expand_eager_loads(eager_loads)

    def split(self, column: str) -> Optional[Tuple[str, str]]:
        """
        Split a dotted column into its relation path and column name.

        Returns:
            (relation, column) when the relation path is eager loaded, None otherwise
        """
        if '.' not in column:
            return None
        relation, name = column.rsplit('.', 1)
        if relation not in self.eager_loads:
            return None
        return relation, name

    def walk(self, relation: str) -> List[RelationKind]:
        """Resolve every segment of a relation path, starting at the main table."""
        table_name = self.handle.from_table
        kinds = []
        for segment in relation.split('.'):
            kind = self.registry.get(table_name, segment)
            kinds.append(kind)
            table_name = kind.table
        return kinds

    def join(self, relation: str, column: str) -> str:
        """
        LEFT JOIN every table of the relation path.

        Tables already joined are not joined again. For many-to-many relations
        the related column is added to the select list.

        Args:
            relation: Eager loaded relation path
            column: Column of the last related table

        Returns:
            Qualified column, ``table.column``
        """
        kinds = self.walk(relation)
        for kind in kinds:
            if isinstance(kind, BelongsToMany):
                self.handle.left_join(*kind.joins()[0])
                self.handle.add_select(f"{kind.table}.{column}")
                self.handle.left_join(*kind.joins()[1])
            elif isinstance(kind, PolymorphicMany):
                self.handle.left_join(*kind.joins()[0], extra=kind.morph_condition(self.handle.adapter))
            else:
                self.handle.left_join(*kind.joins()[0])
        return f"{kinds[-1].table}.{column}"

    def is_join_orderable(self, relation: str) -> bool:
        """True when at least one segment of the path is not polymorphic."""
        return any(not isinstance(kind, PolymorphicMany) for kind in self.walk(relation))

    def exists(self, relation: str, inner: Callable[[Any, str], None]) -> ColumnElement:
        """
        Correlated EXISTS subqueries following the relation path.

        Each segment nests inside the previous one, the innermost receives the
        search predicates through ``inner``.

        Args:
            relation: Relation path
            inner: Called with the innermost predicate group and its table name

        Returns:
            EXISTS clause for the first segment
        """
        kinds = self.walk(relation)
        adapter = self.handle.adapter

        def build(depth: int) -> ColumnElement:
            kind = kinds[depth]
            group = self.handle.new_group()
            group.add(kind.correlation(adapter))
            if depth == len(kinds) - 1:
                inner(group.nested(), kind.table)
            else:
                group.add(build(depth + 1))
            return select(literal_column('1')).select_from(kind.source(adapter)).where(group.to_clause()).exists()

        return build(0)
