"""
Database specific SQL fragments.

Each adapter wraps a SQLAlchemy dialect and knows how its database spells
identifier quoting, JSON path access, regular expression matching and text
casting. Everything that ends up in raw SQL goes through `quote_identifier`
or `quote_literal`, so request supplied names never leave their position.
"""

from typing import Dict, Type
from sqlalchemy import String, Text, cast, func, literal_column
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement
from gridquery.exceptions import ConfigurationError


class DialectAdapter:
    """Generic/ANSI behaviour, subclassed per database family."""

    name = 'generic'

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.preparer = dialect.identifier_preparer

    def quote_identifier(self, name: str) -> str:
        """
        Quote a possibly qualified identifier segment by segment.

        Args:
            name: Identifier such as "age" or "users.age"

        Returns:
            The identifier, quoted where the dialect requires it
        """
        return '.'.join(self.preparer.quote(part) for part in name.split('.'))

    def quote_literal(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    def column(self, name: str) -> ColumnElement:
        """Column expression for a request supplied name."""
        return literal_column(self.quote_identifier(name))

    def json_path(self, column: str, path: str) -> str:
        """
        SQL accessing a value inside a JSON column.

        Args:
            column: JSON column, optionally qualified with its table
            path: Dot separated path inside the document

        Raises:
            ConfigurationError: The dialect has no JSON path support here
        """
        raise ConfigurationError(f"{self.dialect.name} is Unknown for this kind of operation.")

    def json_field(self, column: str, path: str) -> ColumnElement:
        return literal_column(self.json_path(column, path))

    def cast_text(self, expression: ColumnElement) -> ColumnElement:
        """Cast a column so LIKE can run on it."""
        if self.dialect.name == 'firebird':
            return cast(expression, String(255))
        return expression

    def regex(self, expression: ColumnElement, pattern: str, case_insensitive: bool) -> ColumnElement:
        if case_insensitive:
            return func.lower(expression).op('REGEXP', is_comparison=True)(pattern.lower())
        return expression.op('REGEXP', is_comparison=True)(pattern)

    def nulls_last(self, column_sql: str, direction: str, template: str) -> str:
        return template % (column_sql, direction)


class MySQLAdapter(DialectAdapter):
    name = 'mysql'

    def quote_literal(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"

    def json_path(self, column: str, path: str) -> str:
        return f"{self.quote_identifier(column)}->{self.quote_literal('$.' + path)}"


class PostgresAdapter(DialectAdapter):
    name = 'postgresql'

    def json_path(self, column: str, path: str) -> str:
        segments = ','.join(path.split('.'))
        return f"{self.quote_identifier(column)}#>>{self.quote_literal('{' + segments + '}')}"

    def cast_text(self, expression: ColumnElement) -> ColumnElement:
        return cast(expression, Text)

    def regex(self, expression: ColumnElement, pattern: str, case_insensitive: bool) -> ColumnElement:
        operator = '~*' if case_insensitive else '~'
        return expression.op(operator, is_comparison=True)(pattern)


class OracleAdapter(DialectAdapter):
    name = 'oracle'

    def regex(self, expression: ColumnElement, pattern: str, case_insensitive: bool) -> ColumnElement:
        if case_insensitive:
            return func.REGEXP_LIKE(func.lower(expression), pattern, literal_column("'i'"))
        return func.REGEXP_LIKE(expression, pattern)


ADAPTERS: Dict[str, Type[DialectAdapter]] = {
    'mysql': MySQLAdapter,
    'mariadb': MySQLAdapter,
    'postgresql': PostgresAdapter,
    'oracle': OracleAdapter,
}


def get_adapter(dialect: Dialect, oracle: bool = False) -> DialectAdapter:
    """
    Pick the adapter for a SQLAlchemy dialect.

    Args:
        dialect: Dialect of the bound engine or connection
        oracle: Force Oracle syntax

    Returns:
        The adapter instance
    """
    if oracle:
        return OracleAdapter(dialect)
    return ADAPTERS.get(dialect.name, DialectAdapter)(dialect)
