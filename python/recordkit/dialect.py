"""SQL dialects: render a Query into database specific SQL text.

Every statement is rendered with ``?`` placeholders. Each fragment method
returns its SQL together with the values it binds, and :meth:`Dialect.render`
concatenates both in the same order, so parameters always line up with their
placeholders.
"""

from __future__ import annotations

import importlib
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from recordkit.errors import ConfigurationError, UnsupportedOperationError
from recordkit.query import JoinClause, Query, QueryType, WhereClause

Fragment = tuple[str, list[Any]]

_EMPTY: Fragment = ("", [])


class Dialect:
    """Base dialect. Renders ANSI-ish SQL; subclasses override the differences."""

    name: ClassVar[str] = "generic"
    connection_error_codes: ClassVar[frozenset[Any]] = frozenset()
    # LIMIT value that means "no limit", for engines that reject a bare OFFSET.
    unbounded_limit: ClassVar[int | None] = None
    excluded_prefix: ClassVar[str] = "EXCLUDED"
    supports_batch_insert: ClassVar[bool] = True

    # ========== Statement assembly ==========

    def build_query(self, query: Query) -> str:
        """Render ``query`` to SQL text with ``?`` placeholders."""
        return self.render(query)[0]

    def render(self, query: Query) -> tuple[str, list[Any]]:
        """Render ``query`` and collect the bound values in placeholder order."""
        fragments: list[Fragment] = [(self.prefix(query), [])]
        if query.type is QueryType.UPDATE:
            fragments += [self.update(query), self.where(query)]
        else:
            fragments += [
                self.select(query),
                self.from_(query),
                self.using(query),
                self.join(query),
                self.where(query),
                self.group_by(query),
                self.order(query),
                self.limit(query),
                self.offset(query),
                self.for_update(query),
            ]
        fragments.append(self.comment(query))

        sql = "".join(part for part, _ in fragments).rstrip()
        params = [value for _, values in fragments for value in values]
        return sql, params

    # ========== Fragments ==========

    def prefix(self, query: Query) -> str:
        if query.type is QueryType.DELETE:
            return "DELETE"
        if query.type is QueryType.UPDATE:
            return "UPDATE"
        return "SELECT"

    def select(self, query: Query) -> Fragment:
        if query.type is QueryType.SELECT:
            distinct = " DISTINCT" if query.distinct else ""
            if not query.select_columns:
                return f"{distinct} *", []
            columns = ", ".join(
                f"{expression} AS {alias}" if alias else expression
                for expression, alias in query.select_columns
            )
            return f"{distinct} {columns}", []
        if query.type is QueryType.COUNT:
            return " count(*)", []
        return _EMPTY

    def table(self, query: Query) -> str:
        if query.alias_table and query.alias_table != query.table:
            return f"{query.table} AS {query.alias_table}"
        return str(query.table)

    def from_(self, query: Query) -> Fragment:
        return f" FROM {self.table(query)}", []

    def update(self, query: Query) -> Fragment:
        if query.type is not QueryType.UPDATE:
            return _EMPTY
        attributes = ", ".join(f"{column} = ?" for column in query.update_attributes)
        return f" {query.table} set {attributes}", list(query.update_attributes.values())

    def join(self, query: Query) -> Fragment:
        if not query.join_clauses:
            return _EMPTY
        parts = []
        params: list[Any] = []
        for join_clause in query.join_clauses:
            sql, values = self.join_part(join_clause, join_clause.type)
            parts.append(sql)
            params.extend(values)
        return " " + " ".join(parts), params

    def join_part(self, join_clause: JoinClause, join_type: str) -> Fragment:
        table = join_clause.join_table
        if join_clause.join_table_alias and join_clause.join_table_alias != table:
            table = f"{table} AS {join_clause.join_table_alias}"
        sql = (
            f"{join_type} JOIN {table} ON "
            f"{join_clause.from_column_with_table()} = {join_clause.join_column_with_table()}"
        )
        conditions, params = self.where_conditions(join_clause.on_clauses)
        if conditions:
            sql += f" AND {conditions}"
        return sql, params

    def using(self, query: Query) -> Fragment:
        if not query.using_clauses:
            return _EMPTY
        if query.type is QueryType.DELETE:
            return self.delete_using(query)
        # Outside DELETE a USING clause filters exactly like an inner join.
        parts = []
        params: list[Any] = []
        for using_clause in query.using_clauses:
            sql, values = self.join_part(using_clause, "INNER")
            parts.append(sql)
            params.extend(values)
        return " " + " ".join(parts), params

    def delete_using(self, query: Query) -> Fragment:
        tables = []
        for using_clause in query.using_clauses:
            table = using_clause.join_table
            if using_clause.join_table_alias and using_clause.join_table_alias != table:
                table = f"{table} AS {using_clause.join_table_alias}"
            tables.append(table)
        return " USING " + ", ".join(tables), []

    def delete_using_conditions(self, query: Query) -> list[WhereClause]:
        """Join conditions of DELETE ... USING, which live in the WHERE clause."""
        if query.type is not QueryType.DELETE:
            return []
        conditions: list[WhereClause] = []
        for using_clause in query.using_clauses:
            conditions.append(
                WhereClause.create(
                    f"{using_clause.from_column_with_table()} = {using_clause.join_column_with_table()}"
                )
            )
            conditions.extend(using_clause.on_clauses)
        return conditions

    def where(self, query: Query) -> Fragment:
        clauses = self.delete_using_conditions(query) + list(query.where_clauses)
        conditions, params = self.where_conditions(clauses)
        if conditions:
            return f" WHERE {conditions}", params
        return _EMPTY

    def where_conditions(self, clauses: Sequence[WhereClause]) -> Fragment:
        """AND together non-empty clauses, parenthesizing the ones that ask for it."""
        parts = []
        params: list[Any] = []
        for clause in clauses:
            if clause.is_empty():
                continue
            sql, values = clause.render(self)
            if not sql:
                continue
            parts.append(f"({sql})" if clause.needs_parentheses(sql) else sql)
            params.extend(values)
        return " AND ".join(parts), params

    def group_by(self, query: Query) -> Fragment:
        if not query.group_by:
            return _EMPTY
        columns = query.group_by if isinstance(query.group_by, str) else ", ".join(query.group_by)
        return f" GROUP BY {columns}", []

    def order(self, query: Query) -> Fragment:
        if not query.order or query.type is QueryType.COUNT:
            return _EMPTY
        columns = query.order if isinstance(query.order, str) else ", ".join(query.order)
        return f" ORDER BY {columns}", []

    def limit(self, query: Query) -> Fragment:
        if query.limit:
            return " LIMIT ?", [query.limit]
        if query.offset and self.unbounded_limit is not None:
            return " LIMIT ?", [self.unbounded_limit]
        return _EMPTY

    def offset(self, query: Query) -> Fragment:
        if query.offset:
            return " OFFSET ?", [query.offset]
        return _EMPTY

    def for_update(self, query: Query) -> Fragment:
        if query.lock_for_update:
            return " FOR UPDATE", []
        return _EMPTY

    def comment(self, query: Query) -> Fragment:
        if query.comment:
            return f" /* {query.comment} */", []
        return _EMPTY

    # ========== Operators & identifiers ==========

    def quote(self, word: str) -> str:
        return f'"{word}"'

    def regexp_matcher(self) -> str:
        return "REGEXP"

    def ilike_operator(self) -> str:
        return "LIKE"

    # ========== INSERT ==========

    def returning(self, primary_key: str | None) -> str:
        return f" RETURNING {primary_key}" if primary_key else ""

    def insert_empty_row(self, table: str) -> str:
        return f"INSERT INTO {table} DEFAULT VALUES"

    def insert(
        self,
        table: str,
        attributes: Mapping[str, Any],
        primary_key: str | None = None,
        on_conflict: str = "",
    ) -> tuple[str, list[Any]]:
        """Single-row INSERT, returning the generated primary key where supported."""
        if not attributes:
            sql = self.insert_empty_row(table)
        else:
            columns = ", ".join(self.quote(column) for column in attributes)
            placeholders = ", ".join("?" for _ in attributes)
            sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return sql + on_conflict + self.returning(primary_key), list(attributes.values())

    def batch_insert(
        self,
        table: str,
        primary_key: str | None,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> tuple[str, list[Any]]:
        """Multi-row INSERT, returning the generated primary keys in row order."""
        column_list = ", ".join(self.quote(column) for column in columns)
        row_placeholders = "(" + ", ".join("?" for _ in columns) + ")"
        values = ", ".join(row_placeholders for _ in rows)
        params = [value for row in rows for value in row]
        sql = f"INSERT INTO {table} ({column_list}) VALUES {values}"
        return sql + self.returning(primary_key), params

    def on_conflict_do_nothing(self, conflict_columns: Sequence[str]) -> str:
        target = f" ({', '.join(conflict_columns)})" if conflict_columns else ""
        return f" ON CONFLICT{target} DO NOTHING"

    def on_conflict_do_update(self, conflict_columns: Sequence[str], update_columns: Sequence[str]) -> str:
        if not update_columns:
            return self.on_conflict_do_nothing(conflict_columns)
        assignments = ", ".join(f"{column} = {self.excluded_prefix}.{column}" for column in update_columns)
        return f" ON CONFLICT ({', '.join(conflict_columns)}) DO UPDATE SET {assignments}"

    # ========== Errors ==========

    def error_code(self, error: BaseException) -> Any:
        return None

    def is_connection_error(self, error: BaseException) -> bool:
        """Whether ``error`` means the connection is gone (reconnect-worthy)."""
        if isinstance(error, ConnectionError):
            return True
        code = self.error_code(error)
        return code is not None and code in self.connection_error_codes

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class PostgresDialect(Dialect):
    name = "postgres"
    # SQLSTATE class 08 (connection exception) and operator intervention.
    connection_error_codes = frozenset(
        {"08000", "08001", "08003", "08004", "08006", "57P01", "57P02", "57P03"}
    )

    def regexp_matcher(self) -> str:
        return "~"

    def ilike_operator(self) -> str:
        return "ILIKE"

    def error_code(self, error: BaseException) -> Any:
        return getattr(error, "sqlstate", None)


class MySqlDialect(Dialect):
    name = "mysql"
    supports_batch_insert = False
    connection_error_codes = frozenset({2003, 2006})
    unbounded_limit = 18446744073709551615

    def table(self, query: Query) -> str:
        if query.alias_table and query.alias_table != query.table:
            alias_operator = " " if query.type is QueryType.DELETE else " AS "
            return f"{query.table}{alias_operator}{query.alias_table}"
        return str(query.table)

    def prefix(self, query: Query) -> str:
        if query.type is QueryType.DELETE and query.using_clauses:
            return f"DELETE {query.alias_table or query.table}"
        return super().prefix(query)

    def delete_using(self, query: Query) -> Fragment:
        parts = []
        params: list[Any] = []
        for using_clause in query.using_clauses:
            sql, values = self.join_part(using_clause, "INNER")
            parts.append(sql)
            params.extend(values)
        return " " + " ".join(parts), params

    def delete_using_conditions(self, query: Query) -> list[WhereClause]:
        return []

    def quote(self, word: str) -> str:
        return f"`{word}`"

    def returning(self, primary_key: str | None) -> str:
        return ""

    def insert_empty_row(self, table: str) -> str:
        return f"INSERT INTO {table} VALUES ()"

    def batch_insert(
        self,
        table: str,
        primary_key: str | None,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> tuple[str, list[Any]]:
        raise UnsupportedOperationError("Batch insert not supported in mysql")

    def on_conflict_do_nothing(self, conflict_columns: Sequence[str]) -> str:
        if not conflict_columns:
            raise UnsupportedOperationError("mysql needs a column to ignore duplicate keys")
        column = conflict_columns[0]
        return f" ON DUPLICATE KEY UPDATE {column} = {column}"

    def on_conflict_do_update(self, conflict_columns: Sequence[str], update_columns: Sequence[str]) -> str:
        if not update_columns:
            return self.on_conflict_do_nothing(conflict_columns)
        assignments = ", ".join(f"{column} = VALUES({column})" for column in update_columns)
        return f" ON DUPLICATE KEY UPDATE {assignments}"

    def error_code(self, error: BaseException) -> Any:
        args = getattr(error, "args", ())
        if args and isinstance(args[0], int):
            return args[0]
        return None


class SqliteDialect(Dialect):
    name = "sqlite"
    unbounded_limit = -1
    excluded_prefix = "excluded"

    def for_update(self, query: Query) -> Fragment:
        # SQLite locks the whole database per write transaction.
        return _EMPTY

    def delete_using(self, query: Query) -> Fragment:
        raise UnsupportedOperationError("DELETE with USING is not supported in sqlite")

    def error_code(self, error: BaseException) -> Any:
        return getattr(error, "sqlite_errorcode", None)


_DIALECTS: dict[str, type[Dialect]] = {
    "postgres": PostgresDialect,
    "postgresql": PostgresDialect,
    "pg": PostgresDialect,
    "mysql": MySqlDialect,
    "sqlite": SqliteDialect,
    "sqlite3": SqliteDialect,
}


def dialect_for(name: str | type[Dialect] | Dialect) -> Dialect:
    """Resolve a dialect from a short name, a dotted import path or a class.

    Example:
        >>> dialect_for("postgres")
        <PostgresDialect>
        >>> dialect_for("myapp.db.CockroachDialect")
    """
    if isinstance(name, Dialect):
        return name
    if isinstance(name, type) and issubclass(name, Dialect):
        return name()
    key = str(name).lower()
    if key in _DIALECTS:
        return _DIALECTS[key]()
    if "." in str(name):
        module_name, _, class_name = str(name).rpartition(".")
        try:
            dialect_cls = getattr(importlib.import_module(module_name), class_name)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(f"Cannot import sql dialect: {name}") from e
        if isinstance(dialect_cls, type) and issubclass(dialect_cls, Dialect):
            return dialect_cls()
    raise ConfigurationError(f"Unknown sql dialect: {name}")
