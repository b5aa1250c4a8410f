"""Statement descriptors: Query, WhereClause variants, Q trees and JoinClause."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from recordkit.errors import MalformedQueryError

if TYPE_CHECKING:
    from recordkit.dialect import Dialect


class QueryType(Enum):
    SELECT = "select"
    COUNT = "count"
    UPDATE = "update"
    DELETE = "delete"


class FetchMode(Enum):
    """Shape of raw rows returned when a builder is not materializing models."""

    TUPLE = "tuple"
    DICT = "dict"
    COLUMN = "column"


# ========== Filter keys ==========

_OPERATORS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "ne": "!=",
    "like": "LIKE",
    "ilike": "ILIKE",
    "in": "IN",
    "notin": "NOT IN",
    "isnull": "IS NULL",
    "regexp": "REGEXP",
}


def _parse_filter_key(key: str) -> tuple[str, str]:
    """Split ``column__op`` into the column and the operator name.

    Keys without a known suffix are equality filters.
    """
    if "__" in key:
        column, op = key.rsplit("__", 1)
        if op in _OPERATORS:
            return column, op
    return key, "eq"


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _in_list(column: str, values: Any, negate: bool) -> tuple[str, list[Any]]:
    values = list(values)
    if not values:
        raise MalformedQueryError(f"Empty value list for IN condition on column '{column}'")
    placeholders = ", ".join("?" for _ in values)
    operator = "NOT IN" if negate else "IN"
    return f"{column} {operator} ({placeholders})", values


def _build_filter_sql(column: str, op: str, value: Any, dialect: Dialect) -> tuple[str, list[Any]]:
    """Build SQL for a single ``column__op = value`` filter."""
    if op == "eq":
        if value is None:
            return f"{column} IS NULL", []
        if _is_list(value):
            return _in_list(column, value, negate=False)
        return f"{column} = ?", [value]

    if op == "in":
        if not _is_list(value):
            raise MalformedQueryError(f"IN condition on column '{column}' needs a list of values")
        return _in_list(column, value, negate=False)

    if op == "notin":
        if not _is_list(value):
            raise MalformedQueryError(f"NOT IN condition on column '{column}' needs a list of values")
        return _in_list(column, value, negate=True)

    if op == "isnull":
        return (f"{column} IS NULL" if value else f"{column} IS NOT NULL"), []

    if op == "ne" and value is None:
        return f"{column} IS NOT NULL", []

    if _is_list(value):
        raise MalformedQueryError(f"Operator '{op}' on column '{column}' does not accept a list")

    if op == "regexp":
        return f"{column} {dialect.regexp_matcher()} ?", [value]
    if op == "ilike":
        return f"{column} {dialect.ilike_operator()} ?", [value]
    return f"{column} {_OPERATORS[op]} ?", [value]


# ========== Where clauses ==========


class WhereClause:
    """A predicate contributing to a WHERE condition, with its bound values.

    Use :meth:`create` to build one from a raw fragment, a mapping or a ``Q``.
    """

    def is_empty(self) -> bool:
        raise NotImplementedError

    def render(self, dialect: Dialect) -> tuple[str, list[Any]]:
        """Return the SQL fragment and its positional values."""
        raise NotImplementedError

    def needs_parentheses(self, sql: str) -> bool:
        """Whether the fragment must be wrapped when ANDed with other clauses.

        Textual check, not a parser: any ``or`` substring triggers wrapping,
        including one inside a string literal or an identifier.
        """
        return "or" in sql.lower()

    @staticmethod
    def create(where: Any = "", values: Any = None) -> WhereClause:
        if isinstance(where, WhereClause):
            return where
        if isinstance(where, Q):
            return ExpressionWhereClause(where)
        if isinstance(where, Mapping):
            return ArrayWhereClause(where)
        if isinstance(where, str):
            return RawWhereClause(where, values)
        raise MalformedQueryError(f"Unsupported where clause: {where!r}")

    @staticmethod
    def exists(builder: Any) -> WhereClause:
        """``EXISTS (subquery)`` built from a model query builder."""
        return ExistsClause(builder.get_query().copy(), negate=False)

    @staticmethod
    def not_exists(builder: Any) -> WhereClause:
        return ExistsClause(builder.get_query().copy(), negate=True)


class RawWhereClause(WhereClause):
    def __init__(self, sql: str, values: Any = None) -> None:
        self.sql = sql
        if values is None:
            self.values: tuple[Any, ...] = ()
        elif _is_list(values):
            self.values = tuple(values)
        else:
            self.values = (values,)

    def is_empty(self) -> bool:
        return not self.sql.strip()

    def render(self, dialect: Dialect) -> tuple[str, list[Any]]:
        return self.sql, list(self.values)

    def __repr__(self) -> str:
        return f"<RawWhereClause {self.sql!r} {list(self.values)!r}>"


class ArrayWhereClause(WhereClause):
    """Mapping of column to value, ANDed together."""

    def __init__(self, where: Mapping[str, Any]) -> None:
        self.where = dict(where)

    def is_empty(self) -> bool:
        return not self.where

    def render(self, dialect: Dialect) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        for key, value in self.where.items():
            column, op = _parse_filter_key(key)
            sql, values = _build_filter_sql(column, op, value, dialect)
            parts.append(sql)
            params.extend(values)
        return " AND ".join(parts), params

    def __repr__(self) -> str:
        return f"<ArrayWhereClause {self.where!r}>"


class ExpressionWhereClause(WhereClause):
    """A ``Q`` tree; it parenthesizes its own OR groups."""

    def __init__(self, q: Q) -> None:
        self.q = q

    def is_empty(self) -> bool:
        return self.q.is_empty()

    def render(self, dialect: Dialect) -> tuple[str, list[Any]]:
        return self.q.to_sql(dialect)

    def needs_parentheses(self, sql: str) -> bool:
        return False


class ExistsClause(WhereClause):
    def __init__(self, query: Query, negate: bool) -> None:
        self.query = query
        self.negate = negate

    def is_empty(self) -> bool:
        return False

    def render(self, dialect: Dialect) -> tuple[str, list[Any]]:
        sql, params = dialect.render(self.query)
        prefix = "NOT EXISTS" if self.negate else "EXISTS"
        return f"{prefix} ({sql})", params

    def needs_parentheses(self, sql: str) -> bool:
        return False


# ========== Q Objects for Complex Conditions ==========


class Q:
    """Django-style Q object for complex query conditions.

    Supports AND (&) and OR (|) operations for building complex WHERE clauses.

    Example:
        >>> Category.where(Q(name="phones") | Q(id_parent=None))
        >>> Category.where((Q(id__gt=10) | Q(name__like="b%")) & ~Q(id=7))
    """

    def __init__(self, **kwargs: Any) -> None:
        self._filters: list[tuple[str, str, Any]] = []
        self._children: list[Q] = []
        self._connector = "AND"
        self._negated = False

        for key, value in kwargs.items():
            column, op = _parse_filter_key(key)
            self._filters.append((column, op, value))

    def _combine(self, other: Q, connector: str) -> Q:
        result = Q()
        result._children = [self, other]
        result._connector = connector
        return result

    def __or__(self, other: Q) -> Q:
        return self._combine(other, "OR")

    def __and__(self, other: Q) -> Q:
        return self._combine(other, "AND")

    def __invert__(self) -> Q:
        result = Q()
        result._filters = self._filters.copy()
        result._children = self._children.copy()
        result._connector = self._connector
        result._negated = not self._negated
        return result

    def is_empty(self) -> bool:
        return not self._filters and all(child.is_empty() for child in self._children)

    def to_sql(self, dialect: Dialect) -> tuple[str, list[Any]]:
        """Convert to a SQL WHERE fragment."""
        params: list[Any] = []

        if self._children:
            parts = []
            for child in self._children:
                child_sql, child_params = child.to_sql(dialect)
                if child_sql:
                    parts.append(child_sql)
                    params.extend(child_params)
            if not parts:
                return "", []
            sql = f" {self._connector} ".join(parts)
            if len(parts) > 1:
                sql = f"({sql})"
        elif self._filters:
            filter_parts = []
            for column, op, value in self._filters:
                part, values = _build_filter_sql(column, op, value, dialect)
                filter_parts.append(part)
                params.extend(values)
            sql = " AND ".join(filter_parts)
            if len(filter_parts) > 1:
                sql = f"({sql})"
        else:
            return "", []

        if self._negated:
            sql = f"NOT {sql}" if sql.startswith("(") else f"NOT ({sql})"
        return sql, params


# ========== Joins ==========


@dataclass(frozen=True)
class JoinClause:
    """One SQL JOIN: ``<type> JOIN join_table [AS alias] ON from.col = alias.col``."""

    join_table: str
    join_column: str
    from_table: str
    from_column: str
    join_table_alias: str | None = None
    type: str = "LEFT"
    on_clauses: tuple[WhereClause, ...] = ()

    @property
    def alias_or_table(self) -> str:
        return self.join_table_alias or self.join_table

    def join_column_with_table(self) -> str:
        return f"{self.alias_or_table}.{self.join_column}"

    def from_column_with_table(self) -> str:
        return f"{self.from_table}.{self.from_column}"


# ========== Query ==========


@dataclass
class Query:
    """Mutable description of one statement. Rendering belongs to a Dialect."""

    table: str | None = None
    alias_table: str | None = None
    type: QueryType = QueryType.SELECT
    select_columns: list[tuple[str, str | None]] = field(default_factory=list)
    select_type: FetchMode = FetchMode.TUPLE
    where_clauses: list[WhereClause] = field(default_factory=list)
    join_clauses: list[JoinClause] = field(default_factory=list)
    using_clauses: list[JoinClause] = field(default_factory=list)
    order: str | list[str] | None = None
    limit: int | None = None
    offset: int | None = None
    update_attributes: dict[str, Any] = field(default_factory=dict)
    group_by: str | list[str] | None = None
    distinct: bool = False
    lock_for_update: bool = False
    comment: str | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def where(self, where: Any = "", values: Any = None) -> Query:
        self.where_clauses.append(WhereClause.create(where, values))
        return self

    def add_join(self, join_clause: JoinClause) -> Query:
        self.join_clauses.append(join_clause)
        return self

    def add_using(self, using_clause: JoinClause) -> Query:
        self.using_clauses.append(using_clause)
        return self

    def set_comment(self, comment: str) -> Query:
        self.comment = comment
        return self

    def copy(self) -> Query:
        """Independent copy; clauses are immutable and shared, containers are not."""
        return dataclasses.replace(
            self,
            select_columns=list(self.select_columns),
            where_clauses=list(self.where_clauses),
            join_clauses=list(self.join_clauses),
            using_clauses=list(self.using_clauses),
            order=list(self.order) if isinstance(self.order, list) else self.order,
            update_attributes=dict(self.update_attributes),
            group_by=list(self.group_by) if isinstance(self.group_by, list) else self.group_by,
            options=dict(self.options),
        )
