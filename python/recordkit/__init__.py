"""recordkit - an async ActiveRecord ORM core for PostgreSQL, MySQL and SQLite."""

from __future__ import annotations

from recordkit.batch import LoaderContext, ModelBatch, RelationFetcher
from recordkit.builder import ModelJoin, ModelQueryBuilder, RelationToFetch
from recordkit.config import Settings, get_settings
from recordkit.conversion import ColumnAliasHandler, ModelResultSetConverter
from recordkit.dialect import Dialect, MySqlDialect, PostgresDialect, SqliteDialect, dialect_for
from recordkit.errors import (
    AmbiguousColumnAliasError,
    ConfigurationError,
    MalformedQueryError,
    RecordkitError,
    RecordNotFoundError,
    UnsupportedOperationError,
)
from recordkit.executor import QueryExecutor, QueryStats, query_stats
from recordkit.fields import Mapped, mapped_column
from recordkit.humanizer import MODEL_QUERY_MARKER_COMMENT, humanize
from recordkit.logging_config import get_logger, setup_logging
from recordkit.model import Model, tableize
from recordkit.pool import (
    ConnectionPool,
    PostgresPool,
    QueryResult,
    SqlitePool,
    create_engine,
    get_default_pool,
    set_default_pool,
)
from recordkit.query import FetchMode, JoinClause, Q, Query, QueryType, WhereClause
from recordkit.registry import ModelDefinition, ModelRegistry, default_registry
from recordkit.relations import BelongsTo, HasMany, HasOne, Relation, RelationKind, Relations, belongs_to, has_many, has_one

__version__ = "0.1.0"

__all__ = [
    # Core
    "create_engine",
    "get_default_pool",
    "set_default_pool",
    "ConnectionPool",
    "SqlitePool",
    "PostgresPool",
    "QueryResult",
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    # Model definition
    "Model",
    "tableize",
    "Mapped",
    "mapped_column",
    "belongs_to",
    "has_one",
    "has_many",
    "ModelDefinition",
    "ModelRegistry",
    "default_registry",
    "Relation",
    "RelationKind",
    "Relations",
    "HasOne",
    "HasMany",
    "BelongsTo",
    # Query building
    "ModelQueryBuilder",
    "ModelJoin",
    "RelationToFetch",
    "Query",
    "QueryType",
    "FetchMode",
    "WhereClause",
    "JoinClause",
    "Q",
    "QueryExecutor",
    "QueryStats",
    "query_stats",
    # Dialects
    "Dialect",
    "PostgresDialect",
    "MySqlDialect",
    "SqliteDialect",
    "dialect_for",
    # Loading
    "ColumnAliasHandler",
    "ModelResultSetConverter",
    "LoaderContext",
    "ModelBatch",
    "RelationFetcher",
    "MODEL_QUERY_MARKER_COMMENT",
    "humanize",
    # Errors
    "RecordkitError",
    "ConfigurationError",
    "UnsupportedOperationError",
    "AmbiguousColumnAliasError",
    "MalformedQueryError",
    "RecordNotFoundError",
]
