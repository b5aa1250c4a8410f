"""Run rendered statements through a connection pool and shape the rows."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from recordkit.config import Settings
from recordkit.dialect import Dialect
from recordkit.humanizer import humanize
from recordkit.logging_config import get_logger
from recordkit.pool import ConnectionPool, QueryResult, Row
from recordkit.query import FetchMode, Query, QueryType

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class QueryRecord:
    sql: str
    params: tuple[Any, ...]
    duration: float


@dataclass
class QueryStats:
    """Executed statements, recorded when ``stats`` is enabled."""

    queries: list[QueryRecord] = field(default_factory=list)

    def record(self, sql: str, params: Sequence[Any], duration: float) -> None:
        self.queries.append(QueryRecord(sql, tuple(params), duration))

    def reset(self) -> None:
        self.queries.clear()

    @property
    def total_time(self) -> float:
        return sum(record.duration for record in self.queries)

    def __len__(self) -> int:
        return len(self.queries)


query_stats = QueryStats()


async def run_with_reconnect(
    pool: ConnectionPool,
    dialect: Dialect,
    settings: Settings,
    operation: Callable[[str, Sequence[Any]], Awaitable[R]],
    sql: str,
    params: Sequence[Any],
) -> R:
    """Run ``operation`` once more after a reconnect if it failed on a dead connection."""
    if settings.debug:
        logger.debug("%s %s", humanize(sql), list(params))
    started = time.perf_counter()
    try:
        result = await operation(sql, params)
    except Exception as error:
        if not (settings.reconnect_on_connection_error and dialect.is_connection_error(error)):
            raise
        logger.warning(
            "Connection error (code %s), reconnecting and retrying: %s", dialect.error_code(error), error
        )
        await pool.reconnect()
        result = await operation(sql, params)
    if settings.stats:
        query_stats.record(sql, params, time.perf_counter() - started)
    return result


class QueryExecutor:
    """Executes one Query on one pool."""

    def __init__(self, pool: ConnectionPool, query: Query, dialect: Dialect | None = None) -> None:
        self._pool = pool
        self._query = query
        self._dialect = dialect or pool.dialect
        self._settings = pool.settings

    @classmethod
    def prepare(cls, pool: ConnectionPool, query: Query, dialect: Dialect | None = None) -> QueryExecutor:
        return cls(pool, query, dialect)

    @staticmethod
    async def execute_sql(
        pool: ConnectionPool, sql: str, params: Sequence[Any] = (), dialect: Dialect | None = None
    ) -> QueryResult:
        """Execute literal SQL (inserts and other statements outside a Query)."""
        return await run_with_reconnect(
            pool, dialect or pool.dialect, pool.settings, pool.execute, sql, params
        )

    async def fetch(self) -> Any:
        result = await self._execute()
        if not result.rows:
            return None
        return self._shape(result.rows[0])

    async def fetch_all(self) -> list[Any]:
        result = await self._execute()
        return [self._shape(row) for row in result.rows]

    async def fetch_iterator(self) -> AsyncIterator[Any]:
        """Stream rows from the pool. Failures mid-stream are not retried."""
        sql, params = self._dialect.render(self._query)
        if self._settings.debug:
            logger.debug("%s %s", humanize(sql), params)
        started = time.perf_counter()
        async for row in self._pool.iterate(sql, params):
            yield self._shape(row)
        if self._settings.stats:
            query_stats.record(sql, params, time.perf_counter() - started)

    async def count(self) -> int:
        self._query.type = QueryType.COUNT
        result = await self._execute()
        if not result.rows:
            return 0
        return int(result.rows[0].values[0])

    async def execute(self) -> int:
        """Run an UPDATE or DELETE; return the number of affected rows."""
        sql, params = self._dialect.render(self._query)
        return await run_with_reconnect(
            self._pool, self._dialect, self._settings, self._pool.execute_statement, sql, params
        )

    async def delete(self) -> int:
        self._query.type = QueryType.DELETE
        return await self.execute()

    async def _execute(self) -> QueryResult:
        sql, params = self._dialect.render(self._query)
        return await run_with_reconnect(
            self._pool, self._dialect, self._settings, self._pool.execute, sql, params
        )

    def _shape(self, row: Row) -> Any:
        mode = self._query.select_type
        if mode is FetchMode.DICT:
            return row.as_dict()
        if mode is FetchMode.COLUMN:
            return row.values[0]
        return row.as_tuple()
