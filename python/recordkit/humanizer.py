"""Make generated SQL readable in logs.

Model selects list every column of every joined table. Such statements carry a
trailing ``/* orm:model */`` marker; :func:`humanize` strips the marker and
collapses each run of same-table columns back to ``table.*``.
"""

from __future__ import annotations

import re

MODEL_QUERY_MARKER_COMMENT = "orm:model"

_MARKER_SUFFIX = f" /* {MODEL_QUERY_MARKER_COMMENT} */"
_SELECT_LIST = re.compile(r"SELECT .*? FROM")
_SELECT_COLUMN = re.compile(r"(\w+)\.(\w+)( AS \w+)?(, )?")


def _collapse_select_list(match: re.Match[str]) -> str:
    previous_table: str | None = None

    def replace_column(column: re.Match[str]) -> str:
        nonlocal previous_table
        table = column.group(1)
        if table == previous_table:
            return ""
        first = previous_table is None
        previous_table = table
        return f"{table}.*" if first else f", {table}.*"

    return _SELECT_COLUMN.sub(replace_column, match.group(0))


def humanize(sql: str) -> str:
    """Collapse the select list of a marked model query; return other SQL unchanged.

    Example:
        >>> humanize("SELECT c.id AS c_id, c.name AS c_name FROM categories AS c /* orm:model */")
        'SELECT c.* FROM categories AS c'
    """
    if not sql.endswith(f"{MODEL_QUERY_MARKER_COMMENT} */"):
        return sql
    if sql.endswith(_MARKER_SUFFIX):
        sql = sql[: -len(_MARKER_SUFFIX)]
    return _SELECT_LIST.sub(_collapse_select_list, sql)
