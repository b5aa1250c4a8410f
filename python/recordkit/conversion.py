"""Turn joined result rows into model instances.

Every selected column is aliased ``<table alias>_<field>``, so one flat row
holds the root model and each joined model side by side.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from recordkit.registry import ModelDefinition

if TYPE_CHECKING:
    from recordkit.builder import ModelJoin
    from recordkit.model import Model
    from recordkit.pool import ConnectionPool


class ColumnAliasHandler:
    @staticmethod
    def create_select_columns_with_aliases(
        fields: Iterable[str], table_alias: str
    ) -> list[tuple[str, str]]:
        return [(f"{table_alias}.{field}", f"{table_alias}_{field}") for field in fields]

    @staticmethod
    def extract_attributes_for_prefix(
        row: Mapping[str, Any], prefix: str, fields: Iterable[str] | None = None
    ) -> dict[str, Any]:
        if fields is None:
            return {key[len(prefix):]: value for key, value in row.items() if key.startswith(prefix)}
        return {field: row[prefix + field] for field in fields if prefix + field in row}


def _has_identity(attributes: Mapping[str, Any], definition: ModelDefinition) -> bool:
    """An outer join that matched nothing yields NULL keys; such a row is no model."""
    if definition.primary_key:
        return attributes.get(definition.primary_key) is not None
    return any(value is not None for value in attributes.values())


class ModelResultSetConverter:
    def __init__(
        self,
        model: type[Model],
        alias: str,
        joined_models: Sequence[ModelJoin],
    ) -> None:
        self._model = model
        self._alias = alias
        self._joined_models = [join for join in joined_models if join.store_field]
        self._definition = model.definition()

    def convert(self, rows: Iterable[Mapping[str, Any]], db: ConnectionPool | None = None) -> list[Model]:
        return [self._convert_row(row, db) for row in rows]

    def _convert_row(self, row: Mapping[str, Any], db: ConnectionPool | None) -> Model:
        attributes = ColumnAliasHandler.extract_attributes_for_prefix(
            row, f"{self._alias}_", self._definition.fields
        )
        model = self._model._from_row(attributes, db)

        for join in self._joined_models:
            target = join.relation.target
            definition = target.definition()
            joined_attributes = ColumnAliasHandler.extract_attributes_for_prefix(
                row, f"{join.alias}_", definition.fields
            )
            if not _has_identity(joined_attributes, definition):
                continue
            parent_path, _, name = join.destination_field.rpartition("->")
            parent = model.get(parent_path) if parent_path else model
            if parent is None or isinstance(parent, list):
                continue
            parent._set_relation(name, target._from_row(joined_attributes, db))
        return model
