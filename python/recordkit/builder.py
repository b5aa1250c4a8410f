"""Fluent query builder bound to one model class."""

from __future__ import annotations

import copy as copy_module
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from recordkit.batch import LoaderContext, ModelBatch, RelationFetcher
from recordkit.config import get_settings
from recordkit.conversion import ColumnAliasHandler, ModelResultSetConverter
from recordkit.dialect import Dialect, dialect_for
from recordkit.errors import AmbiguousColumnAliasError, ConfigurationError
from recordkit.executor import QueryExecutor
from recordkit.humanizer import MODEL_QUERY_MARKER_COMMENT
from recordkit.iterators import batched, transformed, unbatched
from recordkit.pool import ConnectionPool, get_default_pool
from recordkit.query import FetchMode, JoinClause, Query, QueryType, WhereClause
from recordkit.relations import Relation

if TYPE_CHECKING:
    from recordkit.model import Model

PATH_SEPARATOR = "->"


@dataclass(frozen=True)
class ModelJoin:
    """One joined hop: the relation, where its model lands and its table alias."""

    destination_field: str
    relation: Relation
    alias: str
    from_alias: str
    type: str = "LEFT"
    on: tuple[WhereClause, ...] = ()

    @property
    def store_field(self) -> bool:
        return not self.relation.collection

    def equals(self, other: ModelJoin) -> bool:
        return self.destination_field == other.destination_field and self.alias == other.alias

    def as_join_clause(self) -> JoinClause:
        on_clauses = list(self.on)
        condition = self.relation.condition_clause()
        if condition is not None:
            on_clauses.insert(0, condition)
        return JoinClause(
            join_table=self.relation.target.definition().table,
            join_column=self.relation.foreign_key,
            from_table=self.from_alias,
            from_column=self.relation.local_key,
            join_table_alias=self.alias,
            type=self.type,
            on_clauses=tuple(on_clauses),
        )


@dataclass(frozen=True)
class RelationToFetch:
    """An eager load: ``relation`` of the models found at ``field``, stored at ``destination_field``."""

    field: str
    relation: Relation
    destination_field: str

    def equals(self, other: RelationToFetch) -> bool:
        return self.field == other.field and self.destination_field == other.destination_field


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class ModelQueryBuilder:
    """Builds, runs and materializes queries for ``model``.

    Example:
        >>> products = await (
        ...     Product.where({"name__like": "b%"})
        ...     .join("category")
        ...     .with_("category->parent")
        ...     .order("products.name")
        ...     .fetch_all()
        ... )
    """

    def __init__(
        self,
        model: type[Model],
        db: ConnectionPool | None = None,
        alias: str | None = None,
        *,
        context: LoaderContext | None = None,
    ) -> None:
        self._model = model
        self._db = db
        self._definition = model.definition()
        self._context = context
        self._joined_models: list[ModelJoin] = []
        self._relations_to_fetch: list[RelationToFetch] = []
        self._select_model = True
        self._query = Query(
            table=self._definition.table,
            alias_table=alias,
            select_type=FetchMode.DICT,
        )
        self._query.select_columns.extend(
            ColumnAliasHandler.create_select_columns_with_aliases(self._definition.fields, self._model_alias())
        )

    def _model_alias(self) -> str:
        return self._query.alias_table or self._definition.table

    # ========== Conditions ==========

    def where(self, where: Any = "", values: Any = None) -> ModelQueryBuilder:
        self._query.where(where, values)
        return self

    def order(self, columns: str | Sequence[str]) -> ModelQueryBuilder:
        self._query.order = columns if isinstance(columns, str) else list(columns)
        return self

    def limit(self, limit: int | None) -> ModelQueryBuilder:
        self._query.limit = limit
        return self

    def offset(self, offset: int | None) -> ModelQueryBuilder:
        self._query.offset = offset
        return self

    def lock_for_update(self) -> ModelQueryBuilder:
        self._query.lock_for_update = True
        return self

    def options(self, options: Mapping[str, Any]) -> ModelQueryBuilder:
        self._query.options.update(options)
        return self

    def group_by(self, group_by: str | Sequence[str]) -> ModelQueryBuilder:
        if self._select_model:
            raise ConfigurationError(
                "Cannot use group_by without specifying columns.\n"
                "e.g. Category.select('name, count(*)').group_by('name').fetch_all()"
            )
        self._query.group_by = group_by if isinstance(group_by, str) else list(group_by)
        return self

    # ========== Selection ==========

    def select(
        self, columns: str | Sequence[str] | Mapping[str, str], fetch_mode: FetchMode = FetchMode.TUPLE
    ) -> ModelQueryBuilder:
        """Select raw columns; fetches then return rows shaped by ``fetch_mode``.

        A mapping selects ``{alias: expression}``.
        """
        self._select_model = False
        if isinstance(columns, Mapping):
            self._query.select_columns = [(expression, alias) for alias, expression in columns.items()]
        else:
            self._query.select_columns = [(column, None) for column in _as_list(columns)]
        self._query.select_type = fetch_mode
        return self

    def select_distinct(
        self, columns: str | Sequence[str] | Mapping[str, str], fetch_mode: FetchMode = FetchMode.TUPLE
    ) -> ModelQueryBuilder:
        self._query.distinct = True
        return self.select(columns, fetch_mode)

    # ========== Joins ==========

    def join(
        self,
        relation: str | Relation,
        aliases: str | Sequence[str | None] | None = None,
        type: str = "LEFT",
        on: Any = None,
    ) -> ModelQueryBuilder:
        """Join a relation (or an ``a->b`` path of relations), selecting the joined columns.

        Joining the same path with the same alias twice is a no-op.
        """
        on_clauses = () if on is None else (WhereClause.create(on),)
        for model_join in self._create_model_joins(relation, aliases, type.upper(), on_clauses):
            self._add_join(model_join)
        return self

    def inner_join(self, relation: str | Relation, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return self.join(relation, aliases, "INNER", on)

    def left_join(self, relation: str | Relation, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return self.join(relation, aliases, "LEFT", on)

    def right_join(self, relation: str | Relation, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return self.join(relation, aliases, "RIGHT", on)

    def using(self, relation: str | Relation, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        """Restrict a DELETE by a related table (``DELETE ... USING``)."""
        on_clauses = () if on is None else (WhereClause.create(on),)
        for model_join in self._create_model_joins(relation, aliases, "USING", on_clauses):
            self._query.add_using(model_join.as_join_clause())
        return self

    def with_(self, relation: str | Relation) -> ModelQueryBuilder:
        """Eager-load a relation (or ``a->b`` path) with one extra query per relation."""
        if self._context is not None and self._context.loading:
            return self
        field = ""
        for hop in self._extract_relations(relation):
            destination = f"{field}{PATH_SEPARATOR}{hop.name}" if field else hop.name
            to_fetch = RelationToFetch(field, hop, destination)
            if not any(existing.equals(to_fetch) for existing in self._relations_to_fetch):
                self._relations_to_fetch.append(to_fetch)
            field = destination
        return self

    def _extract_relations(self, selector: str | Relation) -> list[Relation]:
        if isinstance(selector, Relation):
            return [selector]
        relations: list[Relation] = []
        model = self._model
        for name in selector.split(PATH_SEPARATOR):
            relation = model.definition().relations.get(name.strip())
            relations.append(relation)
            model = relation.target
        return relations

    def _used_aliases(self) -> set[str]:
        return {self._model_alias()} | {join.alias for join in self._joined_models}

    def _create_model_joins(
        self,
        selector: str | Relation,
        aliases: Any,
        join_type: str,
        on: tuple[WhereClause, ...],
    ) -> list[ModelJoin]:
        relations = self._extract_relations(selector)
        alias_list = _as_list(aliases)
        if len(alias_list) > len(relations):
            raise ConfigurationError(
                f"{len(alias_list)} aliases given for {len(relations)} relations in {selector}"
            )
        alias_list += [None] * (len(relations) - len(alias_list))

        used = self._used_aliases()
        joins: list[ModelJoin] = []
        from_alias = self._model_alias()
        field = ""
        for index, (relation, alias) in enumerate(zip(relations, alias_list)):
            field = f"{field}{PATH_SEPARATOR}{relation.name}" if field else relation.name
            existing = next(
                (
                    join
                    for join in self._joined_models
                    if join.destination_field == field and (alias is None or join.alias == alias)
                ),
                None,
            )
            if existing is not None:
                joins.append(existing)
                from_alias = existing.alias
                continue

            if alias is None:
                alias = self._default_alias(relation, from_alias, used)
            elif alias in used:
                raise AmbiguousColumnAliasError(f"Table alias already in use: {alias}")
            used.add(alias)
            is_last = index == len(relations) - 1
            joins.append(
                ModelJoin(field, relation, alias, from_alias, join_type, on if is_last else ())
            )
            from_alias = alias
        return joins

    @staticmethod
    def _default_alias(relation: Relation, from_alias: str, used: set[str]) -> str:
        table = relation.target.definition().table
        if table not in used:
            return table
        alias = f"{from_alias}_{relation.name}"
        if alias in used:
            raise AmbiguousColumnAliasError(
                f"Cannot pick an alias for {relation}: {table} and {alias} are both taken"
            )
        return alias

    def _add_join(self, model_join: ModelJoin) -> None:
        if any(existing.equals(model_join) for existing in self._joined_models):
            return
        if model_join.store_field and self._select_model:
            columns = ColumnAliasHandler.create_select_columns_with_aliases(
                model_join.relation.target.definition().fields, model_join.alias
            )
            selected = {alias for _, alias in self._query.select_columns if alias}
            clashing = [alias for _, alias in columns if alias in selected]
            if clashing:
                raise AmbiguousColumnAliasError(
                    f"Joining {model_join.relation} as {model_join.alias} repeats column aliases: "
                    + ", ".join(clashing)
                )
            self._query.select_columns.extend(columns)
        self._query.add_join(model_join.as_join_clause())
        self._joined_models.append(model_join)

    # ========== Execution ==========

    def _get_db(self) -> ConnectionPool:
        return self._db or get_default_pool()

    def _dialect(self) -> Dialect:
        if self._db is not None:
            return self._db.dialect
        try:
            return get_default_pool().dialect
        except ConfigurationError:
            dialect = get_settings().sql_dialect
            if dialect is None:
                raise
            return dialect_for(dialect)

    def _executor(self) -> QueryExecutor:
        db = self._get_db()
        return QueryExecutor.prepare(db, self._query, db.dialect)

    def _before_select(self) -> None:
        self._query.type = QueryType.SELECT
        if self._select_model:
            self._query.set_comment(MODEL_QUERY_MARKER_COMMENT)

    async def _process_results(self, rows: list[Any]) -> list[Model]:
        db = self._get_db()
        converter = ModelResultSetConverter(self._model, self._model_alias(), self._joined_models)
        models = converter.convert(rows, db)
        ModelBatch.attach(models)
        if models and self._relations_to_fetch:
            context = self._context or LoaderContext()
            for to_fetch in self._relations_to_fetch:
                await RelationFetcher(to_fetch.relation).fetch(
                    models, to_fetch.field, db=db, context=context
                )
        return models

    async def fetch(self) -> Any:
        """First matching model (or raw row after ``select``), or None."""
        self._before_select()
        row = await self._executor().fetch()
        if row is None or not self._select_model:
            return row
        models = await self._process_results([row])
        return models[0]

    async def fetch_all(self) -> list[Any]:
        self._before_select()
        rows = await self._executor().fetch_all()
        if not self._select_model:
            return rows
        return await self._process_results(rows)

    async def fetch_iterator(self, batch_size: int | None = None) -> AsyncIterator[Any]:
        """Stream results; models are converted and eager-loaded a batch at a time."""
        self._before_select()
        rows = self._executor().fetch_iterator()
        if not self._select_model:
            async for row in rows:
                yield row
            return
        size = batch_size if batch_size is not None else self._get_db().settings.iterator_batch_size
        async for model in unbatched(transformed(batched(rows, size), self._process_results)):
            yield model

    async def count(self) -> int:
        return await self._executor().count()

    async def update(self, attributes: Mapping[str, Any]) -> int:
        """UPDATE every matching row. Model save callbacks do not run."""
        self._query.type = QueryType.UPDATE
        self._query.update_attributes = dict(attributes)
        return await self._executor().execute()

    async def delete_all(self) -> int:
        """DELETE every matching row. Model callbacks do not run."""
        return await self._executor().delete()

    async def delete_each(self) -> list[bool]:
        """Fetch the matching models and delete them one by one."""
        models = await self.fetch_all()
        return [await model.delete(self._db) for model in models]

    # ========== Inspection ==========

    def copy(self) -> ModelQueryBuilder:
        clone = copy_module.copy(self)
        clone._query = self._query.copy()
        clone._joined_models = list(self._joined_models)
        clone._relations_to_fetch = list(self._relations_to_fetch)
        return clone

    def get_query(self) -> Query:
        return self._query

    def to_sql(self, dialect: Dialect | str | None = None) -> tuple[str, list[Any]]:
        resolved = dialect_for(dialect) if dialect is not None else self._dialect()
        return resolved.render(self._query)

    def __repr__(self) -> str:
        return f"<ModelQueryBuilder {self._model.__name__} {self._query.type.value}>"
