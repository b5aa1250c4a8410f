"""Declarative base for ORM models."""

from __future__ import annotations

import dataclasses
import inspect
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, ClassVar

from recordkit.builder import PATH_SEPARATOR, ModelQueryBuilder
from recordkit.errors import ConfigurationError, RecordNotFoundError, UnsupportedOperationError
from recordkit.executor import QueryExecutor
from recordkit.fields import ColumnInfo
from recordkit.pool import get_default_pool
from recordkit.query import FetchMode
from recordkit.registry import ModelDefinition, ModelRegistry, default_registry
from recordkit.relations import RelationSpec

if TYPE_CHECKING:
    from recordkit.batch import ModelBatch
    from recordkit.pool import ConnectionPool
    from recordkit.relations import Relation

# SQLite refuses statements with more bound variables than this.
_MAX_BATCH_PARAMS = 900


def _pluralize(word: str) -> str:
    if re.search(r"[^aeiou]y$", word):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", word):
        return word + "es"
    return word + "s"


def tableize(name: str) -> str:
    """``ProductOrder`` -> ``product_orders``."""
    return _pluralize(re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower())


class ModelMeta(type):
    """Metaclass for ORM models that processes field and relation declarations."""

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> ModelMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Abstract bases (Model itself, shared mixins) are not tables
        if namespace.get("__abstract__", False):
            return cls

        cls.__tablename__ = namespace.get("__tablename__") or tableize(name)  # type: ignore[attr-defined]

        # Inherited declarations first, copied so subclasses never share state
        columns: dict[str, ColumnInfo] = {}
        inherited_specs: dict[str, RelationSpec] = {}
        for base in bases:
            for col_name, col_info in getattr(base, "__columns__", {}).items():
                columns.setdefault(col_name, col_info.copy())
            for spec in getattr(base, "__relation_specs__", ()):
                inherited_specs.setdefault(spec.name or "", spec)

        try:
            annotations = dict(getattr(cls, "__annotations__", {}))
        except Exception:
            annotations = {}

        # Annotated columns keep declaration order; a bare Mapped[...] is a column too
        for attr_name, hint in annotations.items():
            if attr_name.startswith("_"):
                continue
            value = namespace.get(attr_name)
            if isinstance(value, ColumnInfo):
                columns[attr_name] = value.copy()
            elif value is None and "Mapped" in str(hint):
                hint_str = str(hint)
                columns[attr_name] = ColumnInfo(nullable="None" in hint_str or "Optional" in hint_str)

        own_specs: list[RelationSpec] = []
        for attr_name, attr_value in namespace.items():
            if attr_name.startswith("_"):
                continue
            if isinstance(attr_value, ColumnInfo):
                columns.setdefault(attr_name, attr_value.copy())
            elif isinstance(attr_value, RelationSpec):
                own_specs.append(dataclasses.replace(attr_value, name=attr_value.name or attr_name))
            else:
                continue
            # Remove from the class so instance lookups reach __getattr__
            delattr(cls, attr_name)

        for col_name, col_info in columns.items():
            col_info.name = col_name

        for spec in own_specs:
            inherited_specs.pop(spec.name or "", None)

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__relation_specs__ = tuple(inherited_specs.values()) + tuple(own_specs)  # type: ignore[attr-defined]

        # Find primary key: explicit option, then a flagged column, then inherited
        if "__primary_key__" in namespace:
            cls.__primary_key__ = namespace["__primary_key__"] or None  # type: ignore[attr-defined]
        else:
            flagged = next((col for col, info in columns.items() if info.primary_key), None)
            if flagged:
                cls.__primary_key__ = flagged  # type: ignore[attr-defined]

        cls.__registry__.register(cls)  # type: ignore[attr-defined]
        return cls


class Model(metaclass=ModelMeta):
    """Base class for all ORM models.

    Instances are attribute bags: every declared field is readable as an
    attribute (``None`` until set) and relations become readable once loaded.

    Example:
        >>> class Category(Model):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str]
        ...     id_parent: Mapped[int | None]
        ...     products = has_many("Product", foreign_key="id_category")
        ...     parent = belongs_to("Category", foreign_key="id_parent", referenced_column="id")
    """

    __abstract__ = True

    __tablename__: ClassVar[str]
    __columns__: ClassVar[dict[str, ColumnInfo]] = {}
    __relation_specs__: ClassVar[tuple[RelationSpec, ...]] = ()
    __primary_key__: ClassVar[str | None] = "id"
    __registry__: ClassVar[ModelRegistry] = default_registry

    _attributes: dict[str, Any]
    _relations: dict[str, Any]
    _batch: ModelBatch | None
    _db: ConnectionPool | None

    def __init__(self, **attributes: Any) -> None:
        definition = self.definition()
        unknown = [
            key for key in attributes if not definition.has_field(key) and not definition.relations.has(key)
        ]
        if unknown:
            raise TypeError(f"Unknown field or relation for {type(self).__name__}: {', '.join(unknown)}")

        fields = {key: value for key, value in attributes.items() if definition.has_field(key)}
        object.__setattr__(self, "_attributes", definition.merge_with_defaults(fields))
        object.__setattr__(
            self, "_relations", {key: value for key, value in attributes.items() if key not in fields}
        )
        object.__setattr__(self, "_batch", None)
        object.__setattr__(self, "_db", None)

    @classmethod
    def definition(cls) -> ModelDefinition:
        return cls.__registry__.definition(cls)

    @classmethod
    def _from_row(cls, attributes: Mapping[str, Any], db: ConnectionPool | None = None) -> Model:
        """Build an instance from database values, skipping defaults and validation."""
        instance = object.__new__(cls)
        object.__setattr__(instance, "_attributes", dict(attributes))
        object.__setattr__(instance, "_relations", {})
        object.__setattr__(instance, "_batch", None)
        object.__setattr__(instance, "_db", db)
        return instance

    # ========== Attribute bag ==========

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        definition = type(self).definition()
        if definition.has_field(name):
            return self._attributes.get(name)
        if definition.relations.has(name):
            relations = self._relations
            if name in relations:
                return relations[name]
            # Async lazy loading is not possible in __getattr__, so raise
            raise AttributeError(
                f"Relation '{name}' of {type(self).__name__} is not loaded. "
                f"Use join() or with_() when querying, or await fetch_relation('{name}')."
            )
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_"):
            definition = type(self).definition()
            if definition.has_field(name):
                self._attributes[name] = value
                return
            if definition.relations.has(name):
                self._relations[name] = value
                return
        object.__setattr__(self, name, value)

    def _set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    def _member(self, name: str) -> Any:
        if name in self._attributes:
            return self._attributes[name]
        return self._relations.get(name)

    def get(self, path: str, default: Any = None) -> Any:
        """Read a field or loaded relation; ``a->b`` walks through relations."""
        current: Any = self
        for part in path.split(PATH_SEPARATOR):
            if not isinstance(current, Model):
                return default
            current = current._member(part)
        return default if current is None else current

    def set(self, path: str, value: Any) -> None:
        """Assign a field or relation; every hop before the last must be loaded."""
        parent_path, _, name = path.rpartition(PATH_SEPARATOR)
        target = self.get(parent_path) if parent_path else self
        if not isinstance(target, Model):
            raise AttributeError(f"Cannot set '{path}' on {type(self).__name__}: '{parent_path}' is not loaded")
        setattr(target, name, value)

    def attributes(self) -> dict[str, Any]:
        return dict(self._attributes)

    def is_loaded(self, relation: str) -> bool:
        return relation in self._relations

    def loaded_relations(self) -> dict[str, Any]:
        return dict(self._relations)

    def to_dict(self, include_relations: bool = False) -> dict[str, Any]:
        """Convert model instance to a dictionary."""
        result = self.attributes()
        if include_relations:
            for rel_name, rel_value in self.loaded_relations().items():
                if isinstance(rel_value, list):
                    result[rel_name] = [item.to_dict(True) for item in rel_value]
                elif rel_value is not None:
                    result[rel_name] = rel_value.to_dict(True)
                else:
                    result[rel_name] = None
        return result

    def __repr__(self) -> str:
        pk = type(self).definition().primary_key
        if pk and self._attributes.get(pk) is not None:
            return f"<{type(self).__name__} {pk}={self._attributes[pk]!r}>"
        return f"<{type(self).__name__}>"

    # ========== Relations ==========

    async def fetch_relation(self, name: str) -> Any:
        """Load a relation for this model and every model fetched alongside it.

        Example:
            >>> for category in await Category.all():
            ...     products = await category.fetch_relation("products")  # one query in total
        """
        from recordkit.batch import LoaderContext, RelationFetcher

        relation: Relation = type(self).definition().relations.get(name)
        if name in self._relations:
            return self._relations[name]

        peers = self._batch.models if self._batch is not None else [self]
        pending = [model for model in peers if isinstance(model, type(self)) and name not in model._relations]
        if self not in pending:
            pending.append(self)
        await RelationFetcher(relation).fetch(pending, db=self._resolve_db(None), context=LoaderContext())
        return self._relations[name]

    # ========== Persistence ==========

    def _resolve_db(self, db: ConnectionPool | None) -> ConnectionPool:
        return db or self._db or get_default_pool()

    async def _run_callbacks(self, callbacks: Sequence[Any]) -> None:
        for callback in callbacks:
            result = getattr(self, callback)() if isinstance(callback, str) else callback(self)
            if inspect.isawaitable(result):
                await result

    def _insertable_attributes(self, definition: ModelDefinition) -> dict[str, Any]:
        pk = definition.primary_key
        return {
            key: value
            for key, value in self._attributes.items()
            if definition.has_field(key) and not (key == pk and value is None)
        }

    def _assign_generated_key(self, definition: ModelDefinition, row: Mapping[str, Any] | None, lastrowid: Any) -> None:
        pk = definition.primary_key
        if not pk:
            return
        if row is not None and pk in row:
            self._attributes[pk] = row[pk]
        elif self._attributes.get(pk) is None and lastrowid:
            self._attributes[pk] = lastrowid

    def _primary_key_value(self, action: str) -> tuple[str, Any]:
        pk = type(self).definition().primary_key
        value = self._attributes.get(pk) if pk else None
        if not pk or value is None:
            raise ConfigurationError(f"Cannot {action} {type(self).__name__} without a primary key value")
        return pk, value

    async def insert(self, db: ConnectionPool | None = None) -> Any:
        """INSERT this model; returns the (possibly generated) primary key value."""
        definition = self.definition()
        db = self._resolve_db(db)
        await self._run_callbacks(definition.before_save_callbacks)

        attributes = self._insertable_attributes(definition)
        sql, params = db.dialect.insert(definition.table, attributes, definition.primary_key)
        result = await QueryExecutor.execute_sql(db, sql, params)
        self._assign_generated_key(definition, result.first(), result.lastrowid)
        object.__setattr__(self, "_db", db)

        await self._run_callbacks(definition.after_save_callbacks)
        return self._attributes.get(definition.primary_key) if definition.primary_key else None

    async def update(self, db: ConnectionPool | None = None) -> int:
        """UPDATE the row identified by the primary key with every field."""
        definition = self.definition()
        db = self._resolve_db(db)
        pk, value = self._primary_key_value("update")
        await self._run_callbacks(definition.before_save_callbacks)

        attributes = {
            key: val for key, val in self._attributes.items() if definition.has_field(key) and key != pk
        }
        affected = 0
        if attributes:
            affected = await type(self).query(db).where({pk: value}).update(attributes)

        await self._run_callbacks(definition.after_save_callbacks)
        return affected

    async def update_attributes(self, attributes: Mapping[str, Any], db: ConnectionPool | None = None) -> int:
        for key, value in attributes.items():
            setattr(self, key, value)
        return await self.update(db)

    async def save(self, db: ConnectionPool | None = None) -> Any:
        """Insert a new model, update one that already has a primary key value."""
        pk = self.definition().primary_key
        if pk and self._attributes.get(pk) is not None:
            await self.update(db)
            return self._attributes[pk]
        return await self.insert(db)

    async def upsert(
        self,
        conflict_columns: Sequence[str] | None = None,
        update_columns: Sequence[str] | None = None,
        db: ConnectionPool | None = None,
    ) -> Any:
        """INSERT, or UPDATE ``update_columns`` when ``conflict_columns`` already exist.

        Example:
            >>> await Category(id=7, name="phones").upsert(["id"], ["name"])
        """
        definition = self.definition()
        db = self._resolve_db(db)
        pk = definition.primary_key
        conflict = list(conflict_columns or ([pk] if pk else []))
        await self._run_callbacks(definition.before_save_callbacks)

        attributes = self._insertable_attributes(definition)
        if update_columns is None:
            update_columns = [column for column in attributes if column not in conflict]
        on_conflict = db.dialect.on_conflict_do_update(conflict, list(update_columns))
        sql, params = db.dialect.insert(definition.table, attributes, pk, on_conflict)
        result = await QueryExecutor.execute_sql(db, sql, params)
        self._assign_generated_key(definition, result.first(), result.lastrowid)
        object.__setattr__(self, "_db", db)

        await self._run_callbacks(definition.after_save_callbacks)
        return self._attributes.get(pk) if pk else None

    async def delete(self, db: ConnectionPool | None = None) -> bool:
        pk, value = self._primary_key_value("delete")
        affected = await type(self).query(self._resolve_db(db)).where({pk: value}).delete_all()
        return affected > 0

    @classmethod
    async def insert_all(cls, models: Sequence[Model], db: ConnectionPool | None = None) -> list[Model]:
        """INSERT many models with multi-row statements; primary keys are read back in order.

        Models are grouped by the columns they set, so unset columns keep their
        database defaults exactly as with ``insert``.
        """
        if not models:
            return []
        definition = cls.definition()
        db = db or get_default_pool()
        pk = definition.primary_key
        if not db.dialect.supports_batch_insert:
            raise UnsupportedOperationError(f"Batch insert not supported in {db.dialect.name}")

        for model in models:
            await model._run_callbacks(definition.before_save_callbacks)

        groups: dict[tuple[str, ...], list[Model]] = {}
        for model in models:
            insertable = model._insertable_attributes(definition)
            columns = tuple(field for field in definition.fields if field in insertable)
            groups.setdefault(columns, []).append(model)

        for columns, group in groups.items():
            if not columns:
                for model in group:
                    sql, params = db.dialect.insert(definition.table, {}, pk)
                    result = await QueryExecutor.execute_sql(db, sql, params)
                    model._assign_generated_key(definition, result.first(), result.lastrowid)
                continue
            chunk_size = max(1, _MAX_BATCH_PARAMS // len(columns))
            for start in range(0, len(group), chunk_size):
                chunk = group[start:start + chunk_size]
                rows = [[model._attributes[column] for column in columns] for model in chunk]
                sql, params = db.dialect.batch_insert(definition.table, pk, list(columns), rows)
                result = await QueryExecutor.execute_sql(db, sql, params)
                for model, row in zip(chunk, result.all()):
                    model._assign_generated_key(definition, row, None)

        for model in models:
            object.__setattr__(model, "_db", db)
            await model._run_callbacks(definition.after_save_callbacks)
        return list(models)

    # ========== Query shortcuts ==========

    @classmethod
    def query(cls, db: ConnectionPool | None = None, alias: str | None = None) -> ModelQueryBuilder:
        return ModelQueryBuilder(cls, db, alias)

    @classmethod
    def alias(cls, alias: str, db: ConnectionPool | None = None) -> ModelQueryBuilder:
        return ModelQueryBuilder(cls, db, alias)

    @classmethod
    def where(cls, where: Any = "", values: Any = None) -> ModelQueryBuilder:
        return cls.query().where(where, values)

    @classmethod
    def join(cls, relation: Any, aliases: Any = None, type: str = "LEFT", on: Any = None) -> ModelQueryBuilder:
        return cls.query().join(relation, aliases, type, on)

    @classmethod
    def inner_join(cls, relation: Any, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return cls.query().inner_join(relation, aliases, on)

    @classmethod
    def left_join(cls, relation: Any, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return cls.query().left_join(relation, aliases, on)

    @classmethod
    def right_join(cls, relation: Any, aliases: Any = None, on: Any = None) -> ModelQueryBuilder:
        return cls.query().right_join(relation, aliases, on)

    @classmethod
    def with_(cls, relation: Any) -> ModelQueryBuilder:
        return cls.query().with_(relation)

    @classmethod
    def select(cls, columns: Any, fetch_mode: FetchMode = FetchMode.TUPLE) -> ModelQueryBuilder:
        return cls.query().select(columns, fetch_mode)

    @classmethod
    def select_distinct(cls, columns: Any, fetch_mode: FetchMode = FetchMode.TUPLE) -> ModelQueryBuilder:
        return cls.query().select_distinct(columns, fetch_mode)

    @classmethod
    async def all(cls, db: ConnectionPool | None = None) -> list[Model]:
        return await cls.query(db).fetch_all()

    @classmethod
    async def count(cls, where: Any = "", values: Any = None, db: ConnectionPool | None = None) -> int:
        return await cls.query(db).where(where, values).count()

    @classmethod
    async def find_by_id(cls, value: Any, db: ConnectionPool | None = None) -> Model:
        pk = cls.definition().primary_key
        if not pk:
            raise ConfigurationError(f"{cls.__name__} has no primary key")
        model = await cls.query(db).where({pk: value}).fetch()
        if model is None:
            raise RecordNotFoundError(f"{cls.__name__} with {pk}={value!r} not found")
        return model
