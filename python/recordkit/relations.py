"""Relation definitions for ORM models."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from recordkit.errors import ConfigurationError
from recordkit.query import WhereClause

if TYPE_CHECKING:
    from recordkit.model import Model


class RelationKind(Enum):
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"


@dataclass(frozen=True)
class Relation:
    """A resolved link from ``owner`` to ``target``.

    ``local_key`` is the column read on the owner side and ``foreign_key`` the
    column matched on the target side, whatever the relation kind.
    """

    name: str
    owner: type[Model]
    target: type[Model]
    local_key: str
    foreign_key: str
    referenced_column: str | None = None
    condition: Any = None
    order: str | list[str] | None = None

    kind: ClassVar[RelationKind]
    collection: ClassVar[bool] = False

    def with_name(self, name: str) -> Relation:
        return dataclasses.replace(self, name=name)

    def condition_clause(self) -> WhereClause | None:
        if self.condition is None:
            return None
        return WhereClause.create(self.condition)

    def __str__(self) -> str:
        return f"{self.owner.__name__}.{self.name} -> {self.target.__name__}"


class HasOne(Relation):
    kind = RelationKind.HAS_ONE


class HasMany(Relation):
    kind = RelationKind.HAS_MANY
    collection = True


class BelongsTo(Relation):
    kind = RelationKind.BELONGS_TO


_RELATION_CLASSES: dict[RelationKind, type[Relation]] = {
    RelationKind.HAS_ONE: HasOne,
    RelationKind.HAS_MANY: HasMany,
    RelationKind.BELONGS_TO: BelongsTo,
}


@dataclass
class RelationSpec:
    """Declaration of a relation in a model class body, resolved lazily."""

    kind: RelationKind
    target: str | type[Model]
    foreign_key: str | None = None
    referenced_column: str | None = None
    condition: Any = None
    order: str | list[str] | None = None
    name: str | None = None

    def resolve(self, owner: type[Model], owner_pk: str | None, target: type[Model]) -> Relation:
        """Turn the declaration into a Relation between two concrete models."""
        name = self.name or ""
        if self.kind is RelationKind.BELONGS_TO:
            if not self.foreign_key:
                raise ConfigurationError(f"{owner.__name__}.{name}: belongs_to needs a foreign_key")
            local_key = self.foreign_key
            foreign_key = self.referenced_column or target.__primary_key__
            if not foreign_key:
                raise ConfigurationError(
                    f"{owner.__name__}.{name}: {target.__name__} has no primary key, "
                    "give a referenced_column"
                )
        else:
            if not self.foreign_key:
                raise ConfigurationError(f"{owner.__name__}.{name}: {self.kind.value} needs a foreign_key")
            local_key = self.referenced_column or owner_pk or ""
            foreign_key = self.foreign_key
            if not local_key:
                raise ConfigurationError(
                    f"{owner.__name__}.{name}: {owner.__name__} has no primary key, "
                    "give a referenced_column"
                )

        return _RELATION_CLASSES[self.kind](
            name=name,
            owner=owner,
            target=target,
            local_key=local_key,
            foreign_key=foreign_key,
            referenced_column=self.referenced_column,
            condition=self.condition,
            order=self.order,
        )


def belongs_to(
    target: str | type[Model],
    *,
    foreign_key: str,
    referenced_column: str | None = None,
    condition: Any = None,
    order: str | list[str] | None = None,
    name: str | None = None,
) -> Any:
    """Declare a relation whose key column lives on this model.

    Example:
        >>> class Product(Model):
        ...     category = belongs_to("Category", foreign_key="id_category")
    """
    return RelationSpec(RelationKind.BELONGS_TO, target, foreign_key, referenced_column, condition, order, name)


def has_one(
    target: str | type[Model],
    *,
    foreign_key: str,
    referenced_column: str | None = None,
    condition: Any = None,
    order: str | list[str] | None = None,
    name: str | None = None,
) -> Any:
    """Declare a single related row whose key column lives on the target."""
    return RelationSpec(RelationKind.HAS_ONE, target, foreign_key, referenced_column, condition, order, name)


def has_many(
    target: str | type[Model],
    *,
    foreign_key: str,
    referenced_column: str | None = None,
    condition: Any = None,
    order: str | list[str] | None = None,
    name: str | None = None,
) -> Any:
    """Declare a collection of related rows whose key column lives on the target.

    Example:
        >>> class Category(Model):
        ...     products = has_many("Product", foreign_key="id_category")
        ...     products_starting_with_b = has_many(
        ...         "Product", foreign_key="id_category", condition="products.name LIKE 'b%'"
        ...     )
    """
    return RelationSpec(RelationKind.HAS_MANY, target, foreign_key, referenced_column, condition, order, name)


class Relations:
    """Named relations of one model."""

    def __init__(self, model_name: str) -> None:
        self._model_name = model_name
        self._relations: dict[str, Relation] = {}

    def add(self, relation: Relation) -> None:
        if relation.name in self._relations:
            raise ConfigurationError(f"{self._model_name} already has a relation: {relation.name}")
        self._relations[relation.name] = relation

    def get(self, name: str) -> Relation:
        try:
            return self._relations[name]
        except KeyError:
            raise ConfigurationError(f"{self._model_name} has no relation: {name}") from None

    def has(self, name: str) -> bool:
        return name in self._relations

    def names(self) -> list[str]:
        return list(self._relations)

    def __iter__(self) -> Iterator[Relation]:
        return iter(self._relations.values())

    def __len__(self) -> int:
        return len(self._relations)

    def __repr__(self) -> str:
        return f"<Relations {self._model_name} {self.names()}>"
