"""Batched relation loading.

A relation is loaded for a whole result set with one ``IN`` query instead of
one query per row.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from recordkit.logging_config import get_logger

if TYPE_CHECKING:
    from recordkit.model import Model
    from recordkit.pool import ConnectionPool
    from recordkit.relations import Relation

logger = get_logger(__name__)


@dataclass
class LoaderContext:
    """State shared by one top-level fetch and the loads it triggers.

    While ``loading`` is set, builders created for the nested loads ignore
    ``with_()`` so relation loading never recurses.
    """

    loading: bool = False

    @contextmanager
    def active(self) -> Iterator[LoaderContext]:
        previous = self.loading
        self.loading = True
        try:
            yield self
        finally:
            self.loading = previous


class ModelBatch:
    """Models converted from the same result set."""

    def __init__(self, models: Iterable[Model]) -> None:
        self.models = list(models)

    @classmethod
    def attach(cls, models: Iterable[Model]) -> ModelBatch:
        batch = cls(models)
        for model in batch.models:
            object.__setattr__(model, "_batch", batch)
        return batch

    def __len__(self) -> int:
        return len(self.models)


def models_at_path(models: Iterable[Model], path: str) -> list[Model]:
    """Follow ``a->b`` through loaded relations, flattening collections."""
    current: list[Any] = list(models)
    if not path:
        return current
    for part in path.split("->"):
        following: list[Any] = []
        for model in current:
            value = model.get(part)
            if isinstance(value, list):
                following.extend(item for item in value if item is not None)
            elif value is not None:
                following.append(value)
        current = following
    return current


class RelationFetcher:
    """Loads one relation for many parent models with a single query."""

    def __init__(self, relation: Relation) -> None:
        self.relation = relation

    async def fetch(
        self,
        models: Iterable[Model],
        field: str = "",
        *,
        db: ConnectionPool | None = None,
        context: LoaderContext | None = None,
    ) -> None:
        """Attach the relation to every model reached through ``field``."""
        from recordkit.builder import ModelQueryBuilder

        relation = self.relation
        parents = models_at_path(models, field)
        if not parents:
            return

        keys: list[Any] = []
        seen: set[Any] = set()
        for parent in parents:
            key = parent.get(relation.local_key)
            if key is not None and key not in seen:
                seen.add(key)
                keys.append(key)

        related: list[Model] = []
        if keys:
            context = context or LoaderContext()
            builder = ModelQueryBuilder(relation.target, db, context=context)
            builder.where({relation.foreign_key: keys})
            condition = relation.condition_clause()
            if condition is not None:
                builder.where(condition)
            if relation.order:
                builder.order(relation.order)
            with context.active():
                related = await builder.fetch_all()

        grouped: dict[Any, list[Model]] = defaultdict(list)
        for item in related:
            grouped[item.get(relation.foreign_key)].append(item)

        for parent in parents:
            key = parent.get(relation.local_key)
            matches = grouped.get(key, []) if key is not None else []
            if relation.collection:
                parent._set_relation(relation.name, list(matches))
            else:
                parent._set_relation(relation.name, matches[0] if matches else None)

        logger.debug(
            "Loaded %s for %d %s (%d keys, %d rows)",
            relation,
            len(parents),
            relation.owner.__name__,
            len(keys),
            len(related),
        )
