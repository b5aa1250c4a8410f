"""Model registry and cached model definitions."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from recordkit.errors import ConfigurationError
from recordkit.logging_config import get_logger
from recordkit.relations import Relations

if TYPE_CHECKING:
    from recordkit.model import Model

logger = get_logger(__name__)


@dataclass(frozen=True)
class ModelDefinition:
    """Everything the builder needs to know about one model class."""

    model: type[Model]
    table: str
    primary_key: str | None
    sequence: str | None
    fields: tuple[str, ...]
    defaults: Mapping[str, Any]
    relations: Relations
    before_save_callbacks: tuple[Callable[..., Any] | str, ...] = ()
    after_save_callbacks: tuple[Callable[..., Any] | str, ...] = ()

    def merge_with_defaults(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        """Fill missing attributes with the declared defaults (callables are called)."""
        merged: dict[str, Any] = {}
        for field_name, default in self.defaults.items():
            if field_name not in attributes:
                merged[field_name] = default() if callable(default) else default
        merged.update(attributes)
        return merged

    def has_field(self, name: str) -> bool:
        return name in self.fields


class ModelRegistry:
    """Maps model names to classes and memoizes their definitions.

    Definitions are built on first use, once every model a relation points to
    can be looked up by name.
    """

    def __init__(self) -> None:
        self._models: dict[str, type[Model]] = {}
        self._definitions: dict[type[Model], ModelDefinition] = {}
        self._lock = threading.Lock()

    def register(self, model: type[Model]) -> None:
        self._models[model.__name__] = model
        self._definitions.pop(model, None)

    def model(self, name: str) -> type[Model]:
        try:
            return self._models[name]
        except KeyError:
            raise ConfigurationError(f"Unknown model: {name}") from None

    def models(self) -> list[type[Model]]:
        return list(self._models.values())

    def definition(self, model: type[Model]) -> ModelDefinition:
        existing = self._definitions.get(model)
        if existing is not None:
            return existing
        definition = self._create_definition(model)
        # Concurrent builders may race here; the first stored definition wins.
        with self._lock:
            return self._definitions.setdefault(model, definition)

    def reset(self) -> None:
        """Drop cached definitions so they are rebuilt on next use."""
        with self._lock:
            self._definitions.clear()

    def _resolve_target(self, target: str | type[Model]) -> type[Model]:
        if isinstance(target, str):
            return self.model(target)
        return target

    def _create_definition(self, model: type[Model]) -> ModelDefinition:
        columns = model.__columns__
        primary_key = model.__primary_key__ or None
        table = model.__tablename__

        fields = list(columns)
        if primary_key and primary_key not in fields:
            fields.append(primary_key)

        sequence = getattr(model, "__sequence__", None)
        if sequence is None and primary_key:
            sequence = f"{table}_{primary_key}_seq"

        defaults = {
            name: column.default for name, column in columns.items() if column.default is not None
        }

        relations = Relations(model.__name__)
        for spec in model.__relation_specs__:
            if spec.name in columns:
                raise ConfigurationError(f"{model.__name__} already has a field: {spec.name}")
            target = self._resolve_target(spec.target)
            relations.add(spec.resolve(model, primary_key, target))

        definition = ModelDefinition(
            model=model,
            table=table,
            primary_key=primary_key,
            sequence=sequence,
            fields=tuple(fields),
            defaults=defaults,
            relations=relations,
            before_save_callbacks=_as_tuple(getattr(model, "__before_save__", ())),
            after_save_callbacks=_as_tuple(getattr(model, "__after_save__", ())),
        )
        logger.debug(
            "Created model definition for %s (table=%s, fields=%s, relations=%s)",
            model.__name__,
            table,
            list(fields),
            relations.names(),
        )
        return definition


def _as_tuple(callbacks: Any) -> tuple[Any, ...]:
    if not callbacks:
        return ()
    if isinstance(callbacks, (list, tuple)):
        return tuple(callbacks)
    return (callbacks,)


default_registry = ModelRegistry()
