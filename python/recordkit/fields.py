"""Column definitions for ORM models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


# Type alias for Mapped - indicates a database column
class Mapped(Generic[T]):
    """Type annotation wrapper indicating a database-mapped column.

    Example:
        >>> class Category(Model):
        ...     id: Mapped[int] = mapped_column(primary_key=True)
        ...     name: Mapped[str] = mapped_column(default="")
        ...     id_parent: Mapped[int | None]
    """

    pass


@dataclass
class ColumnInfo:
    """Stores metadata about a database column."""

    name: str | None = None
    primary_key: bool = False
    nullable: bool = False
    default: Any = None

    def copy(self) -> ColumnInfo:
        return ColumnInfo(
            name=self.name,
            primary_key=self.primary_key,
            nullable=self.nullable,
            default=self.default,
        )


def mapped_column(
    *,
    primary_key: bool = False,
    nullable: bool = False,
    default: Any = None,
) -> Any:
    """Define a database column.

    Args:
        primary_key: Whether this is the primary key column
        nullable: Whether NULL values are allowed
        default: Default value applied to new instances (can be callable)

    Returns:
        A ColumnInfo descriptor

    Example:
        >>> id: Mapped[int] = mapped_column(primary_key=True)
        >>> status: Mapped[str] = mapped_column(default="new")
        >>> created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    """
    # Primary keys are not nullable
    if primary_key:
        nullable = False

    return ColumnInfo(primary_key=primary_key, nullable=nullable, default=default)
