"""Async iterator plumbing for streaming fetches.

``fetch_iterator`` groups rows into batches so each batch is converted (and
eager-loaded) at once, then ungroups them so callers still see one item per
step, in the original order.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")
U = TypeVar("U")


async def batched(source: AsyncIterable[T], size: int) -> AsyncIterator[list[T]]:
    """Yield lists of up to ``size`` items; the last batch may be shorter."""
    if size < 1:
        raise ValueError("Batch size must be positive")
    batch: list[T] = []
    async for item in source:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


async def transformed(
    source: AsyncIterable[T],
    function: Callable[[T], U] | Callable[[T], Awaitable[U]],
) -> AsyncIterator[U]:
    """Apply ``function`` (sync or async) to every item."""
    async for item in source:
        result: Any = function(item)
        if inspect.isawaitable(result):
            result = await result
        yield result


async def unbatched(source: AsyncIterable[list[T]]) -> AsyncIterator[T]:
    """Flatten an iterator of batches."""
    async for batch in source:
        for item in batch:
            yield item
