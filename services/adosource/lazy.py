"""Deferred collections over remote branches, tags and pull requests.

Nothing is fetched until the first iteration, and then only once. Transport
failures are re-raised as WrappedError so the discovery engine can tell a
failed fetch apart from a failure in its own loop body.
"""

import asyncio
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from typing import Generic, TypeVar

from adosource.errors import TransportError, WrappedError

T = TypeVar("T")


class LazyIterable(Generic[T]):
    """Async iterable whose producer runs at most once, on first iteration."""

    def __init__(self, producer: Callable[[], Awaitable[Iterable[T]]]) -> None:
        self._producer = producer
        self._items: list[T] | None = None
        self._lock = asyncio.Lock()

    @property
    def fetched(self) -> bool:
        return self._items is not None

    async def materialize(self) -> list[T]:
        async with self._lock:
            if self._items is None:
                try:
                    self._items = list(await self._producer())
                except TransportError as e:
                    raise WrappedError(str(e)) from e
        return self._items

    async def _iterate(self) -> AsyncIterator[T]:
        for item in await self.materialize():
            yield item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()


class ObservingIterator(Generic[T]):
    """Single-pass iterator that reports each item and the end of iteration.

    ``observe`` runs once per item as it is handed out; ``completed`` runs
    once, when the underlying iterable is exhausted. Stopping early never
    fires ``completed``.
    """

    def __init__(
        self,
        source: AsyncIterable[T],
        observe: Callable[[T], None],
        completed: Callable[[], None],
    ) -> None:
        self._it = aiter(source)
        self._observe = observe
        self._completed = completed
        self._done = False

    def __aiter__(self) -> "ObservingIterator[T]":
        return self

    async def __anext__(self) -> T:
        if self._done:
            raise StopAsyncIteration
        try:
            item = await anext(self._it)
        except StopAsyncIteration:
            self._done = True
            self._completed()
            raise
        self._observe(item)
        return item

    async def aclose(self) -> None:
        """Release the underlying iterator. ``completed`` does not fire."""
        self._done = True
        close = getattr(self._it, "aclose", None)
        if close is not None:
            await close()
