"""Unbounded single-producer/single-consumer bridge from callbacks to ``async for``."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ChunkQueue(Generic[T]):
    """FIFO queue whose producer never blocks.

    ``push`` is a plain call usable from sink callbacks on the event loop;
    the consumer awaits ``next()`` (or iterates with ``async for``) until the
    queue is closed and drained. Pushing after ``close`` is ignored.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._waiter: Optional[asyncio.Future[None]] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> None:
        if self._closed:
            return
        self._items.append(item)
        self._wake()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._wake()

    async def next(self) -> T:
        """Return the next item; raise ``StopAsyncIteration`` once closed and empty."""
        while not self._items:
            if self._closed:
                raise StopAsyncIteration
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
        return self._items.popleft()

    def _wake(self) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def __aiter__(self) -> "ChunkQueue[T]":
        return self

    async def __anext__(self) -> T:
        return await self.next()

    def __len__(self) -> int:
        return len(self._items)
