"""
Per-connection state: the bounded delivery queue and the Connection record.
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Generic, TypeVar
from uuid import uuid4

from ..core.auth import Identity

T = TypeVar("T")


class QueueClosed(Exception):
    """Raised by ``BoundedQueue.get`` once the queue has been closed."""
    pass


class BoundedQueue(Generic[T]):
    """
    Fixed-capacity FIFO with a non-blocking producer side.

    One producer calls ``try_put``; one consumer awaits ``get``. ``try_put``
    never waits: it returns False when the queue is full or closed, and the
    producer decides what a refusal means (drop the item or evict the
    consumer). ``close`` discards pending items and wakes the consumer, whose
    ``get`` then raises ``QueueClosed``.
    """

    def __init__(self, maxsize: int):
        if maxsize <= 0:
            raise ValueError("maxsize must be positive")
        self._maxsize = maxsize
        self._items: Deque[T] = deque()
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self._maxsize

    def try_put(self, item: T) -> bool:
        """Enqueue without waiting. Returns False if full or closed."""
        if self._closed or self.full():
            return False
        self._items.append(item)
        self._ready.set()
        return True

    async def get(self) -> T:
        """Wait for the next item in insertion order."""
        while True:
            if self._closed:
                raise QueueClosed()
            if self._items:
                return self._items.popleft()
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Close the queue. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._items.clear()
        self._ready.set()


@dataclass
class Connection:
    """One open event stream for an authenticated identity."""
    identity: Identity
    queue: BoundedQueue[str]
    id: str = field(default_factory=lambda: str(uuid4()))
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def closed(self) -> bool:
        return self.queue.closed

    def close(self) -> None:
        self.queue.close()
