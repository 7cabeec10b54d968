"""Channel and source contracts between network read loops and the reconciler.

Producers never block: ``offer()`` drops and counts when the buffer is full so
a slow consumer cannot stall a websocket read loop (which would skew receipt
timestamps). The reconciler is the only consumer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, Protocol, TypeVar

from relay_bench.models import Observation, StreamKind

log = logging.getLogger("rb.streams")

T = TypeVar("T")

# Large enough that bursts never reach the drop path in practice
OBSERVATION_BUFFER_SIZE = 8192

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised by ``get()`` once a closed channel has been drained."""


class ConnectivityError(Exception):
    """A source could not establish its stream."""


class ObservationChannel(Generic[T]):
    def __init__(self, name: str, maxsize: int = OBSERVATION_BUFFER_SIZE):
        self.name = name
        self.maxsize = maxsize
        # Unbounded queue so the close marker always fits; the bound is
        # enforced in offer().
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._drop_count = 0

    def offer(self, item: T) -> bool:
        """Enqueue without blocking. Returns False if dropped."""
        if self._closed:
            return False
        if self.maxsize > 0 and self._queue.qsize() >= self.maxsize:
            self._drop_count += 1
            if self._drop_count % 100 == 1:
                log.warning("CHANNEL_FULL │ %s dropped %d items total", self.name, self._drop_count)
            return False
        self._queue.put_nowait(item)
        return True

    async def get(self) -> T:
        if self._closed and self._queue.empty():
            raise ChannelClosed(self.name)
        item = await self._queue.get()
        if item is _CLOSED:
            raise ChannelClosed(self.name)
        return item

    def close(self) -> None:
        """Stop accepting items. Buffered items are still delivered first."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drop_count(self) -> int:
        return self._drop_count

    def qsize(self) -> int:
        """Buffered items, excluding the close marker."""
        n = self._queue.qsize()
        return n - 1 if self._closed and n > 0 else n


class ObservationSource(Protocol):
    """Capability set shared by every feed implementation."""

    name: str

    async def connect(self) -> None:
        """Establish the first connection. Raises ConnectivityError."""
        ...

    def subscribe_observations(self, kind: StreamKind) -> ObservationChannel[Observation]:
        ...

    async def close(self) -> None:
        ...

    @property
    def stats(self) -> dict:
        """Counters for the run summary: messages, reconnects, parse_errors, dropped."""
        ...
