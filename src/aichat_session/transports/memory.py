"""In-process transport with a replayable inbox."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..transport import Transport

logger = logging.getLogger(__name__)


class MemoryTransport(Transport):
    """Transport that keeps everything in memory.

    Inbound events are pushed with :meth:`push` and kept in ``received`` so
    a run can be replayed; outbound events are recorded in ``sent``.
    """

    name = "memory"

    def __init__(self, connected: bool = True):
        super().__init__()
        self._connected = connected
        self._queue: Optional[asyncio.Queue] = None
        self._closed = False
        self.sent: list[dict] = []
        self.received: list[dict] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> None:
        if connected != self._connected:
            self._connected = connected
            self._notify_connection(connected)

    async def connect(self) -> None:
        self._closed = False
        self.set_connected(True)

    async def close(self) -> None:
        self._closed = True
        self.set_connected(False)
        if self._queue is not None:
            self._queue.put_nowait(None)

    def send(self, event: dict) -> bool:
        if not self._connected:
            logger.warning("Transport not connected, dropping %s", event.get("type"))
            return False
        self.sent.append(event)
        return True

    def push(self, event: dict) -> None:
        """Deliver an inbound event."""
        self.received.append(event)
        if self._queue is not None:
            self._queue.put_nowait(event)

    def replay(self) -> list[dict]:
        """Return every event received so far, in order."""
        return list(self.received)

    async def events(self) -> AsyncIterator[dict]:
        if self._queue is None:
            self._queue = asyncio.Queue()
            # Anything pushed before iteration started is delivered first.
            for event in self.received:
                self._queue.put_nowait(event)
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
