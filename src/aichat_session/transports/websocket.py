"""WebSocket transport to the assistant backend.

Frames are JSON text objects in both directions. The connection is kept
open by a background task that reconnects with exponential backoff;
inbound events are queued in arrival order across reconnects.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import websockets

from ..transport import Transport

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 10 * 1024 * 1024  # history replays can be large
MAX_RECONNECT_DELAY = 60.0


class WebSocketTransport(Transport):
    """Transport over a single persistent WebSocket."""

    name = "websocket"

    def __init__(self, url: str, reconnect_delay: float = 1.0):
        super().__init__()
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._outbox: asyncio.Queue = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._inbox.put_nowait(None)

    def send(self, event: dict) -> bool:
        if not self.is_connected:
            logger.warning("WebSocket not available, dropping %s", event.get("type"))
            return False
        self._outbox.put_nowait(json.dumps(event))
        return True

    async def events(self) -> AsyncIterator[dict]:
        while True:
            event = await self._inbox.get()
            if event is None:
                return
            yield event

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while not self._closing:
            try:
                logger.info("Connecting to WebSocket at %s", self.url)
                async with websockets.connect(self.url, max_size=MAX_FRAME_SIZE) as ws:
                    self._set_socket(ws)
                    delay = self.reconnect_delay
                    writer = asyncio.create_task(self._write(ws))
                    try:
                        async for raw in ws:
                            self._receive(raw)
                    finally:
                        writer.cancel()
                logger.warning("WebSocket connection closed")
            except websockets.exceptions.ConnectionClosed as e:
                logger.warning("WebSocket connection closed: %s", e)
            except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as e:
                logger.warning("WebSocket error: %s", e)
            finally:
                self._set_socket(None)

            if self._closing:
                break
            logger.info("Reconnecting in %.1fs", delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_RECONNECT_DELAY)

    async def _write(self, ws) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await ws.send(frame)
            except websockets.exceptions.ConnectionClosed:
                # Keep it for the next connection.
                self._outbox.put_nowait(frame)
                return

    def _receive(self, raw) -> None:
        try:
            event = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug("Skipping malformed frame: %s", e)
            return
        if not isinstance(event, dict):
            logger.debug("Skipping non-object frame of type %s", type(event).__name__)
            return
        self._inbox.put_nowait(event)

    def _set_socket(self, ws) -> None:
        was_connected = self._ws is not None
        self._ws = ws
        if was_connected != (ws is not None):
            self._notify_connection(ws is not None)
