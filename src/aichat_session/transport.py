"""Abstract collaborators: the event transport and the listing fetcher."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

ConnectionListener = Callable[[bool], None]


class Transport(ABC):
    """Base class for the single ordered message channel to the backend.

    Implementations deliver inbound events in arrival order and accept
    outbound events without blocking the caller.
    """

    name: str  # "websocket", "memory"

    def __init__(self):
        self._listeners: list[ConnectionListener] = []

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Return True if a send would currently reach the backend."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel (and keep it open, reconnecting as needed)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and stop reconnecting."""
        ...

    @abstractmethod
    def send(self, event: dict) -> bool:
        """Queue ``event`` for delivery; return False if it was dropped."""
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[dict]:
        """Iterate inbound events in order."""
        ...

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        self._listeners.append(listener)

    def _notify_connection(self, connected: bool) -> None:
        for listener in self._listeners:
            listener(connected)


class SnapshotFetcher(ABC):
    """Fetches the full project/session listing on demand."""

    @abstractmethod
    async def fetch_listing(self) -> list[dict]:
        """Return the raw listing as sent by the backend."""
        ...

    async def aclose(self) -> None:
        """Release any held connections."""
