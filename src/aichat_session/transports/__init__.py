"""Concrete transports and the listing fetcher."""

from ..transport import SnapshotFetcher, Transport
from .http import HttpSnapshotFetcher
from .memory import MemoryTransport
from .websocket import WebSocketTransport


def create_transport(url: str, reconnect_delay: float = 1.0) -> Transport:
    """Pick a transport for ``url``: ``memory://`` or a ws(s) URL."""
    if url.startswith("memory://"):
        return MemoryTransport()
    return WebSocketTransport(url, reconnect_delay=reconnect_delay)


def create_fetcher(api_url: str) -> SnapshotFetcher:
    return HttpSnapshotFetcher(api_url)


__all__ = [
    "HttpSnapshotFetcher",
    "MemoryTransport",
    "WebSocketTransport",
    "create_fetcher",
    "create_transport",
]
