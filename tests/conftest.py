"""Shared test fixtures for aichat-session."""

from datetime import datetime, timezone

import pytest

from aichat_session.client import ChatClient
from aichat_session.decoder import MessageDecoder
from aichat_session.leases import HistoryLoadCoordinator
from aichat_session.transports import MemoryTransport

FIXED_NOW = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticFetcher:
    """Listing fetcher that returns whatever the test put in ``listing``."""

    def __init__(self, listing=None, error=None):
        self.listing = listing
        self.error = error
        self.calls = 0
        self.closed = False

    async def fetch_listing(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.listing

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def decoder():
    return MessageDecoder(clock=lambda: FIXED_NOW)


@pytest.fixture
def raw_listing():
    """A listing as pushed by the backend in ``projects_updated``."""
    return [
        {
            "name": "-Users-test-dev-myapp",
            "displayName": "myapp",
            "fullPath": "/Users/test/dev/myapp",
            "sessionMeta": {"hasMore": False, "total": 2},
            "sessions": [
                {
                    "id": "abc123",
                    "summary": "Fix auth bug",
                    "messageCount": 4,
                    "lastActivity": "2025-01-15T10:00:00Z",
                },
                {
                    "id": "def456",
                    "summary": "Add dark mode",
                    "messageCount": 12,
                    "lastActivity": "2025-01-14T09:00:00Z",
                },
            ],
        },
        {
            "name": "-Users-test-dev-other",
            "displayName": "other",
            "fullPath": "/Users/test/dev/other",
            "sessions": [
                {"id": "ghi789", "summary": "Write docs", "messageCount": 2},
            ],
        },
    ]


@pytest.fixture
def transport():
    return MemoryTransport()


@pytest.fixture
def fetcher(raw_listing):
    return StaticFetcher(raw_listing)


@pytest.fixture
def loads(clock):
    return HistoryLoadCoordinator(timeout=30.0, clock=clock)


@pytest.fixture
def client(transport, fetcher, decoder, loads):
    return ChatClient(transport, fetcher, decoder=decoder, loads=loads)
