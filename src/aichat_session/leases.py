"""Deduplicate and time-bound session history requests.

Opening a session sends ``load_session``; the reply may take a while and
the request can be triggered again meanwhile (reconnects, repeated
selection). A lease per ``(project, session)`` suppresses the duplicates, and
an expiry timer frees the key if the history never arrives.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

LeaseKey = tuple[str, str]  # (project name, session id)


class LoadStatus(str, Enum):
    STARTED = "started"
    ALREADY_IN_FLIGHT = "alreadyInFlight"


@dataclass
class HistoryLoadLease:
    key: LeaseKey
    started_at: float
    timeout: float
    handle: Optional[asyncio.TimerHandle] = None

    def expired(self, now: float) -> bool:
        return now - self.started_at >= self.timeout

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class HistoryLoadCoordinator:
    """At most one live lease per key.

    Expiry is enforced twice: by a timer on the running event loop, and by
    comparing the lease age on the next request, so it also works when no
    loop is running.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._leases: dict[LeaseKey, HistoryLoadLease] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._leases

    def is_loading(self, key: LeaseKey) -> bool:
        lease = self._leases.get(key)
        return lease is not None and not lease.expired(self._clock())

    def request_load(self, key: LeaseKey, timeout: Optional[float] = None) -> LoadStatus:
        """Start a lease for ``key`` unless a live one exists."""
        now = self._clock()
        existing = self._leases.get(key)
        if existing is not None:
            if not existing.expired(now):
                logger.debug(
                    "History for %s already loading (%.1fs), ignoring duplicate request",
                    key, now - existing.started_at,
                )
                return LoadStatus.ALREADY_IN_FLIGHT
            logger.warning(
                "Clearing stale history lease for %s after %.1fs", key, now - existing.started_at
            )
            self._evict(key)

        lease = HistoryLoadLease(key=key, started_at=now, timeout=self.timeout if timeout is None else timeout)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            lease.handle = loop.call_later(lease.timeout, self._expire, lease)
        self._leases[key] = lease
        logger.info("Loading session history for %s", key)
        return LoadStatus.STARTED

    def mark_loaded(self, key: LeaseKey) -> bool:
        """Release the lease early; returns False if none was held."""
        lease = self._leases.get(key)
        if lease is None:
            return False
        self._evict(key)
        logger.debug("History for %s loaded in %.2fs", key, self._clock() - lease.started_at)
        return True

    def clear(self) -> None:
        for key in list(self._leases):
            self._evict(key)

    def _expire(self, lease: HistoryLoadLease) -> None:
        # A newer lease may hold the key by now; only evict our own.
        if self._leases.get(lease.key) is lease:
            logger.warning("History load for %s timed out after %.1fs", lease.key, lease.timeout)
            del self._leases[lease.key]
        lease.handle = None

    def _evict(self, key: LeaseKey) -> None:
        lease = self._leases.pop(key, None)
        if lease is not None:
            lease.cancel()
