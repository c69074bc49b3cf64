"""Session identity and the protected-session set.

A brand-new conversation has no server id until the backend answers with
``session-created``. Until then the client works under a temporary
``new-session-<ms>-<rand>`` id, and that id is what keeps background
listing refreshes from disturbing the conversation. Swapping it for the
real id happens in one assignment so no observer ever sees the
conversation unprotected.
"""

import logging
import random
import string
import time
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

TEMPORARY_PREFIX = "new-session-"

_ALPHABET = string.ascii_lowercase + string.digits


def is_temporary_session_id(session_id: Optional[str]) -> bool:
    return bool(session_id) and session_id.startswith(TEMPORARY_PREFIX)


def generate_temporary_session_id(clock: Callable[[], float] = time.time) -> str:
    """Return ``new-session-<epoch ms>-<6 random chars>``."""
    suffix = "".join(random.choices(_ALPHABET, k=6))
    return f"{TEMPORARY_PREFIX}{int(clock() * 1000)}-{suffix}"


class ProtectionSet:
    """Ids of sessions with a conversation in flight.

    The membership is an immutable frozenset that is swapped wholesale on
    every change; listeners receive each new snapshot.
    """

    def __init__(self):
        self._ids: frozenset[str] = frozenset()
        self._listeners: list[Callable[[frozenset[str]], None]] = []

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def snapshot(self) -> frozenset[str]:
        return self._ids

    def has_temporary(self) -> bool:
        return any(is_temporary_session_id(sid) for sid in self._ids)

    def subscribe(self, listener: Callable[[frozenset[str]], None]) -> None:
        self._listeners.append(listener)

    def add(self, session_id: str) -> None:
        if session_id and session_id not in self._ids:
            self._set(self._ids | {session_id})

    def discard(self, session_id: Optional[str]) -> None:
        if session_id in self._ids:
            self._set(self._ids - {session_id})

    def replace_temporary(self, real_id: str) -> None:
        """Drop every temporary id and add ``real_id`` in a single update."""
        kept = {sid for sid in self._ids if not is_temporary_session_id(sid)}
        kept.add(real_id)
        self._set(frozenset(kept))

    def _set(self, ids: frozenset[str]) -> None:
        self._ids = ids
        for listener in self._listeners:
            listener(ids)


class SessionIdentityManager:
    """Owns the real/temporary session id of the open conversation."""

    def __init__(
        self,
        protection: Optional[ProtectionSet] = None,
        id_factory: Callable[[], str] = generate_temporary_session_id,
    ):
        self.protection = protection if protection is not None else ProtectionSet()
        self._id_factory = id_factory
        self._real_id: Optional[str] = None
        self._temporary_id: Optional[str] = None
        # The id protected by the last send; survives reset() so that a
        # completion arriving after navigation still deprotects it.
        self._in_flight: Optional[str] = None

    @property
    def real_id(self) -> Optional[str]:
        return self._real_id

    @property
    def temporary_id(self) -> Optional[str]:
        return self._temporary_id

    @property
    def active_id(self) -> Optional[str]:
        return self._real_id or self._temporary_id

    @property
    def in_flight_id(self) -> Optional[str]:
        return self._in_flight

    def is_protected(self, session_id: Optional[str]) -> bool:
        return session_id in self.protection

    def adopt(self, session_id: Optional[str]) -> None:
        """Take over the id of an existing session the user opened."""
        self._real_id = session_id
        self._temporary_id = None

    def begin_new_conversation(self) -> str:
        """Return the active id, minting a temporary one if needed, and protect it."""
        active = self.active_id
        if active is None:
            active = self._temporary_id = self._id_factory()
            logger.info("Created temporary session id %s", active)
        self._in_flight = active
        self.protection.add(active)
        return active

    def confirm_real_id(self, real_id: str) -> None:
        """Handle ``session-created``: the backend assigned ``real_id``.

        The temporary id is cleared and, within the protection set, every
        temporary id is replaced by ``real_id`` in one step. If the user
        navigated away while the new conversation was still unnamed, the
        current identity is left alone and only protection is updated.
        """
        if not real_id:
            return
        previous = self._temporary_id
        navigated_away = previous is None and is_temporary_session_id(self._in_flight)
        if not navigated_away:
            self._real_id = real_id
            self._temporary_id = None
        if previous is not None or self.protection.has_temporary():
            logger.info("Session created, replacing temporary id %s with %s", previous, real_id)
            self.protection.replace_temporary(real_id)
        if is_temporary_session_id(self._in_flight):
            self._in_flight = real_id

    def finish(self, session_id: Optional[str] = None) -> Optional[str]:
        """Deprotect a conversation on completion or abort.

        Without ``session_id`` the in-flight (else active) id is used. A stale
        temporary id that was already swapped for a real one is a no-op.
        """
        target = session_id or self._in_flight or self.active_id
        if target is not None:
            self.protection.discard(target)
        if target == self._in_flight:
            self._in_flight = None
        return target

    def reset(self) -> None:
        """Forget both ids on navigation; protection is left to finish()."""
        self._real_id = None
        self._temporary_id = None
