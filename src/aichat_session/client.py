"""The chat client: one event loop over the transport, one owner of all state.

Every inbound event is handled to completion before the next one. The only
suspension points are the transport itself and the listing fetch, and a
fetched listing is gated against the protection state at the moment it
arrives, not when the fetch started.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .config import MAX_MESSAGE_LENGTH
from .core import ASSISTANT, USER, ChatMessage, Project, Session
from .decoder import MessageDecoder
from .history import normalize_history
from .identity import ProtectionSet, SessionIdentityManager
from .leases import DEFAULT_TIMEOUT, HistoryLoadCoordinator, LeaseKey, LoadStatus
from .listing import (
    find_project,
    find_session,
    listing_changed,
    parse_listing,
    update_session_summary,
)
from .protection import GateDecision, GateResult, SessionProtectionGate
from .transcript import Transcript
from .transport import SnapshotFetcher, Transport

logger = logging.getLogger(__name__)

TRANSCRIPT_EVENTS = frozenset({
    "claude-response", "claude-output", "claude-interactive-prompt",
    "claude-error", "tool_use", "tool_result", "error",
})
BUSY_STATUSES = frozenset({"thinking", "processing"})


def validate_message(text: Any) -> Optional[str]:
    """Return why ``text`` cannot be sent, or None if it can."""
    if not isinstance(text, str) or not text.strip():
        return "Message cannot be empty"
    if len(text) > MAX_MESSAGE_LENGTH:
        return f"Message too long (max {MAX_MESSAGE_LENGTH:,} characters)"
    return None


class ChatClient:
    """Drives one chat view: transcript, session identity, listing, history."""

    def __init__(
        self,
        transport: Transport,
        fetcher: Optional[SnapshotFetcher] = None,
        *,
        history_timeout: float = DEFAULT_TIMEOUT,
        decoder: Optional[MessageDecoder] = None,
        identity: Optional[SessionIdentityManager] = None,
        loads: Optional[HistoryLoadCoordinator] = None,
    ):
        self.transport = transport
        self.fetcher = fetcher
        self.decoder = decoder or MessageDecoder()
        self.identity = identity or SessionIdentityManager(ProtectionSet())
        self.protection = self.identity.protection
        self.gate = SessionProtectionGate(self.protection)
        self.loads = loads or HistoryLoadCoordinator(timeout=history_timeout)
        self.transcript = Transcript()

        self.is_loading = False
        self.is_abortable = False
        self.status: Optional[str] = None
        self.last_gate_result: Optional[GateResult] = None

        self._projects: list[Project] = []
        self._selected_project: Optional[str] = None
        self._selected_session: Optional[str] = None
        self._history_loaded: Optional[LeaseKey] = None
        # Ids aborted locally whose session-aborted reply has not arrived yet.
        self._pending_aborts: list[Optional[str]] = []

        self._handlers = {
            "session-created": self._on_session_created,
            "claude-complete": self._on_turn_finished,
            "session-aborted": self._on_session_aborted,
            "claude-status": self._on_status,
            "session_history": self._on_session_history,
            "projects_updated": self._on_projects_updated,
            "session-summary-updated": self._on_summary_updated,
        }
        transport.add_connection_listener(self._on_connection_change)

    # ── Read-only views ──────────────────────────────────────────────

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self.transcript.messages

    @property
    def projects(self) -> tuple[Project, ...]:
        return tuple(self._projects)

    @property
    def selected_project_name(self) -> Optional[str]:
        return self._selected_project

    @property
    def selected_session_id(self) -> Optional[str]:
        return self._selected_session

    @property
    def selected_project(self) -> Optional[Project]:
        return find_project(self._projects, self._selected_project)

    @property
    def selected_session(self) -> Optional[Session]:
        return find_session(self.selected_project, self._selected_session)

    @property
    def protected_ids(self) -> frozenset[str]:
        return self.protection.snapshot()

    # ── Inbound events ───────────────────────────────────────────────

    async def run(self) -> None:
        """Consume the transport until it closes."""
        async for event in self.transport.events():
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle %s event", event.get("type"))

    def handle_event(self, event: dict) -> None:
        if not isinstance(event, dict):
            logger.debug("Ignoring non-object event %r", event)
            return
        event_type = event.get("type")
        handler = self._handlers.get(event_type)
        if handler is not None:
            handler(event)
        elif event_type in TRANSCRIPT_EVENTS:
            self._on_transcript_event(event)
        else:
            logger.debug("Unhandled event type %s", event_type)

    def _on_transcript_event(self, event: dict) -> None:
        entries = self.transcript.extend(self.decoder.decode(event))
        if event.get("type") == "claude-error":
            self.is_loading = False
            self.is_abortable = False
        logger.debug("%s event produced %d transcript entries", event.get("type"), len(entries))

    def _on_session_created(self, event: dict) -> None:
        session_id = event.get("sessionId")
        if not session_id:
            logger.warning("session-created without sessionId")
            return
        self.identity.confirm_real_id(session_id)

    def _on_turn_finished(self, event: dict) -> None:
        logger.info("Conversation turn finished (%s)", event.get("type"))
        self._finish_turn()

    def _on_session_aborted(self, event: dict) -> None:
        session_id = event.get("sessionId")
        if self._pending_aborts:
            if session_id in self._pending_aborts:
                self._pending_aborts.remove(session_id)
                logger.debug("Abort of %s acknowledged", session_id)
                return
            if session_id is None:
                self._pending_aborts.pop(0)
                logger.debug("Abort acknowledged")
                return
        logger.info("Session %s aborted by the backend", session_id)
        self._finish_turn()
        self._append_interrupted()

    def _on_status(self, event: dict) -> None:
        status = event.get("status")
        data = event.get("data")
        if status is None and isinstance(data, dict):
            status = data.get("status")
        self.status = status
        busy = status in BUSY_STATUSES
        self.is_loading = busy
        self.is_abortable = busy

    def _on_session_history(self, event: dict) -> None:
        key = (
            event.get("projectName") or self._selected_project,
            event.get("sessionId") or self._selected_session,
        )
        self.loads.mark_loaded(key)

        if key != (self._selected_project, self._selected_session):
            logger.debug("History for %s arrived after navigating away, ignoring", key)
            return
        if self._history_loaded == key:
            logger.debug("Duplicate session history for %s, ignoring", key)
            return

        self._history_loaded = key
        messages = normalize_history(event.get("messages"))
        self.transcript.replace(messages)
        self.is_loading = False
        logger.info("Session history loaded for %s: %d messages", key, len(messages))

    def _on_projects_updated(self, event: dict) -> None:
        self.apply_listing(event.get("projects"))

    def _on_summary_updated(self, event: dict) -> None:
        session_id = event.get("sessionId")
        summary = event.get("summary")
        if not session_id or summary is None:
            return
        self._projects = update_session_summary(self._projects, session_id, summary)

    def _on_connection_change(self, connected: bool) -> None:
        logger.info("Transport %s", "connected" if connected else "disconnected")
        if connected and self._selected_session is not None:
            self.load_history()

    # ── Listing ──────────────────────────────────────────────────────

    def apply_listing(self, raw_projects: Any) -> GateResult:
        """Gate an incoming listing and adopt whatever the gate allows."""
        incoming = parse_listing(raw_projects)
        result = self.gate.evaluate(
            self._projects, incoming, self._selected_project, self._selected_session
        )
        self.last_gate_result = result
        if result.decision is GateDecision.REJECT:
            return result

        was_listed = self.selected_session is not None
        if listing_changed(self._projects, result.projects):
            self._projects = result.projects

        # A session that was never listed (just created) is not "removed".
        if was_listed:
            project = self.selected_project
            if project is not None and find_session(project, self._selected_session) is None:
                logger.info("Selected session %s no longer listed", self._selected_session)
                self._selected_session = None
                self._clear_view()
        return result

    async def refresh_listing(self) -> Optional[GateResult]:
        """Fetch a fresh listing and gate it on arrival."""
        if self.fetcher is None:
            return None
        try:
            raw = await self.fetcher.fetch_listing()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to fetch project listing: %s", e)
            return None
        return self.apply_listing(raw)

    # ── Navigation ───────────────────────────────────────────────────

    def select_project(self, project_name: str) -> None:
        self._selected_project = project_name
        self._selected_session = None
        self._clear_view()

    def select_session(self, project_name: str, session_id: str) -> Optional[LoadStatus]:
        """Open an existing session and request its history."""
        if (project_name, session_id) != (self._selected_project, self._selected_session):
            self._selected_project = project_name
            self._selected_session = session_id
            self._clear_view()
        return self.load_history()

    def start_new_session(self, project_name: Optional[str] = None) -> None:
        if project_name is not None:
            self._selected_project = project_name
        self._selected_session = None
        self._clear_view()

    def load_history(self) -> Optional[LoadStatus]:
        if self._selected_project is None or self._selected_session is None:
            return None
        key = (self._selected_project, self._selected_session)
        if self._history_loaded == key:
            return None
        if not self.transport.is_connected:
            logger.warning("Transport not available for loading session %s", key)
            return None

        status = self.loads.request_load(key)
        if status is LoadStatus.STARTED:
            self.is_loading = True
            self.transport.send({
                "type": "load_session",
                "projectName": self._selected_project,
                "sessionId": self._selected_session,
            })
        return status

    def _clear_view(self) -> None:
        self.transcript.clear()
        self.identity.reset()
        if self._selected_session is not None:
            self.identity.adopt(self._selected_session)
        self._history_loaded = None
        self.is_loading = False
        self.is_abortable = False
        self.status = None

    # ── Outbound commands ────────────────────────────────────────────

    def send_user_message(self, text: str) -> Optional[str]:
        """Send a user turn; returns the protected session id, or None if not sent."""
        if self._selected_project is None:
            logger.warning("Cannot send message: no project selected")
            return None
        error = validate_message(text)
        if error:
            logger.error("Message validation failed: %s", error)
            return None
        if not self.transport.is_connected:
            logger.warning("Transport not available, message to %s not sent", self._selected_project)
            return None

        session_id = self.identity.real_id
        active_id = self.identity.begin_new_conversation()
        now = datetime.now(timezone.utc)

        self.transcript.reopen()
        self.transcript.add(ChatMessage(
            id=f"user-{uuid.uuid4().hex[:12]}",
            kind=USER,
            content=text,
            timestamp=now,
        ))
        self.is_loading = True
        self.is_abortable = True

        logger.info(
            "Sending user message (%d chars) to %s/%s",
            len(text), self._selected_project, active_id,
        )
        self.transport.send({
            "type": "user_message",
            "projectName": self._selected_project,
            "sessionId": session_id,
            "message": text,
            "timestamp": now.isoformat(),
        })
        return active_id

    def abort(self) -> bool:
        """Abort the running turn; the local effect matches a completion."""
        if not self.is_abortable:
            return False
        session_id = self.identity.in_flight_id or self.identity.active_id
        logger.info("Aborting session %s by user request", session_id)
        if self.transport.send({"type": "abort-session", "sessionId": session_id}):
            # The backend answers with session-aborted; that reply is not a
            # second abort of whatever turn is running by then.
            self._pending_aborts.append(session_id)
        self._finish_turn()
        self._append_interrupted()
        return True

    def _finish_turn(self) -> None:
        self.identity.finish()
        self.transcript.settle()
        self.is_loading = False
        self.is_abortable = False
        self.status = None
        # A new conversation started from an empty view now has a real id.
        real_id = self.identity.real_id
        if self._selected_session is None and real_id and self._selected_project:
            self._selected_session = real_id
            self._history_loaded = (self._selected_project, real_id)

    def _append_interrupted(self) -> None:
        self.transcript.add(ChatMessage(
            id=f"assistant-{uuid.uuid4().hex[:12]}",
            kind=ASSISTANT,
            content="Session interrupted by user.",
            timestamp=datetime.now(timezone.utc),
        ))
