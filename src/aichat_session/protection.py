"""Gate background listing pushes against an in-flight conversation.

A full project/session listing can arrive at any time, from the
``projects_updated`` push or from a periodic fetch. While a conversation is
running, replacing the selected session's entry would visibly reset the open
chat, so the gate decides between applying the listing, applying it with the
selected session pinned to its cached copy, or rejecting it.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .core import Project, Session
from .identity import ProtectionSet
from .listing import find_project, find_session

logger = logging.getLogger(__name__)


class GateDecision(str, Enum):
    """Outcome of gating a listing.

    A protected session whose entry changed in the incoming listing has its
    replacement rejected while siblings are still merged; that case is
    reported as APPLY_ADDITIVE_ONLY with ``pinned_session_changed`` set, since
    the adopted listing is the same as for an unchanged session. REJECT means
    the whole listing is discarded.
    """

    APPLY = "apply"
    APPLY_ADDITIVE_ONLY = "applyAdditiveOnly"
    REJECT = "reject"


@dataclass
class GateResult:
    decision: GateDecision
    projects: list[Project]  # the listing to adopt
    reason: str = ""
    pinned_session_changed: bool = False


def session_view_key(session: Session) -> tuple:
    """Fields of a session that affect the open chat view."""
    return (session.id, session.summary, session.message_count)


class SessionProtectionGate:
    """Decides how an incoming listing may be merged.

    Reads the protection set at call time, so a fetch started before a send
    is still gated against the state at the moment its result arrives.
    """

    def __init__(self, protection: ProtectionSet):
        self.protection = protection

    def has_active_session(self, selected_session_id: Optional[str]) -> bool:
        """True if the selected session, or any unnamed new session, is protected.

        A temporary id anywhere in the set counts even when it is not the
        selected session: its real id is not known yet, so it cannot be
        matched against the listing.
        """
        if not len(self.protection):
            return False
        if selected_session_id is not None and selected_session_id in self.protection:
            return True
        return self.protection.has_temporary()

    def evaluate(
        self,
        current: list[Project],
        incoming: list[Project],
        selected_project: Optional[str],
        selected_session: Optional[str],
    ) -> GateResult:
        if not self.has_active_session(selected_session):
            return GateResult(GateDecision.APPLY, incoming)

        if selected_project is None or selected_session is None:
            # Nothing on screen is backed by a listing entry yet.
            return GateResult(GateDecision.APPLY, incoming, reason="no selected session")

        current_project = find_project(current, selected_project)
        incoming_project = find_project(incoming, selected_project)
        current_session = find_session(current_project, selected_session)
        incoming_session = find_session(incoming_project, selected_session)

        if current_session is None or incoming_session is None:
            logger.warning(
                "Rejecting listing: selected %s/%s missing from %s listing",
                selected_project, selected_session,
                "current" if current_session is None else "incoming",
            )
            return GateResult(GateDecision.REJECT, current, reason="selected session missing")

        changed = session_view_key(current_session) != session_view_key(incoming_session)
        if changed:
            logger.info(
                "Selected session %s changed during conversation; keeping cached entry",
                selected_session,
            )
        merged = pin_session(incoming, selected_project, current_session)
        return GateResult(
            GateDecision.APPLY_ADDITIVE_ONLY,
            merged,
            reason="selected session changed" if changed else "additive",
            pinned_session_changed=changed,
        )


def pin_session(projects: list[Project], project_name: str, session: Session) -> list[Project]:
    """Return ``projects`` with ``session`` put back in place of its namesake."""
    merged = []
    for project in projects:
        if project.name != project_name:
            merged.append(project)
            continue
        sessions = [session if s.id == session.id else s for s in project.sessions]
        merged.append(replace(project, sessions=sessions))
    return merged
