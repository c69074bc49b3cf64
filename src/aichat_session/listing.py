"""Project/session listing: wire conversion and lookup helpers.

The backend pushes listings as camelCase JSON::

    [{"name": "...", "displayName": "...", "fullPath": "...",
      "sessionMeta": {...},
      "sessions": [{"id": "...", "summary": "...", "messageCount": 4,
                    "lastActivity": "..."}]}]
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from .core import Project, Session

logger = logging.getLogger(__name__)

_SESSION_KEYS = {
    "id", "summary", "title", "messageCount", "lastActivity",
    "created_at", "createdAt", "updated_at", "updatedAt",
}
_PROJECT_KEYS = {"name", "displayName", "fullPath", "sessions", "sessionMeta"}


def parse_session(raw: dict) -> Session:
    """Build a Session from its wire representation."""
    return Session(
        id=str(raw.get("id", "")),
        summary=raw.get("summary") or raw.get("title") or "",
        message_count=_as_int(raw.get("messageCount")),
        last_activity=raw.get("lastActivity"),
        created=raw.get("created_at") or raw.get("createdAt"),
        updated=raw.get("updated_at") or raw.get("updatedAt"),
        extra={k: v for k, v in raw.items() if k not in _SESSION_KEYS},
    )


def parse_project(raw: dict) -> Project:
    """Build a Project from its wire representation."""
    sessions = raw.get("sessions") or []
    return Project(
        name=str(raw.get("name", "")),
        display_name=raw.get("displayName") or raw.get("name", ""),
        full_path=raw.get("fullPath", ""),
        sessions=[parse_session(s) for s in sessions if isinstance(s, dict)],
        session_meta=dict(raw.get("sessionMeta") or {}),
        extra={k: v for k, v in raw.items() if k not in _PROJECT_KEYS},
    )


def parse_listing(raw: Any) -> list[Project]:
    """Parse a full listing, skipping entries that are not objects."""
    if not isinstance(raw, list):
        logger.warning("Ignoring listing of type %s", type(raw).__name__)
        return []
    return [parse_project(p) for p in raw if isinstance(p, dict)]


def session_to_dict(session: Session) -> dict:
    """Convert a Session to its camelCase wire dict."""
    data = dict(session.extra)
    data.update({
        "id": session.id,
        "summary": session.summary,
        "messageCount": session.message_count,
        "lastActivity": session.last_activity,
        "created_at": session.created,
        "updated_at": session.updated,
    })
    return data


def project_to_dict(project: Project) -> dict:
    """Convert a Project to its camelCase wire dict."""
    data = dict(project.extra)
    data.update({
        "name": project.name,
        "displayName": project.display_name,
        "fullPath": project.full_path,
        "sessionMeta": project.session_meta,
        "sessions": [session_to_dict(s) for s in project.sessions],
    })
    return data


def find_project(projects: list[Project], name: Optional[str]) -> Optional[Project]:
    if name is None:
        return None
    return next((p for p in projects if p.name == name), None)


def find_session(project: Optional[Project], session_id: Optional[str]) -> Optional[Session]:
    if project is None or session_id is None:
        return None
    return next((s for s in project.sessions if s.id == session_id), None)


def find_session_in_projects(
    projects: list[Project], session_id: str
) -> Optional[tuple[Project, Session]]:
    """Locate a session across all projects."""
    for project in projects:
        session = find_session(project, session_id)
        if session is not None:
            return project, session
    return None


def update_session_summary(
    projects: list[Project], session_id: str, summary: str
) -> list[Project]:
    """Return a new listing with one session's summary replaced.

    Projects that do not contain the session are returned as-is.
    """
    updated = []
    for project in projects:
        if find_session(project, session_id) is None:
            updated.append(project)
            continue
        sessions = [
            replace(s, summary=summary) if s.id == session_id else s
            for s in project.sessions
        ]
        updated.append(replace(project, sessions=sessions))
    return updated


def listing_changed(previous: list[Project], new: list[Project]) -> bool:
    """Return True if the listings differ in anything the sidebar shows."""
    if len(previous) != len(new):
        return True
    for old, fresh in zip(previous, new):
        if (
            old.name != fresh.name
            or old.display_name != fresh.display_name
            or old.full_path != fresh.full_path
            or old.session_meta != fresh.session_meta
            or old.sessions != fresh.sessions
        ):
            return True
    return False


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
