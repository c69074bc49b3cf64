"""FastAPI surface over a running ChatClient.

Exposes read-only views of the transcript, listing and session state, plus
the user commands (send, abort, select, refresh).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import Response

from .client import ChatClient, validate_message
from .config import get_api_url, get_history_timeout, get_reconnect_delay, get_ws_url
from .export import message_to_dict, transcript_to_json, transcript_to_markdown
from .listing import project_to_dict
from .transports import create_fetcher, create_transport

logger = logging.getLogger(__name__)

# Client instance (built on first use)
_client: Optional[ChatClient] = None


def _get_client() -> ChatClient:
    """Lazily build and cache the client from the environment."""
    global _client
    if _client is None:
        _client = ChatClient(
            create_transport(get_ws_url(), reconnect_delay=get_reconnect_delay()),
            create_fetcher(get_api_url()),
            history_timeout=get_history_timeout(),
        )
        logger.info("Created chat client for %s", get_ws_url())
    return _client


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = _get_client()
    await client.transport.connect()
    runner = asyncio.create_task(client.run())
    await client.refresh_listing()
    try:
        yield
    finally:
        await client.transport.close()
        runner.cancel()
        try:
            await runner
        except asyncio.CancelledError:
            pass
        if client.fetcher is not None:
            await client.fetcher.aclose()


app = FastAPI(title="aichat-session", version="0.1.0", lifespan=lifespan)


def _state_to_dict(client: ChatClient) -> dict:
    return {
        "connected": client.transport.is_connected,
        "loading": client.is_loading,
        "abortable": client.is_abortable,
        "status": client.status,
        "selected_project": client.selected_project_name,
        "selected_session": client.selected_session_id,
        "session_id": client.identity.real_id,
        "temporary_session_id": client.identity.temporary_id,
        "protected_sessions": sorted(client.protected_ids),
        "message_count": len(client.transcript),
        "orphaned_results": client.transcript.orphan_count,
    }


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/state")
async def get_state():
    """Return the session state of the chat view."""
    return _state_to_dict(_get_client())


@app.get("/api/messages")
async def get_messages():
    """Return the current transcript."""
    client = _get_client()
    return {
        "session_id": client.identity.active_id,
        "messages": [message_to_dict(m) for m in client.messages],
    }


@app.get("/api/projects")
async def get_projects():
    """Return the project/session listing as currently held."""
    projects = _get_client().projects
    return {
        "total": len(projects),
        "projects": [project_to_dict(p) for p in projects],
    }


@app.get("/api/export")
async def export_transcript(format: str = Query("md", description="Export format: md or json")):
    """Export the current transcript as Markdown or JSON."""
    client = _get_client()
    session = client.selected_session
    title = session.summary if session and session.summary else "Chat transcript"
    safe_title = "".join(c if c.isalnum() or c in "-_ " else "" for c in title)[:50] or "transcript"

    if format == "json":
        content = transcript_to_json(client.messages, client.identity.active_id, client.selected_project_name)
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
        )
    content = transcript_to_markdown(client.messages, title)
    return Response(
        content=content,
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
    )


@app.post("/api/messages")
async def send_message(message: str = Body(..., embed=True)):
    """Send a user message in the selected project."""
    client = _get_client()
    if client.selected_project_name is None:
        raise HTTPException(status_code=400, detail="No project selected")
    error = validate_message(message)
    if error:
        raise HTTPException(status_code=400, detail=error)
    if not client.transport.is_connected:
        raise HTTPException(status_code=503, detail="Transport not connected")

    session_id = client.send_user_message(message)
    if session_id is None:
        raise HTTPException(status_code=503, detail="Message not sent")
    return {"session_id": session_id}


@app.post("/api/abort")
async def abort_session():
    """Abort the running turn, if any."""
    return {"aborted": _get_client().abort()}


@app.post("/api/select")
async def select(
    project_name: str = Body(..., embed=True, alias="projectName"),
    session_id: Optional[str] = Body(None, embed=True, alias="sessionId"),
):
    """Switch to a project, or to one of its sessions."""
    client = _get_client()
    if session_id:
        status = client.select_session(project_name, session_id)
    else:
        client.start_new_session(project_name)
        status = None
    state = _state_to_dict(client)
    state["history"] = status.value if status is not None else None
    return state


@app.post("/api/refresh")
async def refresh_listing():
    """Fetch the listing now and run it through session protection."""
    result = await _get_client().refresh_listing()
    if result is None:
        raise HTTPException(status_code=502, detail="Listing not available")
    return {"decision": result.decision.value, "reason": result.reason}
