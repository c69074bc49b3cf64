"""Tests for the FastAPI server."""

import pytest
from httpx import ASGITransport, AsyncClient

import aichat_session.server as srv
from aichat_session.server import app

PROJECT = "-Users-test-dev-myapp"


@pytest.fixture(autouse=True)
def use_test_client(client):
    """Point the server at the in-memory client for each test."""
    srv._client = client
    yield
    srv._client = None


@pytest.mark.asyncio
async def test_get_state(client):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        resp = await http.get("/api/state")
        assert resp.status_code == 200
        data = resp.json()
        assert data["connected"] is True
        assert data["selected_project"] is None
        assert data["protected_sessions"] == []


@pytest.mark.asyncio
async def test_send_message_flow(client, transport):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        resp = await http.post("/api/messages", json={"message": "fix bug"})
        assert resp.status_code == 400

        await http.post("/api/select", json={"projectName": PROJECT})
        resp = await http.post("/api/messages", json={"message": "fix bug"})
        assert resp.status_code == 200
        session_id = resp.json()["session_id"]
        assert session_id.startswith("new-session-")

        state = (await http.get("/api/state")).json()
        assert state["protected_sessions"] == [session_id]
        assert state["abortable"] is True

        resp = await http.get("/api/messages")
        messages = resp.json()["messages"]
        assert [m["kind"] for m in messages] == ["user"]

        resp = await http.post("/api/abort")
        assert resp.json() == {"aborted": True}
        assert transport.sent[-1] == {"type": "abort-session", "sessionId": session_id}
        assert (await http.get("/api/state")).json()["protected_sessions"] == []


@pytest.mark.asyncio
async def test_send_message_rejected(client, transport):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        await http.post("/api/select", json={"projectName": PROJECT})
        resp = await http.post("/api/messages", json={"message": "   "})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Message cannot be empty"

        transport.set_connected(False)
        resp = await http.post("/api/messages", json={"message": "hello"})
        assert resp.status_code == 503


@pytest.mark.asyncio
async def test_select_session_and_projects(client, transport, raw_listing):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        resp = await http.post("/api/refresh")
        assert resp.json() == {"decision": "apply", "reason": ""}

        resp = await http.get("/api/projects")
        data = resp.json()
        assert data["total"] == 2
        assert data["projects"][0]["sessions"][0]["id"] == "abc123"

        resp = await http.post("/api/select", json={"projectName": PROJECT, "sessionId": "abc123"})
        data = resp.json()
        assert data["history"] == "started"
        assert data["selected_session"] == "abc123"
        assert transport.sent[-1]["type"] == "load_session"


@pytest.mark.asyncio
async def test_refresh_without_fetcher(client):
    client.fetcher = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        resp = await http.post("/api/refresh")
        assert resp.status_code == 502


@pytest.mark.asyncio
async def test_export(client):
    client.select_project(PROJECT)
    client.handle_event({"type": "claude-output", "data": "Hello there"})
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        resp = await http.get("/api/export?format=md")
        assert resp.status_code == 200
        assert "text/markdown" in resp.headers["content-type"]
        assert "Hello there" in resp.text

        resp = await http.get("/api/export?format=json")
        assert resp.status_code == 200
        data = resp.json()
        assert data["session"]["project"] == PROJECT
        assert data["messages"][0]["content"] == "Hello there"
