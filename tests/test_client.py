"""End-to-end tests of the chat client over an in-memory transport."""

import asyncio
import re

import httpx
import pytest

from aichat_session.client import validate_message
from aichat_session.core import ASSISTANT, TOOL_USE, USER
from aichat_session.leases import LoadStatus
from aichat_session.protection import GateDecision

PROJECT = "-Users-test-dev-myapp"


def assistant_event(*blocks):
    return {
        "type": "claude-response",
        "data": {"type": "message", "message": {"role": "assistant", "content": list(blocks)}},
    }


def tool_result_event(tool_use_id, content):
    return {
        "type": "claude-response",
        "data": {"message": {"role": "user", "content": [
            {"type": "tool_result", "tool_use_id": tool_use_id, "content": content},
        ]}},
    }


class TestValidateMessage:
    def test_valid(self):
        assert validate_message("fix bug") is None

    def test_empty(self):
        assert validate_message("   ") == "Message cannot be empty"
        assert validate_message(None) == "Message cannot be empty"

    def test_too_long(self):
        assert "too long" in validate_message("x" * 50_001)


class TestNewConversation:
    def test_full_turn(self, client, transport, raw_listing):
        client.apply_listing(raw_listing)
        client.select_project(PROJECT)

        active = client.send_user_message("fix bug")

        assert re.fullmatch(r"new-session-\d+-\w+", active)
        assert client.protected_ids == {active}
        assert client.is_loading and client.is_abortable
        sent = transport.sent[-1]
        assert sent["type"] == "user_message"
        assert sent["projectName"] == PROJECT
        assert sent["sessionId"] is None
        assert sent["message"] == "fix bug"

        client.handle_event({"type": "session-created", "sessionId": "abc999"})
        assert client.protected_ids == {"abc999"}

        client.handle_event(assistant_event(
            {"type": "text", "text": "Reading"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "/a"}},
        ))
        client.handle_event(tool_result_event("t1", "body"))
        client.handle_event({"type": "claude-complete", "exitCode": 0})

        assert [m.kind for m in client.messages] == [USER, ASSISTANT, TOOL_USE]
        assert client.messages[2].tool_result == "body"
        assert client.protected_ids == frozenset()
        assert not client.is_loading
        assert client.selected_session_id == "abc999"

    def test_second_message_resumes_real_session(self, client, transport):
        client.select_project(PROJECT)
        client.send_user_message("one")
        client.handle_event({"type": "session-created", "sessionId": "abc999"})
        client.handle_event({"type": "claude-complete"})

        assert client.send_user_message("two") == "abc999"
        assert transport.sent[-1]["sessionId"] == "abc999"

    def test_listing_push_during_conversation(self, client, raw_listing):
        client.apply_listing(raw_listing)
        client.select_session(PROJECT, "abc123")
        client.handle_event({"type": "session_history", "projectName": PROJECT,
                             "sessionId": "abc123", "messages": []})
        client.send_user_message("continue")

        raw_listing[0]["sessions"][0]["messageCount"] = 6
        raw_listing[0]["sessions"].append({"id": "zzz", "summary": "sibling", "messageCount": 1})
        client.handle_event({"type": "projects_updated", "projects": raw_listing})

        result = client.last_gate_result
        assert result.decision is GateDecision.APPLY_ADDITIVE_ONLY
        assert client.selected_session.message_count == 4
        assert [s.id for s in client.selected_project.sessions][-1] == "zzz"

    def test_unlisted_new_session_survives_listing(self, client, raw_listing):
        client.apply_listing(raw_listing)
        client.select_project(PROJECT)
        client.send_user_message("hi")
        client.handle_event({"type": "session-created", "sessionId": "fresh"})
        client.handle_event({"type": "claude-complete"})

        client.apply_listing(raw_listing)

        assert client.selected_session_id == "fresh"
        assert len(client.messages) == 1


class TestSendGuards:
    def test_no_project(self, client, transport):
        assert client.send_user_message("hi") is None
        assert transport.sent == []

    def test_invalid_text(self, client, transport):
        client.select_project(PROJECT)
        assert client.send_user_message("") is None
        assert transport.sent == []

    def test_disconnected_send_has_no_side_effects(self, client, transport):
        client.select_project(PROJECT)
        transport.set_connected(False)
        assert client.send_user_message("hi") is None
        assert client.messages == ()
        assert client.protected_ids == frozenset()


class TestAbort:
    def test_abort_matches_completion(self, client, transport):
        client.select_project(PROJECT)
        client.send_user_message("long task")
        client.handle_event({"type": "session-created", "sessionId": "abc999"})
        client.handle_event(assistant_event(
            {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "sleep 100"}},
        ))

        assert client.abort() is True
        assert transport.sent[-1] == {"type": "abort-session", "sessionId": "abc999"}
        assert client.protected_ids == frozenset()
        assert not client.is_abortable
        assert [m.kind for m in client.messages] == [USER, TOOL_USE, ASSISTANT]
        assert client.messages[-1].content == "Session interrupted by user."

        # A late result after the abort changes nothing.
        client.handle_event(tool_result_event("t1", "late"))
        assert client.transcript.find("t1").tool_result is None
        assert len(client.messages) == 3

    @pytest.mark.parametrize("reply", [
        {"type": "session-aborted", "sessionId": "abc123", "success": True},
        {"type": "session-aborted"},
    ])
    def test_abort_reply_does_not_end_next_turn(self, client, reply):
        client.select_session(PROJECT, "abc123")
        client.send_user_message("first")
        client.abort()
        client.send_user_message("second")
        assert client.protected_ids == {"abc123"}

        client.handle_event(reply)

        assert client.protected_ids == {"abc123"}
        assert client.is_abortable
        assert [m.content for m in client.messages].count("Session interrupted by user.") == 1

        client.handle_event({"type": "claude-complete"})
        assert client.protected_ids == frozenset()

    def test_backend_abort_finishes_turn(self, client):
        client.select_session(PROJECT, "abc123")
        client.send_user_message("first")

        client.handle_event({"type": "session-aborted", "sessionId": "abc123", "success": True})

        assert client.protected_ids == frozenset()
        assert not client.is_loading and not client.is_abortable
        assert client.messages[-1].kind == ASSISTANT
        assert client.messages[-1].content == "Session interrupted by user."

    def test_abort_when_idle(self, client):
        assert client.abort() is False


class TestRedelivery:
    def test_same_events_decoded_twice(self, client):
        client.select_project(PROJECT)
        reply = assistant_event(
            {"type": "text", "text": "Hi"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "/a"}},
        )
        result = tool_result_event("t1", "body")

        for event in (reply, result, reply, result):
            client.handle_event(event)

        # Text entries get fresh ids each time; tool entries are keyed by the call id.
        assert [m.kind for m in client.messages].count(ASSISTANT) == 2
        tool_entries = [m for m in client.messages if m.id == "t1"]
        assert len(tool_entries) == 1
        assert tool_entries[0].tool_result == "body"
        assert client.transcript.orphan_count == 0


class TestHistory:
    def test_select_session_requests_history_once(self, client, transport):
        assert client.select_session(PROJECT, "abc123") is LoadStatus.STARTED
        assert client.select_session(PROJECT, "abc123") is LoadStatus.ALREADY_IN_FLIGHT
        loads = [e for e in transport.sent if e["type"] == "load_session"]
        assert loads == [{"type": "load_session", "projectName": PROJECT, "sessionId": "abc123"}]
        assert client.is_loading

    def test_history_replaces_view(self, client):
        client.select_session(PROJECT, "abc123")
        client.handle_event({
            "type": "session_history",
            "projectName": PROJECT,
            "sessionId": "abc123",
            "messages": [
                {"type": "user", "uuid": "u1", "message": {"role": "user", "content": "hello"}},
                {"type": "assistant", "uuid": "a1", "message": {"role": "assistant", "content": "hi"}},
            ],
        })
        assert [m.id for m in client.messages] == ["u1-user", "a1-assistant"]
        assert not client.is_loading
        assert (PROJECT, "abc123") not in client.loads
        assert client.select_session(PROJECT, "abc123") is None

    def test_duplicate_history_ignored(self, client):
        client.select_session(PROJECT, "abc123")
        history = {"type": "session_history", "projectName": PROJECT, "sessionId": "abc123",
                   "messages": [{"type": "user", "message": {"role": "user", "content": "hello"}}]}
        client.handle_event(history)
        client.handle_event({"type": "claude-output", "data": "live"})
        client.handle_event(history)
        assert [m.kind for m in client.messages] == [USER, ASSISTANT]

    def test_history_after_navigating_away_ignored(self, client):
        client.select_session(PROJECT, "abc123")
        client.select_session(PROJECT, "def456")
        client.handle_event({"type": "session_history", "projectName": PROJECT, "sessionId": "abc123",
                             "messages": [{"type": "user", "content": "old"}]})
        assert client.messages == ()

    def test_lease_timeout_allows_retry(self, client, clock, transport):
        client.select_session(PROJECT, "abc123")
        clock.advance(31)
        assert client.load_history() is LoadStatus.STARTED
        assert len([e for e in transport.sent if e["type"] == "load_session"]) == 2

    def test_reconnect_reloads_history(self, client, transport):
        transport.set_connected(False)
        assert client.select_session(PROJECT, "abc123") is None
        transport.set_connected(True)
        assert transport.sent[-1]["type"] == "load_session"


class TestListing:
    def test_summary_update(self, client, raw_listing):
        client.apply_listing(raw_listing)
        client.handle_event({"type": "session-summary-updated", "sessionId": "def456", "summary": "Dark mode"})
        assert client.projects[0].sessions[1].summary == "Dark mode"

    def test_removed_session_clears_view(self, client, raw_listing):
        client.apply_listing(raw_listing)
        client.select_session(PROJECT, "def456")
        raw_listing[0]["sessions"] = raw_listing[0]["sessions"][:1]
        client.apply_listing(raw_listing)
        assert client.selected_session_id is None
        assert client.selected_project_name == PROJECT

    def test_rejected_listing_keeps_old(self, client, raw_listing):
        client.apply_listing(raw_listing)
        client.select_session(PROJECT, "abc123")
        client.send_user_message("go")
        result = client.apply_listing(raw_listing[1:])
        assert result.decision is GateDecision.REJECT
        assert len(client.projects) == 2

    @pytest.mark.asyncio
    async def test_refresh_listing(self, client, fetcher):
        result = await client.refresh_listing()
        assert result.decision is GateDecision.APPLY
        assert fetcher.calls == 1
        assert len(client.projects) == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_listing(self, client, fetcher):
        fetcher.error = httpx.ConnectError("refused")
        assert await client.refresh_listing() is None
        assert client.projects == ()


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_processes_in_order(self, client, transport):
        client.select_project(PROJECT)
        transport.push({"type": "claude-output", "data": "one"})
        transport.push({"type": "claude-output", "data": "two"})
        transport.push({"type": "unknown-event"})
        runner = asyncio.create_task(client.run())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await transport.close()
        await asyncio.wait_for(runner, 1)
        assert [m.content for m in client.messages] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(self, client, transport, monkeypatch):
        def boom(event):
            raise RuntimeError("bad handler")

        monkeypatch.setitem(client._handlers, "claude-status", boom)
        transport.push({"type": "claude-status", "status": "thinking"})
        transport.push({"type": "claude-output", "data": "after"})
        runner = asyncio.create_task(client.run())
        await asyncio.sleep(0)
        await transport.close()
        await asyncio.wait_for(runner, 1)
        assert [m.content for m in client.messages] == ["after"]

    def test_status_events(self, client):
        client.handle_event({"type": "claude-status", "data": {"status": "thinking"}})
        assert client.status == "thinking" and client.is_abortable
        client.handle_event({"type": "claude-status", "status": "idle"})
        assert not client.is_loading
