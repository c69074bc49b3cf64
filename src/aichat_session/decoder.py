"""Decode raw transport events into transcript messages.

The assistant CLI does not emit a fixed schema: the same logical turn can
arrive as a bare ``tool_use`` object, a ``{"type": "message", "message": ...}``
envelope, a double-wrapped ``message.message`` shape, or JSON embedded in a
string. Payloads are therefore run through an ordered cascade of matchers;
the first one that recognizes the shape wins:

1. direct ``tool_use`` object with ``name`` and ``input``
2. ``type == "message"`` envelope with a nested ``message`` object (recurse)
3. ``role == "assistant"`` with content blocks (text/image grouped, one
   ``tool_use`` entry per tool block)
4. ``role == "user"`` (CLI echoes suppressed, ``tool_result`` blocks split out)
5. ``type == "tool_result"``
6. nested ``message`` object without an envelope type (recurse)
7. ``tool_use`` sniffed out of string content or a sibling ``tool_use`` field
8. control/status records, dropped

Anything left over is rendered as an assistant message rather than lost.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .core import ASSISTANT, ERROR, TOOL_RESULT, TOOL_USE, USER, ChatMessage

logger = logging.getLogger(__name__)

CONTROL_EVENTS = frozenset({
    "claude-status", "claude-complete", "session-aborted", "session-created",
})
# Stream-json bookkeeping records: session init and the final run summary.
STREAM_NOISE = frozenset({"system", "result"})
# Events that feed the listing or history paths, never the live transcript.
NON_TRANSCRIPT_EVENTS = frozenset({
    "projects_updated", "session-summary-updated", "session_history",
})

TOOL_USE_MARKER = '"type":"tool_use"'
ECHO_PREFIXES = ("System:", "Tool result:")
ECHO_PHRASES = (
    "have been modified successfully",
    "have been updated successfully",
    "have been created successfully",
)

_MAX_DEPTH = 8


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 string or epoch number (seconds or milliseconds)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_cli_echo(text: str) -> bool:
    """Return True for user-role text that is really CLI tool/system output."""
    if text.startswith(ECHO_PREFIXES):
        return True
    if any(phrase in text for phrase in ECHO_PHRASES):
        return True
    return TOOL_USE_MARKER in text or '"tool_name"' in text


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageDecoder:
    """Turns one raw event into zero or more ChatMessages. Never raises."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._rules = (
            self._direct_tool_use,
            self._wrapped_message,
            self._assistant_blocks,
            self._user_turn,
            self._tool_result,
            self._nested_message,
            self._embedded_tool_use,
        )

    def decode(self, event: Any) -> list[ChatMessage]:
        """Decode a transport event (``{"type": ..., ...}``)."""
        try:
            return self._decode_event(event)
        except Exception:
            logger.exception("Decoder failed on event; rendering raw payload")
            return [self._raw_message(event)]

    def decode_payload(self, data: Any) -> list[ChatMessage]:
        """Decode the ``data`` of a ``claude-response`` event."""
        try:
            return self._decode(data, data if isinstance(data, dict) else {}, 0)
        except Exception:
            logger.exception("Decoder failed on payload; rendering raw payload")
            return [self._raw_message(data)]

    # ── Event level ──────────────────────────────────────────────────

    def _decode_event(self, event: Any) -> list[ChatMessage]:
        if not isinstance(event, dict):
            return self._decode(event, {}, 0)

        event_type = event.get("type")
        if event_type in CONTROL_EVENTS or event_type in NON_TRANSCRIPT_EVENTS:
            return []

        if event_type == "claude-response":
            data = event.get("data")
            if data is None:
                logger.debug("claude-response without data")
                return []
            return self._decode(data, data if isinstance(data, dict) else event, 0)

        if event_type in ("claude-output", "claude-interactive-prompt"):
            text = event.get("data")
            if text is None or (isinstance(text, str) and not text.strip()):
                return []
            msg = self._text_message(ASSISTANT, text, event)
            if event_type == "claude-interactive-prompt":
                msg.metadata["interactive"] = True
            return [msg]

        if event_type in ("claude-error", "error"):
            detail = event.get("error") or event.get("message") or event.get("content") or ""
            text = f"Error: {detail}" if event_type == "claude-error" else str(detail)
            return [self._text_message(ERROR, text, event)]

        # Server-side relays use tool_name/tool_input and id instead of the
        # CLI's own block fields.
        if event_type == "tool_use" and event.get("tool_name"):
            block = {"id": event.get("id"), "name": event["tool_name"], "input": event.get("tool_input")}
            return [self._tool_use_message(block, event)]
        if event_type == "tool_result" and not event.get("tool_use_id") and event.get("id"):
            block = {
                "tool_use_id": event["id"],
                "content": event.get("tool_result", event.get("content")),
                "is_error": event.get("toolError", event.get("is_error", False)),
            }
            return [self._tool_result_message(block, event)]

        return self._decode(event, event, 0)

    # ── Cascade ──────────────────────────────────────────────────────

    def _decode(self, data: Any, envelope: dict, depth: int) -> list[ChatMessage]:
        if isinstance(data, str):
            return [self._text_message(ASSISTANT, data, envelope)] if data.strip() else []
        if not isinstance(data, dict):
            return [self._raw_message(data, envelope)]
        if depth > _MAX_DEPTH:
            logger.warning("Message nesting deeper than %d levels", _MAX_DEPTH)
            return [self._raw_message(data, envelope)]

        for rule in self._rules:
            messages = rule(data, envelope, depth)
            if messages is not None:
                return messages

        if data.get("type") in CONTROL_EVENTS or data.get("type") in STREAM_NOISE:
            return []

        content = data.get("content")
        if isinstance(content, str) and content.strip():
            return [self._text_message(ASSISTANT, content, envelope)]
        logger.info("Unrecognized payload shape, keys=%s", sorted(data))
        return [self._raw_message(data, envelope)]

    def _direct_tool_use(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        if data.get("type") == "tool_use" and data.get("name") and data.get("input") is not None:
            return [self._tool_use_message(data, envelope)]
        return None

    def _wrapped_message(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        inner = data.get("message")
        if data.get("type") == "message" and isinstance(inner, dict):
            return self._decode(inner, data, depth + 1)
        return None

    def _assistant_blocks(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        if data.get("role") != "assistant":
            return None
        content = data.get("content")

        if isinstance(content, str):
            return [self._text_message(ASSISTANT, content, envelope)] if content.strip() else []
        if not isinstance(content, list):
            return None

        blocks = [b for b in content if isinstance(b, dict)]
        messages = []
        if any(b.get("type") in ("text", "image") for b in blocks):
            # The whole array travels together so images keep their place.
            messages.append(self._message(ASSISTANT, content, envelope))
        for block in blocks:
            if block.get("type") == "tool_use":
                messages.append(self._tool_use_message(block, envelope))
        return messages

    def _user_turn(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        if data.get("role") != "user":
            return None
        content = data.get("content")

        results = []
        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            parts = []
            for block in content:
                if isinstance(block, str):
                    parts.append(block)
                elif not isinstance(block, dict):
                    continue
                elif block.get("type") == "text":
                    parts.append(block.get("text") or "")
                elif block.get("type") == "tool_result":
                    results.append(self._tool_result_message(block, envelope))
            text = "\n".join(p for p in parts if p)
        else:
            text = ""

        if not text.strip():
            return results
        if is_cli_echo(text):
            logger.debug("Suppressing CLI echo disguised as user turn: %.100s", text)
            return results
        return [self._text_message(USER, text, envelope)] + results

    def _tool_result(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        if data.get("type") == "tool_result":
            return [self._tool_result_message(data, envelope)]
        return None

    def _nested_message(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        inner = data.get("message")
        if isinstance(inner, dict):
            return self._decode(inner, data, depth + 1)
        return None

    def _embedded_tool_use(self, data: dict, envelope: dict, depth: int) -> Optional[list[ChatMessage]]:
        content = data.get("content")
        if isinstance(content, str) and TOOL_USE_MARKER in content:
            try:
                parsed = json.loads(content)
            except json.JSONDecodeError as e:
                logger.warning("Could not parse tool_use embedded in string content: %s", e)
                parsed = None
            if (
                isinstance(parsed, dict)
                and parsed.get("type") == "tool_use"
                and parsed.get("name")
                and parsed.get("input") is not None
            ):
                if not parsed.get("id") and data.get("id"):
                    parsed = dict(parsed, id=data["id"])
                return [self._tool_use_message(parsed, envelope)]
            return [self._text_message(ASSISTANT, content, envelope)]

        sibling = data.get("tool_use")
        if isinstance(sibling, dict) and sibling.get("name"):
            if not sibling.get("id") and data.get("id"):
                sibling = dict(sibling, id=data["id"])
            return [self._tool_use_message(sibling, envelope)]
        return None

    # ── Builders ─────────────────────────────────────────────────────

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"

    def _timestamp(self, envelope: dict) -> datetime:
        return parse_timestamp(envelope.get("timestamp")) or self._clock()

    def _message(self, kind: str, content: Any, envelope: dict) -> ChatMessage:
        msg = ChatMessage(
            id=self._new_id(kind),
            kind=kind,
            content=content,
            timestamp=self._timestamp(envelope),
        )
        if envelope.get("id"):
            msg.metadata["source_id"] = envelope["id"]
        return msg

    def _text_message(self, kind: str, text: Any, envelope: dict) -> ChatMessage:
        return self._message(kind, text if isinstance(text, str) else str(text), envelope)

    def _raw_message(self, data: Any, envelope: Optional[dict] = None) -> ChatMessage:
        try:
            text = json.dumps(data, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = repr(data)
        msg = self._message(ASSISTANT, text, envelope or {})
        msg.metadata["unrecognized"] = True
        return msg

    def _tool_use_message(self, block: dict, envelope: dict) -> ChatMessage:
        tool_id = block.get("id") or self._new_id("tool")
        return ChatMessage(
            id=str(tool_id),
            kind=TOOL_USE,
            content="",
            timestamp=self._timestamp(envelope),
            tool_name=block.get("name"),
            tool_input=block.get("input"),
        )

    def _tool_result_message(self, block: dict, envelope: dict) -> ChatMessage:
        tool_use_id = block.get("tool_use_id") or self._new_id("tool-result")
        return ChatMessage(
            id=str(tool_use_id),
            kind=TOOL_RESULT,
            content="",
            timestamp=self._timestamp(envelope),
            tool_result=block.get("content"),
            tool_errored=bool(block.get("is_error", False)),
            tool_use_id=str(tool_use_id),
        )
