"""Normalize ``session_history`` payloads into transcript messages.

The backend replays a session in one of two shapes:

- raw CLI JSONL entries, ``{"type": "user"|"assistant", "message":
  {"role": ..., "content": ...}, "timestamp": ...}``. User entries may carry
  ``tool_result`` blocks; assistant entries carry text, ``thinking`` and
  ``tool_use`` blocks.
- entries already flattened by the server, ``{"type": "tool_use",
  "content": ..., "tool_name": ..., "tool_input": ..., "tool_result": ...}``.

Metadata entries ("file-history-snapshot", "progress", "system", "summary",
"queue-operation") are skipped. Tool results are folded into their
invocations through the same Transcript used for live events.
"""

import logging
import uuid
from typing import Any

from .core import ASSISTANT, MESSAGE_KINDS, TOOL_RESULT, TOOL_USE, USER, ChatMessage
from .decoder import parse_timestamp
from .transcript import Transcript

logger = logging.getLogger(__name__)

SKIPPED_ENTRY_TYPES = frozenset({
    "file-history-snapshot", "progress", "system", "summary", "queue-operation",
})
SKIPPED_USER_PREFIXES = ("<command-name>", "[Request interrupted")


def normalize_history(raw_messages: Any) -> list[ChatMessage]:
    """Convert a history payload into an ordered, correlated message list."""
    if not isinstance(raw_messages, list):
        logger.warning("session_history without a message list")
        return []

    transcript = Transcript()
    for index, entry in enumerate(raw_messages):
        if not isinstance(entry, dict):
            continue
        try:
            transcript.extend(_entry_to_messages(entry, index))
        except (TypeError, ValueError, AttributeError) as e:
            logger.debug("Skipping malformed history entry %d: %s", index, e)
    return list(transcript.messages)


def _entry_to_messages(entry: dict, index: int) -> list[ChatMessage]:
    """Convert one history entry; may yield zero, one, or several messages."""
    entry_type = entry.get("type", "")
    if entry_type in SKIPPED_ENTRY_TYPES:
        return []

    message = entry.get("message")
    if isinstance(message, dict) and message.get("role") in ("user", "assistant"):
        if message["role"] == "user":
            return _parse_user_entry(entry, message)
        return _parse_assistant_entry(entry, message)

    if entry_type in MESSAGE_KINDS:
        return [_flattened_entry(entry, index)]

    if entry_type == "human":
        return _parse_user_entry(entry, {"content": entry.get("content", "")})
    return []


def _parse_user_entry(entry: dict, message: dict) -> list[ChatMessage]:
    timestamp = parse_timestamp(entry.get("timestamp"))
    content = message.get("content", "")

    if isinstance(content, str):
        return [_user_text(entry, content, timestamp)] if _keep_user_text(content) else []

    messages = []
    text_parts = []
    for block in content if isinstance(content, list) else []:
        if isinstance(block, str):
            text_parts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        block_type = block.get("type", "")
        if block_type == "text":
            text_parts.append(block.get("text", ""))
        elif block_type == "tool_result":
            tool_use_id = block.get("tool_use_id") or f"tool-result-{uuid.uuid4().hex[:12]}"
            messages.append(ChatMessage(
                id=tool_use_id,
                kind=TOOL_RESULT,
                timestamp=timestamp,
                tool_result=block.get("content"),
                tool_errored=bool(block.get("is_error", False)),
                tool_use_id=tool_use_id,
            ))

    text = "\n".join(p for p in text_parts if p)
    if _keep_user_text(text):
        messages.insert(0, _user_text(entry, text, timestamp))
    return messages


def _parse_assistant_entry(entry: dict, message: dict) -> list[ChatMessage]:
    timestamp = parse_timestamp(entry.get("timestamp"))
    content = message.get("content", "")

    if isinstance(content, str):
        if not content.strip():
            return []
        return [ChatMessage(id=_entry_id(entry, "assistant"), kind=ASSISTANT, content=content, timestamp=timestamp)]

    messages = []
    blocks = [b for b in content if isinstance(b, dict)] if isinstance(content, list) else []
    # Same grouping as live events: an entry with only thinking or tool
    # blocks gets no assistant message of its own.
    if any(b.get("type") in ("text", "image") for b in blocks):
        messages.append(ChatMessage(
            id=_entry_id(entry, "assistant"),
            kind=ASSISTANT,
            content=content,
            timestamp=timestamp,
        ))
    for block in blocks:
        if block.get("type") == "tool_use":
            messages.append(ChatMessage(
                id=block.get("id") or f"tool-{uuid.uuid4().hex[:12]}",
                kind=TOOL_USE,
                timestamp=timestamp,
                tool_name=block.get("name", "unknown"),
                tool_input=block.get("input", {}),
            ))
    return messages


def _flattened_entry(entry: dict, index: int) -> ChatMessage:
    kind = entry["type"]
    content = entry.get("content") or entry.get("text") or entry.get("message") or ""
    msg = ChatMessage(
        id=str(entry.get("id") or f"msg-{index}"),
        kind=kind,
        content=content,
        timestamp=parse_timestamp(entry.get("timestamp")),
    )
    if kind in (TOOL_USE, TOOL_RESULT):
        msg.tool_name = entry.get("tool_name")
        msg.tool_input = entry.get("tool_input")
        msg.tool_result = entry.get("tool_result")
        msg.tool_errored = bool(entry.get("toolError", False))
    if kind == TOOL_RESULT:
        msg.tool_use_id = entry.get("tool_use_id") or msg.id
    if entry.get("inline"):
        msg.metadata["inline"] = True
    return msg


def _user_text(entry: dict, text: str, timestamp) -> ChatMessage:
    return ChatMessage(id=_entry_id(entry, "user"), kind=USER, content=text, timestamp=timestamp)


def _keep_user_text(text: str) -> bool:
    return bool(text.strip()) and not text.startswith(SKIPPED_USER_PREFIXES)


def _entry_id(entry: dict, prefix: str) -> str:
    source = entry.get("uuid") or entry.get("id")
    if source:
        return f"{source}-{prefix}"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
