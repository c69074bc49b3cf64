"""Core data models for aichat-session."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

USER = "user"
ASSISTANT = "assistant"
TOOL_USE = "tool_use"
TOOL_RESULT = "tool_result"
ERROR = "error"

MESSAGE_KINDS = frozenset({USER, ASSISTANT, TOOL_USE, TOOL_RESULT, ERROR})


@dataclass
class ChatMessage:
    """A single transcript entry.

    ``content`` is either plain text or the verbatim list of content blocks
    (text, image, ...) of a multi-modal assistant turn.
    """

    id: str  # for tool invocations, the tool-call id
    kind: str  # "user" | "assistant" | "tool_use" | "tool_result" | "error"
    content: Any = ""
    timestamp: Optional[datetime] = None
    tool_name: Optional[str] = None
    tool_input: Any = None
    tool_result: Any = None
    tool_errored: bool = False
    tool_use_id: Optional[str] = None  # set on tool_result entries
    orphaned: bool = False
    metadata: dict = field(default_factory=dict)  # source id, interactive flag, etc.

    @property
    def is_tool(self) -> bool:
        return self.kind in (TOOL_USE, TOOL_RESULT)


@dataclass
class Session:
    """A session entry of the project listing."""

    id: str
    summary: str = ""
    message_count: int = 0
    last_activity: Optional[str] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    extra: dict = field(default_factory=dict)  # wire fields we do not model


@dataclass
class Project:
    """A project with its sessions, as pushed by the backend."""

    name: str
    display_name: str = ""
    full_path: str = ""
    sessions: list[Session] = field(default_factory=list)
    session_meta: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)
