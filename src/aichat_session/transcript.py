"""The in-memory transcript and tool-call correlation.

Tool invocations and their results arrive as separate events. A result is
folded into the ``tool_use`` entry carrying the same id instead of being
appended; a result with no matching invocation is kept as a standalone
orphan entry so it is never lost.
"""

import logging
from typing import Iterable, Iterator, Optional

from .core import TOOL_RESULT, TOOL_USE, ChatMessage

logger = logging.getLogger(__name__)


class Transcript:
    """Ordered list of ChatMessages owned by one client session.

    Callers get read-only views; only this class mutates entries.
    """

    def __init__(self, messages: Optional[Iterable[ChatMessage]] = None):
        self._messages: list[ChatMessage] = []
        self._settled = False
        self.orphan_count = 0
        if messages:
            self.extend(messages)

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def settled(self) -> bool:
        """True once the current turn completed or was aborted."""
        return self._settled

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(tuple(self._messages))

    def find(self, message_id: str) -> Optional[ChatMessage]:
        return next((m for m in self._messages if m.id == message_id), None)

    def add(self, message: ChatMessage) -> Optional[ChatMessage]:
        """Insert one decoded message; returns the entry that now holds it."""
        if message.kind == TOOL_RESULT:
            return self.apply_tool_result(message)

        if message.kind == TOOL_USE:
            existing = self.find(message.id)
            if existing is not None and existing.kind == TOOL_USE:
                # Redelivered invocation: refresh it, keep any result.
                existing.tool_name = message.tool_name
                existing.tool_input = message.tool_input
                return existing

        self._append(message)
        return message

    def extend(self, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        entries = []
        for message in messages:
            entry = self.add(message)
            if entry is not None:
                entries.append(entry)
        return entries

    def apply_tool_result(self, result: ChatMessage) -> Optional[ChatMessage]:
        """Attach a tool result to its invocation, or append it as an orphan.

        Applying the same result again leaves the transcript unchanged.
        """
        if self._settled:
            logger.debug("Ignoring tool result %s after the turn finished", result.id)
            return None

        target_id = result.tool_use_id or result.id
        for entry in self._messages:
            if entry.id == target_id or entry.id == result.id:
                if (
                    entry.tool_result != result.tool_result
                    or entry.tool_errored != result.tool_errored
                    or "tool_result_timestamp" not in entry.metadata
                ):
                    entry.tool_result = result.tool_result
                    entry.tool_errored = result.tool_errored
                    entry.metadata["tool_result_timestamp"] = result.timestamp
                return entry

        logger.warning("Tool result without matching tool use: %s", target_id)
        result.orphaned = True
        result.tool_use_id = target_id
        self.orphan_count += 1
        self._append(result)
        return result

    def settle(self) -> None:
        """Stop correlating results once a turn completes or is aborted."""
        self._settled = True

    def reopen(self) -> None:
        self._settled = False

    def clear(self) -> None:
        self._messages = []
        self._settled = False
        self.orphan_count = 0

    def replace(self, messages: Iterable[ChatMessage]) -> None:
        """Discard everything and load ``messages`` (e.g. session history)."""
        self.clear()
        self.extend(messages)

    def _append(self, message: ChatMessage) -> None:
        last = self._messages[-1].timestamp if self._messages else None
        if last is not None and (message.timestamp is None or message.timestamp < last):
            message.timestamp = last
        self._messages.append(message)
