"""Export a transcript to Markdown and JSON formats."""

import json
from typing import Any, Iterable, Optional

from .core import TOOL_RESULT, TOOL_USE, ChatMessage


def message_to_dict(msg: ChatMessage) -> dict:
    """Convert a ChatMessage to a JSON-serializable dict."""
    data = {
        "id": msg.id,
        "kind": msg.kind,
        "content": msg.content,
        "timestamp": msg.timestamp.isoformat() if msg.timestamp else None,
        "metadata": {
            k: v.isoformat() if hasattr(v, "isoformat") else v
            for k, v in msg.metadata.items()
        },
    }
    if msg.is_tool:
        data.update({
            "toolName": msg.tool_name,
            "toolInput": msg.tool_input,
            "toolResult": msg.tool_result,
            "toolErrored": msg.tool_errored,
        })
    if msg.kind == TOOL_RESULT:
        data["toolUseId"] = msg.tool_use_id
        data["orphaned"] = msg.orphaned
    return data


def content_to_text(content: Any) -> str:
    """Flatten message content (text or content blocks) to plain text."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return "" if content is None else json.dumps(content, ensure_ascii=False, default=str)

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict):
            block_type = block.get("type", "")
            if block_type == "text":
                parts.append(block.get("text", ""))
            elif block_type == "image":
                parts.append("[Image]")
            elif block_type == "tool_use":
                continue  # exported as its own entry
            elif block.get("text"):
                parts.append(block["text"])
    return "\n".join(p for p in parts if p)


def transcript_to_markdown(messages: Iterable[ChatMessage], title: Optional[str] = None) -> str:
    """Export transcript entries as clean Markdown."""
    lines = [f"# {title or 'Chat transcript'}", "", "---", ""]

    for msg in messages:
        ts = ""
        if msg.timestamp:
            ts = f" ({msg.timestamp.strftime('%Y-%m-%d %H:%M')})"

        if msg.kind == TOOL_USE:
            lines.append(f"## Tool: {msg.tool_name}{ts}")
            lines.append("")
            lines.append("```json")
            lines.append(json.dumps(msg.tool_input, indent=2, ensure_ascii=False, default=str))
            lines.append("```")
            if msg.tool_result is not None:
                label = "Error" if msg.tool_errored else "Result"
                lines.extend(["", f"**{label}:**", "", content_to_text(msg.tool_result)])
        elif msg.kind == TOOL_RESULT:
            lines.append(f"## Tool result ({msg.tool_use_id}){ts}")
            lines.append("")
            lines.append(content_to_text(msg.tool_result))
        else:
            lines.append(f"## {msg.kind.capitalize()}{ts}")
            lines.append("")
            lines.append(content_to_text(msg.content))
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def transcript_to_json(
    messages: Iterable[ChatMessage],
    session_id: Optional[str] = None,
    project_name: Optional[str] = None,
) -> str:
    """Export transcript entries as structured JSON."""
    data = {
        "session": {"id": session_id, "project": project_name},
        "messages": [message_to_dict(m) for m in messages],
    }
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)
