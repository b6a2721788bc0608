"""Helpers for the plain-dict message format.

Messages are {"role": ..., "content": ...} dicts. Hosts that use
"user"/"assistant" and hosts that use "human"/"ai" are both accepted;
objects exposing role/type and content attributes are serialized on
entry to the buffer.
"""

from __future__ import annotations

from typing import Any, Sequence

HUMAN_ROLES = frozenset({"human", "user"})
AI_ROLES = frozenset({"ai", "assistant"})


def message_role(message: Any) -> str:
    """Role of a dict or message-like object, lower-cased."""
    if isinstance(message, dict):
        role = message.get("role") or message.get("type") or ""
    else:
        role = getattr(message, "role", None) or getattr(message, "type", None) or ""
    return str(role).lower()


def message_content(message: Any) -> str:
    """Text content of a message, flattening content-block lists."""
    content = message.get("content", "") if isinstance(message, dict) else getattr(message, "content", "")
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get("text", "")))
            else:
                parts.append(str(block))
        return "".join(parts)
    return "" if content is None else str(content)


def serialize_message(message: Any) -> dict[str, Any]:
    """Convert a message to the stored {"role", "content"} form."""
    return {"role": message_role(message), "content": message_content(message)}


def is_human_message(message: Any) -> bool:
    return message_role(message) in HUMAN_ROLES


def count_human_messages(messages: Sequence[Any]) -> int:
    return sum(1 for m in messages if is_human_message(m))


def extract_last_human_message(messages: Sequence[Any]) -> str | None:
    """Content of the most recent human message, or None if there is none."""
    for message in reversed(messages):
        if is_human_message(message):
            content = message_content(message)
            return content if content.strip() else None
    return None


def format_session_history(messages: Sequence[Any]) -> str:
    """Render a session as numbered turns for the extraction prompt.

    Two consecutive messages form one turn, so message i belongs to turn
    i // 2. Human messages are labelled SPEAKER_1, everything else
    SPEAKER_2.
    """
    if not messages:
        return ""

    parts = []
    for i, message in enumerate(messages):
        speaker = "SPEAKER_1" if is_human_message(message) else "SPEAKER_2"
        parts.append(f"* Turn {i // 2}:\n  – {speaker}: {message_content(message)}")
    return "\n".join(parts)
