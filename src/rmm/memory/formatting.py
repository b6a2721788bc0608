"""Memory block rendering for the generation prompt."""

from __future__ import annotations

from typing import Sequence
from xml.sax.saxutils import escape

from rmm.memory.types import MemoryEntry


def _single_line(text: str) -> str:
    return " ".join(text.splitlines())


def format_memory_block(memories: Sequence[MemoryEntry]) -> str:
    """Render selected memories as a <memories> block.

    Memory indices are positions in the given sequence; they are what the
    model cites. Content is XML-escaped so stored dialogue cannot close
    the block early, and each memory's dialogue is kept on one line.

    Returns:
        The block, or "" when there are no memories
    """
    if not memories:
        return ""

    entries = []
    for i, memory in enumerate(memories):
        summary = escape(_single_line(memory.topic_summary))
        dialogue = escape(_single_line(memory.raw_dialogue))
        entries.append(f"– Memory [{i}]: {summary}\n    {dialogue}")

    return "<memories>\n" + "\n".join(entries) + "\n</memories>"
