"""Prospective reflection: extract topic memories from a dialogue session."""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import TYPE_CHECKING, Any, Callable, Sequence

from rmm.memory.messages import format_session_history, message_content
from rmm.memory.types import MemoryEntry, now_ms

if TYPE_CHECKING:
    from rmm.ai.protocols import Embeddings, LanguageModel

logger = logging.getLogger(__name__)

NO_TRAIT = "NO_TRAIT"


def _parse_extraction_output(text: str) -> dict[str, Any] | None:
    """Parse the model's JSON, tolerating a surrounding code fence."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fence_match = re.search(r"```(?:json)?\s*\n(.*?)```", text, re.DOTALL)
    if fence_match:
        try:
            return json.loads(fence_match.group(1).strip())
        except json.JSONDecodeError:
            return None
    return None


def _valid_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    summary = entry.get("summary")
    reference = entry.get("reference")
    if not isinstance(summary, str) or not summary.strip():
        return False
    if not isinstance(reference, list):
        return False
    return all(isinstance(r, int) and not isinstance(r, bool) and r >= 0 for r in reference)


def build_raw_dialogue(messages: Sequence[Any], turn_references: Sequence[int]) -> str:
    """Join the speaker's messages for the referenced turns.

    Turn t starts at message 2t; references past the end are skipped.
    """
    parts = []
    for turn in turn_references:
        index = turn * 2
        if index < len(messages):
            content = message_content(messages[index])
            if content:
                parts.append(content)
    return " | ".join(parts)


async def extract_memories(
    session_history: Sequence[Any],
    summarizer: LanguageModel,
    embeddings: Embeddings,
    speaker_prompt: Callable[[str], str],
    session_id: str | None = None,
) -> list[MemoryEntry] | None:
    """Extract topic-level memories from a session.

    Args:
        session_history: Ordered messages of the session
        summarizer: Model that answers the extraction prompt
        embeddings: Model used to embed each extracted summary
        speaker_prompt: Builds the extraction prompt from the rendered dialogue
        session_id: Session id to stamp on the memories (random if omitted)

    Returns:
        Extracted memories ([] for NO_TRAIT or an empty session), or None if
        the model call failed or its output could not be parsed
    """
    if not session_history:
        return []

    prompt = speaker_prompt(format_session_history(session_history))
    try:
        response = await summarizer.invoke(prompt)
    except Exception as e:
        logger.warning(f"Memory extraction model call failed: {e}")
        return None

    if response.strip() == NO_TRAIT:
        return []

    output = _parse_extraction_output(response)
    if output is None:
        logger.warning(f"Failed to parse extraction response as JSON: {response[:200]}")
        return None

    entries = output.get("extracted_memories") if isinstance(output, dict) else None
    if not isinstance(entries, list):
        logger.warning("Extraction output is missing an extracted_memories list")
        return None

    valid = [e for e in entries if _valid_entry(e)]
    if len(valid) < len(entries):
        logger.debug(f"Skipped {len(entries) - len(valid)} invalid extracted memories")
    if not valid:
        return []

    try:
        vectors = await embeddings.embed_documents([e["summary"] for e in valid])
    except Exception as e:
        logger.warning(f"Embedding extracted memories failed: {e}")
        return None

    timestamp = now_ms()
    effective_session = session_id or str(uuid.uuid4())
    memories = []
    for entry, vector in zip(valid, vectors):
        raw_dialogue = build_raw_dialogue(session_history, entry["reference"])
        memories.append(
            MemoryEntry(
                topic_summary=entry["summary"],
                raw_dialogue=raw_dialogue or entry["summary"],
                timestamp=timestamp,
                session_id=effective_session,
                turn_references=list(entry["reference"]),
                embedding=list(vector),
            )
        )

    logger.info(f"Extracted {len(memories)} memories from {len(session_history)} messages")
    return memories
