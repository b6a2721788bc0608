"""Prospective reflection engine.

Turns a staged message buffer into long-term memories:
1. Extract topic-level memories from the dialogue
2. Embed each summary
3. Consolidate each memory into the store (Add or Merge)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from rmm.ai.prompts import build_extract_speaker1_prompt
from rmm.memory.extraction import extract_memories
from rmm.memory.update import MemoryUpdateResolver

if TYPE_CHECKING:
    from rmm.ai.protocols import Embeddings, LanguageModel
    from rmm.memory.types import MessageBuffer
    from rmm.memory.vectorstore import VectorStore

logger = logging.getLogger(__name__)


class ReflectionError(Exception):
    """A reflection attempt failed and should be retried."""

    pass


@dataclass
class ReflectionResult:
    """Summary of one successful reflection pass."""

    extracted: int = 0
    added: int = 0
    merged: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "extracted": self.extracted,
            "added": self.added,
            "merged": self.merged,
            "failed": self.failed,
        }


class ReflectionEngine:
    """Extracts memories from staged dialogue and consolidates them."""

    def __init__(
        self,
        summarizer: LanguageModel,
        embeddings: Embeddings,
        vector_store: VectorStore,
        resolver: MemoryUpdateResolver | None = None,
        speaker_prompt: Callable[[str], str] = build_extract_speaker1_prompt,
        top_k: int = 5,
    ):
        """Initialize the reflection engine.

        Args:
            summarizer: Model for extraction and merge decisions
            embeddings: Embedding model for new memories
            vector_store: Long-term memory store
            resolver: Add/Merge resolver (built from summarizer and store if omitted)
            speaker_prompt: Extraction prompt builder (speaker 1 = the user)
            top_k: Similar memories considered per merge decision
        """
        self.summarizer = summarizer
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.resolver = resolver or MemoryUpdateResolver(summarizer, vector_store, top_k=top_k)
        self.speaker_prompt = speaker_prompt

    async def process(self, buffer: MessageBuffer, session_id: str | None = None) -> ReflectionResult:
        """Reflect on one staged buffer.

        Args:
            buffer: Staged dialogue
            session_id: Session id stamped on new memories

        Returns:
            ReflectionResult with consolidation counts

        Raises:
            ReflectionError: If extraction failed (model error or unparseable output)
        """
        if buffer.is_empty:
            return ReflectionResult()

        logger.debug(
            f"Reflecting on {len(buffer.messages)} messages "
            f"({buffer.human_message_count} from the user)"
        )
        memories = await extract_memories(
            buffer.messages,
            self.summarizer,
            self.embeddings,
            self.speaker_prompt,
            session_id=session_id,
        )
        if memories is None:
            raise ReflectionError("Memory extraction failed")

        result = ReflectionResult(extracted=len(memories))
        for memory in memories:
            outcome = await self.resolver.process(memory)
            result.added += outcome.added
            result.merged += outcome.merged
            result.failed += outcome.failed

        logger.info(
            f"Reflection stored {result.extracted} memories "
            f"(added={result.added}, merged={result.merged}, failed={result.failed})"
        )
        return result
