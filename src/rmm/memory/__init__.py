"""Memory module: long-term topic memories and their consolidation.

Provides:
- Types: MemoryEntry, RetrievedMemory, MessageBuffer, SessionMetadata
- Vector store interface with an in-memory cosine backend
- Prospective reflection: extract topic memories from dialogue
- Memory update: Add/Merge consolidation into the store

Usage:
    from rmm.memory import (
        InMemoryVectorStore,
        MemoryUpdateResolver,
        extract_memories,
        format_memory_block,
    )
    from rmm.ai.prompts import build_extract_speaker1_prompt

    store = InMemoryVectorStore(embeddings)
    resolver = MemoryUpdateResolver(summarizer, store, top_k=5)

    memories = await extract_memories(
        messages, summarizer, embeddings, build_extract_speaker1_prompt
    )
    for memory in memories or []:
        await resolver.process(memory)
"""

from rmm.memory.types import (
    MemoryEntry,
    MessageBuffer,
    RetrievedMemory,
    SessionMetadata,
    now_ms,
)
from rmm.memory.messages import (
    count_human_messages,
    extract_last_human_message,
    format_session_history,
    is_human_message,
    serialize_message,
)
from rmm.memory.formatting import format_memory_block
from rmm.memory.vectorstore import (
    Document,
    InMemoryVectorStore,
    VectorStore,
    find_similar_memories,
)
from rmm.memory.extraction import build_raw_dialogue, extract_memories
from rmm.memory.update import (
    MemoryUpdateResolver,
    ResolvedActions,
    UpdateAction,
    UpdateActionType,
    UpdateOutcome,
    ValidationResult,
    apply_memory_actions,
    parse_update_actions,
    resolve_update_actions,
    validate_update_actions,
)

__all__ = [
    # Types
    "MemoryEntry",
    "MessageBuffer",
    "RetrievedMemory",
    "SessionMetadata",
    "now_ms",
    # Messages
    "count_human_messages",
    "extract_last_human_message",
    "format_session_history",
    "is_human_message",
    "serialize_message",
    # Formatting
    "format_memory_block",
    # Vector store
    "Document",
    "InMemoryVectorStore",
    "VectorStore",
    "find_similar_memories",
    # Extraction
    "build_raw_dialogue",
    "extract_memories",
    # Update
    "MemoryUpdateResolver",
    "ResolvedActions",
    "UpdateAction",
    "UpdateActionType",
    "UpdateOutcome",
    "ValidationResult",
    "apply_memory_actions",
    "parse_update_actions",
    "resolve_update_actions",
    "validate_update_actions",
]
