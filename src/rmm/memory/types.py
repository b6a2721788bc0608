"""Memory, message buffer and session types.

Timestamps are epoch milliseconds throughout, matching the inactivity
thresholds in ReflectionConfig.
"""

from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import numpy as np


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _embedding_to_list(embedding: Any) -> list[float] | None:
    if embedding is None:
        return None
    return [float(x) for x in np.asarray(embedding, dtype=np.float64).tolist()]


@dataclass
class MemoryEntry:
    """A topic-level memory extracted from a dialogue session.

    Attributes:
        topic_summary: Personal summary produced by the extraction prompt
        raw_dialogue: Original turns the summary was drawn from
        session_id: Session the memory was extracted from
        turn_references: Turn indices within that session
        embedding: Embedding of the topic summary
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    topic_summary: str = ""
    raw_dialogue: str = ""
    timestamp: int = field(default_factory=now_ms)
    session_id: str = ""
    turn_references: list[int] = field(default_factory=list)
    embedding: list[float] | None = None

    def to_metadata(self) -> dict[str, Any]:
        """Vector store metadata for this memory (everything except the text)."""
        return {
            "id": self.id,
            "raw_dialogue": self.raw_dialogue,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "turn_references": list(self.turn_references),
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "topic_summary": self.topic_summary,
            "raw_dialogue": self.raw_dialogue,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "turn_references": list(self.turn_references),
            "embedding": _embedding_to_list(self.embedding),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        """Deserialize from dictionary."""
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            topic_summary=data.get("topic_summary", ""),
            raw_dialogue=data.get("raw_dialogue", ""),
            timestamp=data.get("timestamp") or now_ms(),
            session_id=data.get("session_id", ""),
            turn_references=list(data.get("turn_references", [])),
            embedding=data.get("embedding"),
        )


@dataclass
class RetrievedMemory(MemoryEntry):
    """A memory returned by similarity search, with reranking scores.

    relevance_score comes from the retriever; rerank_score is filled in
    by the reranker after embedding adaptation.
    """

    relevance_score: float = 0.0
    rerank_score: float | None = None

    def copy(self) -> RetrievedMemory:
        """Deep copy, so callers cannot mutate shared candidate state."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data = super().to_dict()
        data["relevance_score"] = self.relevance_score
        data["rerank_score"] = self.rerank_score
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetrievedMemory:
        """Deserialize from dictionary."""
        base = MemoryEntry.from_dict(data)
        return cls(
            id=base.id,
            topic_summary=base.topic_summary,
            raw_dialogue=base.raw_dialogue,
            timestamp=base.timestamp,
            session_id=base.session_id,
            turn_references=base.turn_references,
            embedding=base.embedding,
            relevance_score=float(data.get("relevance_score", 0.0)),
            rerank_score=data.get("rerank_score"),
        )


@dataclass
class MessageBuffer:
    """Serialized dialogue awaiting prospective reflection.

    One live buffer and, while reflection is running, one staging copy
    exist per user. retry_count is only meaningful on the staging copy.
    """

    messages: list[dict[str, Any]] = field(default_factory=list)
    human_message_count: int = 0
    last_message_timestamp: int = field(default_factory=now_ms)
    created_at: int = field(default_factory=now_ms)
    retry_count: int = 0

    @classmethod
    def empty(cls) -> MessageBuffer:
        """Create an empty buffer stamped with the current time."""
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.messages

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "messages": copy.deepcopy(self.messages),
            "human_message_count": self.human_message_count,
            "last_message_timestamp": self.last_message_timestamp,
            "created_at": self.created_at,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageBuffer:
        """Deserialize from dictionary.

        Raises:
            ValueError: If required fields are missing or have the wrong type
        """
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise ValueError("Message buffer is missing a messages list")
        human_count = data.get("human_message_count", 0)
        if not isinstance(human_count, int) or human_count < 0:
            raise ValueError(f"Invalid human_message_count: {human_count!r}")

        return cls(
            messages=copy.deepcopy(messages),
            human_message_count=human_count,
            last_message_timestamp=data.get("last_message_timestamp") or now_ms(),
            created_at=data.get("created_at") or now_ms(),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass
class SessionMetadata:
    """Per-user bookkeeping across sessions."""

    version: str = "1.0.0"
    config_hash: str = ""
    session_count: int = 0
    last_updated: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "version": self.version,
            "config_hash": self.config_hash,
            "session_count": self.session_count,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionMetadata:
        """Deserialize from dictionary."""
        return cls(
            version=str(data.get("version", "1.0.0")),
            config_hash=str(data.get("config_hash", "")),
            session_count=int(data.get("session_count", 0)),
            last_updated=data.get("last_updated") or now_ms(),
        )
