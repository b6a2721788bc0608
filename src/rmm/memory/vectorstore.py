"""Vector store interface for long-term memories, plus an in-memory backend.

Memories are stored as documents whose text is the topic summary; the
rest of the memory (raw dialogue, session, turn references) lives in
metadata.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from rmm.memory.types import MemoryEntry, RetrievedMemory, now_ms

if TYPE_CHECKING:
    from rmm.ai.protocols import Embeddings

logger = logging.getLogger(__name__)


@dataclass
class Document:
    """A stored memory document."""

    page_content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    embedding: list[float] | None = None
    score: float | None = None

    @classmethod
    def from_memory(cls, memory: MemoryEntry) -> Document:
        return cls(
            page_content=memory.topic_summary,
            metadata=memory.to_metadata(),
            id=memory.id,
            embedding=list(memory.embedding) if memory.embedding is not None else None,
        )

    def to_memory(self) -> RetrievedMemory:
        """Convert a search hit into a reranking candidate."""
        meta = self.metadata
        return RetrievedMemory(
            id=self.id or meta.get("id") or str(uuid.uuid4()),
            topic_summary=self.page_content,
            raw_dialogue=meta.get("raw_dialogue", self.page_content),
            timestamp=meta.get("timestamp") or now_ms(),
            session_id=meta.get("session_id", ""),
            turn_references=list(meta.get("turn_references", [])),
            embedding=self.embedding,
            relevance_score=float(self.score) if self.score is not None else 0.0,
        )


class VectorStore(Protocol):
    """Protocol for memory vector stores."""

    async def similarity_search(self, query: str, k: int) -> list[Document]:
        """Return up to k documents most similar to query, best first."""
        ...

    async def add_documents(self, documents: list[Document]) -> list[str]:
        """Insert documents, returning their ids."""
        ...

    async def delete(self, ids: list[str]) -> None:
        """Delete documents by id."""
        ...


class InMemoryVectorStore:
    """Cosine-similarity vector store held in process memory."""

    def __init__(self, embeddings: Embeddings):
        self.embeddings = embeddings
        self._documents: dict[str, Document] = {}

    def __len__(self) -> int:
        return len(self._documents)

    @property
    def documents(self) -> list[Document]:
        return list(self._documents.values())

    async def add_documents(self, documents: list[Document]) -> list[str]:
        missing = [d for d in documents if d.embedding is None]
        if missing:
            vectors = await self.embeddings.embed_documents([d.page_content for d in missing])
            for doc, vector in zip(missing, vectors):
                doc.embedding = list(vector)

        ids = []
        for doc in documents:
            doc_id = doc.id or str(uuid.uuid4())
            self._documents[doc_id] = Document(
                page_content=doc.page_content,
                metadata=dict(doc.metadata),
                id=doc_id,
                embedding=doc.embedding,
            )
            ids.append(doc_id)
        return ids

    async def delete(self, ids: list[str]) -> None:
        for doc_id in ids:
            self._documents.pop(doc_id, None)

    async def similarity_search(self, query: str, k: int) -> list[Document]:
        if not self._documents or k <= 0:
            return []

        query_vector = np.asarray(await self.embeddings.embed_query(query), dtype=np.float64)
        docs = list(self._documents.values())
        matrix = np.asarray([d.embedding for d in docs], dtype=np.float64)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query_vector / norms, 0.0)

        order = np.argsort(-scores, kind="stable")[:k]
        return [
            Document(
                page_content=docs[i].page_content,
                metadata=dict(docs[i].metadata),
                id=docs[i].id,
                embedding=docs[i].embedding,
                score=float(scores[i]),
            )
            for i in order
        ]


async def find_similar_memories(
    vector_store: VectorStore,
    query: str,
    top_k: int = 5,
) -> list[RetrievedMemory]:
    """Search the memory store, returning [] on any failure.

    Args:
        vector_store: Store to search
        query: Text to match (usually a topic summary or user message)
        top_k: Maximum number of results

    Returns:
        Matching memories, best first
    """
    if not query.strip():
        return []
    try:
        documents = await vector_store.similarity_search(query, top_k)
    except Exception as e:
        logger.warning(f"Similarity search failed, continuing without memories: {e}")
        return []
    return [doc.to_memory() for doc in documents]
