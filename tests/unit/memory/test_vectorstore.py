"""Tests for the in-memory vector store and similarity lookup."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rmm.memory.types import MemoryEntry
from rmm.memory.vectorstore import Document, InMemoryVectorStore, find_similar_memories


@pytest.fixture
def vector_store(fake_embeddings):
    return InMemoryVectorStore(fake_embeddings)


class TestInMemoryVectorStore:
    """Tests for InMemoryVectorStore."""

    @pytest.mark.asyncio
    async def test_add_embeds_missing(self, vector_store, fake_embeddings):
        """Documents without an embedding are embedded on insert."""
        ids = await vector_store.add_documents([Document(page_content="likes tea", id="a")])
        assert ids == ["a"]
        assert fake_embeddings.document_calls == 1
        assert vector_store.documents[0].embedding is not None

    @pytest.mark.asyncio
    async def test_add_keeps_existing_embedding(self, vector_store, fake_embeddings):
        """Pre-computed embeddings are used as-is."""
        await vector_store.add_documents([Document(page_content="x", id="a", embedding=[1.0] * 8)])
        assert fake_embeddings.document_calls == 0

    @pytest.mark.asyncio
    async def test_search_orders_by_similarity(self, vector_store):
        """The exact text match ranks first and carries a score."""
        await vector_store.add_documents(
            [
                Document(page_content="enjoys hiking", id="hike"),
                Document(page_content="plays guitar", id="guitar"),
                Document(page_content="works nights", id="nights"),
            ]
        )
        results = await vector_store.similarity_search("plays guitar", k=2)
        assert len(results) == 2
        assert results[0].id == "guitar"
        assert results[0].score == pytest.approx(1.0)
        assert results[0].score >= results[1].score

    @pytest.mark.asyncio
    async def test_same_id_replaces(self, vector_store):
        """Re-adding an id overwrites the document."""
        await vector_store.add_documents([Document(page_content="old", id="a")])
        await vector_store.add_documents([Document(page_content="new", id="a")])
        assert len(vector_store) == 1
        assert vector_store.documents[0].page_content == "new"

    @pytest.mark.asyncio
    async def test_delete(self, vector_store):
        """Deleted ids are removed; unknown ids are ignored."""
        await vector_store.add_documents([Document(page_content="x", id="a")])
        await vector_store.delete(ids=["a", "missing"])
        assert len(vector_store) == 0

    @pytest.mark.asyncio
    async def test_empty_search(self, vector_store):
        """Searching an empty store returns nothing."""
        assert await vector_store.similarity_search("anything", k=5) == []


class TestDocumentConversion:
    """Tests for Document <-> memory conversion."""

    def test_round_trip(self):
        """A memory survives conversion to a document and back."""
        memory = MemoryEntry(
            id="m1",
            topic_summary="likes tea",
            raw_dialogue="I like tea",
            session_id="s1",
            turn_references=[0, 2],
            embedding=[0.1, 0.2],
        )
        doc = Document.from_memory(memory)
        doc.score = 0.75
        restored = doc.to_memory()

        assert restored.id == "m1"
        assert restored.topic_summary == "likes tea"
        assert restored.raw_dialogue == "I like tea"
        assert restored.turn_references == [0, 2]
        assert restored.relevance_score == 0.75
        assert restored.timestamp == memory.timestamp


class TestFindSimilarMemories:
    """Tests for find_similar_memories."""

    @pytest.mark.asyncio
    async def test_returns_memories(self, vector_store):
        """Hits are converted to RetrievedMemory."""
        await vector_store.add_documents([Document.from_memory(MemoryEntry(id="m1", topic_summary="likes tea"))])
        results = await find_similar_memories(vector_store, "likes tea", top_k=3)
        assert [m.id for m in results] == ["m1"]
        assert results[0].embedding is not None

    @pytest.mark.asyncio
    async def test_search_failure_returns_empty(self):
        """Store errors become an empty result."""
        store = MagicMock()
        store.similarity_search = AsyncMock(side_effect=RuntimeError("index offline"))
        assert await find_similar_memories(store, "query") == []

    @pytest.mark.asyncio
    async def test_blank_query(self, vector_store):
        """A blank query does not hit the store."""
        assert await find_similar_memories(vector_store, "   ") == []
