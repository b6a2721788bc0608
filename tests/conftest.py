"""Pytest configuration and fixtures for rmm tests."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import numpy as np
import pytest

from rmm.db.kv import RMMStateStore
from rmm.db.store import InMemoryStore
from rmm.memory.types import RetrievedMemory

TEST_DIMENSION = 8


class FakeEmbeddings:
    """Deterministic embeddings: the same text always maps to the same unit vector."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.query_calls = 0
        self.document_calls = 0

    def _vector(self, text: str) -> list[float]:
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:8], 16)
        vector = np.random.default_rng(seed).normal(size=self.dimension)
        return (vector / np.linalg.norm(vector)).tolist()

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls += 1
        return self._vector(text)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls += 1
        return [self._vector(t) for t in texts]


class FakeClock:
    """Settable clock for InMemoryStore write timestamps."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """Settable store clock."""
    return FakeClock()


@pytest.fixture
def in_memory_store(clock):
    """In-memory BaseStore driven by the test clock."""
    return InMemoryStore(clock=clock)


@pytest.fixture
def state_store(in_memory_store):
    """RMMStateStore over the in-memory store."""
    return RMMStateStore(in_memory_store, root="rmm")


@pytest.fixture
def fake_embeddings():
    """Deterministic embeddings of TEST_DIMENSION."""
    return FakeEmbeddings()


@pytest.fixture
def mock_llm():
    """Mock LanguageModel whose invoke() returns NO_TRAIT by default."""
    llm = AsyncMock()
    llm.invoke = AsyncMock(return_value="NO_TRAIT")
    return llm


@pytest.fixture
def rng():
    """Seeded numpy generator."""
    return np.random.default_rng(42)


@pytest.fixture
def sample_memories(fake_embeddings) -> list[RetrievedMemory]:
    """Three retrieved memories with embeddings and falling relevance."""
    summaries = [
        "SPEAKER_1 enjoys hiking in the mountains on weekends.",
        "SPEAKER_1 is learning to play the guitar.",
        "SPEAKER_1 works as a nurse on night shifts.",
    ]
    return [
        RetrievedMemory(
            id=f"mem-{i}",
            topic_summary=summary,
            raw_dialogue=f"dialogue {i}",
            timestamp=1_700_000_000_000 + i,
            session_id="session-1",
            turn_references=[i],
            embedding=fake_embeddings._vector(summary),
            relevance_score=score,
        )
        for i, (summary, score) in enumerate(zip(summaries, [0.9, 0.5, 0.1]))
    ]


@pytest.fixture
def sample_messages() -> list[dict]:
    """A two-turn conversation."""
    return [
        {"role": "user", "content": "I went hiking in the Alps last weekend."},
        {"role": "assistant", "content": "That sounds amazing! How was the weather?"},
        {"role": "user", "content": "Sunny, and I want to go back next month."},
        {"role": "assistant", "content": "Great plan."},
    ]
