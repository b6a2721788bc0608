"""Tests for prospective memory extraction."""

import json
from unittest.mock import AsyncMock

import pytest

from rmm.ai.prompts import build_extract_speaker1_prompt
from rmm.memory.extraction import build_raw_dialogue, extract_memories


def _output(*entries):
    return json.dumps({"extracted_memories": list(entries)})


class TestBuildRawDialogue:
    """Tests for build_raw_dialogue."""

    def test_joins_referenced_turns(self, sample_messages):
        """Each referenced turn contributes its first message."""
        assert build_raw_dialogue(sample_messages, [0, 1]) == (
            "I went hiking in the Alps last weekend. | Sunny, and I want to go back next month."
        )

    def test_skips_out_of_range(self, sample_messages):
        """References past the session end are ignored."""
        assert build_raw_dialogue(sample_messages, [5]) == ""


class TestExtractMemories:
    """Tests for extract_memories."""

    @pytest.mark.asyncio
    async def test_extracts_and_embeds(self, sample_messages, mock_llm, fake_embeddings):
        """Valid entries become embedded memories stamped with the session."""
        mock_llm.invoke.return_value = _output(
            {"summary": "SPEAKER_1 hikes in the Alps.", "reference": [0, 1]},
        )

        memories = await extract_memories(
            sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt, session_id="s-1"
        )

        assert len(memories) == 1
        memory = memories[0]
        assert memory.topic_summary == "SPEAKER_1 hikes in the Alps."
        assert memory.turn_references == [0, 1]
        assert memory.session_id == "s-1"
        assert memory.embedding == fake_embeddings._vector("SPEAKER_1 hikes in the Alps.")
        assert "hiking in the Alps" in memory.raw_dialogue

    @pytest.mark.asyncio
    async def test_prompt_contains_dialogue(self, sample_messages, mock_llm, fake_embeddings):
        """The model sees the rendered session."""
        await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt)
        prompt = mock_llm.invoke.call_args.args[0]
        assert "SPEAKER_1: I went hiking in the Alps" in prompt

    @pytest.mark.asyncio
    async def test_no_trait(self, sample_messages, mock_llm, fake_embeddings):
        """NO_TRAIT yields no memories."""
        memories = await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt)
        assert memories == []
        assert fake_embeddings.document_calls == 0

    @pytest.mark.asyncio
    async def test_code_fenced_json(self, sample_messages, mock_llm, fake_embeddings):
        """JSON inside a code fence is accepted."""
        mock_llm.invoke.return_value = "```json\n" + _output({"summary": "likes tea", "reference": [0]}) + "\n```"
        memories = await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt)
        assert [m.topic_summary for m in memories] == ["likes tea"]

    @pytest.mark.asyncio
    async def test_invalid_entries_skipped(self, sample_messages, mock_llm, fake_embeddings):
        """Entries with bad summaries or references are dropped."""
        mock_llm.invoke.return_value = _output(
            {"summary": "", "reference": [0]},
            {"summary": "ok", "reference": ["x"]},
            {"summary": "kept", "reference": [1]},
        )
        memories = await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt)
        assert [m.topic_summary for m in memories] == ["kept"]

    @pytest.mark.asyncio
    async def test_unparseable_returns_none(self, sample_messages, mock_llm, fake_embeddings):
        """Garbage output is a failure."""
        mock_llm.invoke.return_value = "I could not do that."
        assert await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt) is None

    @pytest.mark.asyncio
    async def test_model_error_returns_none(self, sample_messages, mock_llm, fake_embeddings):
        """A model exception is a failure."""
        mock_llm.invoke.side_effect = RuntimeError("rate limited")
        assert await extract_memories(sample_messages, mock_llm, fake_embeddings, build_extract_speaker1_prompt) is None

    @pytest.mark.asyncio
    async def test_embedding_error_returns_none(self, sample_messages, mock_llm):
        """An embedding failure is a failure."""
        mock_llm.invoke.return_value = _output({"summary": "likes tea", "reference": [0]})
        embeddings = AsyncMock()
        embeddings.embed_documents = AsyncMock(side_effect=RuntimeError("down"))
        assert await extract_memories(sample_messages, mock_llm, embeddings, build_extract_speaker1_prompt) is None

    @pytest.mark.asyncio
    async def test_empty_session(self, mock_llm, fake_embeddings):
        """An empty session extracts nothing without calling the model."""
        assert await extract_memories([], mock_llm, fake_embeddings, build_extract_speaker1_prompt) == []
        mock_llm.invoke.assert_not_called()
