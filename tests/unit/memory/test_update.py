"""Tests for Add/Merge memory consolidation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from rmm.memory.types import MemoryEntry, RetrievedMemory
from rmm.memory.update import (
    MemoryUpdateResolver,
    UpdateAction,
    UpdateActionType,
    apply_memory_actions,
    parse_update_actions,
    resolve_update_actions,
    validate_update_actions,
)
from rmm.memory.vectorstore import Document, InMemoryVectorStore


def _similar(n=2):
    return [
        RetrievedMemory(
            id=f"old-{i}",
            topic_summary=f"old summary {i}",
            raw_dialogue=f"old dialogue {i}",
            session_id="s-0",
            turn_references=[i],
            timestamp=1_000,
        )
        for i in range(n)
    ]


def _mock_store():
    store = MagicMock()
    store.add_documents = AsyncMock(return_value=["id"])
    store.delete = AsyncMock()
    store.similarity_search = AsyncMock(return_value=[])
    return store


class TestParseUpdateActions:
    """Tests for parse_update_actions."""

    def test_add(self):
        """Add() parses to an ADD action."""
        assert parse_update_actions("Add()") == [UpdateAction.add()]

    def test_merge(self):
        """Merge(i, text) parses index and summary."""
        actions = parse_update_actions("Merge(1, SPEAKER_1 runs daily.)", history_length=2)
        assert actions == [UpdateAction.merge(1, "SPEAKER_1 runs daily.")]

    def test_multiple_lines(self):
        """Each line is an action; blank and unknown lines are skipped."""
        output = "Merge(0, merged)\n\nsomething else\nAdd()"
        actions = parse_update_actions(output, history_length=1)
        assert [a.action for a in actions] == [UpdateActionType.MERGE, UpdateActionType.ADD]

    def test_out_of_range_merge_dropped(self):
        """Merge indices must refer to a shown memory."""
        assert parse_update_actions("Merge(3, x)", history_length=2) == []

    def test_malformed_merge_dropped(self):
        """A Merge without a summary is dropped."""
        assert parse_update_actions("Merge(0)", history_length=2) == []
        assert parse_update_actions("Merge(0, )", history_length=2) == []

    def test_empty(self):
        """Empty output has no actions."""
        assert parse_update_actions("  ") == []


class TestValidateUpdateActions:
    """Tests for validate_update_actions."""

    def test_empty_is_valid(self):
        """No output is a valid no-op."""
        assert validate_update_actions("", 2).is_valid

    def test_valid_output(self):
        """Well-formed actions validate."""
        result = validate_update_actions("Merge(0, x)\nAdd()", 1)
        assert result.is_valid
        assert result.errors == []

    def test_reports_each_problem(self):
        """Every bad line is reported with its line number."""
        result = validate_update_actions("Add()\nMerge(5, x)\nDelete(0)", 2)
        assert not result.is_valid
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Line 2:")
        assert "Unknown action" in result.errors[1]


class TestResolveUpdateActions:
    """Tests for merge priority and dedup."""

    def test_first_merge_wins(self):
        """Later merges for the same index are dropped."""
        resolved = resolve_update_actions([UpdateAction.merge(0, "first"), UpdateAction.merge(0, "second")])
        assert resolved.merges == [UpdateAction.merge(0, "first")]

    def test_merge_suppresses_add(self):
        """Add is ignored when any merge survives."""
        resolved = resolve_update_actions([UpdateAction.merge(0, "m"), UpdateAction.add()])
        assert resolved.add is False

    def test_adds_collapse(self):
        """Several Add() lines mean one add."""
        resolved = resolve_update_actions([UpdateAction.add(), UpdateAction.add()])
        assert resolved.add is True
        assert resolved.merges == []


class TestApplyMemoryActions:
    """Tests for applying resolved actions to a store."""

    @pytest.mark.asyncio
    async def test_duplicate_merge_single_write(self):
        """Two merges of one index cause one delete and one insert with the first summary."""
        store = _mock_store()
        actions = [UpdateAction.merge(0, "first"), UpdateAction.merge(0, "second")]

        outcome = await apply_memory_actions(actions, MemoryEntry(topic_summary="new"), _similar(), store)

        assert outcome.merged == 1
        assert outcome.added == 0
        store.delete.assert_awaited_once_with(ids=["old-0"])
        store.add_documents.assert_awaited_once()
        doc = store.add_documents.call_args.args[0][0]
        assert doc.page_content == "first"
        assert doc.id == "old-0"

    @pytest.mark.asyncio
    async def test_merge_keeps_metadata_with_new_timestamp(self):
        """The merged document keeps the original metadata and gets a fresh timestamp."""
        store = _mock_store()

        await apply_memory_actions([UpdateAction.merge(1, "merged")], MemoryEntry(), _similar(), store)

        metadata = store.add_documents.call_args.args[0][0].metadata
        assert metadata["raw_dialogue"] == "old dialogue 1"
        assert metadata["session_id"] == "s-0"
        assert metadata["turn_references"] == [1]
        assert metadata["timestamp"] > 1_000

    @pytest.mark.asyncio
    async def test_merge_and_add_single_insert(self):
        """Merge plus Add performs only the merge insert."""
        store = _mock_store()
        actions = [UpdateAction.merge(0, "merged"), UpdateAction.add()]

        outcome = await apply_memory_actions(actions, MemoryEntry(topic_summary="new"), _similar(), store)

        assert outcome.merged == 1
        assert outcome.added == 0
        assert store.add_documents.await_count == 1

    @pytest.mark.asyncio
    async def test_merges_of_different_indices(self):
        """Distinct indices are each merged."""
        store = _mock_store()
        actions = [UpdateAction.merge(0, "a"), UpdateAction.merge(1, "b")]

        outcome = await apply_memory_actions(actions, MemoryEntry(), _similar(), store)

        assert outcome.merged == 2
        assert outcome.merged_ids == ["old-0", "old-1"]

    @pytest.mark.asyncio
    async def test_empty_actions_fall_back_to_add(self):
        """No usable action still stores the new memory."""
        store = _mock_store()
        memory = MemoryEntry(id="new-1", topic_summary="new")

        outcome = await apply_memory_actions([], memory, _similar(), store)

        assert outcome.added == 1
        assert store.add_documents.call_args.args[0][0].id == "new-1"

    @pytest.mark.asyncio
    async def test_delete_failure_still_inserts(self):
        """A failed delete is logged and the insert proceeds."""
        store = _mock_store()
        store.delete.side_effect = RuntimeError("delete failed")

        outcome = await apply_memory_actions([UpdateAction.merge(0, "m")], MemoryEntry(), _similar(), store)

        assert outcome.merged == 1
        store.add_documents.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_insert_failure_counted(self):
        """A failed insert is counted, not raised."""
        store = _mock_store()
        store.add_documents.side_effect = RuntimeError("write failed")

        outcome = await apply_memory_actions([UpdateAction.add()], MemoryEntry(), [], store)

        assert outcome.failed == 1
        assert outcome.added == 0


class TestMemoryUpdateResolver:
    """Tests for MemoryUpdateResolver.process."""

    @pytest.mark.asyncio
    async def test_no_similar_adds_without_model(self, mock_llm, fake_embeddings):
        """An empty store means a direct add."""
        store = InMemoryVectorStore(fake_embeddings)
        resolver = MemoryUpdateResolver(mock_llm, store)

        outcome = await resolver.process(MemoryEntry(id="m1", topic_summary="likes tea"))

        assert outcome.added == 1
        assert len(store) == 1
        mock_llm.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_merge_replaces_existing(self, mock_llm, fake_embeddings):
        """A Merge answer rewrites the similar memory in place."""
        store = InMemoryVectorStore(fake_embeddings)
        await store.add_documents([Document.from_memory(MemoryEntry(id="old", topic_summary="runs sometimes"))])
        mock_llm.invoke.return_value = "Merge(0, runs every morning)"
        resolver = MemoryUpdateResolver(mock_llm, store)

        outcome = await resolver.process(MemoryEntry(id="new", topic_summary="runs every morning"))

        assert outcome.merged == 1
        assert len(store) == 1
        assert store.documents[0].id == "old"
        assert store.documents[0].page_content == "runs every morning"
        prompt = mock_llm.invoke.call_args.args[0]
        assert '"history_summaries": ["runs sometimes"]' in prompt

    @pytest.mark.asyncio
    async def test_add_answer_inserts(self, mock_llm, fake_embeddings):
        """An Add answer keeps both memories."""
        store = InMemoryVectorStore(fake_embeddings)
        await store.add_documents([Document.from_memory(MemoryEntry(id="old", topic_summary="has a cat"))])
        mock_llm.invoke.return_value = "Add()"

        outcome = await MemoryUpdateResolver(mock_llm, store).process(MemoryEntry(id="new", topic_summary="likes tea"))

        assert outcome.added == 1
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_model_failure_adds(self, mock_llm, fake_embeddings):
        """If the model call fails the new memory is still added."""
        store = InMemoryVectorStore(fake_embeddings)
        await store.add_documents([Document.from_memory(MemoryEntry(id="old", topic_summary="has a cat"))])
        mock_llm.invoke.side_effect = RuntimeError("timeout")

        outcome = await MemoryUpdateResolver(mock_llm, store).process(MemoryEntry(id="new", topic_summary="likes tea"))

        assert outcome.added == 1
        assert {d.id for d in store.documents} == {"old", "new"}
