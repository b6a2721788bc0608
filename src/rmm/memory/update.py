"""Memory update: decide whether a new memory is added or merged.

For each newly extracted memory, similar existing memories are shown to
a language model which answers with one action per line:

    Add()
    Merge(index, merged_summary)

Resolution rules:
- Merge takes priority: if any valid Merge survives, the raw new memory
  is never inserted on its own
- First wins: later Merges for an already-merged index are dropped
- Each Merge deletes the referenced memory and inserts one document with
  the merged summary (same id, original metadata, new timestamp)
- Any number of Add() lines collapse to a single insert
- Malformed or out-of-range lines are ignored
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from rmm.ai.prompts import build_update_memory_prompt
from rmm.memory.types import MemoryEntry, RetrievedMemory, now_ms
from rmm.memory.vectorstore import Document, find_similar_memories

if TYPE_CHECKING:
    from rmm.ai.protocols import LanguageModel
    from rmm.memory.vectorstore import VectorStore

logger = logging.getLogger(__name__)

MERGE_ACTION_PATTERN = re.compile(r"^Merge\((\d+),\s*([^)]+)\)$")
ADD_ACTION = "Add()"


class UpdateActionType(str, Enum):
    """Memory update decision."""

    ADD = "add"
    MERGE = "merge"


@dataclass(frozen=True)
class UpdateAction:
    """One parsed action. index and merged_summary are set for MERGE only."""

    action: UpdateActionType
    index: int | None = None
    merged_summary: str | None = None

    @classmethod
    def add(cls) -> UpdateAction:
        return cls(UpdateActionType.ADD)

    @classmethod
    def merge(cls, index: int, merged_summary: str) -> UpdateAction:
        return cls(UpdateActionType.MERGE, index, merged_summary)


@dataclass
class ValidationResult:
    """Line-level validation of a model's action output."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class ResolvedActions:
    """Deduplicated actions ready to apply."""

    merges: list[UpdateAction] = field(default_factory=list)
    add: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.merges and not self.add


@dataclass
class UpdateOutcome:
    """What process() did to the store for one memory."""

    added: int = 0
    merged: int = 0
    failed: int = 0
    merged_ids: list[str] = field(default_factory=list)


def _parse_merge(line: str, history_length: int) -> UpdateAction | None:
    match = MERGE_ACTION_PATTERN.match(line)
    if not match:
        return None
    index = int(match.group(1))
    summary = match.group(2).strip()
    if not summary:
        return None
    if not 0 <= index < history_length:
        logger.debug(f"Merge index {index} is out of bounds (history length: {history_length}), skipping")
        return None
    return UpdateAction.merge(index, summary)


def parse_update_actions(output: str, history_length: int = 0) -> list[UpdateAction]:
    """Parse model output into actions, silently skipping invalid lines.

    Args:
        output: Raw model output, one action per line
        history_length: Number of similar memories shown (bounds Merge indices)

    Returns:
        Valid actions in output order
    """
    if not output or not output.strip():
        return []

    actions = []
    for raw_line in output.strip().splitlines():
        line = raw_line.strip()
        if line == ADD_ACTION:
            actions.append(UpdateAction.add())
        elif line.startswith("Merge("):
            action = _parse_merge(line, history_length)
            if action:
                actions.append(action)
        elif line:
            logger.debug(f"Ignoring unrecognized update action: {line!r}")
    return actions


def validate_update_actions(output: str, history_length: int) -> ValidationResult:
    """Report every problem in a model's action output.

    An empty output is valid (no action requested). Otherwise the output is
    valid only if it has at least one valid action and no invalid lines.
    """
    if not output or not output.strip():
        return ValidationResult(is_valid=True)

    errors = []
    has_valid_action = False
    for line_num, raw_line in enumerate(output.strip().splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        if line == ADD_ACTION:
            has_valid_action = True
            continue
        if line.startswith("Merge("):
            match = MERGE_ACTION_PATTERN.match(line)
            if not match:
                errors.append(f"Line {line_num}: Invalid Merge format. Expected: Merge(index, summary)")
                continue
            index = int(match.group(1))
            if not 0 <= index < history_length:
                errors.append(
                    f"Line {line_num}: Merge index {index} is out of bounds "
                    f"(history length: {history_length})"
                )
                continue
            if not match.group(2).strip():
                errors.append(f"Line {line_num}: Merge summary cannot be empty")
                continue
            has_valid_action = True
            continue
        errors.append(f'Line {line_num}: Unknown action format "{line}"')

    return ValidationResult(is_valid=not errors and has_valid_action, errors=errors)


def resolve_update_actions(actions: Sequence[UpdateAction]) -> ResolvedActions:
    """Apply Merge priority, first-wins dedup and Add collapsing."""
    merges: list[UpdateAction] = []
    merged_indices: set[int] = set()
    wants_add = False

    for action in actions:
        if action.action == UpdateActionType.MERGE:
            if action.index in merged_indices:
                logger.debug(f"Duplicate Merge for index {action.index}, keeping first")
                continue
            merged_indices.add(action.index)
            merges.append(action)
        elif action.action == UpdateActionType.ADD:
            wants_add = True

    return ResolvedActions(merges=merges, add=wants_add and not merges)


async def add_memory(memory: MemoryEntry, vector_store: VectorStore) -> bool:
    """Insert a memory; failures are logged, not raised."""
    try:
        await vector_store.add_documents([Document.from_memory(memory)])
        return True
    except Exception as e:
        logger.warning(f"Error adding memory {memory.id}, continuing: {e}")
        return False


async def merge_memory(
    existing: RetrievedMemory,
    merged_summary: str,
    vector_store: VectorStore,
) -> bool:
    """Replace an existing memory's summary with a merged one.

    Delete then insert under the same id. If delete fails the insert is
    still attempted, since most backends upsert on id conflict.
    """
    metadata = existing.to_metadata()
    metadata["raw_dialogue"] = existing.raw_dialogue or merged_summary
    metadata["timestamp"] = now_ms()

    try:
        await vector_store.delete(ids=[existing.id])
    except Exception as e:
        logger.warning(f"Delete failed for memory {existing.id}, attempting upsert: {e}")

    try:
        await vector_store.add_documents(
            [Document(page_content=merged_summary, metadata=metadata, id=existing.id)]
        )
        return True
    except Exception as e:
        logger.warning(f"Error merging memory {existing.id}, continuing: {e}")
        return False


async def apply_memory_actions(
    actions: Sequence[UpdateAction],
    new_memory: MemoryEntry,
    similar: Sequence[RetrievedMemory],
    vector_store: VectorStore,
) -> UpdateOutcome:
    """Resolve and apply actions for one new memory.

    An empty action list (e.g. the model failed) falls back to a single Add
    so the new memory is not lost.
    """
    resolved = resolve_update_actions(actions)
    outcome = UpdateOutcome()

    if resolved.is_empty:
        resolved.add = True

    for action in resolved.merges:
        target = similar[action.index]
        if await merge_memory(target, action.merged_summary, vector_store):
            outcome.merged += 1
            outcome.merged_ids.append(target.id)
        else:
            outcome.failed += 1

    if resolved.add:
        if await add_memory(new_memory, vector_store):
            outcome.added += 1
        else:
            outcome.failed += 1

    return outcome


class MemoryUpdateResolver:
    """Consolidates newly extracted memories into the vector store."""

    def __init__(
        self,
        summarizer: LanguageModel,
        vector_store: VectorStore,
        top_k: int = 5,
    ):
        """Initialize the resolver.

        Args:
            summarizer: Model that answers the Add/Merge prompt
            vector_store: Long-term memory store
            top_k: Similar memories to show the model
        """
        self.summarizer = summarizer
        self.vector_store = vector_store
        self.top_k = top_k

    async def process(self, new_memory: MemoryEntry) -> UpdateOutcome:
        """Add or merge one memory.

        Args:
            new_memory: Freshly extracted memory

        Returns:
            UpdateOutcome describing the store mutations
        """
        similar = await find_similar_memories(self.vector_store, new_memory.topic_summary, self.top_k)
        if not similar:
            outcome = UpdateOutcome()
            if await add_memory(new_memory, self.vector_store):
                outcome.added = 1
            else:
                outcome.failed = 1
            return outcome

        prompt = build_update_memory_prompt([m.topic_summary for m in similar], new_memory.topic_summary)
        try:
            output = await self.summarizer.invoke(prompt)
            actions = parse_update_actions(output, len(similar))
        except Exception as e:
            logger.warning(f"Memory update decision failed, adding memory as new: {e}")
            actions = []

        outcome = await apply_memory_actions(actions, new_memory, similar, self.vector_store)
        if outcome.merged:
            logger.info(f"Merged new memory into {outcome.merged_ids}")
        return outcome
