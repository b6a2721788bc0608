"""Citation parsing and reward assignment.

The generation prompt asks the model to cite useful memories as [i] or
[i, j, k], or to emit [NO_CITE]. Citations are the reward signal for the
reranker: a selected memory that is cited earns +1, everything else -1.

Anything bracketed that is not a clean list of non-negative integers
marks the whole response as malformed, and the RL update for that turn
is skipped rather than guessed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import numpy as np

from rmm.learning.types import CitationRecord
from rmm.memory.types import RetrievedMemory

logger = logging.getLogger(__name__)

CITATION_PATTERN = re.compile(r"\[([^\]]*)\]")
INDEX_PATTERN = re.compile(r"^\d+$")
NO_CITE_MARKER = "NO_CITE"


class CitationType(str, Enum):
    """Classification of a generated response's citations."""

    CITED = "cited"
    NO_CITE = "no_cite"
    MALFORMED = "malformed"


@dataclass
class CitationResult:
    """Parsed citations. indices is only populated for CITED."""

    type: CitationType
    indices: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {"type": self.type.value, "indices": list(self.indices)}


def _parse_group(content: str) -> list[int] | None:
    indices = []
    for part in content.split(","):
        token = part.strip()
        if not INDEX_PATTERN.match(token):
            return None
        indices.append(int(token))
    return indices


def extract_citations(response: str) -> CitationResult:
    """Classify and parse the citation markers in a response.

    Args:
        response: Generated text

    Returns:
        CitationResult (CITED with deduplicated indices in first-seen order,
        NO_CITE, or MALFORMED)
    """
    if not response or not response.strip():
        return CitationResult(CitationType.MALFORMED)

    groups = CITATION_PATTERN.findall(response)
    if not groups:
        return CitationResult(CitationType.MALFORMED)

    if any(group.strip() == NO_CITE_MARKER for group in groups):
        return CitationResult(CitationType.NO_CITE)

    seen: set[int] = set()
    indices: list[int] = []
    for group in groups:
        parsed = _parse_group(group)
        if parsed is None:
            logger.debug(f"Unparseable citation group: [{group}]")
            return CitationResult(CitationType.MALFORMED)
        for idx in parsed:
            if idx not in seen:
                seen.add(idx)
                indices.append(idx)

    return CitationResult(CitationType.CITED, indices)


def validate_citations(indices: Sequence[int], top_m: int) -> bool:
    """Check indices are unique and each falls within [0, top_m)."""
    if len(set(indices)) != len(indices):
        return False
    return all(isinstance(i, int) and 0 <= i < top_m for i in indices)


def filter_citations(indices: Sequence[int], bound: int) -> list[int]:
    """Drop citation indices outside [0, bound), logging each one.

    Out-of-range citations are a model mistake, not a reason to throw
    away the rest of the turn's signal.
    """
    valid = []
    for idx in indices:
        if 0 <= idx < bound:
            valid.append(idx)
        else:
            logger.warning(f"Out-of-bounds citation index {idx} (valid: 0-{bound - 1}), dropping")
    return valid


def build_citation_records(
    result: CitationResult,
    retrieved: Sequence[RetrievedMemory],
    selected_indices: Sequence[int],
    turn_index: int,
) -> list[CitationRecord]:
    """Assign a reward to every retrieved memory for exact REINFORCE.

    Citation indices refer to positions in the injected memory block, i.e.
    positions within selected_indices, not within the full candidate list.

    Rewards:
    - selected and cited: +1
    - selected, not cited: -1
    - not selected: -1

    Args:
        result: Parsed citations for the response
        retrieved: All K retrieved memories
        selected_indices: Positions of the selected memories within retrieved
        turn_index: Turn the response belongs to

    Returns:
        One record per retrieved memory, or [] when the response was malformed
    """
    if result.type == CitationType.MALFORMED:
        logger.warning("Malformed citation format in response, RL update aborted")
        return []

    cited_positions: set[int] = set()
    if result.type == CitationType.CITED:
        cited_positions = set(filter_citations(result.indices, len(selected_indices)))

    cited_globals = {selected_indices[pos] for pos in cited_positions}

    records = []
    for i, memory in enumerate(retrieved):
        cited = i in cited_globals
        records.append(
            CitationRecord(
                memory_id=memory.id,
                cited=cited,
                reward=1 if cited else -1,
                turn_index=turn_index,
            )
        )
    return records


def citation_rewards(records: Sequence[CitationRecord]) -> np.ndarray:
    """Reward vector aligned with the retrieved candidate order."""
    return np.array([r.reward for r in records], dtype=np.float64)
