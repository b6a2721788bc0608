"""Learned memory reranker with Gumbel-Softmax Top-M selection.

Implements the retrospective reflection reranker from "In Prospect and
Retrospect: Reflective Memory Management for Long-term Personalized
Dialogue Agents" (ACL 2025):

    q' = q + W_q q          (Equation 1, residual adaptation)
    m'_i = m_i + W_m m_i
    s_i = q'^T m'_i
    s~_i = s_i + g_i,  g_i = -log(-log u_i),  u_i ~ U(0, 1)
    P_i = softmax(s~ / tau)_i

Selecting the M largest perturbed scores (Gumbel-Top-K) is equivalent to
sampling M memories without replacement from softmax(s / tau). P over all
K candidates is kept for the exact policy gradient.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy.special import softmax

from rmm.linalg.matrix import (
    ArrayLike,
    DimensionMismatchError,
    as_matrix,
    as_vector,
    matmul_vector,
    residual_add,
)
from rmm.linalg.similarity import dot_product
from rmm.memory.types import RetrievedMemory

if TYPE_CHECKING:
    from rmm.learning.types import RerankerState

logger = logging.getLogger(__name__)

# Scores beyond this are treated as overflow and clamped
MAX_SCORE = 1e30

# Keeps u strictly inside (0, 1) so the Gumbel transform stays finite
UNIFORM_EPSILON = 1e-10


@dataclass
class GumbelSampleResult:
    """Outcome of one Gumbel-Softmax Top-M draw."""

    selected_memories: list[RetrievedMemory] = field(default_factory=list)
    all_probabilities: np.ndarray = field(default_factory=lambda: np.zeros(0))
    selected_indices: list[int] = field(default_factory=list)


@dataclass
class RerankResult:
    """Everything a turn needs to inject memories and later build a gradient sample."""

    query_embedding: np.ndarray
    adapted_query: np.ndarray
    memory_embeddings: np.ndarray  # (K, D) original, zero rows for missing embeddings
    adapted_memory_embeddings: np.ndarray  # (K, D)
    scored_memories: list[RetrievedMemory]  # all K, with rerank_score set
    sample: GumbelSampleResult

    @property
    def selected_memories(self) -> list[RetrievedMemory]:
        return self.sample.selected_memories

    @property
    def selected_indices(self) -> list[int]:
        return self.sample.selected_indices

    @property
    def probabilities(self) -> np.ndarray:
        return self.sample.all_probabilities


def apply_embedding_adaptation(embedding: ArrayLike, transform: ArrayLike) -> np.ndarray:
    """Apply the residual linear adaptation e' = e + W e.

    Args:
        embedding: Raw embedding of length D
        transform: Square D x D transform

    Returns:
        Adapted embedding of length D

    Raises:
        DimensionMismatchError: If the transform is not square or does not match D
    """
    vector = as_vector(embedding)
    matrix = as_matrix(transform)
    rows, cols = matrix.shape
    if rows != cols:
        raise DimensionMismatchError(f"Transform must be square, got {rows}x{cols}")
    if cols != vector.shape[0]:
        raise DimensionMismatchError(
            f"Transform dimension ({cols}) must match embedding length ({vector.shape[0]})"
        )
    return residual_add(vector, matmul_vector(matrix, vector))


def compute_relevance_score(adapted_query: ArrayLike, adapted_memory: ArrayLike) -> float:
    """Dot-product relevance, clamped to +/-MAX_SCORE on overflow."""
    with np.errstate(over="ignore", invalid="ignore"):
        score = dot_product(adapted_query, adapted_memory)

    if math.isnan(score):
        logger.warning("Relevance score is NaN, treating as 0")
        return 0.0
    if math.isinf(score) or abs(score) > MAX_SCORE:
        return math.copysign(MAX_SCORE, score)
    return score


def _sample_gumbel(size: int, rng: np.random.Generator) -> np.ndarray:
    u = np.clip(rng.random(size), UNIFORM_EPSILON, 1.0 - UNIFORM_EPSILON)
    return -np.log(-np.log(u))


def gumbel_softmax_sample(
    scored_memories: Sequence[RetrievedMemory],
    top_m: int,
    temperature: float,
    rng: np.random.Generator | None = None,
) -> GumbelSampleResult:
    """Select top_m memories with the Gumbel-Top-K trick.

    Each memory's rerank_score (falling back to relevance_score) is
    perturbed with Gumbel noise; the top_m perturbed scores are selected.
    Probabilities are softmax(perturbed / temperature) over all K.

    Degraded modes:
    - top_m >= K: every memory selected, uniform 1/K, no noise
    - K == 0 or top_m <= 0: empty result
    - softmax normalizer zero or non-finite: uniform 1/K, first top_m selected

    Args:
        scored_memories: Candidates in retrieval order
        top_m: Number of memories to select
        temperature: Softmax temperature (must be positive)
        rng: Optional generator for reproducible sampling

    Returns:
        GumbelSampleResult with defensive copies of the selected memories
    """
    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")

    k = len(scored_memories)
    if k == 0 or top_m <= 0:
        return GumbelSampleResult()

    if top_m >= k:
        return GumbelSampleResult(
            selected_memories=[m.copy() for m in scored_memories],
            all_probabilities=np.full(k, 1.0 / k),
            selected_indices=list(range(k)),
        )

    generator = rng if rng is not None else np.random.default_rng()
    scores = np.array(
        [m.rerank_score if m.rerank_score is not None else m.relevance_score for m in scored_memories],
        dtype=np.float64,
    )
    perturbed = scores + _sample_gumbel(k, generator)

    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        probabilities = softmax(perturbed / temperature)

    total = float(np.sum(probabilities)) if np.all(np.isfinite(probabilities)) else math.nan
    if not math.isfinite(total) or total == 0:
        logger.warning(
            f"Softmax normalizer degenerate ({total}), falling back to uniform selection of {top_m}/{k}"
        )
        indices = list(range(top_m))
        return GumbelSampleResult(
            selected_memories=[scored_memories[i].copy() for i in indices],
            all_probabilities=np.full(k, 1.0 / k),
            selected_indices=indices,
        )

    # Stable sort keeps retrieval order among exact ties
    order = np.argsort(-perturbed, kind="stable")
    indices = [int(i) for i in order[:top_m]]

    return GumbelSampleResult(
        selected_memories=[scored_memories[i].copy() for i in indices],
        all_probabilities=probabilities,
        selected_indices=indices,
    )


def rerank_memories(
    query_embedding: ArrayLike,
    memories: Sequence[RetrievedMemory],
    state: RerankerState,
    rng: np.random.Generator | None = None,
) -> RerankResult:
    """Adapt, score and sample a candidate pool for one turn.

    At most state.config.top_k candidates are considered. Memories
    without an embedding keep their retrieval relevance as the score and
    contribute zero vectors to the gradient bookkeeping.

    Args:
        query_embedding: Raw query embedding of length D
        memories: Retrieved candidates in retrieval order
        state: Current reranker weights and config
        rng: Optional generator for reproducible sampling

    Returns:
        RerankResult for injection and gradient bookkeeping
    """
    config = state.config
    dim = state.dimension
    q = as_vector(query_embedding)
    if q.shape[0] != dim:
        raise DimensionMismatchError(
            f"Query embedding dimension ({q.shape[0]}) does not match reranker dimension ({dim})"
        )

    candidates = list(memories)[: config.top_k]
    adapted_query = apply_embedding_adaptation(q, state.weights.query_transform)

    originals = np.zeros((len(candidates), dim))
    adapted = np.zeros((len(candidates), dim))
    scored: list[RetrievedMemory] = []

    for i, memory in enumerate(candidates):
        scored_memory = memory.copy()
        if memory.embedding is not None and len(memory.embedding) > 0:
            originals[i] = as_vector(memory.embedding)
            adapted[i] = apply_embedding_adaptation(originals[i], state.weights.memory_transform)
            scored_memory.rerank_score = compute_relevance_score(adapted_query, adapted[i])
        else:
            logger.warning(f"Memory {memory.id} missing embedding, using zero vector")
            scored_memory.rerank_score = memory.relevance_score
        scored.append(scored_memory)

    sample = gumbel_softmax_sample(scored, config.top_m, config.temperature, rng)

    return RerankResult(
        query_embedding=q,
        adapted_query=adapted_query,
        memory_embeddings=originals,
        adapted_memory_embeddings=adapted,
        scored_memories=scored,
        sample=sample,
    )
