"""Offline contrastive pretraining for the reranker transforms.

Before any citation feedback exists, the query and memory transforms can
be warmed up on labelled (query, positive memory, negative memories)
pairs. The objective is InfoNCE over cosine similarities of the adapted
embeddings:

    L = -log( exp(s_+ / tau) / sum_j exp(s_j / tau) )

where s_j = cos(q', m'_j), q' = q + W_q q and m'_j = m_j + W_m m_j. The
gradient is exact: with p = softmax(s / tau) and g_j = (p_j - 1[j = +]) / tau,

    dW_q = (sum_j g_j ds_j/dq') q^T
    dW_m = sum_j g_j (ds_j/dm'_j) m_j^T

so negatives push W_m as well as the positive.

Usage:
    pretrainer = OfflinePretrainer(PretrainingConfig(embedding_dimension=1536))
    history = pretrainer.train(pairs)
    await state_store.save_weights(user_id, pretrainer.reranker_state)
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Hashable, Sequence

import numpy as np
from scipy.special import logsumexp

from rmm.config import DEFAULT_EMBEDDING_DIMENSION
from rmm.learning.reranker import apply_embedding_adaptation
from rmm.learning.types import RerankerState, RerankerWeights
from rmm.linalg.matrix import ArrayLike, DimensionMismatchError, as_matrix, as_vector, zeros_matrix
from rmm.linalg.similarity import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_CONTRASTIVE_TEMPERATURE = 0.07

# Positive counts as retrieved when fewer negatives than this outrank it
RECALL_CUTOFF = 5


@dataclass
class ContrastivePair:
    """A query with one relevant memory and at least one irrelevant one."""

    query: np.ndarray
    positive: np.ndarray
    negatives: np.ndarray  # N x D

    def __post_init__(self):
        self.query = as_vector(self.query)
        self.positive = as_vector(self.positive)
        self.negatives = as_matrix(np.atleast_2d(np.asarray(self.negatives, dtype=np.float64)))
        if self.query.size == 0:
            raise DimensionMismatchError("Query embedding cannot be empty")
        if self.positive.shape != self.query.shape:
            raise DimensionMismatchError(
                f"Positive length ({self.positive.size}) must match query length ({self.query.size})"
            )
        if self.negatives.shape[0] == 0 or self.negatives.size == 0:
            raise ValueError("A contrastive pair needs at least one negative")
        if self.negatives.shape[1] != self.query.size:
            raise DimensionMismatchError(
                f"Negative length ({self.negatives.shape[1]}) must match query length ({self.query.size})"
            )

    @property
    def dimension(self) -> int:
        return int(self.query.size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query.tolist(),
            "positive": self.positive.tolist(),
            "negatives": self.negatives.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContrastivePair:
        return cls(query=data["query"], positive=data["positive"], negatives=data["negatives"])


@dataclass
class PretrainingConfig:
    """Hyper-parameters for offline pretraining."""

    temperature: float = DEFAULT_CONTRASTIVE_TEMPERATURE
    learning_rate: float = 0.001
    epochs: int = 10
    embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSION

    def __post_init__(self):
        if self.temperature <= 0:
            raise ValueError(f"temperature must be positive, got {self.temperature}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.epochs < 1:
            raise ValueError(f"epochs must be at least 1, got {self.epochs}")
        if self.embedding_dimension < 1:
            raise ValueError(f"embedding_dimension must be at least 1, got {self.embedding_dimension}")


@dataclass
class TrainingResult:
    """Loss for one epoch, measured before that epoch's update."""

    epoch: int
    loss: float
    reranker_state: RerankerState | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"epoch": self.epoch, "loss": self.loss}


@dataclass
class PretrainingEvaluation:
    """Held-out quality of the current transforms."""

    mean_loss: float
    recall_at_5: float
    pair_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean_loss": self.mean_loss,
            "recall_at_5": self.recall_at_5,
            "pair_count": self.pair_count,
        }


def _check_temperature(temperature: float) -> None:
    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")


def info_nce_loss(
    query: ArrayLike,
    positive: ArrayLike,
    negatives: Sequence[ArrayLike] | np.ndarray,
    temperature: float = DEFAULT_CONTRASTIVE_TEMPERATURE,
) -> float:
    """InfoNCE loss of one query against its positive and negatives.

    Args:
        query: Query embedding
        positive: Embedding that should score highest
        negatives: One or more embeddings that should score lower
        temperature: Softmax temperature over cosine similarities

    Returns:
        Non-negative loss; near 0 when the positive clearly wins

    Raises:
        DimensionMismatchError: On empty or mismatched embeddings
        ValueError: With no negatives or a non-positive temperature
    """
    _check_temperature(temperature)
    pair = ContrastivePair(query=query, positive=positive, negatives=negatives)
    similarities = np.array(
        [cosine_similarity(pair.query, pair.positive)]
        + [cosine_similarity(pair.query, negative) for negative in pair.negatives]
    )
    scaled = similarities / temperature
    return float(logsumexp(scaled) - scaled[0])


def supervised_contrastive_loss(
    features: Sequence[ArrayLike] | np.ndarray,
    labels: Sequence[Hashable],
    temperature: float = DEFAULT_CONTRASTIVE_TEMPERATURE,
) -> float:
    """Supervised contrastive loss over a labelled batch.

    Every (anchor, same-label sample) pair is scored InfoNCE-style against
    the anchor's differently labelled samples. Anchors lacking either are
    skipped.

    Returns:
        Mean loss over scored pairs, or 0.0 if there are none
    """
    _check_temperature(temperature)
    batch = [as_vector(f) for f in features]
    if len(batch) != len(labels):
        raise ValueError(f"Got {len(batch)} features but {len(labels)} labels")

    total = 0.0
    pairs = 0
    for i, anchor in enumerate(batch):
        positives = [j for j in range(len(batch)) if j != i and labels[j] == labels[i]]
        negatives = [j for j in range(len(batch)) if labels[j] != labels[i]]
        if not positives or not negatives:
            continue

        negative_scaled = [cosine_similarity(anchor, batch[j]) / temperature for j in negatives]
        for j in positives:
            positive_scaled = cosine_similarity(anchor, batch[j]) / temperature
            total += float(logsumexp([positive_scaled, *negative_scaled]) - positive_scaled)
            pairs += 1

    return total / pairs if pairs else 0.0


def compute_contrastive_gradient(
    pair: ContrastivePair,
    weights: RerankerWeights,
    temperature: float = DEFAULT_CONTRASTIVE_TEMPERATURE,
) -> tuple[float, np.ndarray, np.ndarray]:
    """InfoNCE loss and its exact gradient for one pair.

    Zero-length adapted embeddings score 0 and pass no gradient.

    Returns:
        (loss, dL/dW_q, dL/dW_m)
    """
    _check_temperature(temperature)
    if pair.dimension != weights.dimension:
        raise DimensionMismatchError(
            f"Pair dimension ({pair.dimension}) does not match weights ({weights.dimension})"
        )

    originals = np.vstack([pair.positive, pair.negatives])  # positive is row 0
    adapted_query = apply_embedding_adaptation(pair.query, weights.query_transform)
    adapted = np.array(
        [apply_embedding_adaptation(m, weights.memory_transform) for m in originals]
    )

    dimension = pair.dimension
    query_norm = float(np.linalg.norm(adapted_query))
    norms = np.linalg.norm(adapted, axis=1)
    if query_norm == 0:
        scaled = np.zeros(len(originals))
        loss = float(logsumexp(scaled) - scaled[0])
        return loss, zeros_matrix(dimension, dimension), zeros_matrix(dimension, dimension)

    safe_norms = np.where(norms > 0, norms, 1.0)
    unit_query = adapted_query / query_norm
    unit_memories = adapted / safe_norms[:, None]
    similarities = unit_memories @ unit_query

    scaled = similarities / temperature
    loss = float(logsumexp(scaled) - scaled[0])

    probabilities = np.exp(scaled - logsumexp(scaled))
    targets = np.zeros_like(probabilities)
    targets[0] = 1.0
    coefficients = (probabilities - targets) / temperature

    # d cos / d q' and d cos / d m'_j
    d_query = (unit_memories - similarities[:, None] * unit_query[None, :]) / query_norm
    d_memories = (unit_query[None, :] - similarities[:, None] * unit_memories) / safe_norms[:, None]
    d_memories[norms == 0] = 0.0

    grad_adapted_query = coefficients @ d_query
    grad_adapted_memories = coefficients[:, None] * d_memories

    grad_query = np.outer(grad_adapted_query, pair.query)
    grad_memory = grad_adapted_memories.T @ originals
    return loss, grad_query, grad_memory


class OfflinePretrainer:
    """Batch gradient descent on InfoNCE over contrastive pairs."""

    def __init__(
        self,
        config: PretrainingConfig | None = None,
        state: RerankerState | None = None,
        rng: np.random.Generator | None = None,
    ):
        """Initialize the pretrainer.

        Args:
            config: Training hyper-parameters
            state: Starting weights (fresh N(0, 0.01) transforms if omitted)
            rng: Generator for the fresh initialization
        """
        self.config = config or PretrainingConfig()
        if state is None:
            state = RerankerState.initialize(self.config.embedding_dimension, rng=rng)
        elif state.dimension != self.config.embedding_dimension:
            raise DimensionMismatchError(
                f"State dimension ({state.dimension}) does not match "
                f"embedding_dimension ({self.config.embedding_dimension})"
            )
        self._state = copy.deepcopy(state)

    @property
    def reranker_state(self) -> RerankerState:
        """Copy of the current weights, safe to persist or hand to the orchestrator."""
        return copy.deepcopy(self._state)

    def _check_pairs(self, pairs: Sequence[ContrastivePair]) -> None:
        for i, pair in enumerate(pairs):
            if pair.dimension != self.config.embedding_dimension:
                raise DimensionMismatchError(
                    f"Pair {i} has dimension {pair.dimension}, "
                    f"expected {self.config.embedding_dimension}"
                )

    def train(
        self,
        pairs: Sequence[ContrastivePair],
        store_history: bool = False,
    ) -> list[TrainingResult]:
        """Run config.epochs full-batch updates.

        Args:
            pairs: Training pairs
            store_history: Attach a copy of the weights to every epoch's result

        Returns:
            One TrainingResult per epoch

        Raises:
            ValueError: If pairs is empty
            DimensionMismatchError: If a pair does not match embedding_dimension
        """
        if not pairs:
            raise ValueError("Cannot pretrain without contrastive pairs")
        self._check_pairs(pairs)

        history = []
        for epoch in range(self.config.epochs):
            weights = self._state.weights
            total_loss = 0.0
            grad_query = zeros_matrix(weights.dimension, weights.dimension)
            grad_memory = zeros_matrix(weights.dimension, weights.dimension)

            for pair in pairs:
                loss, pair_grad_query, pair_grad_memory = compute_contrastive_gradient(
                    pair, weights, self.config.temperature
                )
                total_loss += loss
                grad_query += pair_grad_query
                grad_memory += pair_grad_memory

            count = len(pairs)
            step = self.config.learning_rate / count
            self._state.weights = RerankerWeights(
                query_transform=weights.query_transform - step * grad_query,
                memory_transform=weights.memory_transform - step * grad_memory,
            )

            mean_loss = total_loss / count
            logger.debug(f"Pretraining epoch {epoch + 1}/{self.config.epochs}: loss={mean_loss:.4f}")
            history.append(
                TrainingResult(
                    epoch=epoch,
                    loss=mean_loss,
                    reranker_state=self.reranker_state if store_history else None,
                )
            )

        logger.info(
            f"Pretrained reranker on {len(pairs)} pairs for {self.config.epochs} epochs "
            f"(loss {history[0].loss:.4f} -> {history[-1].loss:.4f})"
        )
        return history

    def evaluate(self, pairs: Sequence[ContrastivePair]) -> PretrainingEvaluation:
        """Mean InfoNCE loss and recall@5 of the positive under the current weights."""
        if not pairs:
            return PretrainingEvaluation(mean_loss=0.0, recall_at_5=0.0)
        self._check_pairs(pairs)

        weights = self._state.weights
        total_loss = 0.0
        hits = 0
        for pair in pairs:
            query = apply_embedding_adaptation(pair.query, weights.query_transform)
            positive = apply_embedding_adaptation(pair.positive, weights.memory_transform)
            negatives = [apply_embedding_adaptation(n, weights.memory_transform) for n in pair.negatives]

            total_loss += info_nce_loss(query, positive, negatives, self.config.temperature)

            positive_similarity = cosine_similarity(query, positive)
            outranked_by = sum(cosine_similarity(query, n) > positive_similarity for n in negatives)
            if outranked_by < RECALL_CUTOFF:
                hits += 1

        count = len(pairs)
        return PretrainingEvaluation(
            mean_loss=total_loss / count,
            recall_at_5=hits / count,
            pair_count=count,
        )
