"""Exact REINFORCE gradients for the reranker transforms.

For a softmax selection policy over K candidates with scores
s_i = q'^T m'_i and P = softmax(s / tau), the score function is

    d log P(S) / d s_i = (1[i in S] - P_i) / tau

Chaining through the residual adaptations q' = q + W_q q and
m'_i = m_i + W_m m_i gives outer-product gradients centred on the
probability-weighted means of the candidate embeddings:

    dW_q += (eta / tau) * A_i * c_i * (m'_i - E[m']) q^T
    dW_m += (eta / tau) * A_i * c_i * q' (m_i - E[m])^T

where A_i = R_i - b is the advantage and c_i = 1[i in S] - P_i.
"""

from __future__ import annotations

import logging

import numpy as np

from rmm.learning.types import GradientSample, RerankerConfig

logger = logging.getLogger(__name__)

# Advantages below this contribute nothing measurable
ADVANTAGE_EPSILON = 1e-9


def compute_exact_gradient(
    sample: GradientSample,
    config: RerankerConfig,
) -> tuple[np.ndarray, np.ndarray]:
    """Compute the learning-rate-scaled gradient for one turn.

    Args:
        sample: Frozen reranking decision with rewards for all K candidates
        config: Reranker hyper-parameters (learning_rate, baseline, temperature)

    Returns:
        (grad_wq, grad_wm), each D x D
    """
    dim = sample.dimension
    grad_wq = np.zeros((dim, dim))
    grad_wm = np.zeros((dim, dim))

    k = sample.num_candidates
    if k == 0:
        return grad_wq, grad_wm

    probabilities = sample.sampling_probabilities
    originals = sample.memory_embeddings
    adapted = sample.adapted_memory_embeddings

    expected_original = probabilities @ originals  # E[m]
    expected_adapted = probabilities @ adapted  # E[m']

    indicator = np.zeros(k)
    indicator[list(sample.selected_indices)] = 1.0

    advantages = sample.citation_rewards - config.baseline
    scale = config.learning_rate / config.temperature

    contributing = 0
    for i in range(k):
        advantage = advantages[i]
        if abs(advantage) < ADVANTAGE_EPSILON:
            continue

        weight = scale * advantage * (indicator[i] - probabilities[i])
        if weight == 0:
            continue

        grad_wq += weight * np.outer(adapted[i] - expected_adapted, sample.query_embedding)
        grad_wm += weight * np.outer(sample.adapted_query, originals[i] - expected_original)
        contributing += 1

    logger.debug(f"Exact REINFORCE gradient from {contributing}/{k} candidates")
    return grad_wq, grad_wm


def build_gradient_sample(
    query_embedding: np.ndarray,
    adapted_query: np.ndarray,
    memory_embeddings: np.ndarray,
    adapted_memory_embeddings: np.ndarray,
    sampling_probabilities: np.ndarray,
    selected_indices: list[int],
    citation_rewards: np.ndarray,
) -> GradientSample:
    """Freeze one turn's decision into a GradientSample (copies every array)."""
    return GradientSample(
        query_embedding=np.array(query_embedding, dtype=np.float64),
        adapted_query=np.array(adapted_query, dtype=np.float64),
        memory_embeddings=np.array(memory_embeddings, dtype=np.float64),
        adapted_memory_embeddings=np.array(adapted_memory_embeddings, dtype=np.float64),
        sampling_probabilities=np.array(sampling_probabilities, dtype=np.float64),
        selected_indices=tuple(selected_indices),
        citation_rewards=np.array(citation_rewards, dtype=np.float64),
    )
