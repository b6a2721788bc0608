"""Learning module: retrospective reflection for the memory reranker.

The reranker adapts query and memory embeddings with two learnable
transforms, samples which memories to show the generator, and learns
from which of them the generator cites.

Components:
- rerank_memories / gumbel_softmax_sample: adaptation, scoring, Top-M selection
- extract_citations / build_citation_records: citations to per-candidate rewards
- compute_exact_gradient: exact REINFORCE gradient for one turn
- GradientAccumulator: batches gradients and applies clipped updates
- OfflinePretrainer: InfoNCE warm-up of the transforms from labelled pairs

Usage:
    from rmm.learning import (
        RerankerState,
        GradientAccumulator,
        rerank_memories,
        extract_citations,
        build_citation_records,
        build_gradient_sample,
        citation_rewards,
    )

    state = RerankerState.initialize(dimension=1536)
    result = rerank_memories(query_embedding, retrieved, state)

    # ... generate with result.selected_memories injected ...

    citations = extract_citations(completion)
    records = build_citation_records(citations, retrieved, result.selected_indices, turn)
    sample = build_gradient_sample(
        result.query_embedding,
        result.adapted_query,
        result.memory_embeddings,
        result.adapted_memory_embeddings,
        result.probabilities,
        result.selected_indices,
        citation_rewards(records),
    )
    outcome = await GradientAccumulator(state_store).record_sample(user_id, sample, state)
"""

from rmm.learning.types import (
    AccumulatorPhase,
    CitationRecord,
    GradientAccumulatorState,
    GradientSample,
    RerankerConfig,
    RerankerState,
    RerankerWeights,
)
from rmm.learning.reranker import (
    GumbelSampleResult,
    RerankResult,
    apply_embedding_adaptation,
    compute_relevance_score,
    gumbel_softmax_sample,
    rerank_memories,
)
from rmm.learning.citations import (
    CitationResult,
    CitationType,
    build_citation_records,
    citation_rewards,
    extract_citations,
    filter_citations,
    validate_citations,
)
from rmm.learning.gradients import build_gradient_sample, compute_exact_gradient
from rmm.learning.accumulator import (
    AccumulatorOutcome,
    GradientAccumulator,
    apply_accumulated_update,
)
from rmm.learning.pretraining import (
    ContrastivePair,
    OfflinePretrainer,
    PretrainingConfig,
    PretrainingEvaluation,
    TrainingResult,
    compute_contrastive_gradient,
    info_nce_loss,
    supervised_contrastive_loss,
)

__all__ = [
    # Types
    "AccumulatorPhase",
    "CitationRecord",
    "GradientAccumulatorState",
    "GradientSample",
    "RerankerConfig",
    "RerankerState",
    "RerankerWeights",
    # Reranking
    "GumbelSampleResult",
    "RerankResult",
    "apply_embedding_adaptation",
    "compute_relevance_score",
    "gumbel_softmax_sample",
    "rerank_memories",
    # Citations
    "CitationResult",
    "CitationType",
    "build_citation_records",
    "citation_rewards",
    "extract_citations",
    "filter_citations",
    "validate_citations",
    # Gradients
    "build_gradient_sample",
    "compute_exact_gradient",
    # Accumulator
    "AccumulatorOutcome",
    "GradientAccumulator",
    "apply_accumulated_update",
    # Pretraining
    "ContrastivePair",
    "OfflinePretrainer",
    "PretrainingConfig",
    "PretrainingEvaluation",
    "TrainingResult",
    "compute_contrastive_gradient",
    "info_nce_loss",
    "supervised_contrastive_loss",
]
