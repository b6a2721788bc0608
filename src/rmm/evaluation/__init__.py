"""Offline retrieval evaluation."""

from rmm.evaluation.metrics import (
    RetrievalEvaluation,
    compute_mean_reciprocal_rank,
    compute_ndcg_at_k,
    compute_recall_at_k,
    compute_recall_at_turn_k,
    compute_session_accuracy,
    compute_turn_accuracy,
    evaluate_retrieval,
)

__all__ = [
    "RetrievalEvaluation",
    "compute_mean_reciprocal_rank",
    "compute_ndcg_at_k",
    "compute_recall_at_k",
    "compute_recall_at_turn_k",
    "compute_session_accuracy",
    "compute_turn_accuracy",
    "evaluate_retrieval",
]
