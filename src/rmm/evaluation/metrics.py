"""Retrieval metrics for evaluating memory selection offline.

Id-based functions take memory ids in ranked order and treat relevance
as binary. Turn-level functions match dialogue turns by role and content.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from rmm.memory.messages import message_content, message_role


@dataclass
class RetrievalEvaluation:
    """Aggregate retrieval quality over a set of queries."""

    query_count: int
    recall_at_1: float
    recall_at_5: float
    recall_at_10: float
    ndcg_at_5: float
    ndcg_at_10: float
    mrr: float
    session_accuracy: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "query_count": self.query_count,
            "recall_at_1": self.recall_at_1,
            "recall_at_5": self.recall_at_5,
            "recall_at_10": self.recall_at_10,
            "ndcg_at_5": self.ndcg_at_5,
            "ndcg_at_10": self.ndcg_at_10,
            "mrr": self.mrr,
            "session_accuracy": self.session_accuracy,
        }


def compute_recall_at_k(retrieved: Sequence[str], relevant: Sequence[str], k: int) -> float:
    """Fraction of relevant ids present in the top k retrieved.

    Returns 0.0 when there is nothing relevant.
    """
    if not relevant or k <= 0:
        return 0.0
    relevant_set = set(relevant)
    hits = len(set(retrieved[:k]) & relevant_set)
    return hits / len(relevant_set)


def compute_mean_reciprocal_rank(
    retrieved: Sequence[Sequence[str]],
    relevant: Sequence[Sequence[str]],
) -> float:
    """Mean over queries of 1 / rank of the first relevant hit.

    Args:
        retrieved: Ranked ids per query
        relevant: Relevant ids per query (aligned with retrieved)

    Returns:
        MRR in [0, 1]; queries without a relevant hit contribute 0
    """
    if not retrieved:
        return 0.0

    reciprocal_ranks = []
    for i, ranked in enumerate(retrieved):
        query_relevant = set(relevant[i]) if i < len(relevant) else set()
        rank = next((pos for pos, doc_id in enumerate(ranked, start=1) if doc_id in query_relevant), 0)
        reciprocal_ranks.append(1.0 / rank if rank else 0.0)

    return float(np.mean(reciprocal_ranks))


def compute_ndcg_at_k(retrieved: Sequence[str], relevant: Sequence[str], k: int) -> float:
    """Normalized discounted cumulative gain at k with binary gains."""
    if k <= 0 or not relevant:
        return 0.0

    relevant_set = set(relevant)
    gains = np.array([1.0 if doc_id in relevant_set else 0.0 for doc_id in retrieved[:k]])
    discounts = 1.0 / np.log2(np.arange(2, len(gains) + 2))
    dcg = float(np.sum(gains * discounts)) if len(gains) else 0.0

    ideal_count = min(k, len(relevant_set))
    idcg = float(np.sum(1.0 / np.log2(np.arange(2, ideal_count + 2))))
    if idcg == 0:
        return 0.0
    return dcg / idcg


def compute_session_accuracy(retrieved_sessions: Sequence[str], answer_sessions: Sequence[str]) -> float:
    """Fraction of answer sessions that appear among retrieved sessions."""
    if not answer_sessions:
        return 0.0
    answers = set(answer_sessions)
    hits = len(answers & set(retrieved_sessions))
    return hits / len(answers)


def _turn_key(turn: Any) -> tuple[str, str]:
    return message_role(turn), message_content(turn)


def compute_recall_at_turn_k(
    retrieved_turns: Sequence[Any],
    all_turns: Sequence[Any],
    has_answer: Sequence[bool],
) -> float:
    """Fraction of answer-bearing turns found among the retrieved turns.

    Args:
        retrieved_turns: Turns recovered by retrieval (already cut to k)
        all_turns: Every turn of the conversation
        has_answer: Per turn in all_turns, whether it holds the answer

    Returns:
        Recall in [0, 1]; 0.0 when there are no turns or no answer turns
    """
    if not all_turns or not has_answer:
        return 0.0

    answer_turns = [turn for turn, flag in zip(all_turns, has_answer) if flag]
    if not answer_turns:
        return 0.0

    retrieved = {_turn_key(turn) for turn in retrieved_turns}
    found = sum(1 for turn in answer_turns if _turn_key(turn) in retrieved)
    return found / len(answer_turns)


# Turn accuracy is recall over the answer turns
compute_turn_accuracy = compute_recall_at_turn_k


def evaluate_retrieval(
    retrieved: Sequence[Sequence[str]],
    relevant: Sequence[Sequence[str]],
    retrieved_sessions: Sequence[Sequence[str]] | None = None,
    answer_sessions: Sequence[Sequence[str]] | None = None,
) -> RetrievalEvaluation:
    """Compute the standard metric set over aligned per-query rankings."""
    n = len(retrieved)
    if n == 0:
        return RetrievalEvaluation(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    def mean_at(fn, k: int) -> float:
        return float(np.mean([fn(retrieved[i], relevant[i], k) for i in range(n)]))

    session_accuracy = 0.0
    if retrieved_sessions is not None and answer_sessions is not None:
        session_accuracy = float(
            np.mean([compute_session_accuracy(retrieved_sessions[i], answer_sessions[i]) for i in range(n)])
        )

    return RetrievalEvaluation(
        query_count=n,
        recall_at_1=mean_at(compute_recall_at_k, 1),
        recall_at_5=mean_at(compute_recall_at_k, 5),
        recall_at_10=mean_at(compute_recall_at_k, 10),
        ndcg_at_5=mean_at(compute_ndcg_at_k, 5),
        ndcg_at_10=mean_at(compute_ndcg_at_k, 10),
        mrr=compute_mean_reciprocal_rank(retrieved, relevant),
        session_accuracy=session_accuracy,
    )
