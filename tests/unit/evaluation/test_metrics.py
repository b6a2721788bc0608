"""Tests for offline retrieval metrics."""

import math

import pytest

from rmm.evaluation.metrics import (
    compute_mean_reciprocal_rank,
    compute_ndcg_at_k,
    compute_recall_at_k,
    compute_recall_at_turn_k,
    compute_session_accuracy,
    compute_turn_accuracy,
    evaluate_retrieval,
)


class TestRecallAtK:
    """Tests for compute_recall_at_k."""

    def test_partial_hit(self):
        """Half the relevant ids in the top k gives 0.5."""
        assert compute_recall_at_k(["a", "x", "b"], ["a", "c"], 3) == 0.5

    def test_cutoff(self):
        """Hits beyond k do not count."""
        assert compute_recall_at_k(["x", "a"], ["a"], 1) == 0.0

    def test_no_relevant(self):
        """Nothing relevant gives 0."""
        assert compute_recall_at_k(["a"], [], 5) == 0.0


class TestMeanReciprocalRank:
    """Tests for compute_mean_reciprocal_rank."""

    def test_mean_over_queries(self):
        """Ranks 1, 2 and a miss average to 0.5."""
        retrieved = [["a", "b"], ["x", "b"], ["x", "y"]]
        relevant = [["a"], ["b"], ["z"]]
        assert compute_mean_reciprocal_rank(retrieved, relevant) == pytest.approx(0.5)

    def test_empty(self):
        """No queries gives 0."""
        assert compute_mean_reciprocal_rank([], []) == 0.0


class TestNdcgAtK:
    """Tests for compute_ndcg_at_k."""

    def test_perfect_ranking(self):
        """Relevant ids first gives 1."""
        assert compute_ndcg_at_k(["a", "b", "x"], ["a", "b"], 3) == pytest.approx(1.0)

    def test_second_position(self):
        """A single hit at rank 2 is discounted by log2(3)."""
        assert compute_ndcg_at_k(["x", "a"], ["a"], 2) == pytest.approx(1 / math.log2(3))

    def test_no_hits(self):
        """No relevant ids retrieved gives 0."""
        assert compute_ndcg_at_k(["x", "y"], ["a"], 2) == 0.0


class TestSessionAccuracy:
    """Tests for compute_session_accuracy."""

    def test_fraction_of_answer_sessions(self):
        """Counts distinct answer sessions found."""
        assert compute_session_accuracy(["s1", "s1", "s3"], ["s1", "s2"]) == 0.5

    def test_duplicate_answers(self):
        """Repeated answer sessions count once."""
        assert compute_session_accuracy(["s1"], ["s1", "s1"]) == 1.0

    def test_no_answers(self):
        """No answer sessions gives 0."""
        assert compute_session_accuracy(["s1"], []) == 0.0


class TestRecallAtTurnK:
    """Tests for compute_recall_at_turn_k."""

    TURNS = [
        {"role": "user", "content": "I adopted a dog"},
        {"role": "assistant", "content": "What is its name?"},
        {"role": "user", "content": "Biscuit"},
        {"role": "assistant", "content": "Lovely name"},
    ]

    def test_fraction_of_answer_turns(self):
        """One of two answer turns retrieved gives 0.5."""
        retrieved = [{"role": "user", "content": "Biscuit"}]
        assert compute_recall_at_turn_k(retrieved, self.TURNS, [True, False, True, False]) == 0.5

    def test_role_must_match(self):
        """Same text under another role is not a hit."""
        retrieved = [{"role": "assistant", "content": "Biscuit"}]
        assert compute_recall_at_turn_k(retrieved, self.TURNS, [False, False, True, False]) == 0.0

    def test_role_case_and_type_key(self):
        """Roles compare lower-cased and may come from the type key."""
        retrieved = [{"type": "User", "content": "Biscuit"}]
        assert compute_recall_at_turn_k(retrieved, self.TURNS, [False, False, True, False]) == 1.0

    def test_no_answer_turns(self):
        """No flagged turns gives 0."""
        assert compute_recall_at_turn_k(self.TURNS, self.TURNS, [False] * 4) == 0.0
        assert compute_recall_at_turn_k(self.TURNS, [], []) == 0.0

    def test_turn_accuracy_alias(self):
        """Turn accuracy is the same measure."""
        assert compute_turn_accuracy is compute_recall_at_turn_k


class TestEvaluateRetrieval:
    """Tests for evaluate_retrieval."""

    def test_aggregates(self):
        """Metrics are averaged over queries."""
        result = evaluate_retrieval(
            retrieved=[["a", "b"], ["x", "c"]],
            relevant=[["a"], ["c"]],
            retrieved_sessions=[["s1"], ["s2"]],
            answer_sessions=[["s1"], ["s3"]],
        )

        assert result.query_count == 2
        assert result.recall_at_1 == 0.5
        assert result.recall_at_5 == 1.0
        assert result.mrr == pytest.approx(0.75)
        assert result.session_accuracy == 0.5
        assert result.to_dict()["query_count"] == 2

    def test_without_sessions(self):
        """Session accuracy defaults to 0 when sessions are not given."""
        result = evaluate_retrieval([["a"]], [["a"]])
        assert result.session_accuracy == 0.0
        assert result.ndcg_at_10 == pytest.approx(1.0)

    def test_empty(self):
        """No queries gives an all-zero evaluation."""
        assert evaluate_retrieval([], []).query_count == 0
