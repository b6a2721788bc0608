"""Tests for vector similarity metrics."""

import pytest

from rmm.linalg.matrix import DimensionMismatchError
from rmm.linalg.similarity import cosine_similarity, dot_product


class TestDotProduct:
    """Tests for dot_product."""

    def test_value(self):
        """Dot product of simple vectors."""
        assert dot_product([1.0, 2.0, 3.0], [4.0, 5.0, 6.0]) == pytest.approx(32.0)

    def test_mismatch_raises(self):
        """Lengths must match."""
        with pytest.raises(DimensionMismatchError):
            dot_product([1.0, 2.0], [1.0])

    def test_empty_raises(self):
        """Empty vectors are rejected."""
        with pytest.raises(DimensionMismatchError):
            dot_product([], [])


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical(self):
        """A vector is perfectly similar to itself."""
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_opposite(self):
        """Opposite vectors score -1."""
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal(self):
        """Orthogonal vectors score 0."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector(self):
        """Zero vectors score 0 instead of NaN."""
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_scale_invariant(self):
        """Scaling a vector does not change the score."""
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)
