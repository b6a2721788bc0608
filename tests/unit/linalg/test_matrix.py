"""Tests for the dense matrix kernel."""

import numpy as np
import pytest

from rmm.linalg.matrix import (
    DimensionMismatchError,
    add_matrices,
    clip_matrix_by_norm,
    frobenius_norm,
    initialize_matrix,
    matmul,
    matmul_vector,
    residual_add,
    zeros_matrix,
)


class TestMatmulVector:
    """Tests for matrix-vector multiplication."""

    def test_identity(self):
        """Identity matrix should return the vector unchanged."""
        result = matmul_vector(np.eye(3), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(result, [1.0, 2.0, 3.0])

    def test_rectangular(self):
        """A 2x3 matrix maps a length-3 vector to length 2."""
        matrix = [[1.0, 0.0, 2.0], [0.0, 1.0, 1.0]]
        result = matmul_vector(matrix, [1.0, 2.0, 3.0])
        np.testing.assert_allclose(result, [7.0, 5.0])

    def test_column_mismatch_raises(self):
        """Column count must equal vector length."""
        with pytest.raises(DimensionMismatchError):
            matmul_vector(np.eye(3), [1.0, 2.0])

    def test_rejects_matrix_as_vector(self):
        """A 2-D argument is not a vector."""
        with pytest.raises(DimensionMismatchError):
            matmul_vector(np.eye(2), np.eye(2))


class TestMatmul:
    """Tests for matrix-matrix multiplication."""

    def test_product(self):
        """Product should match numpy's."""
        a = [[1.0, 2.0], [3.0, 4.0]]
        b = [[5.0, 6.0], [7.0, 8.0]]
        np.testing.assert_allclose(matmul(a, b), [[19.0, 22.0], [43.0, 50.0]])

    def test_inner_dimension_mismatch_raises(self):
        """A's columns must equal B's rows."""
        with pytest.raises(DimensionMismatchError):
            matmul(np.ones((2, 3)), np.ones((2, 3)))


class TestResidualAdd:
    """Tests for element-wise vector addition."""

    def test_adds(self):
        """Vectors are added element-wise."""
        np.testing.assert_allclose(residual_add([1.0, 2.0], [0.5, -1.0]), [1.5, 1.0])

    def test_length_mismatch_raises(self):
        """Lengths must match."""
        with pytest.raises(DimensionMismatchError):
            residual_add([1.0, 2.0], [1.0])

    def test_inputs_not_mutated(self):
        """Inputs should be left untouched."""
        a = np.array([1.0, 2.0])
        b = np.array([3.0, 4.0])
        residual_add(a, b)
        np.testing.assert_array_equal(a, [1.0, 2.0])
        np.testing.assert_array_equal(b, [3.0, 4.0])


class TestAddMatrices:
    """Tests for element-wise matrix addition."""

    def test_shape_mismatch_raises(self):
        """Shapes must match."""
        with pytest.raises(DimensionMismatchError):
            add_matrices(np.ones((2, 2)), np.ones((3, 3)))


class TestInitializeMatrix:
    """Tests for Gaussian initialization."""

    def test_shape(self):
        """Matrix should have the requested shape."""
        assert initialize_matrix(4, 6).shape == (4, 6)

    def test_statistics(self):
        """Entries should follow the requested mean and std."""
        m = initialize_matrix(200, 200, mean=0.0, std=0.01, rng=np.random.default_rng(0))
        assert abs(m.mean()) < 1e-3
        assert m.std() == pytest.approx(0.01, rel=0.05)

    def test_seeded_is_reproducible(self):
        """The same seed should give the same matrix."""
        a = initialize_matrix(3, 3, rng=np.random.default_rng(7))
        b = initialize_matrix(3, 3, rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a, b)

    def test_zeros(self):
        """zeros_matrix should be all zeros."""
        assert not zeros_matrix(2, 3).any()


class TestClipMatrixByNorm:
    """Tests for Frobenius-norm clipping."""

    def test_within_bound_unchanged(self):
        """Matrices under the bound are returned as an equal copy."""
        m = np.array([[0.1, 0.2], [0.3, 0.4]])
        clipped = clip_matrix_by_norm(m, 10.0)
        np.testing.assert_array_equal(clipped, m)
        assert clipped is not m

    def test_scales_to_bound(self):
        """Matrices over the bound are scaled to exactly the bound."""
        m = np.array([[3.0, 0.0], [0.0, 4.0]])
        clipped = clip_matrix_by_norm(m, 1.0)
        assert frobenius_norm(clipped) == pytest.approx(1.0)

    def test_preserves_direction(self):
        """Ratios between entries survive clipping."""
        m = np.array([[2.0, -4.0], [6.0, 8.0]])
        clipped = clip_matrix_by_norm(m, 1.0)
        np.testing.assert_allclose(clipped / clipped[0, 0], m / m[0, 0])

    def test_never_exceeds_bound(self):
        """Random matrices never exceed the bound after clipping."""
        rng = np.random.default_rng(3)
        for _ in range(20):
            m = rng.normal(scale=50.0, size=(5, 5))
            assert frobenius_norm(clip_matrix_by_norm(m, 7.5)) <= 7.5 + 1e-9

    def test_non_positive_bound_raises(self):
        """A zero or negative bound is rejected."""
        with pytest.raises(ValueError):
            clip_matrix_by_norm(np.eye(2), 0.0)
