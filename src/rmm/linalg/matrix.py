"""Dense matrix and vector operations for the reranker transforms.

All functions are pure: inputs are never mutated and a new array is
returned. Dimension mismatches raise DimensionMismatchError since they
indicate a programming or configuration error rather than a runtime
condition.
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

ArrayLike = Union[np.ndarray, Sequence[float], Sequence[Sequence[float]]]


class DimensionMismatchError(ValueError):
    """Matrix or vector shapes are incompatible for the requested operation."""

    pass


def as_vector(v: ArrayLike) -> np.ndarray:
    """Coerce input to a 1-D float array."""
    arr = np.asarray(v, dtype=np.float64)
    if arr.ndim != 1:
        raise DimensionMismatchError(f"Expected a vector, got array with shape {arr.shape}")
    return arr


def as_matrix(m: ArrayLike) -> np.ndarray:
    """Coerce input to a 2-D float array."""
    arr = np.asarray(m, dtype=np.float64)
    if arr.ndim != 2:
        raise DimensionMismatchError(f"Expected a matrix, got array with shape {arr.shape}")
    return arr


def matmul_vector(matrix: ArrayLike, vector: ArrayLike) -> np.ndarray:
    """Multiply a matrix by a column vector.

    Args:
        matrix: Matrix of shape (rows, cols)
        vector: Vector of length cols

    Returns:
        Vector of length rows

    Raises:
        DimensionMismatchError: If the column count differs from the vector length
    """
    m = as_matrix(matrix)
    v = as_vector(vector)
    if m.shape[1] != v.shape[0]:
        raise DimensionMismatchError(
            f"Matrix columns ({m.shape[1]}) must match vector length ({v.shape[0]})"
        )
    return m @ v


def matmul(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    """Multiply two matrices.

    Raises:
        DimensionMismatchError: If A's column count differs from B's row count
    """
    left = as_matrix(a)
    right = as_matrix(b)
    if left.shape[1] != right.shape[0]:
        raise DimensionMismatchError(
            f"Matrix A columns ({left.shape[1]}) must match matrix B rows ({right.shape[0]})"
        )
    return left @ right


def residual_add(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    """Element-wise addition of two vectors of equal length."""
    left = as_vector(a)
    right = as_vector(b)
    if left.shape != right.shape:
        raise DimensionMismatchError(
            f"Vector lengths must match for residual add: {left.shape[0]} vs {right.shape[0]}"
        )
    return left + right


def add_matrices(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    """Element-wise addition of two matrices of equal shape."""
    left = as_matrix(a)
    right = as_matrix(b)
    if left.shape != right.shape:
        raise DimensionMismatchError(f"Matrix shapes must match: {left.shape} vs {right.shape}")
    return left + right


def initialize_matrix(
    rows: int,
    cols: int,
    mean: float = 0.0,
    std: float = 0.01,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Create a matrix with independent Gaussian entries.

    Args:
        rows: Number of rows
        cols: Number of columns
        mean: Mean of the normal distribution
        std: Standard deviation of the normal distribution
        rng: Optional generator for reproducible draws

    Returns:
        Matrix of shape (rows, cols)
    """
    if rows < 0 or cols < 0:
        raise DimensionMismatchError(f"Matrix dimensions must be non-negative: {rows}x{cols}")
    generator = rng if rng is not None else np.random.default_rng()
    return generator.normal(loc=mean, scale=std, size=(rows, cols))


def zeros_matrix(rows: int, cols: int) -> np.ndarray:
    """Create a zero-filled matrix."""
    return np.zeros((rows, cols), dtype=np.float64)


def frobenius_norm(matrix: ArrayLike) -> float:
    """Frobenius norm: sqrt of the sum of squared entries."""
    return float(np.linalg.norm(as_matrix(matrix), ord="fro"))


def clip_matrix_by_norm(matrix: ArrayLike, max_norm: float) -> np.ndarray:
    """Scale a matrix down so its Frobenius norm does not exceed max_norm.

    Scaling is uniform across entries, so ratios between entries are
    preserved. Matrices already within the bound are returned as a copy.

    Args:
        matrix: Matrix to clip
        max_norm: Maximum allowed Frobenius norm (must be positive)

    Returns:
        Clipped matrix
    """
    if max_norm <= 0:
        raise ValueError(f"max_norm must be positive, got {max_norm}")

    m = as_matrix(matrix).copy()
    norm = frobenius_norm(m)
    if norm > max_norm:
        m *= max_norm / norm
    return m
