"""Vector similarity metrics used for scoring and similarity search."""

from __future__ import annotations

import numpy as np

from rmm.linalg.matrix import ArrayLike, DimensionMismatchError, as_vector


def _validate_pair(a: ArrayLike, b: ArrayLike) -> tuple[np.ndarray, np.ndarray]:
    left = as_vector(a)
    right = as_vector(b)
    if left.size == 0 or right.size == 0:
        raise DimensionMismatchError("Vectors cannot be empty")
    if left.shape != right.shape:
        raise DimensionMismatchError(f"Vector dimension mismatch: {left.size} vs {right.size}")
    return left, right


def dot_product(a: ArrayLike, b: ArrayLike) -> float:
    """Dot product of two non-empty vectors of equal length."""
    left, right = _validate_pair(a, b)
    return float(np.dot(left, right))


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    """Cosine similarity in [-1, 1].

    Zero vectors have no direction, so they score 0 instead of NaN.
    """
    left, right = _validate_pair(a, b)
    norm_a = float(np.linalg.norm(left))
    norm_b = float(np.linalg.norm(right))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(left, right)) / (norm_a * norm_b)
    # Floating point error can push slightly past the bounds
    return max(-1.0, min(1.0, similarity))
