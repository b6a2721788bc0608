"""Linear-algebra kernel for the reranker transforms."""

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
from rmm.linalg.similarity import cosine_similarity, dot_product

__all__ = [
    "DimensionMismatchError",
    "add_matrices",
    "clip_matrix_by_norm",
    "frobenius_norm",
    "initialize_matrix",
    "matmul",
    "matmul_vector",
    "residual_add",
    "zeros_matrix",
    "cosine_similarity",
    "dot_product",
]
