"""Vector similarity primitives."""

from __future__ import annotations

import numpy as np

_EPSILON = 1e-10


def _check_lengths(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise ValueError(f"Vector length mismatch: {a.shape[0]} vs {b.shape[0]}")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; 0.0 when either vector has zero magnitude."""
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    _check_lengths(a, b)
    denom = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denom < _EPSILON:
        return 0.0
    return float(np.dot(a, b) / denom)


def dot_product(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    _check_lengths(a, b)
    return float(np.dot(a, b))


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``."""
    query = np.asarray(query, dtype=np.float64).reshape(-1)
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    if matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Vector length mismatch: {query.shape[0]} vs {matrix.shape[1]}")
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denom >= _EPSILON
    scores[nonzero] = dots[nonzero] / denom[nonzero]
    return scores
