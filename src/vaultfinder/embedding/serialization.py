"""Embedding BLOB codec.

Vectors are stored as raw little-endian float32 bytes. Decoding never
truncates: a bad length or dimension is an :class:`EmbeddingFormatError`.
"""

from __future__ import annotations

import numpy as np

from vaultfinder.errors import EmbeddingFormatError

FLOAT32_LE = np.dtype("<f4")


def serialize_embedding(embedding: np.ndarray) -> bytes:
    """Return a fresh byte string for SQLite BLOB storage."""
    vector = np.asarray(embedding, dtype=FLOAT32_LE).reshape(-1)
    return vector.tobytes()


def deserialize_embedding(blob: bytes, expected_dimension: int | None = None) -> np.ndarray:
    """Decode a BLOB into a float32 vector, validating alignment and dimension."""
    data = bytes(blob)
    if len(data) % FLOAT32_LE.itemsize != 0:
        raise EmbeddingFormatError(
            f"Invalid embedding BLOB: byte length {len(data)} not divisible by 4"
        )
    vector = np.frombuffer(data, dtype=FLOAT32_LE).astype(np.float32)
    if expected_dimension is not None and vector.shape[0] != expected_dimension:
        raise EmbeddingFormatError(
            f"Embedding dimension mismatch: got {vector.shape[0]}, expected {expected_dimension}"
        )
    return vector


def normalize_embedding(embedding: np.ndarray) -> np.ndarray:
    """Scale to unit L2 norm; near-zero vectors become all zeros."""
    vector = np.asarray(embedding, dtype=np.float32)
    norm = float(np.linalg.norm(vector))
    if norm < 1e-10:
        return np.zeros_like(vector)
    return vector / norm
