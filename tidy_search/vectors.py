"""Fixed-dimension float vector helpers shared by the store, indexer and search."""

import numpy as np

from config import EMBEDDING_DIM


def as_vector(values, dim: int | None = None) -> np.ndarray:
    """Coerce to a 1-D float32 array, optionally enforcing its length."""
    vec = np.asarray(values, dtype=np.float32)
    if vec.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {vec.shape}")
    if dim is not None and vec.shape[0] != dim:
        raise ValueError(f"Expected {dim} dimensions, got {vec.shape[0]}")
    return vec


def zero_vector(dim: int = EMBEDDING_DIM) -> np.ndarray:
    return np.zeros(dim, dtype=np.float32)


def is_zero(vec) -> bool:
    """True when every component is exactly zero (the failed-inference sentinel)."""
    return not np.any(np.asarray(vec))


def normalize(vec) -> np.ndarray:
    """Unit-length copy of vec. A zero vector stays zero."""
    vec = as_vector(vec).copy()
    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec


def dot_scores(query, matrix) -> np.ndarray:
    """Dot product of query against every row of an (N, D) matrix.

    For unit-norm embeddings this is their cosine similarity.
    """
    q = as_vector(query)
    m = np.asarray(matrix, dtype=np.float32)
    if m.ndim != 2:
        raise ValueError(f"Expected an (N, D) matrix, got shape {m.shape}")
    if m.shape[1] != q.shape[0]:
        raise ValueError(f"Query has {q.shape[0]} dimensions, vectors have {m.shape[1]}")
    return m @ q
