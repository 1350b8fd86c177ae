"""Exact similarity ranking over an in-memory snapshot.

Scores are plain dot products: embeddings from the model are already close
to unit norm, so this matches cosine ordering without renormalising.
"""

from dataclasses import dataclass
from typing import Sequence, TypeVar

import numpy as np

from vectors import dot_scores

T = TypeVar("T")


@dataclass
class SearchResult:
    internal_id: int
    score: float


def _scores(query, ids: Sequence, vectors) -> np.ndarray:
    if len(vectors) != len(ids):
        raise ValueError(f"{len(ids)} ids do not line up with {len(vectors)} vectors")
    return dot_scores(query, vectors)


def rank_with_scores(query, ids: Sequence[T], vectors) -> list[tuple[T, float]]:
    """All ids with their scores, best first. Equal scores keep input order."""
    if len(ids) == 0:
        return []
    scores = _scores(query, ids, vectors)
    order = np.argsort(-scores, kind="stable")
    return [(ids[i], float(scores[i])) for i in order]


def rank(query, ids: Sequence[T], vectors) -> list[T]:
    """Full permutation of ids by descending similarity to query."""
    return [i for i, _score in rank_with_scores(query, ids, vectors)]


def paginate(items: Sequence[T], offset: int = 0, limit: int | None = None) -> list[T]:
    offset = max(0, offset)
    if limit is None:
        return list(items[offset:])
    return list(items[offset:offset + max(0, limit)])
