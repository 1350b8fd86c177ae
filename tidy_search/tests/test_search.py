import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from search import paginate, rank, rank_with_scores


def test_rank_two_candidates():
    ids = [1, 2]
    vectors = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.float32)
    assert rank([1.0, 0.0], ids, vectors) == [2, 1]


def test_rank_is_full_permutation():
    rng = np.random.default_rng(0)
    vectors = rng.normal(size=(20, 8)).astype(np.float32)
    ids = list(range(100, 120))
    result = rank(rng.normal(size=8), ids, vectors)
    assert sorted(result) == ids


def test_rank_matches_manual_ordering():
    rng = np.random.default_rng(1)
    vectors = rng.normal(size=(15, 6)).astype(np.float32)
    query = rng.normal(size=6).astype(np.float32)
    ids = [f"img-{i}" for i in range(15)]

    scores = vectors @ query
    expected = [ids[i] for i in sorted(range(15), key=lambda i: -scores[i])]
    assert rank(query, ids, vectors) == expected


def test_ties_keep_input_order():
    ids = [7, 3, 9, 1]
    vectors = np.array([[1, 0], [0, 1], [1, 0], [0, 1]], dtype=np.float32)
    assert rank([1.0, 0.0], ids, vectors) == [7, 9, 3, 1]


def test_scores_are_dot_products():
    ids = [1, 2]
    vectors = np.array([[2.0, 0.0], [0.5, 0.5]], dtype=np.float32)
    result = rank_with_scores([1.0, 1.0], ids, vectors)
    assert result[0] == (1, pytest.approx(2.0))
    assert result[1] == (2, pytest.approx(1.0))


def test_empty_input():
    assert rank([1.0, 0.0], [], np.zeros((0, 2), dtype=np.float32)) == []


def test_misaligned_inputs_rejected():
    with pytest.raises(ValueError):
        rank([1.0, 0.0], [1, 2, 3], np.zeros((2, 2), dtype=np.float32))
    with pytest.raises(ValueError):
        rank([1.0, 0.0, 0.0], [1, 2], np.ones((2, 2), dtype=np.float32))


def test_paginate():
    items = list(range(10))
    assert paginate(items, 0, 3) == [0, 1, 2]
    assert paginate(items, 8, 5) == [8, 9]
    assert paginate(items, 20, 5) == []
    assert paginate(items, 2) == list(range(2, 10))
    assert paginate(items, -1, 2) == [0, 1]
