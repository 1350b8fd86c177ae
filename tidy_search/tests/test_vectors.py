import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from vectors import as_vector, dot_scores, is_zero, normalize, zero_vector


def test_dot_scores_per_row():
    matrix = np.array([[1.0, 2.0, 3.0], [0.0, 1.0, 0.0]], dtype=np.float32)
    scores = dot_scores([4.0, 5.0, 6.0], matrix)
    assert scores.shape == (2,)
    assert scores[0] == pytest.approx(32.0)
    assert scores[1] == pytest.approx(5.0)


def test_dot_scores_is_cosine_for_unit_vectors():
    a = normalize([3.0, 4.0])
    b = normalize([4.0, 3.0])
    assert dot_scores(a, [b])[0] == pytest.approx(24.0 / 25.0)


def test_dot_scores_dimension_mismatch():
    with pytest.raises(ValueError):
        dot_scores([1.0, 0.0], np.ones((2, 3), dtype=np.float32))
    with pytest.raises(ValueError):
        dot_scores([1.0, 0.0], np.ones(2, dtype=np.float32))


def test_zero_vector_sentinel():
    z = zero_vector(8)
    assert z.shape == (8,)
    assert z.dtype == np.float32
    assert is_zero(z)
    assert not is_zero([0.0, 0.0, 1e-6])


def test_normalize():
    vec = normalize([3.0, 4.0])
    assert vec[0] == pytest.approx(0.6)
    assert vec[1] == pytest.approx(0.8)
    assert np.allclose(normalize([0.0, 0.0]), 0.0)


def test_normalize_does_not_mutate_input():
    raw = np.array([3.0, 4.0], dtype=np.float32)
    normalize(raw)
    assert raw[0] == 3.0


def test_as_vector_rejects_matrix_and_wrong_length():
    with pytest.raises(ValueError):
        as_vector([[1.0, 2.0]])
    with pytest.raises(ValueError):
        as_vector([1.0, 2.0], dim=3)
