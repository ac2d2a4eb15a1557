"""Tests for target neighbor and impostor computation."""
import numpy as np
import pytest
from sklearn.utils._testing import assert_allclose, assert_array_equal

from sklmnn import LMNNConstraints


@pytest.fixture
def data():
    rng = np.random.RandomState(0)
    X = rng.normal(size=(15, 2))
    y = np.array([0] * 5 + [1] * 6 + [2] * 4)
    return X, y


class ChebyshevDistance:
    def evaluate(self, a, b):
        return np.max(np.abs(np.asarray(a) - np.asarray(b)), axis=-1)


def test_target_neighbors(data):
    X, y = data
    c = LMNNConstraints(X, y, k=3)
    out = np.zeros((15, 3), dtype=np.intp)
    c.target_neighbors(out, X, y)
    for i in range(15):
        assert i not in out[i]
        assert np.all(y[out[i]] == y[i])
        d = np.sum((X[out[i]] - X[i]) ** 2, axis=1)
        assert np.all(np.diff(d) >= 0)
        others = np.flatnonzero((y == y[i]) & (np.arange(15) != i))
        nearest = others[np.argsort(np.sum((X[others] - X[i]) ** 2, axis=1))[:3]]
        assert_array_equal(out[i], nearest)


def test_impostors_sorted_with_distances(data):
    X, y = data
    c = LMNNConstraints(X, y, k=2)
    out = np.zeros((15, 2), dtype=np.intp)
    dist = np.zeros((15, 2))
    c.impostors(out, dist, X, y)
    for i in range(15):
        assert np.all(y[out[i]] != y[i])
        expected = np.sum((X[out[i]] - X[i]) ** 2, axis=1)
        assert_allclose(dist[i], expected)
        assert dist[i, 0] <= dist[i, 1]


def test_impostors_batch_only_writes_range(data):
    X, y = data
    c = LMNNConstraints(X, y, k=2)
    out = np.full((15, 2), -1, dtype=np.intp)
    c.impostors(out, None, X, y, begin=3, batch_size=5)
    assert np.all(out[:3] == -1)
    assert np.all(out[8:] == -1)
    assert np.all(out[3:8] >= 0)


def test_custom_metric(data):
    X, y = data
    metric = ChebyshevDistance()
    c = LMNNConstraints(X, y, k=2, metric=metric)
    out = np.zeros((15, 2), dtype=np.intp)
    dist = np.zeros((15, 2))
    c.impostors(out, dist, X, y)
    for i in range(15):
        assert_allclose(dist[i], metric.evaluate(X[i], X[out[i]]))


def test_precalculated_flag(data):
    X, y = data
    c = LMNNConstraints(X, y, k=1)
    out = np.zeros((15, 1), dtype=np.intp)
    c.target_neighbors(out, X, y)
    assert c.precalculated
    assert_array_equal(c.classes_, [0, 1, 2])


@pytest.mark.parametrize("k", [4, 5])
def test_small_class_rejected(data, k):
    X, y = data
    with pytest.raises(ValueError):
        LMNNConstraints(X, y, k=k)


def test_single_class_rejected():
    X = np.arange(10, dtype=float).reshape(5, 2)
    with pytest.raises(ValueError):
        LMNNConstraints(X, np.zeros(5), k=1)
