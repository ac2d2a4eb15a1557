"""Tests for the point-pair metrics."""
import numpy as np
import pytest
from sklearn.utils._testing import assert_allclose

from sklmnn import EuclideanDistance, ManhattanDistance, SquaredEuclideanDistance
from sklmnn._metrics import check_metric


@pytest.fixture
def points():
    return np.array([0.0, 0.0]), np.array([3.0, 4.0])


def test_pair_values(points):
    a, b = points
    assert SquaredEuclideanDistance().evaluate(a, b) == pytest.approx(25.0)
    assert EuclideanDistance().evaluate(a, b) == pytest.approx(5.0)
    assert ManhattanDistance().evaluate(a, b) == pytest.approx(7.0)


def test_rows_broadcast(points):
    a, b = points
    B = np.vstack([b, a])
    assert_allclose(SquaredEuclideanDistance().evaluate(a, B), [25.0, 0.0])


def test_neighbors_metric():
    assert SquaredEuclideanDistance.neighbors_metric == "euclidean"
    assert EuclideanDistance.neighbors_metric == "euclidean"
    assert ManhattanDistance.neighbors_metric == "manhattan"


def test_check_metric():
    assert isinstance(check_metric("squared_euclidean"), SquaredEuclideanDistance)
    assert isinstance(check_metric("manhattan"), ManhattanDistance)
    metric = EuclideanDistance()
    assert check_metric(metric) is metric
    with pytest.raises(ValueError):
        check_metric("cosine")
    with pytest.raises(ValueError):
        check_metric(object())
