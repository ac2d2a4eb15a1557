import numpy as np
import pytest
from sklearn.exceptions import ConvergenceWarning, NotFittedError
from sklearn.neighbors import NearestNeighbors
from sklearn.utils.estimator_checks import check_estimator

from sklmnn import LMNN, LMNNFunction


def _noisy_data(seed=0):
    rng = np.random.RandomState(seed)
    n = 20
    y = np.hstack([np.zeros(n, dtype=int), np.ones(n, dtype=int)])
    # The label is carried by the first feature; the second is large noise.
    informative = y + rng.normal(scale=0.1, size=2 * n)
    noise = rng.normal(scale=10.0, size=2 * n)
    return np.column_stack([informative, noise]), y


def _loo_1nn_accuracy(X, y):
    nn = NearestNeighbors(n_neighbors=1).fit(X)
    ind = nn.kneighbors(return_distance=False)
    return float(np.mean(y[ind[:, 0]] == y))


def test_lmnn_basic_fit_transform():
    X, y = _noisy_data()
    lmnn = LMNN(n_neighbors=3, max_iter=100, random_state=0, verbose=1)
    lmnn.fit(X, y)
    assert lmnn.components_.shape == (2, 2)
    assert lmnn.n_features_in_ == 2
    assert lmnn.n_iter_ >= 1
    assert np.isfinite(lmnn.objective_)
    Xt = lmnn.transform(X)
    assert Xt.shape == X.shape
    assert _loo_1nn_accuracy(Xt, y) >= 0.9
    assert _loo_1nn_accuracy(Xt, y) > _loo_1nn_accuracy(X, y)


def test_lmnn_fit_transform_and_components():
    X, y = _noisy_data(seed=1)
    lmnn = LMNN(n_neighbors=2, n_components=1, init="pca", max_iter=20)
    Xt = lmnn.fit_transform(X, y)
    assert Xt.shape == (X.shape[0], 1)
    assert lmnn.components_.shape == (1, 2)


def test_init_array_and_identity():
    X, y = _noisy_data()
    init = np.array([[1.0, 0.0], [0.0, 0.5]])
    lmnn = LMNN(n_neighbors=2, init=init, max_iter=5).fit(X, y)
    assert lmnn.components_.shape == init.shape
    with pytest.raises(ValueError):
        LMNN(n_neighbors=2, init=np.eye(3)).fit(X, y)
    with pytest.raises(ValueError):
        LMNN(n_neighbors=2, n_components=3).fit(X, y)


def test_objective_matches_function():
    X, y = _noisy_data()
    lmnn = LMNN(n_neighbors=2, regularization=0.5, max_iter=30).fit(X, y)
    f = LMNNFunction(X, y, k=2, regularization=0.5)
    initial = f.evaluate(f.initial_point)
    assert lmnn.objective_ < initial


def test_convergence_warning():
    X, y = _noisy_data()
    with pytest.warns(ConvergenceWarning):
        LMNN(n_neighbors=2, max_iter=1).fit(X, y)


def test_invalid_params():
    X, y = _noisy_data()
    with pytest.raises(ValueError):
        LMNN(regularization=2.0).fit(X, y)
    with pytest.raises(ValueError):
        LMNN(metric="cosine").fit(X, y)
    with pytest.raises(ValueError):
        LMNN(update_interval=0).fit(X, y)
    with pytest.raises(ValueError):
        LMNN(max_iter=5).fit(X, np.zeros_like(y))


def test_n_neighbors_clipped_to_class_size():
    X, y = _noisy_data()
    # 20 points per class leave at most 19 target neighbors
    with pytest.warns(UserWarning, match="using n_neighbors=19"):
        lmnn = LMNN(n_neighbors=25, max_iter=2).fit(X, y)
    assert lmnn.n_neighbors == 25
    assert lmnn.n_neighbors_ == 19

    lmnn = LMNN(n_neighbors=2, max_iter=2).fit(X, y)
    assert lmnn.n_neighbors_ == 2


def test_singleton_class_rejected():
    X, y = _noisy_data()
    y = y.copy()
    y[0] = 2
    with pytest.raises(ValueError, match="at least 2 samples"):
        LMNN(max_iter=5).fit(X, y)


def test_lmnn_estimator_checks():
    check_estimator(LMNN())


def test_transform_requires_fit():
    X, _ = _noisy_data()
    with pytest.raises(NotFittedError):
        LMNN().transform(X)


def test_other_metrics():
    X, y = _noisy_data()
    for metric in ["euclidean", "manhattan"]:
        lmnn = LMNN(n_neighbors=2, metric=metric, max_iter=5)
        with np.errstate(all="ignore"):
            lmnn.fit(X, y)
        assert lmnn.components_.shape == (2, 2)


if __name__ == "__main__":
    test_lmnn_basic_fit_transform()
    test_lmnn_fit_transform_and_components()
    test_init_array_and_identity()
    test_objective_matches_function()
    test_convergence_warning()
    test_invalid_params()
    test_n_neighbors_clipped_to_class_size()
    test_singleton_class_rejected()
    test_lmnn_estimator_checks()
    test_transform_requires_fit()
