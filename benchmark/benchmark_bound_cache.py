"""Compare bounded evaluation with a cache-free objective.

The cached objective re-uses triplet values between calls; the reference
builds a fresh objective for every call, so every triplet is exact.
"""
import time

import numpy as np

from sklmnn import LMNNFunction


def make_data(seed=0, n_per_class=150, n_features=5, n_classes=3):
    rng = np.random.RandomState(seed)
    centers = rng.normal(scale=4.0, size=(n_classes, n_features))
    X = np.vstack([c + rng.normal(size=(n_per_class, n_features)) for c in centers])
    y = np.repeat(np.arange(n_classes), n_per_class)
    return X, y


def trajectory(n_features, n_steps=10, step=1e-3, seed=0):
    # Small random moves around the identity, as an optimizer would make.
    rng = np.random.RandomState(seed)
    L = np.eye(n_features)
    for _ in range(n_steps):
        L = L + step * rng.normal(size=L.shape)
        yield L.copy()


def run(k=3, update_interval=5):
    X, y = make_data()
    steps = list(trajectory(X.shape[1]))

    f = LMNNFunction(X, y, k=k, update_interval=update_interval)
    t0 = time.perf_counter()
    cached = [f.evaluate(L) for L in steps]
    t_cached = time.perf_counter() - t0

    t0 = time.perf_counter()
    exact = [
        LMNNFunction(X, y, k=k, update_interval=update_interval).evaluate(L)
        for L in steps
    ]
    t_exact = time.perf_counter() - t0

    diff = np.max(np.abs(np.array(cached) - np.array(exact)) / np.array(exact))
    print(f"k={k} update_interval={update_interval}")
    print(f"  cached objective : {t_cached:.2f}s")
    print(f"  fresh objective  : {t_exact:.2f}s (includes construction)")
    print(f"  max relative cost difference {diff:<.3e}")


if __name__ == "__main__":
    for k in (1, 3):
        run(k=k)
