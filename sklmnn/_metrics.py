"""Point-pair metrics used by the LMNN objective.

Every metric exposes ``evaluate(a, b)`` returning a non-negative scalar.
``a`` and ``b`` are 1-D arrays of equal length.

The built-in metrics also name the
:class:`sklearn.neighbors.NearestNeighbors` metric that reproduces their
ordering (``neighbors_metric``), so the constraint provider can search
with a tree instead of calling ``evaluate`` for every pair.
"""

from __future__ import annotations

import numpy as np

###############################################################################
# Built-in metrics


class SquaredEuclideanDistance:
    """Squared Euclidean distance ``||a - b||^2``.

    This is the metric the LMNN gradient is derived for: the gradient
    returned by :class:`~sklmnn.LMNNFunction` is exact only under it.
    """

    neighbors_metric = "euclidean"

    def evaluate(self, a, b):
        diff = np.asarray(a) - np.asarray(b)
        return np.sum(diff * diff, axis=-1)

    def __repr__(self):
        return "SquaredEuclideanDistance()"


class EuclideanDistance:
    """Euclidean distance ``||a - b||``."""

    neighbors_metric = "euclidean"

    def evaluate(self, a, b):
        diff = np.asarray(a) - np.asarray(b)
        return np.sqrt(np.sum(diff * diff, axis=-1))

    def __repr__(self):
        return "EuclideanDistance()"


class ManhattanDistance:
    """Manhattan (L1) distance ``sum |a - b|``."""

    neighbors_metric = "manhattan"

    def evaluate(self, a, b):
        return np.sum(np.abs(np.asarray(a) - np.asarray(b)), axis=-1)

    def __repr__(self):
        return "ManhattanDistance()"


_METRICS = {
    "squared_euclidean": SquaredEuclideanDistance,
    "euclidean": EuclideanDistance,
    "manhattan": ManhattanDistance,
}


def check_metric(metric):
    """Resolve ``metric`` into an object exposing ``evaluate``.

    Parameters
    ----------
    metric : {'squared_euclidean', 'euclidean', 'manhattan'} or object
        Either the name of a built-in metric or an instance providing an
        ``evaluate(a, b)`` method.

    Returns
    -------
    metric : object
        Metric instance.

    Raises
    ------
    ValueError
        If ``metric`` is an unknown name or lacks ``evaluate``.
    """
    if isinstance(metric, str):
        try:
            return _METRICS[metric]()
        except KeyError:
            raise ValueError(
                f"Unsupported distance metric: {metric!r}. Expected one of "
                f"{sorted(_METRICS)} or an object with an 'evaluate' method."
            ) from None
    if not callable(getattr(metric, "evaluate", None)):
        raise ValueError(
            f"metric must provide an 'evaluate(a, b)' method, got {metric!r}."
        )
    return metric
