"""Target-neighbor and impostor constraints for LMNN.

The neighbor search itself is delegated to
:class:`sklearn.neighbors.NearestNeighbors`; this module only decides which
points are searched against which.
"""

from __future__ import annotations

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ._metrics import check_metric


class LMNNConstraints:
    """Compute target neighbors and impostors of a labelled dataset.

    Parameters
    ----------
    dataset : ndarray of shape (n_samples, n_features)
        Points, one per row.
    labels : ndarray of shape (n_samples,)
        Class label of each point.
    k : int
        Number of target neighbors and impostors per point.
    metric : str or object, default='squared_euclidean'
        Metric whose ordering (and scale, for returned distances) is used.
        See :func:`sklmnn._metrics.check_metric`.

    Attributes
    ----------
    precalculated : bool
        Whether the per-class index lists are cached. Must be reset to
        ``False`` whenever the point order changes.

    Raises
    ------
    ValueError
        If some class has ``k`` or fewer members, or fewer than ``k``
        points lie outside some class.
    """

    def __init__(self, dataset, labels, k, metric="squared_euclidean"):
        self.k = k
        self.metric = check_metric(metric)
        self.precalculated = False
        self._check_class_sizes(np.asarray(labels), np.asarray(dataset).shape[0])

    def _check_class_sizes(self, labels, n_samples):
        classes, counts = np.unique(labels, return_counts=True)
        for c, count in zip(classes, counts):
            if count <= self.k:
                raise ValueError(
                    f"Class {c!r} has {count} points; each class needs more "
                    f"than k={self.k} points to have k target neighbors."
                )
            if n_samples - count < self.k:
                raise ValueError(
                    f"Only {n_samples - count} points lie outside class {c!r}; "
                    f"at least k={self.k} are needed to find impostors."
                )

    def _precalculate(self, labels):
        if self.precalculated:
            return
        self.classes_ = np.unique(labels)
        self._same_class = [np.flatnonzero(labels == c) for c in self.classes_]
        self._other_class = [np.flatnonzero(labels != c) for c in self.classes_]
        self.precalculated = True

    def _nearest_neighbors(self):
        neighbors_metric = getattr(self.metric, "neighbors_metric", None)
        if neighbors_metric is not None:
            return NearestNeighbors(n_neighbors=self.k, metric=neighbors_metric)
        return NearestNeighbors(
            n_neighbors=self.k,
            metric=lambda a, b: float(self.metric.evaluate(a, b)),
            algorithm="brute",
        )

    def target_neighbors(self, out, dataset, labels):
        """Write the ``k`` nearest same-label points of each point into ``out``.

        Parameters
        ----------
        out : ndarray of shape (n_samples, k), dtype int
            Output table; ``out[i, j]`` is the index of the ``j``-th
            nearest same-label point of ``i``. A point is never its own
            target neighbor.
        dataset : ndarray of shape (n_samples, n_features)
        labels : ndarray of shape (n_samples,)
        """
        self._precalculate(labels)
        for same in self._same_class:
            nn = self._nearest_neighbors().fit(dataset[same])
            # Without a query set sklearn excludes each point from its own
            # neighborhood.
            ind = nn.kneighbors(return_distance=False)
            out[same] = same[ind]
        return out

    def impostors(
        self, out, out_distances, dataset, labels, begin=None, batch_size=None
    ):
        """Write the ``k`` nearest differently labelled points of each point.

        Parameters
        ----------
        out : ndarray of shape (n_samples, k), dtype int
            Output table, ranks sorted by ascending distance.
        out_distances : ndarray of shape (n_samples, k) or None
            If given, receives the impostor distances on the metric's scale.
        dataset : ndarray of shape (n_samples, n_features)
            Points under the current transformation.
        labels : ndarray of shape (n_samples,)
        begin, batch_size : int, default=None
            Restrict the query to rows ``[begin, begin + batch_size)``.
            Other rows of ``out`` and ``out_distances`` are left untouched.
        """
        self._precalculate(labels)
        n_samples = dataset.shape[0]
        if begin is None:
            begin, end = 0, n_samples
        else:
            end = begin + batch_size

        for same, other in zip(self._same_class, self._other_class):
            query = same[(same >= begin) & (same < end)]
            if query.size == 0:
                continue
            nn = self._nearest_neighbors().fit(dataset[other])
            ind = nn.kneighbors(dataset[query], return_distance=False)
            out[query] = other[ind]
            if out_distances is not None:
                # Scored with the metric itself so the cache matches the
                # objective's own evaluations bit for bit.
                for i, row in zip(query, other[ind]):
                    out_distances[i] = [
                        float(self.metric.evaluate(dataset[i], dataset[r]))
                        for r in row
                    ]
        return out
