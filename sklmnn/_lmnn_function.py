"""Incremental LMNN objective.

This module implements the Large Margin Nearest Neighbor cost and its
gradient with respect to a linear transformation ``L``. The cost of a
transformation is::

    (1 - regularization) * sum_i sum_j d(L x_i, L x_tn(i, j))
        + regularization * sum_{i, j, l} max(0, 1 + eval(i, j, l))

where ``tn(i, j)`` is the ``j``-th target neighbor of ``i``, ``imp(i, l)``
its ``l``-th impostor and ``eval(i, j, l) = d(L x_i, L x_tn(i, j)) -
d(L x_i, L x_imp(i, l))``.

Successive calls from an optimizer move ``L`` only a little, so most
triplets that were inactive (``eval <= -1``) stay inactive. The objective
therefore keeps the last value of every triplet together with the
transformation it was computed at, and re-uses it as long as a bound on
how far the value can have moved keeps it below ``-1``. Impostors are
recomputed only every ``update_interval`` evaluating calls.

The objective can be evaluated on the whole dataset or on a contiguous
batch of points, which is what mini-batch optimizers decompose it into
(:meth:`LMNNFunction.num_functions` terms).

References
----------

.. [1] K. Q. Weinberger, L. K. Saul. *Distance Metric Learning for Large
   Margin Nearest Neighbor Classification*, JMLR, 2009.
.. [2] K. Q. Weinberger, L. K. Saul. *Fast Solvers and Efficient
   Implementations for Distance Metric Learning*, ICML, 2008.
"""

from __future__ import annotations

from numbers import Integral, Real

import numpy as np
from sklearn.utils import check_random_state
from sklearn.utils.multiclass import check_classification_targets
from sklearn.utils.validation import check_X_y

from ._constraints import LMNNConstraints
from ._metrics import check_metric


class LMNNFunction:
    """Cost and gradient of the LMNN objective with bound caching.

    Instances are single-writer: the caches, the snapshots and the call
    counter are advanced by every evaluating call, so calls must come from
    one optimizer, in order. No locking is done.

    Parameters
    ----------
    dataset : array-like of shape (n_samples, n_features)
        Training points. The objective keeps a read-only view of the array
        (no copy is made when it is already ``float64``) and must not
        outlive it. :meth:`shuffle` replaces the view by a permuted copy;
        the caller's array is never written to.
    labels : array-like of shape (n_samples,)
        Class label of every point.
    k : int, default=1
        Number of target neighbors and impostors per point.
    regularization : float, default=0.5
        Weight of the impostor (push) term; the target-neighbor (pull)
        term is weighted by ``1 - regularization``. Must lie in ``[0, 1]``.
    update_interval : int, default=1
        Impostors are recomputed on every ``update_interval``-th evaluating
        call. Between refreshes they are stale.
    metric : str or object, default='squared_euclidean'
        Distance used to score point pairs. The gradient is exact for
        ``'squared_euclidean'`` only.
    random_state : int, RandomState instance or None, default=None
        Controls the permutations drawn by :meth:`shuffle`.
    verbose : int, default=0
        Verbosity level. ``0`` is silent; higher values print a line on
        every impostor refresh and shuffle.

    Attributes
    ----------
    target_neighbors : ndarray of shape (n_samples, k)
        ``target_neighbors[i, j]`` is the ``j``-th nearest same-label point
        of ``i``.
    impostors : ndarray of shape (n_samples, k)
        ``impostors[i, l]`` is the ``l``-th nearest differently labelled
        point of ``i`` as of the last refresh.
    impostor_distances : ndarray of shape (n_samples, k)
        Distances to ``impostors`` captured at the last refresh.
    pull_ : ndarray of shape (n_features, n_features)
        Sum of ``(x_i - x_tn) (x_i - x_tn)^T`` over all target-neighbor
        pairs. Independent of the transformation.
    norms_ : ndarray of shape (n_samples,)
        Euclidean norm of every untransformed point.

    Raises
    ------
    ValueError
        If the dataset is empty, the labels do not match it, ``k`` is not
        smaller than the number of points, or a parameter is out of range.
    """

    def __init__(
        self,
        dataset,
        labels,
        k=1,
        *,
        regularization=0.5,
        update_interval=1,
        metric="squared_euclidean",
        random_state=None,
        verbose=0,
    ):
        dataset, labels = check_X_y(dataset, labels, dtype=np.float64)
        check_classification_targets(labels)
        n_samples, n_features = dataset.shape

        if not isinstance(k, Integral) or k < 1:
            raise ValueError(f"k must be a positive integer, got {k!r}.")
        if k >= n_samples:
            raise ValueError(
                f"k={k} must be smaller than the number of points ({n_samples})."
            )
        if not isinstance(regularization, Real) or not 0 <= regularization <= 1:
            raise ValueError(
                f"regularization must lie in [0, 1], got {regularization!r}."
            )
        if not isinstance(update_interval, Integral) or update_interval < 1:
            raise ValueError(
                f"update_interval must be a positive integer, got {update_interval!r}."
            )

        self.dataset = dataset
        self.labels = labels
        self.k = int(k)
        self.regularization = float(regularization)
        self.update_interval = int(update_interval)
        self.metric = check_metric(metric)
        self.verbose = verbose
        self._rng = check_random_state(random_state)
        self.n_samples = n_samples
        self.n_features = n_features

        # Triplet values of the last evaluation and whether each one can
        # still be trusted.
        self._eval_cache = np.zeros((n_samples, self.k, self.k))
        self._eval_valid = np.zeros((n_samples, self.k, self.k), dtype=bool)
        self._max_impostor_norm = np.zeros((n_samples, self.k))

        # Transformation of the last full call, and per point for batch calls.
        self._transformation_old = None
        self._point_transformations = None
        self._point_snapshot_valid = None

        # Points touched by the most recent evaluating call, and its
        # transformation; used by `gradient` to decide whether the eval
        # cache matches the transformation it is asked about.
        self._last_transformation = None
        self._last_evaluated = np.zeros(n_samples, dtype=bool)

        self._iteration = 0
        self._force_refresh = False

        self.constraints = LMNNConstraints(dataset, labels, self.k, self.metric)
        self.target_neighbors = np.zeros((n_samples, self.k), dtype=np.intp)
        self.impostors = np.zeros((n_samples, self.k), dtype=np.intp)
        self.impostor_distances = np.zeros((n_samples, self.k))
        self.constraints.target_neighbors(self.target_neighbors, dataset, labels)
        self.constraints.impostors(
            self.impostors, self.impostor_distances, dataset, labels
        )

        self.precalculate()

    # ------------------------------------------------------------------
    @property
    def iteration(self):
        """Number of evaluating calls made so far."""
        return self._iteration

    @property
    def initial_point(self):
        """Identity transformation of shape (n_features, n_features)."""
        return np.eye(self.n_features)

    def num_functions(self):
        """Number of separable terms (one per point) for batch optimizers."""
        return self.n_samples

    def precalculate(self):
        """Compute the pull term and the norms of the untransformed points.

        Both depend only on the dataset and the target neighbors, so they
        are computed once and re-used by every gradient call.
        """
        self.norms_ = np.linalg.norm(self.dataset, axis=1)
        self.pull_ = self._pull_term(0, self.n_samples)

    def _pull_term(self, begin, end):
        X = self.dataset
        diffs = X[begin:end, None, :] - X[self.target_neighbors[begin:end]]
        diffs = diffs.reshape(-1, self.n_features)
        return diffs.T @ diffs

    def shuffle(self):
        """Randomly permute the points and every row-aligned cache.

        The multiset of ``(point, label)`` pairs is unchanged. Target
        neighbors and the pull term are recomputed for the new order; the
        impostor table is remapped and refreshed on the next evaluating
        call.
        """
        ordering = self._rng.permutation(self.n_samples)
        inverse = np.empty_like(ordering)
        inverse[ordering] = np.arange(self.n_samples)

        self.dataset = self.dataset[ordering]
        self.labels = self.labels[ordering]
        self.norms_ = self.norms_[ordering]
        self._eval_cache = self._eval_cache[ordering]
        self._eval_valid = self._eval_valid[ordering]
        self._max_impostor_norm = self._max_impostor_norm[ordering]
        self._last_evaluated = self._last_evaluated[ordering]
        if self._point_transformations is not None:
            self._point_transformations = self._point_transformations[ordering]
            self._point_snapshot_valid = self._point_snapshot_valid[ordering]
        self.impostors = inverse[self.impostors[ordering]]
        self.impostor_distances = self.impostor_distances[ordering]
        previous_neighbors = inverse[self.target_neighbors[ordering]]

        # Indices changed; the per-class index lists are stale.
        self.constraints.precalculated = False
        self.constraints.target_neighbors(
            self.target_neighbors, self.dataset, self.labels
        )
        # Ties may reorder target neighbors; cached triplets of such points
        # refer to the old ranks.
        changed = np.any(previous_neighbors != self.target_neighbors, axis=1)
        self._eval_valid[changed] = False
        self._max_impostor_norm[changed] = 0.0

        self.pull_ = self._pull_term(0, self.n_samples)
        self._force_refresh = True
        if self.verbose:
            print(
                f"[LMNNFunction] shuffled {self.n_samples} points "
                f"({int(changed.sum())} target neighbor rows changed)."
            )

    # ------------------------------------------------------------------
    def _check_transformation(self, transformation):
        L = np.asarray(transformation, dtype=np.float64)
        if L.ndim != 2 or L.shape[1] != self.n_features:
            raise ValueError(
                "transformation should have shape (n_components, "
                f"{self.n_features}), got {L.shape}."
            )
        return L

    def _check_range(self, begin, batch_size):
        if begin is None and batch_size is None:
            return 0, self.n_samples, False
        if begin is None or batch_size is None:
            raise ValueError("begin and batch_size must be given together.")
        if not isinstance(begin, Integral) or not isinstance(batch_size, Integral):
            raise ValueError(
                f"begin and batch_size must be integers, got {begin!r} and "
                f"{batch_size!r}."
            )
        if begin < 0 or batch_size < 1 or begin + batch_size > self.n_samples:
            raise ValueError(
                f"Batch [{begin}, {begin + batch_size}) is outside "
                f"[0, {self.n_samples})."
            )
        return int(begin), int(begin + batch_size), True

    def _advance(self, transformed, begin, end, batch):
        """Count the call and refresh impostors when due.

        Returns whether impostors were refreshed, in which case the exact
        impostor distances of ``[begin, end)`` are in the distance cache.
        """
        refresh = self._force_refresh or self._iteration % self.update_interval == 0
        self._iteration += 1
        if not refresh:
            return False
        if self.verbose:
            print(
                f"[LMNNFunction] iteration {self._iteration}: recomputing "
                f"impostors for points [{begin}, {end})."
            )
        if batch:
            self.constraints.impostors(
                self.impostors,
                self.impostor_distances,
                transformed,
                self.labels,
                begin,
                end - begin,
            )
        else:
            self.constraints.impostors(
                self.impostors, self.impostor_distances, transformed, self.labels
            )
        self._force_refresh = False
        return True

    def _snapshot_distances(self, L, begin, end, batch):
        """Distance of ``L`` to the snapshot of every point in the range.

        Returns the spectral norms of the differences and a mask of the
        points that have a snapshot at all.
        """
        size = end - begin
        deltas = np.zeros(size)
        if not batch:
            old = self._transformation_old
            if old is None or old.shape != L.shape:
                return deltas, np.zeros(size, dtype=bool)
            deltas[:] = np.linalg.norm(L - old, ord=2)
            return deltas, np.ones(size, dtype=bool)

        cube = self._point_transformations
        if cube is None or cube.shape[1:] != L.shape:
            self._point_transformations = np.zeros((self.n_samples,) + L.shape)
            self._point_snapshot_valid = np.zeros(self.n_samples, dtype=bool)
            return deltas, np.zeros(size, dtype=bool)
        valid = self._point_snapshot_valid[begin:end].copy()
        if valid.any():
            old = cube[begin:end][valid]
            deltas[valid] = np.linalg.norm(L[None] - old, ord=2, axis=(1, 2))
        return deltas, valid

    def _update_snapshots(self, L, begin, end, batch):
        if batch:
            self._point_transformations[begin:end] = L
            self._point_snapshot_valid[begin:end] = True
        else:
            self._transformation_old = L.copy()
        self._last_transformation = L.copy()
        self._last_evaluated[:] = False
        self._last_evaluated[begin:end] = True

    def _distance(self, transformed, i, other):
        return float(self.metric.evaluate(transformed[i], transformed[other]))

    def _triplet_pass(
        self, transformed, begin, end, deltas, has_snapshot, refreshed, with_push
    ):
        """Bounded evaluation of all points in ``[begin, end)``.

        Returns the cost of the range and, if ``with_push``, the push
        matrix accumulated over the triplets that contribute to the cost.
        """
        X = self.dataset
        lam = self.regularization
        k = self.k
        norms = self.norms_
        cost = 0.0
        push = np.zeros((self.n_features, self.n_features)) if with_push else None

        for i in range(begin, end):
            neighbors = self.target_neighbors[i]
            target_dist = [self._distance(transformed, i, t) for t in neighbors]
            cost += (1 - lam) * sum(target_dist)

            if refreshed:
                impostor_dist = list(self.impostor_distances[i])
            else:
                impostor_dist = [None] * k
            delta = deltas[i - begin]
            bounded = has_snapshot[i - begin]

            for j in range(k - 1, -1, -1):
                for l in range(k):
                    imp = self.impostors[i, l]
                    exact = True
                    if bounded and self._eval_valid[i, j, l]:
                        self._max_impostor_norm[i, l] = max(
                            self._max_impostor_norm[i, l], norms[imp]
                        )
                        value = self._eval_cache[i, j, l] + delta * (
                            norms[neighbors[j]]
                            + self._max_impostor_norm[i, l]
                            + 2 * norms[i]
                        )
                        exact = value > -1

                    if exact:
                        if impostor_dist[l] is None:
                            impostor_dist[l] = self._distance(transformed, i, imp)
                        value = target_dist[j] - impostor_dist[l]

                    self._eval_cache[i, j, l] = value
                    if value <= -1:
                        # Impostors are sorted by distance: every further
                        # rank is inactive as well.
                        self._eval_valid[i, j, l] = True
                        break

                    # Possibly active; only an exact value is safe next time.
                    self._eval_valid[i, j, l] = False
                    self._max_impostor_norm[i, l] = 0.0
                    cost += lam * (1 + value)
                    if with_push:
                        d_ij = X[i] - X[neighbors[j]]
                        d_il = X[i] - X[imp]
                        push += np.outer(d_ij, d_ij) - np.outer(d_il, d_il)

        return cost, push

    def _combine(self, L, pull, push):
        lam = self.regularization
        return 2 * L @ ((1 - lam) * pull + lam * push)

    def _evaluate(self, transformation, begin, batch_size, with_gradient):
        L = self._check_transformation(transformation)
        begin, end, batch = self._check_range(begin, batch_size)
        transformed = self.dataset @ L.T

        refreshed = self._advance(transformed, begin, end, batch)
        deltas, has_snapshot = self._snapshot_distances(L, begin, end, batch)
        cost, push = self._triplet_pass(
            transformed, begin, end, deltas, has_snapshot, refreshed, with_gradient
        )
        self._update_snapshots(L, begin, end, batch)

        if not with_gradient:
            return cost, None
        pull = self._pull_term(begin, end) if batch else self.pull_
        return cost, self._combine(L, pull, push)

    # ------------------------------------------------------------------
    def evaluate(self, transformation, begin=None, batch_size=None):
        """Cost of ``transformation`` on the dataset or on a batch.

        Parameters
        ----------
        transformation : array-like of shape (n_components, n_features)
            Candidate transformation ``L``.
        begin : int, default=None
            First point of the batch. Must be given with ``batch_size``.
        batch_size : int, default=None
            Number of points in the batch. If both ``begin`` and
            ``batch_size`` are ``None`` the whole dataset is evaluated.

        Returns
        -------
        cost : float
            Pull cost plus the hinge cost of all active triplets in the
            range.
        """
        cost, _ = self._evaluate(transformation, begin, batch_size, False)
        return cost

    def evaluate_with_gradient(self, transformation, begin=None, batch_size=None):
        """Cost and gradient in one pass over the triplets.

        Same semantics as :meth:`evaluate` followed by :meth:`gradient`,
        with every distance evaluated at most once.

        Returns
        -------
        cost : float
        gradient : ndarray of shape (n_components, n_features)
        """
        return self._evaluate(transformation, begin, batch_size, True)

    def gradient(self, transformation, begin=None, batch_size=None):
        """Gradient of the cost with respect to ``transformation``.

        Triplet values cached by the most recent evaluating call are used
        when that call covered the point at the very same transformation;
        every other triplet is evaluated exactly. Neither the caches nor
        the call counter are modified, and impostors are not refreshed.

        Returns
        -------
        gradient : ndarray of shape (n_components, n_features)
        """
        L = self._check_transformation(transformation)
        begin, end, batch = self._check_range(begin, batch_size)
        transformed = self.dataset @ L.T
        X = self.dataset
        k = self.k

        cache_current = self._last_transformation is not None and np.array_equal(
            L, self._last_transformation
        )
        push = np.zeros((self.n_features, self.n_features))
        for i in range(begin, end):
            neighbors = self.target_neighbors[i]
            use_cache = cache_current and self._last_evaluated[i]
            target_dist = [None] * k
            impostor_dist = [None] * k

            for j in range(k - 1, -1, -1):
                for l in range(k):
                    imp = self.impostors[i, l]
                    if use_cache and self._eval_valid[i, j, l]:
                        value = self._eval_cache[i, j, l]
                    else:
                        if target_dist[j] is None:
                            target_dist[j] = self._distance(
                                transformed, i, neighbors[j]
                            )
                        if impostor_dist[l] is None:
                            impostor_dist[l] = self._distance(transformed, i, imp)
                        value = target_dist[j] - impostor_dist[l]

                    if value <= -1:
                        break

                    d_ij = X[i] - X[neighbors[j]]
                    d_il = X[i] - X[imp]
                    push += np.outer(d_ij, d_ij) - np.outer(d_il, d_il)

        pull = self._pull_term(begin, end) if batch else self.pull_
        return self._combine(L, pull, push)
