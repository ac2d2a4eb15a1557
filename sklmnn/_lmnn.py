"""Large Margin Nearest Neighbor metric learning.

:class:`LMNN` learns a linear transformation ``L`` such that, in the
transformed space, every point is closer to its ``n_neighbors`` target
neighbors (same-label points) than to any differently labelled point by a
unit margin. The objective and its gradient come from
:class:`~sklmnn.LMNNFunction`; the transformation is optimised with
L-BFGS from :func:`scipy.optimize.minimize`.

Notes
-----
The objective re-uses triplet values across calls (see
:mod:`sklmnn._lmnn_function`), so the line search of the optimizer sees
a cost that is exact for active triplets and bounded for inactive ones.
"""

from __future__ import annotations

import warnings
from numbers import Integral, Real

import numpy as np
from scipy.optimize import minimize
from sklearn.base import BaseEstimator, TransformerMixin, _fit_context
from sklearn.decomposition import PCA
from sklearn.exceptions import ConvergenceWarning
from sklearn.utils._param_validation import HasMethods, Interval, StrOptions
from sklearn.utils.multiclass import check_classification_targets
from sklearn.utils.validation import check_is_fitted, validate_data

from ._lmnn_function import LMNNFunction


class LMNN(TransformerMixin, BaseEstimator):
    """Large Margin Nearest Neighbor metric learning.

    Parameters
    ----------
    n_neighbors : int, default=3
        Number of target neighbors (and impostors) per point. Lowered, with
        a warning, when some class has ``n_neighbors`` or fewer points.
    n_components : int or None, default=None
        Dimension of the transformed space. ``None`` keeps
        ``n_features``. Ignored when ``init`` is an array.
    regularization : float, default=0.5
        Weight of the impostor (push) term in ``[0, 1]``; the target
        neighbor (pull) term is weighted by ``1 - regularization``.
    update_interval : int, default=1
        Impostors are recomputed on every ``update_interval``-th cost
        evaluation. Larger values are faster but optimise against stale
        impostors.
    metric : {'squared_euclidean', 'euclidean', 'manhattan'} or object, default='squared_euclidean'
        Distance applied to transformed points. Objects must provide an
        ``evaluate(a, b)`` method. The gradient is exact only for
        ``'squared_euclidean'``.
    init : {'identity', 'pca'} or ndarray of shape (n_components, n_features), default='identity'
        Initial transformation.
        * 'identity' : the (truncated) identity matrix.
        * 'pca' : the principal axes of the training data.
        * ndarray : user provided transformation.
    max_iter : int, default=50
        Maximum number of L-BFGS iterations.
    tol : float, default=1e-5
        Convergence tolerance passed to :func:`scipy.optimize.minimize`.
    random_state : int or None, default=None
        Seed forwarded to the objective (used only if it is shuffled).
    verbose : int, default=0
        Verbosity level. ``0`` is silent; ``1`` prints the objective at
        every iteration; ``2`` also reports impostor refreshes.

    Attributes
    ----------
    components_ : ndarray of shape (n_components, n_features)
        Learned transformation.
    n_neighbors_ : int
        Number of target neighbors actually used.
    n_iter_ : int
        Number of optimizer iterations run.
    objective_ : float
        Objective value at ``components_``.
    classes_ : ndarray of shape (n_classes,)
        Class labels seen during :meth:`fit`.
    n_features_in_ : int
        Number of features seen during :meth:`fit`.

    Examples
    --------
    >>> import numpy as np
    >>> from sklmnn import LMNN
    >>> X = np.array([[0., 0.], [2., 0.], [0., 1.], [2., 1.],
    ...               [0., 0.2], [2., 0.2], [0., 1.2], [2., 1.2]])
    >>> y = np.array([0, 0, 1, 1, 0, 0, 1, 1])
    >>> lmnn = LMNN(n_neighbors=1).fit(X, y)
    >>> lmnn.transform(X).shape
    (8, 2)
    """

    _parameter_constraints = {
        "n_neighbors": [Interval(Integral, 1, None, closed="left")],
        "n_components": [None, Interval(Integral, 1, None, closed="left")],
        "regularization": [Interval(Real, 0, 1, closed="both")],
        "update_interval": [Interval(Integral, 1, None, closed="left")],
        "metric": [
            StrOptions({"squared_euclidean", "euclidean", "manhattan"}),
            HasMethods(["evaluate"]),
        ],
        "init": [StrOptions({"identity", "pca"}), np.ndarray],
        "max_iter": [Interval(Integral, 1, None, closed="left")],
        "tol": [Interval(Real, 0, None, closed="neither")],
        "random_state": [None, Integral],
        "verbose": [Interval(Integral, 0, None, closed="left")],
    }

    def __init__(
        self,
        n_neighbors=3,
        *,
        n_components=None,
        regularization=0.5,
        update_interval=1,
        metric="squared_euclidean",
        init="identity",
        max_iter=50,
        tol=1e-5,
        random_state=None,
        verbose=0,
    ):
        self.n_neighbors = n_neighbors
        self.n_components = n_components
        self.regularization = regularization
        self.update_interval = update_interval
        self.metric = metric
        self.init = init
        self.max_iter = max_iter
        self.tol = tol
        self.random_state = random_state
        self.verbose = verbose

    # ------------------------------------------------------------------
    def _init_transformation(self, X):
        """Initial transformation according to ``init``.

        Parameters
        ----------
        X : ndarray of shape (n_samples, n_features)
            Training data.

        Returns
        -------
        L : ndarray of shape (n_components, n_features)
        """
        n_features = X.shape[1]
        if isinstance(self.init, np.ndarray):
            L = np.asarray(self.init, dtype=float)
            if L.ndim != 2 or L.shape[1] != n_features:
                raise ValueError(
                    "init array should have shape (n_components, n_features), "
                    f"got {L.shape} for n_features={n_features}."
                )
            return L.copy()

        n_components = n_features if self.n_components is None else self.n_components
        if n_components > n_features:
            raise ValueError(
                f"n_components ({n_components}) cannot be greater than "
                f"n_features ({n_features})."
            )
        if self.init == "identity":
            return np.eye(n_components, n_features)
        if self.init == "pca":
            pca = PCA(n_components=n_components, random_state=self.random_state)
            return pca.fit(X).components_.astype(float, copy=True)
        raise ValueError("Unsupported init method")  # pragma: no cover

    def _effective_n_neighbors(self, counts, n_samples):
        """Largest usable number of target neighbors, at most ``n_neighbors``.

        Every class must keep ``k`` other members as target neighbors and
        leave ``k`` points outside it as impostors.
        """
        k = min(self.n_neighbors, counts.min() - 1, n_samples - counts.max())
        if k < 1:
            raise ValueError(
                "LMNN needs every class to have at least 2 samples and at "
                f"least one other class, got class sizes {counts.tolist()}."
            )
        if k < self.n_neighbors:
            warnings.warn(
                f"n_neighbors={self.n_neighbors} is too large for class sizes "
                f"{counts.tolist()}; using n_neighbors={k} instead.",
                UserWarning,
                stacklevel=3,
            )
        return int(k)

    # ------------------------------------------------------------------
    @_fit_context(prefer_skip_nested_validation=True)
    def fit(self, X, y):
        """Learn the transformation from labelled training data.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training instances.
        y : array-like of shape (n_samples,)
            Class labels.

        Returns
        -------
        self : object
            Fitted estimator.
        """
        X, y = validate_data(self, X, y, ensure_min_samples=2, dtype=np.float64)
        check_classification_targets(y)
        self.classes_, counts = np.unique(y, return_counts=True)
        self.n_neighbors_ = self._effective_n_neighbors(counts, X.shape[0])

        objective = LMNNFunction(
            X,
            y,
            k=self.n_neighbors_,
            regularization=self.regularization,
            update_interval=self.update_interval,
            metric=self.metric,
            random_state=self.random_state,
            verbose=max(self.verbose - 1, 0),
        )
        L0 = self._init_transformation(X)
        shape = L0.shape
        verbose = self.verbose
        state = {"cost": np.inf, "it": 0}

        def fun(flat):
            cost, grad = objective.evaluate_with_gradient(flat.reshape(shape))
            state["cost"] = cost
            return cost, grad.ravel()

        def callback(flat):
            state["it"] += 1
            if verbose:
                print(f"[LMNN] iteration {state['it']}, objective {state['cost']:<.3e}.")

        result = minimize(
            fun,
            L0.ravel(),
            jac=True,
            method="L-BFGS-B",
            tol=self.tol,
            callback=callback,
            options={"maxiter": self.max_iter},
        )

        if not result.success and result.nit >= self.max_iter:
            warnings.warn(
                f"LMNN did not converge within max_iter={self.max_iter} "
                f"iterations ({result.message}). Consider increasing max_iter.",
                ConvergenceWarning,
                stacklevel=2,
            )
        elif verbose:
            print(f"[LMNN] stopped after {result.nit} iterations: {result.message}")

        self.components_ = result.x.reshape(shape)
        self.n_iter_ = int(result.nit)
        self.objective_ = float(result.fun)
        return self

    def transform(self, X):
        """Apply the learned transformation to ``X``.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Samples to transform.

        Returns
        -------
        X_new : ndarray of shape (n_samples, n_components)
        """
        check_is_fitted(self, "components_")
        X = validate_data(self, X, reset=False, dtype=[np.float64, np.float32])
        return X @ self.components_.T
