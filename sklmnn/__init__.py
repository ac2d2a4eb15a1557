"""Public API for the :mod:`sklmnn` package.

The package implements Large Margin Nearest Neighbor (LMNN) metric
learning:

* :class:`~sklmnn.LMNN` – scikit-learn transformer learning a linear
    map that pulls target neighbors together and pushes impostors away.
* :class:`~sklmnn.LMNNFunction` – the incremental LMNN objective with
    full-dataset and mini-batch cost and gradient, usable by any iterative
    optimizer.
* :class:`~sklmnn.LMNNConstraints` – target neighbor and impostor
    computation on top of :class:`sklearn.neighbors.NearestNeighbors`.
* Metrics :class:`~sklmnn.SquaredEuclideanDistance`,
    :class:`~sklmnn.EuclideanDistance` and :class:`~sklmnn.ManhattanDistance`.
"""

from ._constraints import LMNNConstraints
from ._lmnn import LMNN
from ._lmnn_function import LMNNFunction
from ._metrics import EuclideanDistance, ManhattanDistance, SquaredEuclideanDistance

__all__ = [
    "LMNN",
    "LMNNFunction",
    "LMNNConstraints",
    "SquaredEuclideanDistance",
    "EuclideanDistance",
    "ManhattanDistance",
]

# Light-weight version attribute for now; adjust if setuptools_scm is adopted.
__version__ = "0.1.0"
