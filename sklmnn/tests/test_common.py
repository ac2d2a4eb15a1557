"""Common estimator tests for sklmnn using scikit-learn's parametrize_with_checks."""
from sklearn.utils.estimator_checks import parametrize_with_checks

from sklmnn import LMNN


@parametrize_with_checks([LMNN()])
def test_estimators(estimator, check, request):
    check(estimator)
