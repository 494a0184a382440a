"""Construction of robust estimators by method."""

from typing import Union

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.robust.base import RobustEstimator, RobustEstimatorMethod
from robust_positioning.robust.lmeds import LMedSRobustEstimator
from robust_positioning.robust.msac import MSACRobustEstimator
from robust_positioning.robust.promeds import PROMedSRobustEstimator
from robust_positioning.robust.prosac import PROSACRobustEstimator
from robust_positioning.robust.ransac import RANSACRobustEstimator

DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS

_ESTIMATORS = {
    RobustEstimatorMethod.RANSAC: RANSACRobustEstimator,
    RobustEstimatorMethod.LMEDS: LMedSRobustEstimator,
    RobustEstimatorMethod.MSAC: MSACRobustEstimator,
    RobustEstimatorMethod.PROSAC: PROSACRobustEstimator,
    RobustEstimatorMethod.PROMEDS: PROMedSRobustEstimator,
}

_THRESHOLD_METHODS = {
    RobustEstimatorMethod.RANSAC,
    RobustEstimatorMethod.MSAC,
    RobustEstimatorMethod.PROSAC,
}
_MEDIAN_METHODS = {RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS}
_PROGRESSIVE_METHODS = {RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS}

# Keyword arguments understood only by some methods
_METHOD_OPTIONS = {
    "threshold": _THRESHOLD_METHODS,
    "stop_threshold": _MEDIAN_METHODS,
    "inlier_factor": _MEDIAN_METHODS,
    "quality_scores": _PROGRESSIVE_METHODS,
    "eta0": _PROGRESSIVE_METHODS,
    "beta": _PROGRESSIVE_METHODS,
    "max_outliers_proportion": _PROGRESSIVE_METHODS,
}


def create_robust_estimator(
    method: Union[RobustEstimatorMethod, str] = DEFAULT_ROBUST_METHOD,
    **kwargs,
) -> RobustEstimator:
    """
    Create a robust estimator.

    Method-specific options that do not apply to the chosen method (e.g.
    ``threshold`` for LMedS) are dropped, so callers can pass one set of
    options regardless of the method.

    Args:
        method: RobustEstimatorMethod or its name ("ransac", "lmeds", ...).
        **kwargs: Options forwarded to the estimator constructor.

    Returns:
        RobustEstimator of the requested method.

    Raises:
        InvalidArgumentError: If the method is unknown.

    Example:
        >>> create_robust_estimator("msac", threshold=0.5).method
        <RobustEstimatorMethod.MSAC: 'msac'>
    """
    if isinstance(method, str):
        method = method.lower()
    try:
        method = RobustEstimatorMethod(method)
    except ValueError:
        raise InvalidArgumentError(f"Unknown robust method: {method!r}")

    options = {
        key: value
        for key, value in kwargs.items()
        if key not in _METHOD_OPTIONS or method in _METHOD_OPTIONS[key]
    }
    return _ESTIMATORS[method](**options)
