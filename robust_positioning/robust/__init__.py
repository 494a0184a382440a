"""
Robust estimators.

Submodules:
    base: Shared engine, run state, listener and iteration bound
    sampling: PROSAC progressive sampling
    ransac, msac, lmeds, prosac, promeds: Robust methods
    factory: Creation by method
"""

from robust_positioning.robust.base import (
    EstimatorState,
    RobustEstimator,
    RobustEstimatorListener,
    RobustEstimatorMethod,
    required_iterations,
)
from robust_positioning.robust.factory import DEFAULT_ROBUST_METHOD, create_robust_estimator
from robust_positioning.robust.lmeds import LMedSRobustEstimator
from robust_positioning.robust.msac import MSACRobustEstimator
from robust_positioning.robust.promeds import PROMedSRobustEstimator
from robust_positioning.robust.prosac import PROSACRobustEstimator
from robust_positioning.robust.ransac import RANSACRobustEstimator

__all__ = [
    "EstimatorState",
    "RobustEstimator",
    "RobustEstimatorListener",
    "RobustEstimatorMethod",
    "required_iterations",
    "DEFAULT_ROBUST_METHOD",
    "create_robust_estimator",
    "LMedSRobustEstimator",
    "MSACRobustEstimator",
    "PROMedSRobustEstimator",
    "PROSACRobustEstimator",
    "RANSACRobustEstimator",
]
