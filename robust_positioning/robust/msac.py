"""MSAC: RANSAC scored by the sum of squared residuals capped at the threshold."""

import numpy as np

from robust_positioning.robust.base import RobustEstimatorMethod, ThresholdRobustEstimator


class MSACRobustEstimator(ThresholdRobustEstimator):
    """
    M-estimator sample consensus.

    Inliers contribute their squared residual and outliers a constant t²,
    so among candidates with equal support the more accurate one wins:

        C = Σ min(rᵢ², t²)
    """

    method = RobustEstimatorMethod.MSAC

    def _score(self, residuals):
        return float(np.sum(np.minimum(residuals**2, self.threshold**2)))
