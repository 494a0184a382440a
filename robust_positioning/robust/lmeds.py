"""LMedS: keep the candidate with the least median of squared residuals."""

import math

import numpy as np

from robust_positioning.robust.base import MedianRobustEstimator, RobustEstimatorMethod


class LMedSRobustEstimator(MedianRobustEstimator):
    """
    Least median of squares.

    Needs no inlier threshold: inliers are flagged with a threshold inferred
    from the residual distribution of the best candidate. The run stops early
    once the median absolute residual drops to ``stop_threshold``.
    """

    method = RobustEstimatorMethod.LMEDS

    def _reached_stop_threshold(self, residuals):
        return math.sqrt(float(np.median(residuals**2))) <= self.stop_threshold
