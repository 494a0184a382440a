"""PROSAC: RANSAC with subsets drawn progressively by sample quality."""

import numpy as np

from robust_positioning.robust.base import RobustEstimatorMethod, ThresholdRobustEstimator
from robust_positioning.robust.sampling import ProgressiveSamplingMixin


class PROSACRobustEstimator(ProgressiveSamplingMixin, ThresholdRobustEstimator):
    """
    Progressive sample consensus.

    Scores candidates like RANSAC but draws subsets from the best-ranked
    samples first, so good quality scores find the solution in far fewer
    iterations. Requires one quality score per sample (larger is better).
    """

    method = RobustEstimatorMethod.PROSAC

    def _score(self, residuals):
        return -float(np.count_nonzero(residuals < self.threshold))
