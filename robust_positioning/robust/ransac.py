"""RANSAC: keep the candidate with the most residuals below a fixed threshold."""

import numpy as np

from robust_positioning.robust.base import RobustEstimatorMethod, ThresholdRobustEstimator


class RANSACRobustEstimator(ThresholdRobustEstimator):
    """
    Random sample consensus.

    Subsets are drawn uniformly at random. A sample is an inlier of a
    candidate when its residual is strictly below ``threshold``; the
    candidate with most inliers wins and ties keep the earlier candidate.

    Example:
        >>> data = np.array([1.0, 1.1, 0.9, 1.0, 50.0])
        >>> estimator = RANSACRobustEstimator(
        ...     estimate_candidates=lambda idx: [float(np.mean(data[idx]))],
        ...     compute_residuals=lambda c: np.abs(data - c),
        ...     total_samples=len(data),
        ...     subset_size=1,
        ...     threshold=0.5,
        ...     seed=0,
        ... )
        >>> 0.9 <= estimator.estimate() <= 1.1
        True
    """

    method = RobustEstimatorMethod.RANSAC

    def _score(self, residuals):
        return -float(np.count_nonzero(residuals < self.threshold))
