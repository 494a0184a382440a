"""PROMedS: least median of squares with progressive quality-ordered sampling."""

from robust_positioning.robust.base import MedianRobustEstimator, RobustEstimatorMethod
from robust_positioning.robust.sampling import ProgressiveSamplingMixin


class PROMedSRobustEstimator(ProgressiveSamplingMixin, MedianRobustEstimator):
    """
    Progressive least median of squares.

    Candidates are scored by their median squared residual, subsets are drawn
    as in PROSAC, and the run stops as soon as the estimated inlier threshold
    of the best candidate drops to ``stop_threshold``.
    """

    method = RobustEstimatorMethod.PROMEDS

    def _reached_stop_threshold(self, residuals):
        return self.estimated_threshold(residuals) <= self.stop_threshold
