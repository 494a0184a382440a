"""Unit tests for robust estimator creation by method."""

import numpy as np
import pytest

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.robust import (
    DEFAULT_ROBUST_METHOD,
    LMedSRobustEstimator,
    MSACRobustEstimator,
    PROMedSRobustEstimator,
    PROSACRobustEstimator,
    RANSACRobustEstimator,
    RobustEstimatorMethod,
    create_robust_estimator,
)


class TestCreateRobustEstimator:
    """Test the factory dispatch."""

    @pytest.mark.parametrize(
        "method, cls",
        [
            (RobustEstimatorMethod.RANSAC, RANSACRobustEstimator),
            (RobustEstimatorMethod.LMEDS, LMedSRobustEstimator),
            (RobustEstimatorMethod.MSAC, MSACRobustEstimator),
            (RobustEstimatorMethod.PROSAC, PROSACRobustEstimator),
            (RobustEstimatorMethod.PROMEDS, PROMedSRobustEstimator),
        ],
    )
    def test_method_enum(self, method, cls):
        estimator = create_robust_estimator(method)

        assert isinstance(estimator, cls)
        assert estimator.method == method

    @pytest.mark.parametrize("name", ["ransac", "LMedS", "MSAC", "prosac", "PROMEDS"])
    def test_method_name(self, name):
        estimator = create_robust_estimator(name)
        assert estimator.method.value == name.lower()

    def test_default_method(self):
        assert DEFAULT_ROBUST_METHOD == RobustEstimatorMethod.PROMEDS
        assert isinstance(create_robust_estimator(), PROMedSRobustEstimator)

    def test_unknown_method(self):
        with pytest.raises(InvalidArgumentError):
            create_robust_estimator("mlesac")

    def test_options_forwarded(self):
        estimator = create_robust_estimator(
            "ransac", threshold=0.5, confidence=0.95, max_iterations=10, seed=3
        )

        assert estimator.threshold == 0.5
        assert estimator.confidence == 0.95
        assert estimator.max_iterations == 10
        assert estimator.seed == 3

    def test_inapplicable_options_dropped(self):
        """Options of other methods are ignored rather than rejected."""
        lmeds = create_robust_estimator(
            "lmeds", threshold=0.5, quality_scores=np.ones(5), stop_threshold=1e-3
        )
        ransac = create_robust_estimator("ransac", stop_threshold=1e-3, threshold=0.2)

        assert lmeds.stop_threshold == 1e-3
        assert not hasattr(lmeds, "threshold")
        assert not hasattr(ransac, "stop_threshold")
        assert ransac.threshold == 0.2

    def test_progressive_options(self):
        scores = np.arange(5, dtype=float)
        estimator = create_robust_estimator("promeds", quality_scores=scores, eta0=0.1)

        np.testing.assert_array_equal(estimator.quality_scores, scores)
        assert estimator.eta0 == 0.1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
