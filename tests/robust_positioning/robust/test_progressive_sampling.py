"""
Unit tests for PROSAC progressive sampling.

Tests the sampler growth schedule, the non-randomness bound and the pool
size selection of PROSAC and PROMedS.
"""

import numpy as np
import pytest

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.robust import (
    PROMedSRobustEstimator,
    PROSACRobustEstimator,
    required_iterations,
)
from robust_positioning.robust.sampling import ProgressiveSampler, minimum_inliers


class TestProgressiveSampler:
    """Test the sampling schedule."""

    def setup_method(self):
        self.order = np.array([4, 2, 9, 0, 7, 1, 8, 3, 6, 5])

    def _sampler(self, max_draws=100, seed=0):
        return ProgressiveSampler(self.order, 2, max_draws, np.random.default_rng(seed))

    def test_first_draw_uses_best_samples(self):
        """The first draw holds the third best sample and one of the two best."""
        sampler = self._sampler()

        subset = sampler.sample()

        assert len(subset) == 2
        assert set(subset) <= set(self.order[:3])
        assert self.order[2] in subset

    def test_pool_grows_to_all_samples(self):
        sampler = self._sampler()

        sizes = []
        for _ in range(300):
            sampler.sample()
            sizes.append(sampler.n)

        assert sizes == sorted(sizes)
        assert sizes[-1] == len(self.order)

    def test_draws_are_distinct_indices(self):
        sampler = self._sampler()

        for _ in range(200):
            subset = sampler.sample()
            assert len(np.unique(subset)) == 2
            assert np.all(np.isin(subset, self.order))

    def test_pool_limited_to_n_star(self):
        sampler = self._sampler()
        sampler.n_star = 5

        for _ in range(500):
            subset = sampler.sample()
            assert set(subset) <= set(self.order[:5])
        assert sampler.n == 5

    def test_early_draws_favor_best_samples(self):
        """Best samples are drawn far more often than the worst ones."""
        sampler = self._sampler(max_draws=1000)

        counts = np.zeros(10)
        for _ in range(100):
            for index in sampler.sample():
                counts[index] += 1

        assert counts[self.order[:3]].sum() > counts[self.order[-3:]].sum()


class TestMinimumInliers:
    """Test the non-randomness support bound."""

    def test_bound_above_subset_size(self):
        n = np.arange(3, 100)
        bound = minimum_inliers(n, 2, 0.05, 0.01)

        assert np.all(bound >= 3)
        assert np.all(np.diff(bound) >= 0)

    def test_bound_grows_with_beta(self):
        n = np.array([50])
        assert minimum_inliers(n, 3, 0.05, 0.1)[0] > minimum_inliers(n, 3, 0.05, 0.01)[0]


class TestPoolSelection:
    """Test the choice of the pool size after an improvement."""

    def test_prosac_selects_inlier_pool(self):
        """With the 15 best samples inliers, no further iteration is needed."""
        estimator = PROSACRobustEstimator(total_samples=20, subset_size=2)
        sorted_inliers = np.arange(20) < 15

        n_star, bound = estimator._select_pool_size(sorted_inliers)

        assert n_star == 15
        assert bound == 0

    def test_prosac_falls_back_to_all_samples(self):
        """Random-looking support keeps the whole set and the standard bound."""
        estimator = PROSACRobustEstimator(total_samples=20, subset_size=2)
        sorted_inliers = np.zeros(20, dtype=bool)
        sorted_inliers[[0, 1]] = True

        n_star, bound = estimator._select_pool_size(sorted_inliers)

        assert n_star == 20
        assert bound == required_iterations(0.1, 2, 0.99, 5000)

    def test_promeds_bound_capped_at_half_inliers(self):
        estimator = PROMedSRobustEstimator(total_samples=20, subset_size=2)
        sorted_inliers = np.arange(20) < 15

        n_star, bound = estimator._select_pool_size(sorted_inliers)

        assert n_star == 20
        assert bound == required_iterations(0.5, 2, 0.99, 5000)


class TestProgressiveOptions:
    """Test option validation of the progressive methods."""

    @pytest.mark.parametrize("cls", [PROSACRobustEstimator, PROMedSRobustEstimator])
    @pytest.mark.parametrize(
        "name, value",
        [
            ("eta0", 0.0),
            ("eta0", 1.0),
            ("beta", 0.0),
            ("beta", 1.5),
            ("max_outliers_proportion", 1.0),
            ("max_outliers_proportion", -0.1),
            ("quality_scores", np.ones((2, 2))),
        ],
    )
    def test_invalid_options(self, cls, name, value):
        with pytest.raises(InvalidArgumentError):
            cls(**{name: value})

    def test_defaults(self):
        estimator = PROSACRobustEstimator()

        assert estimator.eta0 == 0.05
        assert estimator.beta == 0.01
        assert estimator.max_outliers_proportion == 0.8
        assert estimator.quality_scores is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
