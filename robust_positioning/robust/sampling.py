"""
Subset samplers of the robust estimators.

- ProgressiveSampler: PROSAC progressive draw from a pool of samples
  ordered by quality score that grows with the iteration count
  (PROSAC, PROMedS)
- ProgressiveSamplingMixin: adds quality scores, progressive sampling and
  the PROSAC stopping rule to a robust estimator

Reference:
    Chum, O. & Matas, J. "Matching with PROSAC - Progressive Sample
    Consensus", CVPR 2005.
"""

import math
from typing import Optional, Tuple

import numpy as np
from scipy import stats

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.robust.base import required_iterations

# Probability that a wrong solution is supported by chance (non-randomness)
DEFAULT_ETA0 = 0.05

# Probability that an outlier is consistent with a wrong solution
DEFAULT_BETA = 0.01

# Outlier proportion used to bound the number of progressive draws
DEFAULT_MAX_OUTLIERS_PROPORTION = 0.8


def minimum_inliers(
    n: np.ndarray, subset_size: int, eta0: float, beta: float
) -> np.ndarray:
    """
    Smallest support that is unlikely to arise by chance among the first n samples.

        I_min(n) = min { j : P(X ≥ j − m) < η₀ },   X ~ Binomial(n − m, β)

    Args:
        n: Pool sizes (>= subset_size).
        subset_size: Subset size m.
        eta0: Non-randomness probability η₀.
        beta: Probability β that an outlier supports a wrong model.

    Returns:
        I_min for every pool size.
    """
    n = np.asarray(n)
    return subset_size + stats.binom.isf(eta0, n - subset_size, beta) + 1


class ProgressiveSampler:
    """
    PROSAC sampler.

    Draws from the top-n samples by quality, where n grows with the number
    of draws so that, after T_N draws, sampling is uniform over all samples.
    Each draw includes the n-th sample and m − 1 samples from the first
    n − 1, until the pool stops growing at n_star.

    Attributes:
        n: Current pool size.
        n_star: Largest pool size the sampler may reach.
    """

    def __init__(
        self,
        order: np.ndarray,
        subset_size: int,
        max_draws: int,
        rng: np.random.Generator,
    ):
        self.order = np.asarray(order)
        self.subset_size = subset_size
        self.rng = rng

        total = len(self.order)
        m = subset_size
        self.n = m
        self.n_star = total
        self._t = 0
        # expected number of draws containing only samples from the top m
        t_n = float(max(max_draws, 1))
        for i in range(m):
            t_n *= (m - i) / (total - i)
        self._t_n = t_n
        self._t_n_prime = 1

    def sample(self) -> np.ndarray:
        m = self.subset_size
        self._t += 1

        while self._t >= self._t_n_prime and self.n < self.n_star:
            t_n_next = self._t_n * (self.n + 1) / (self.n + 1 - m)
            self._t_n_prime += math.ceil(t_n_next - self._t_n)
            self._t_n = t_n_next
            self.n += 1

        if self.n >= self.n_star or self._t_n_prime < self._t:
            positions = self.rng.choice(self.n, size=m, replace=False)
        else:
            positions = np.append(
                self.rng.choice(self.n - 1, size=m - 1, replace=False), self.n - 1
            )
        return self.order[positions]


class ProgressiveSamplingMixin:
    """
    Quality-ordered progressive sampling for a RobustEstimator.

    After every improvement the pool size n* is chosen to minimize the number
    of iterations still needed, among pool sizes whose support passes the
    non-randomness test (maximality and non-randomness of PROSAC). When no
    pool size passes, the whole sample set and the standard bound are used.

    Args:
        quality_scores: Per-sample quality, larger is better.
        eta0: Non-randomness probability.
        beta: Probability that an outlier supports a wrong model.
        max_outliers_proportion: Outlier proportion bounding the number of
            progressive draws before sampling becomes uniform.
    """

    def __init__(
        self,
        *args,
        quality_scores: Optional[np.ndarray] = None,
        eta0: float = DEFAULT_ETA0,
        beta: float = DEFAULT_BETA,
        max_outliers_proportion: float = DEFAULT_MAX_OUTLIERS_PROPORTION,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.quality_scores = quality_scores
        self.eta0 = eta0
        self.beta = beta
        self.max_outliers_proportion = max_outliers_proportion
        self._sampler: Optional[ProgressiveSampler] = None
        self._order: Optional[np.ndarray] = None

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, value) -> None:
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.ndim != 1:
                raise InvalidArgumentError(
                    f"quality_scores must be 1D, got shape {value.shape}"
                )
        self._quality_scores = value

    @property
    def eta0(self) -> float:
        return self._eta0

    @eta0.setter
    def eta0(self, value: float) -> None:
        if not 0.0 < value < 1.0:
            raise InvalidArgumentError(f"eta0 must be in (0, 1), got {value}")
        self._eta0 = float(value)

    @property
    def beta(self) -> float:
        return self._beta

    @beta.setter
    def beta(self, value: float) -> None:
        if not 0.0 < value < 1.0:
            raise InvalidArgumentError(f"beta must be in (0, 1), got {value}")
        self._beta = float(value)

    @property
    def max_outliers_proportion(self) -> float:
        return self._max_outliers_proportion

    @max_outliers_proportion.setter
    def max_outliers_proportion(self, value: float) -> None:
        if not 0.0 <= value < 1.0:
            raise InvalidArgumentError(
                f"max_outliers_proportion must be in [0, 1), got {value}"
            )
        self._max_outliers_proportion = float(value)

    @property
    def is_ready(self) -> bool:
        return (
            super().is_ready
            and self.quality_scores is not None
            and len(self.quality_scores) == self.total_samples
        )

    def _start(self, rng):
        # descending quality, ties keep input order
        self._order = np.argsort(-self.quality_scores, kind="stable")
        max_draws = required_iterations(
            1.0 - self.max_outliers_proportion,
            self.subset_size,
            self.confidence,
            self.max_iterations,
        )
        self._sampler = ProgressiveSampler(self._order, self.subset_size, max_draws, rng)

    def _draw_subset(self, rng):
        return self._sampler.sample()

    def _sampling_complete(self):
        # the pool must have grown to n* before the bound may end the run
        return self._sampler.n >= self._sampler.n_star

    def _iteration_bound(self, residuals):
        inliers, _ = self._classify(residuals)
        n_star, bound = self._select_pool_size(inliers[self._order])
        self._sampler.n_star = max(n_star, self._sampler.n)
        return bound

    def _select_pool_size(self, sorted_inliers: np.ndarray) -> Tuple[int, int]:
        m = self.subset_size
        total = len(sorted_inliers)
        support = np.cumsum(sorted_inliers)

        pool_sizes = np.arange(m, total + 1)
        non_random = support[pool_sizes - 1] >= minimum_inliers(
            pool_sizes, m, self.eta0, self.beta
        )

        # pool inlier ratios, capped where the inlier threshold is inferred
        ratios = np.minimum(support / np.arange(1, total + 1), self.max_bound_inlier_ratio)

        best_n = total
        best_bound = required_iterations(
            ratios[-1], m, self.confidence, self.max_iterations
        )
        if not np.any(non_random):
            return best_n, best_bound

        best_bound = self.max_iterations
        for n in pool_sizes[non_random]:
            bound = required_iterations(
                ratios[n - 1], m, self.confidence, self.max_iterations
            )
            if bound <= best_bound:
                best_n, best_bound = int(n), bound
        return best_n, best_bound
