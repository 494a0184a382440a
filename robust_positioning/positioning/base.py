"""
Options and run plumbing shared by the robust positioning front ends.

A front end owns the samples and the options, builds a robust estimator of
the configured method for every run, and forwards the estimator's listener
notifications with itself as the source.
"""

from typing import Optional, Union

import numpy as np

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.robust.base import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    Lockable,
    RobustEstimator,
    RobustEstimatorListener,
    RobustEstimatorMethod,
    check_positive,
)
from robust_positioning.robust.factory import DEFAULT_ROBUST_METHOD, create_robust_estimator
from robust_positioning.types import InliersData

_PROGRESSIVE_METHODS = (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)


class _ForwardingListener(RobustEstimatorListener):
    """Relays estimator notifications to a front-end listener."""

    def __init__(self, owner, listener: RobustEstimatorListener):
        self.owner = owner
        self.listener = listener

    def on_estimate_start(self, estimator):
        self.listener.on_estimate_start(self.owner)

    def on_estimate_end(self, estimator):
        self.listener.on_estimate_end(self.owner)

    def on_estimate_next_iteration(self, estimator, iteration):
        self.listener.on_estimate_next_iteration(self.owner, iteration)

    def on_estimate_progress_change(self, estimator, progress):
        self.listener.on_estimate_progress_change(self.owner, progress)


class RobustSolverBase(Lockable):
    """
    Base of the robust front ends.

    Every option is a validated property; assigning any public attribute
    while a run is in progress raises LockedError.

    Args:
        method: Robust method. Defaults to PROMedS.
        quality_scores: Per-sample quality (PROSAC and PROMedS only).
        threshold: Residual threshold (RANSAC, MSAC, PROSAC).
        stop_threshold: Stop threshold (LMedS, PROMedS).
        inlier_factor: Inlier threshold multiplier (LMedS, PROMedS).
        confidence: Confidence in (0, 1).
        max_iterations: Maximum robust iterations.
        progress_delta: Progress notification granularity in [0, 1].
        compute_and_keep_inliers: Keep the inlier mask.
        compute_and_keep_residuals: Keep the residuals.
        refine_result: Refit the robust solution on its inliers.
        keep_covariance: Compute the covariance when refining.
        listener: RobustEstimatorListener notified with this front end.
        seed: Random seed, so repeated runs return the same result.
    """

    def __init__(
        self,
        method: Union[RobustEstimatorMethod, str] = DEFAULT_ROBUST_METHOD,
        quality_scores: Optional[np.ndarray] = None,
        threshold: float = DEFAULT_THRESHOLD,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        compute_and_keep_inliers: bool = False,
        compute_and_keep_residuals: bool = False,
        refine_result: bool = True,
        keep_covariance: bool = True,
        listener: Optional[RobustEstimatorListener] = None,
        seed: Optional[int] = None,
    ):
        self._estimator: Optional[RobustEstimator] = None

        self.method = method
        self.quality_scores = quality_scores
        self.threshold = threshold
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.compute_and_keep_inliers = compute_and_keep_inliers
        self.compute_and_keep_residuals = compute_and_keep_residuals
        self.refine_result = refine_result
        self.keep_covariance = keep_covariance
        self.listener = listener
        self.seed = seed

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._method

    @method.setter
    def method(self, value) -> None:
        if isinstance(value, str):
            value = value.lower()
        try:
            self._method = RobustEstimatorMethod(value)
        except ValueError:
            raise InvalidArgumentError(f"Unknown robust method: {value!r}")

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
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._threshold = check_positive("threshold", value)

    @property
    def stop_threshold(self) -> float:
        return self._stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._stop_threshold = check_positive("stop_threshold", value)

    @property
    def inlier_factor(self) -> float:
        return self._inlier_factor

    @inlier_factor.setter
    def inlier_factor(self, value: float) -> None:
        self._inlier_factor = check_positive("inlier_factor", value)

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        if not 0.0 < value < 1.0:
            raise InvalidArgumentError(f"confidence must be in (0, 1), got {value}")
        self._confidence = float(value)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        if value < 1:
            raise InvalidArgumentError(f"max_iterations must be positive, got {value}")
        self._max_iterations = int(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        if not 0.0 <= value <= 1.0:
            raise InvalidArgumentError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inlier diagnostics of the last successful run, if kept."""
        if self._estimator is None:
            return None
        return self._estimator.inliers_data

    @property
    def iterations(self) -> int:
        """Robust iterations performed by the last run."""
        return 0 if self._estimator is None else self._estimator.iterations

    def _quality_scores_ready(self, total_samples: int) -> bool:
        if self.method not in _PROGRESSIVE_METHODS:
            return True
        return self.quality_scores is not None and len(self.quality_scores) == total_samples

    def _create_estimator(
        self, estimate_candidates, compute_residuals, total_samples: int, subset_size: int
    ) -> RobustEstimator:
        listener = None
        if self.listener is not None:
            listener = _ForwardingListener(self, self.listener)
        return create_robust_estimator(
            self.method,
            estimate_candidates=estimate_candidates,
            compute_residuals=compute_residuals,
            total_samples=total_samples,
            subset_size=subset_size,
            threshold=self.threshold,
            stop_threshold=self.stop_threshold,
            inlier_factor=self.inlier_factor,
            quality_scores=self.quality_scores,
            confidence=self.confidence,
            max_iterations=self.max_iterations,
            progress_delta=self.progress_delta,
            compute_and_keep_inliers=self.compute_and_keep_inliers,
            compute_and_keep_residuals=self.compute_and_keep_residuals,
            listener=listener,
            seed=self.seed,
        )
