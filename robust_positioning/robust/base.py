"""
Generic robust estimator engine.

A robust estimator repeatedly draws small subsets of samples, asks an
injected ``estimate_candidates`` callable for candidate solutions fitted to
the subset, scores every candidate against all samples with an injected
``compute_residuals`` callable, and keeps the best candidate under the rule
of the concrete method (RANSAC, MSAC, LMedS, PROSAC, PROMedS).

The engine knows nothing about the model: candidates are opaque objects.

Mathematical Formulation:
    Number of iterations needed to draw at least one all-inlier subset of
    size s with probability p when a fraction w of the samples are inliers:

        k = log(1 − p) / log(1 − wˢ)
"""

import math
import warnings
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from robust_positioning.errors import (
    InvalidArgumentError,
    LockedError,
    NotReadyError,
    NumericalInstabilityError,
    RobustEstimatorError,
)
from robust_positioning.types import InliersData

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05

# Residual threshold of RANSAC, MSAC and PROSAC
DEFAULT_THRESHOLD = 1e-2

# Stop threshold of LMedS and PROMedS
DEFAULT_STOP_THRESHOLD = 1e-5

# Multiplier of the robust scale estimate used to flag LMedS/PROMedS inliers
DEFAULT_INLIER_FACTOR = 1.5

# Consistency constant between the median absolute residual and the
# standard deviation of gaussian noise
MEDIAN_TO_STD = 1.4826


class RobustEstimatorMethod(Enum):
    """Robust estimation methods."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"


class EstimatorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RobustEstimatorListener:
    """
    Observer of a robust estimation run.

    All hooks are no-ops; subclass and override the ones of interest.
    Exceptions raised by a hook are reported as RuntimeWarning and never
    interrupt the run.
    """

    def on_estimate_start(self, estimator) -> None:
        pass

    def on_estimate_end(self, estimator) -> None:
        pass

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        pass

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        pass


def required_iterations(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """
    Iterations needed to draw one all-inlier subset with the given confidence.

    Args:
        inlier_ratio: Fraction of inliers w in [0, 1].
        subset_size: Subset size s.
        confidence: Desired probability p in (0, 1).
        max_iterations: Upper bound on the result.

    Returns:
        min(max_iterations, ⌈log(1 − p) / log(1 − wˢ)⌉). Zero when every
        sample is an inlier, max_iterations when none is.

    Example:
        >>> required_iterations(0.5, 3, 0.99, 5000)
        35
    """
    if inlier_ratio >= 1.0:
        return 0
    good_subset_probability = inlier_ratio**subset_size
    if good_subset_probability <= 0.0:
        return max_iterations
    k = math.log(1.0 - confidence) / math.log1p(-good_subset_probability)
    return int(min(max_iterations, math.ceil(k)))


def check_positive(name: str, value: float) -> float:
    if not value > 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value}")
    return float(value)


class Lockable:
    """
    Run state shared by estimators.

    Public attributes cannot be assigned while a run is in progress; the
    lock is released on every exit path of the run.
    """

    _locked = False
    _state = EstimatorState.IDLE

    def __setattr__(self, name, value):
        if not name.startswith("_") and self._locked:
            raise LockedError(f"Cannot set {name} while estimating")
        super().__setattr__(name, value)

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def state(self) -> EstimatorState:
        return self._state

    def _check_unlocked(self) -> None:
        if self._locked:
            raise LockedError("Estimator is already running")

    @contextmanager
    def _running(self):
        self._check_unlocked()
        succeeded = False
        self._locked = True
        self._state = EstimatorState.RUNNING
        try:
            yield
            succeeded = True
        finally:
            self._state = EstimatorState.SUCCEEDED if succeeded else EstimatorState.FAILED
            self._locked = False


class RobustEstimator(Lockable, ABC):
    """
    Base class of the robust estimators.

    Subclasses define how subsets are drawn and how a candidate is scored;
    this class runs the shared loop, the run state machine and the listener
    notifications.

    Args:
        estimate_candidates: Callable receiving an array of sample indices
            and returning a list of candidate solutions. May raise
            NumericalInstabilityError for degenerate subsets.
        compute_residuals: Callable receiving a candidate and returning the
            absolute residual of every sample, shape (total_samples,).
        total_samples: Number of samples.
        subset_size: Number of samples drawn per iteration.
        confidence: Probability of drawing at least one outlier-free subset.
        max_iterations: Maximum number of iterations.
        progress_delta: Minimum progress change between notifications.
        compute_and_keep_inliers: Keep the inlier mask of the best candidate.
        compute_and_keep_residuals: Keep the residuals of the best candidate.
        listener: Optional RobustEstimatorListener.
        seed: Seed of the random generator. Every run starts a fresh
            generator from this seed, so runs are repeatable.
    """

    method: RobustEstimatorMethod

    # upper bound of the inlier ratio trusted by the iteration bound
    max_bound_inlier_ratio = 1.0

    def __init__(
        self,
        estimate_candidates: Optional[Callable[[np.ndarray], List[Any]]] = None,
        compute_residuals: Optional[Callable[[Any], np.ndarray]] = None,
        total_samples: int = 0,
        subset_size: int = 1,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        compute_and_keep_inliers: bool = False,
        compute_and_keep_residuals: bool = False,
        listener: Optional[RobustEstimatorListener] = None,
        seed: Optional[int] = None,
    ):
        self._inliers_data: Optional[InliersData] = None
        self._best_residuals: Optional[np.ndarray] = None
        self._best_inliers: Optional[np.ndarray] = None
        self._iterations = 0

        self.estimate_candidates = estimate_candidates
        self.compute_residuals = compute_residuals
        self.total_samples = total_samples
        self.subset_size = subset_size
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.compute_and_keep_inliers = compute_and_keep_inliers
        self.compute_and_keep_residuals = compute_and_keep_residuals
        self.listener = listener
        self.seed = seed

    @property
    def iterations(self) -> int:
        """Iterations performed by the last run."""
        return self._iterations

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inlier diagnostics of the last successful run, if kept."""
        return self._inliers_data

    @property
    def best_residuals(self) -> Optional[np.ndarray]:
        """Residuals of the best candidate of the last successful run."""
        return self._best_residuals

    @property
    def best_inliers(self) -> Optional[np.ndarray]:
        """Inlier mask of the best candidate of the last successful run."""
        return self._best_inliers

    @property
    def total_samples(self) -> int:
        return self._total_samples

    @total_samples.setter
    def total_samples(self, value: int) -> None:
        if value < 0:
            raise InvalidArgumentError(f"total_samples must be non-negative, got {value}")
        self._total_samples = int(value)

    @property
    def subset_size(self) -> int:
        return self._subset_size

    @subset_size.setter
    def subset_size(self, value: int) -> None:
        if value < 1:
            raise InvalidArgumentError(f"subset_size must be at least 1, got {value}")
        self._subset_size = int(value)

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
    def is_ready(self) -> bool:
        return (
            self.estimate_candidates is not None
            and self.compute_residuals is not None
            and self.total_samples >= self.subset_size
        )

    def estimate(self) -> Any:
        """
        Run the robust estimation.

        Returns:
            The best candidate solution.

        Raises:
            LockedError: If a run is already in progress.
            NotReadyError: If the estimator is not ready.
            RobustEstimatorError: If no subset produced a candidate.
        """
        self._check_unlocked()
        if not self.is_ready:
            raise NotReadyError("Estimator is not ready")

        with self._running():
            self._inliers_data = None
            self._best_residuals = None
            self._best_inliers = None
            self._iterations = 0
            self._notify("on_estimate_start")

            rng = np.random.default_rng(self.seed)
            best, best_residuals = self._run(rng)

            inliers, threshold = self._classify(best_residuals)
            self._best_residuals = best_residuals
            self._best_inliers = inliers
            if self.compute_and_keep_inliers or self.compute_and_keep_residuals:
                self._inliers_data = InliersData(
                    inliers=inliers if self.compute_and_keep_inliers else None,
                    residuals=best_residuals if self.compute_and_keep_residuals else None,
                    num_inliers=int(np.count_nonzero(inliers)),
                    estimated_threshold=threshold,
                )

            self._notify("on_estimate_end")
            return best

    def _run(self, rng: np.random.Generator) -> Tuple[Any, np.ndarray]:
        self._start(rng)

        best = None
        best_residuals = None
        best_score = math.inf
        iteration_bound = self.max_iterations
        last_progress = 0.0
        stop = False

        while not stop and self._iterations < self.max_iterations and (
            self._iterations < iteration_bound or not self._sampling_complete()
        ):
            subset = self._draw_subset(rng)
            for candidate in self._candidates(subset):
                residuals = np.asarray(self.compute_residuals(candidate), dtype=float)
                score = self._score(residuals)
                if score < best_score:
                    best, best_residuals, best_score = candidate, residuals, score
                    iteration_bound = min(iteration_bound, self._iteration_bound(residuals))
                    stop = stop or self._reached_stop_threshold(residuals)

            self._iterations += 1
            self._notify("on_estimate_next_iteration", self._iterations)

            progress = min(1.0, self._iterations / max(iteration_bound, 1))
            if progress - last_progress >= self.progress_delta:
                last_progress = progress
                self._notify("on_estimate_progress_change", progress)

        if best is None:
            raise RobustEstimatorError(
                f"No solution found after {self._iterations} iterations"
            )
        return best, best_residuals

    def _candidates(self, subset: np.ndarray) -> List[Any]:
        try:
            return list(self.estimate_candidates(subset))
        except NumericalInstabilityError:
            # degenerate subset
            return []

    def _notify(self, hook: str, *args) -> None:
        if self.listener is None:
            return
        try:
            getattr(self.listener, hook)(self, *args)
        except Exception as e:
            warnings.warn(f"Listener {hook} raised {e!r}", RuntimeWarning)

    def _iteration_bound(self, residuals: np.ndarray) -> int:
        inliers, _ = self._classify(residuals)
        inlier_ratio = min(
            np.count_nonzero(inliers) / len(residuals), self.max_bound_inlier_ratio
        )
        return required_iterations(
            inlier_ratio, self.subset_size, self.confidence, self.max_iterations
        )

    def _start(self, rng: np.random.Generator) -> None:
        """Prepare per-run state before the first iteration."""

    def _draw_subset(self, rng: np.random.Generator) -> np.ndarray:
        return rng.choice(self.total_samples, size=self.subset_size, replace=False)

    def _reached_stop_threshold(self, residuals: np.ndarray) -> bool:
        return False

    def _sampling_complete(self) -> bool:
        """Whether the iteration bound alone may end the run."""
        return True

    @abstractmethod
    def _score(self, residuals: np.ndarray) -> float:
        """Cost of a candidate (lower is better)."""

    @abstractmethod
    def _classify(self, residuals: np.ndarray) -> Tuple[np.ndarray, Optional[float]]:
        """Inlier mask and the threshold used to compute it."""


class ThresholdRobustEstimator(RobustEstimator):
    """Base of the methods flagging inliers with a fixed residual threshold."""

    def __init__(self, *args, threshold: float = DEFAULT_THRESHOLD, **kwargs):
        super().__init__(*args, **kwargs)
        self.threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._threshold = check_positive("threshold", value)

    def _classify(self, residuals):
        return residuals < self.threshold, self.threshold


class MedianRobustEstimator(RobustEstimator):
    """
    Base of the least-median methods.

    The inlier threshold is inferred from the median of squared residuals:

        t = f · 1.4826 · (1 + 5 / (N − s)) · √median(r²)

    and floored at stop_threshold, so exact fits still flag their inliers.

    The threshold of a wrong candidate grows with its own error and flags
    most samples, so the iteration bound trusts at most the breakdown point
    of the median (half of the samples being inliers).
    """

    max_bound_inlier_ratio = 0.5

    def __init__(
        self,
        *args,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor

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

    def estimated_threshold(self, residuals: np.ndarray) -> float:
        """Robust scale estimate t of the residuals (not floored)."""
        dof = max(len(residuals) - self.subset_size, 1)
        median_sq = float(np.median(residuals**2))
        return self.inlier_factor * MEDIAN_TO_STD * (1.0 + 5.0 / dof) * math.sqrt(median_sq)

    def _score(self, residuals):
        return float(np.median(residuals**2))

    def _classify(self, residuals):
        threshold = max(self.estimated_threshold(residuals), self.stop_threshold)
        return residuals <= threshold, threshold
