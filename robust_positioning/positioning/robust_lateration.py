"""
Robust lateration: position from distances to known positions, tolerant to
outlier distances (e.g. NLOS ranges).

Each robust iteration solves a small subset of distances with the linear
lateration solver; the best solution is then refit on its inliers with the
nonlinear solver, which also provides the position covariance.

Example:
    >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
    >>> ranges = np.linalg.norm(anchors - np.array([5.0, 5.0]), axis=1)
    >>> ranges[3] += 1000.0
    >>> solver = RobustLaterationSolver(
    ...     anchors, ranges, method="ransac", threshold=0.1, seed=0
    ... )
    >>> np.round(solver.solve(), 6)
    array([5., 5.])
"""

from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from robust_positioning.errors import InvalidArgumentError, NotReadyError, RefinementError
from robust_positioning.positioning.base import RobustSolverBase
from robust_positioning.positioning.refinement import refine_solution
from robust_positioning.rf.lateration import NonLinearLaterationSolver, linear_lateration
from robust_positioning.types import RangingSample, Solution, ranging_samples_to_arrays


class RobustLaterationSolver(RobustSolverBase):
    """
    Robust 2D/3D lateration.

    Args:
        positions: Known positions, shape (N, 2) or (N, 3).
        distances: Measured distances, shape (N,).
        standard_deviations: Optional distance standard deviations (N,),
            used to weight the refinement.
        initial_position: Optional starting point of the nonlinear solver
            when preliminary solutions are refined.
        preliminary_subset_size: Distances per preliminary solution. Defaults
            to the minimum (d + 1); larger subsets give more accurate but
            less outlier-tolerant preliminary solutions.
        refine_preliminary_solutions: Refine every preliminary solution with
            the nonlinear solver.
        **kwargs: Robust options (see RobustSolverBase).

    Attributes:
        estimated_position: Position of the last successful run.
        estimated_covariance: Position covariance of the last successful run,
            or None when refinement is disabled or failed.
    """

    def __init__(
        self,
        positions: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        standard_deviations: Optional[np.ndarray] = None,
        initial_position: Optional[np.ndarray] = None,
        preliminary_subset_size: Optional[int] = None,
        refine_preliminary_solutions: bool = False,
        **kwargs,
    ):
        self._positions = None
        self._distances = None
        self._standard_deviations = None
        self._preliminary_subset_size = None
        self._estimated_position: Optional[np.ndarray] = None
        self._estimated_covariance: Optional[np.ndarray] = None

        super().__init__(**kwargs)
        if positions is not None or distances is not None:
            self.set_samples(positions, distances, standard_deviations)
        self.initial_position = initial_position
        self.preliminary_subset_size = preliminary_subset_size
        self.refine_preliminary_solutions = refine_preliminary_solutions

    @classmethod
    def from_samples(cls, samples: Sequence[RangingSample], **kwargs) -> "RobustLaterationSolver":
        """
        Create a solver from ranging samples.

        Standard deviations and quality scores are taken from the samples
        when every sample defines them.
        """
        positions, distances, stds, scores = ranging_samples_to_arrays(samples)
        if scores is not None:
            kwargs.setdefault("quality_scores", scores)
        return cls(positions, distances, standard_deviations=stds, **kwargs)

    def set_samples(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        standard_deviations: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set the known positions, distances and optional standard deviations.

        Raises:
            LockedError: If a run is in progress.
            InvalidArgumentError: If shapes are inconsistent or values invalid.
        """
        self._check_unlocked()
        if positions is None or distances is None:
            raise InvalidArgumentError("positions and distances must be provided together")
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        if distances.ndim != 1 or len(distances) != positions.shape[0]:
            raise InvalidArgumentError(
                f"Expected {positions.shape[0]} distances, got shape {distances.shape}"
            )
        if np.any(distances < 0):
            raise InvalidArgumentError("Distances must be non-negative")
        if standard_deviations is not None:
            standard_deviations = np.asarray(standard_deviations, dtype=float)
            if standard_deviations.shape != distances.shape:
                raise InvalidArgumentError(
                    f"Expected {len(distances)} standard deviations, "
                    f"got shape {standard_deviations.shape}"
                )
            if np.any(standard_deviations <= 0):
                raise InvalidArgumentError("Standard deviations must be positive")

        self._positions = positions
        self._distances = distances
        self._standard_deviations = standard_deviations

    @property
    def positions(self) -> Optional[np.ndarray]:
        return self._positions

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    @property
    def standard_deviations(self) -> Optional[np.ndarray]:
        return self._standard_deviations

    @property
    def dim(self) -> Optional[int]:
        return None if self._positions is None else self._positions.shape[1]

    @property
    def min_required_samples(self) -> int:
        """d + 1 distances (3 in 2D, 4 in 3D)."""
        return (self.dim or 2) + 1

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        return self._initial_position

    @initial_position.setter
    def initial_position(self, value) -> None:
        if value is not None:
            value = np.asarray(value, dtype=float)
            if value.ndim != 1 or value.size not in (2, 3):
                raise InvalidArgumentError(
                    f"initial_position must be a 2D or 3D point, got shape {value.shape}"
                )
        self._initial_position = value

    @property
    def preliminary_subset_size(self) -> int:
        if self._preliminary_subset_size is None:
            return self.min_required_samples
        return max(self._preliminary_subset_size, self.min_required_samples)

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, value: Optional[int]) -> None:
        if value is not None and value < self.min_required_samples:
            raise InvalidArgumentError(
                f"preliminary_subset_size must be at least {self.min_required_samples}, "
                f"got {value}"
            )
        if value is not None and self._distances is not None and value > len(self._distances):
            raise InvalidArgumentError(
                f"preliminary_subset_size {value} exceeds the {len(self._distances)} samples"
            )
        self._preliminary_subset_size = value

    @property
    def is_ready(self) -> bool:
        if self._positions is None:
            return False
        n = len(self._distances)
        if self._initial_position is not None and self._initial_position.size != self.dim:
            return False
        return (
            n >= self.min_required_samples
            and n >= self.preliminary_subset_size
            and self._quality_scores_ready(n)
        )

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return self._estimated_position

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        return self._estimated_covariance

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        return self._estimated_covariance

    def residuals(self, position: np.ndarray) -> np.ndarray:
        """Absolute distance residuals of every sample against a position."""
        return np.abs(np.linalg.norm(self._positions - position, axis=1) - self._distances)

    def _subset_stds(self, indices: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if self._standard_deviations is None:
            return None
        if indices is None:
            return self._standard_deviations
        return self._standard_deviations[indices]

    def _preliminary_solutions(self, indices: np.ndarray):
        positions = self._positions[indices]
        distances = self._distances[indices]
        stds = self._subset_stds(indices)
        linear = linear_lateration(positions, distances, standard_deviations=stds)
        if not self.refine_preliminary_solutions:
            return [linear]

        start = self.initial_position if self.initial_position is not None else linear
        try:
            result = NonLinearLaterationSolver(positions).solve(
                distances,
                initial_guess=start,
                standard_deviations=stds,
                return_covariance=False,
            )
        except RefinementError:
            return [linear]
        return [result.x]

    def _refine(self, initial: Solution, indices, return_covariance: bool):
        positions = self._positions if indices is None else self._positions[indices]
        distances = self._distances if indices is None else self._distances[indices]
        result = NonLinearLaterationSolver(positions).solve(
            distances,
            initial_guess=initial.position,
            standard_deviations=self._subset_stds(indices),
            return_covariance=return_covariance,
        )
        return Solution(position=result.x), result.covariance

    def solve(self) -> np.ndarray:
        """
        Estimate the position.

        Returns:
            Estimated position, shape (d,).

        Raises:
            LockedError: If a run is already in progress.
            NotReadyError: If there are not enough samples or quality scores
                are missing for PROSAC/PROMedS.
            RobustEstimatorError: If no subset produced a solution.
        """
        self._check_unlocked()
        if not self.is_ready:
            raise NotReadyError("Solver is not ready")

        with self._running():
            self._estimated_position = None
            self._estimated_covariance = None
            self._estimator = self._create_estimator(
                self._preliminary_solutions,
                self.residuals,
                total_samples=len(self._distances),
                subset_size=self.preliminary_subset_size,
            )
            position = self._estimator.estimate()

            result = refine_solution(
                Solution(position=position),
                self._estimator.best_inliers,
                self._refine,
                dim=self.dim,
                refine_result=self.refine_result,
                keep_covariance=self.keep_covariance,
            )
            self._estimated_position = result.solution.position
            self._estimated_covariance = result.position_covariance
            return self._estimated_position


def _robust_lateration(
    positions: np.ndarray, distances: np.ndarray, dim: int, **kwargs
) -> Tuple[np.ndarray, Dict[str, Any]]:
    positions = np.asarray(positions, dtype=float)
    if positions.ndim != 2 or positions.shape[1] != dim:
        raise InvalidArgumentError(
            f"positions must have shape (N, {dim}), got {positions.shape}"
        )
    kwargs.setdefault("compute_and_keep_inliers", True)
    solver = RobustLaterationSolver(positions, distances, **kwargs)
    position = solver.solve()

    inliers_data = solver.inliers_data
    info = {
        "method": solver.method.value,
        "iterations": solver.iterations,
        "covariance": solver.estimated_covariance,
        "inliers": None if inliers_data is None else inliers_data.inliers,
        "num_inliers": None if inliers_data is None else inliers_data.num_inliers,
        "threshold": None if inliers_data is None else inliers_data.estimated_threshold,
    }
    return position, info


def robust_lateration_2d(
    positions: np.ndarray, distances: np.ndarray, **kwargs
) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Robust 2D lateration in one call.

    Args:
        positions: Known positions, shape (N, 2).
        distances: Measured distances, shape (N,).
        **kwargs: Options of RobustLaterationSolver.

    Returns:
        Tuple (position (2,), info) where info holds "method", "iterations",
        "covariance", "inliers", "num_inliers" and "threshold".
    """
    return _robust_lateration(positions, distances, 2, **kwargs)


def robust_lateration_3d(
    positions: np.ndarray, distances: np.ndarray, **kwargs
) -> Tuple[np.ndarray, Dict[str, Any]]:
    """Robust 3D lateration in one call (see robust_lateration_2d)."""
    return _robust_lateration(positions, distances, 3, **kwargs)
