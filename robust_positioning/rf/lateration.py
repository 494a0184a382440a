"""
Lateration solvers: position from distances to known positions.

This module implements the two solvers repeatedly invoked by the robust
lateration estimator:
- linear_lateration: closed-form linear least squares (circle/sphere
  intersection linearized by subtracting a reference equation)
- NonLinearLaterationSolver: Levenberg-Marquardt refinement of a position
  estimate with optional per-distance standard deviations

Both work for 2D and 3D positions; the dimension is taken from the shape of
the positions array.
"""

from typing import Optional

import numpy as np

from robust_positioning.errors import (
    InvalidArgumentError,
    NumericalInstabilityError,
    RefinementError,
)
from robust_positioning.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from robust_positioning.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)

# Default standard deviation of a distance when none is provided (meters)
DEFAULT_DISTANCE_STANDARD_DEVIATION = 1.0

# Ranges below this are treated as the estimate sitting on a known position
_MIN_RANGE = 1e-10


def _check_positions_and_distances(positions: np.ndarray, distances: np.ndarray):
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
    return positions, distances


def linear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    ref_idx: int = 0,
    standard_deviations: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Closed-form lateration by linear least squares.

    Every range equation ‖x − pᵢ‖² = dᵢ² contains the same quadratic term
    ‖x‖². Subtracting the equation of a reference position cancels it:

        2 (pᵢ − p_ref)ᵀ x = ‖pᵢ‖² − ‖p_ref‖² − dᵢ² + d_ref²

    leaving N − 1 linear equations in the d unknown coordinates.

    Args:
        positions: Known positions, shape (N, d) with d = 2 or 3.
        distances: Measured distances, shape (N,).
        ref_idx: Index of the reference equation. Defaults to 0.
        standard_deviations: Optional distance standard deviations (N,). When
            given, each differenced equation is weighted by the inverse of
            its first-order variance 4 (dᵢ² σᵢ² + d_ref² σ_ref²).

    Returns:
        Estimated position, shape (d,).

    Raises:
        InvalidArgumentError: If shapes are inconsistent or ref_idx is out
            of range.
        NumericalInstabilityError: If fewer than d + 1 positions are given,
            or the geometry is degenerate (co-located or collinear/coplanar
            positions).

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> ranges = np.linalg.norm(anchors - np.array([5.0, 5.0]), axis=1)
        >>> linear_lateration(anchors, ranges)
        array([5., 5.])
    """
    positions, distances = _check_positions_and_distances(positions, distances)
    n_positions, dim = positions.shape

    if n_positions < dim + 1:
        raise NumericalInstabilityError(
            f"Lateration in {dim}D needs at least {dim + 1} positions, got {n_positions}"
        )
    if ref_idx < 0 or ref_idx >= n_positions:
        raise InvalidArgumentError(
            f"ref_idx must be in [0, {n_positions - 1}], got {ref_idx}"
        )

    p_ref = positions[ref_idx]
    d_ref = distances[ref_idx]
    others = np.delete(np.arange(n_positions), ref_idx)

    H = 2.0 * (positions[others] - p_ref)
    b = (
        np.sum(positions[others] ** 2, axis=1)
        - np.sum(p_ref**2)
        - distances[others] ** 2
        + d_ref**2
    )

    if standard_deviations is None:
        position, _ = linear_least_squares(H, b, return_covariance=False)
        return position

    sigmas = np.asarray(standard_deviations, dtype=float)
    if sigmas.shape != distances.shape:
        raise InvalidArgumentError(
            f"Expected {n_positions} standard deviations, got shape {sigmas.shape}"
        )
    if np.any(sigmas <= 0):
        raise InvalidArgumentError("Standard deviations must be positive")
    row_sigmas = 2.0 * np.sqrt(
        (distances[others] * sigmas[others]) ** 2 + (d_ref * sigmas[ref_idx]) ** 2
    )
    position, _ = weighted_least_squares(
        H, b, np.maximum(row_sigmas, _MIN_RANGE), is_sigma=True, return_covariance=False
    )
    return position


class NonLinearLaterationSolver:
    """
    Lateration by iterative (Levenberg-Marquardt) weighted least squares.

    Minimizes Σ wᵢ (dᵢ − ‖x − pᵢ‖)² with wᵢ = 1/σᵢ². Standard deviations
    default to DEFAULT_DISTANCE_STANDARD_DEVIATION when not provided.

    Attributes:
        positions: Known positions, shape (N, d).
        n_positions: Number of known positions.
        dim: Dimension (2 or 3).
    """

    def __init__(self, positions: np.ndarray):
        """
        Initialize the solver.

        Args:
            positions: Known positions, shape (N, 2) or (N, 3).
        """
        positions = np.asarray(positions, dtype=float)
        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        self.positions = positions
        self.n_positions = positions.shape[0]
        self.dim = positions.shape[1]

    def predicted_distances(self, position: np.ndarray) -> np.ndarray:
        """Distances from an estimated position to every known position."""
        return np.linalg.norm(self.positions - position, axis=1)

    def jacobian(self, position: np.ndarray) -> np.ndarray:
        """∂‖x − pᵢ‖/∂x = (x − pᵢ)/‖x − pᵢ‖, zero on a known position."""
        diff = position - self.positions
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return np.where(ranges > _MIN_RANGE, diff / np.maximum(ranges, _MIN_RANGE), 0.0)

    def solve(
        self,
        distances: np.ndarray,
        initial_guess: Optional[np.ndarray] = None,
        standard_deviations: Optional[np.ndarray] = None,
        max_iters: int = 50,
        tol: float = 1e-10,
        return_covariance: bool = True,
    ) -> NonlinearLSResult:
        """
        Refine a position from measured distances.

        Args:
            distances: Measured distances, shape (N,).
            initial_guess: Starting position, shape (d,). If None, the linear
                solution is used, or the centroid of the known positions when
                the geometry is degenerate for the linear solver.
            standard_deviations: Optional distance standard deviations (N,).
            max_iters: Maximum Levenberg-Marquardt iterations.
            tol: Convergence tolerance.
            return_covariance: If True, the result carries the position
                covariance (d × d).

        Returns:
            NonlinearLSResult with x being the refined position.

        Raises:
            InvalidArgumentError: If array shapes are inconsistent.
            RefinementError: If fewer than d + 1 distances are provided or the
                iteration fails or does not converge within max_iters.
        """
        positions, distances = _check_positions_and_distances(self.positions, distances)

        if self.n_positions < self.dim + 1:
            raise RefinementError(
                f"Refinement in {self.dim}D needs at least {self.dim + 1} "
                f"distances, got {self.n_positions}"
            )

        if standard_deviations is None:
            sigmas = np.full(self.n_positions, DEFAULT_DISTANCE_STANDARD_DEVIATION)
        else:
            sigmas = np.asarray(standard_deviations, dtype=float)
            if sigmas.shape != distances.shape:
                raise InvalidArgumentError(
                    f"Expected {self.n_positions} standard deviations, got shape {sigmas.shape}"
                )
            if np.any(sigmas <= 0):
                raise InvalidArgumentError("Standard deviations must be positive")

        if initial_guess is None:
            try:
                initial_guess = linear_lateration(
                    positions, distances, standard_deviations=standard_deviations
                )
            except NumericalInstabilityError:
                initial_guess = np.mean(positions, axis=0)
        else:
            initial_guess = np.asarray(initial_guess, dtype=float)
            if initial_guess.shape != (self.dim,):
                raise InvalidArgumentError(
                    f"initial_guess must have shape ({self.dim},), got {initial_guess.shape}"
                )

        result = levenberg_marquardt(
            self.predicted_distances,
            self.jacobian,
            distances,
            initial_guess,
            weights=1.0 / sigmas**2,
            max_iter=max_iters,
            tol=tol,
            return_covariance=return_covariance,
        )
        if not result.converged:
            raise RefinementError(
                f"Lateration did not converge in {result.iterations} iterations"
            )
        return result
