"""
RSSI radio source estimation: position, transmitted power and path-loss
exponent of a source from RSSI readings taken at known positions.

Measurement model (see measurement_models):

    rᵢ = P + 10·n·log10(k) − 10·n·log10(‖x − pᵢ‖),   k = c / (4π f)

Any subset of {x, P, n} may be estimated; the others are held at their
known (initial) values. Combinations that are linear in the unknowns have
closed-form solutions:

    power only           P = mean(rᵢ − 10·n·log10(k / dᵢ))
    path-loss only       n from rᵢ − P = n · 10·log10(k / dᵢ)
    power + path-loss    (P, n) from rᵢ = P + n · 10·log10(k / dᵢ)
    position only        distances from RSSI, then linear lateration
    position + power     lifted system s − 2pᵢ·x − A·wᵢ = −‖pᵢ‖²
                         with s = ‖x‖², A = k²·10^(P/(5n)), wᵢ = 10^(−rᵢ/(5n))

Combinations estimating position together with the path-loss exponent have
no closed form and are solved iteratively from the initial guess.

RangingAndRssiRadioSourceEstimator handles readings that also carry a range
to the source: the position is laterated from the ranges and only the power
and path-loss exponent are taken from the RSSI.
"""

import warnings
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import block_diag

from robust_positioning.errors import (
    InvalidArgumentError,
    NumericalInstabilityError,
    RefinementError,
)
from robust_positioning.estimators.least_squares import linear_least_squares
from robust_positioning.estimators.nonlinear_least_squares import levenberg_marquardt
from robust_positioning.rf.lateration import (
    DEFAULT_DISTANCE_STANDARD_DEVIATION,
    NonLinearLaterationSolver,
    linear_lateration,
)
from robust_positioning.rf.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    distance_from_rssi,
    friis_constant,
)
from robust_positioning.types import Solution

# Default RSSI standard deviation when none is provided (dB)
DEFAULT_RSSI_STANDARD_DEVIATION = 1.0

# Distances are clamped to this value to keep log10 finite
_MIN_DISTANCE = 1e-10


def _check_standard_deviations(values, count: int) -> Optional[np.ndarray]:
    if values is None:
        return None
    values = np.asarray(values, dtype=float)
    if values.shape != (count,):
        raise InvalidArgumentError(
            f"Expected {count} standard deviations, got shape {values.shape}"
        )
    if np.any(values <= 0):
        raise InvalidArgumentError("Standard deviations must be positive")
    return values


class RssiRadioSourceEstimator:
    """
    Closed-form and iterative estimation of a radio source from RSSI readings.

    The estimator is stateless between calls: every method takes an optional
    array of sample indices, so the robust estimators can evaluate subsets
    without copying the readings.

    Attributes:
        positions: Reading positions, shape (N, d).
        rssi: Measured RSSI in dBm, shape (N,).
        standard_deviations: RSSI standard deviations in dB, or None.
        dim: Dimension (2 or 3).
        frequency: Carrier frequency in Hz.

    Example:
        >>> positions = np.array([[0, 0], [10, 0], [0, 10], [10, 10], [5, 0]], dtype=float)
        >>> source = np.array([3.0, 4.0])
        >>> d = np.linalg.norm(positions - source, axis=1)
        >>> k = friis_constant()
        >>> rssi = 10.0 + 20.0 * np.log10(k / d)
        >>> estimator = RssiRadioSourceEstimator(positions, rssi)
        >>> solution = estimator.solve()
        >>> np.round(solution.position, 6)
        array([3., 4.])
    """

    def __init__(
        self,
        positions: np.ndarray,
        rssi: np.ndarray,
        standard_deviations: Optional[np.ndarray] = None,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        frequency: float = DEFAULT_FREQUENCY,
    ):
        positions = np.asarray(positions, dtype=float)
        rssi = np.asarray(rssi, dtype=float)
        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        if rssi.ndim != 1 or len(rssi) != positions.shape[0]:
            raise InvalidArgumentError(
                f"Expected {positions.shape[0]} RSSI values, got shape {rssi.shape}"
            )
        standard_deviations = _check_standard_deviations(standard_deviations, len(rssi))

        if not (
            position_estimation_enabled
            or transmitted_power_estimation_enabled
            or path_loss_estimation_enabled
        ):
            raise InvalidArgumentError("At least one parameter must be estimated")
        if (
            position_estimation_enabled
            and transmitted_power_estimation_enabled
            and path_loss_estimation_enabled
        ):
            warnings.warn(
                "Estimating position, transmitted power and path-loss exponent "
                "together is numerically unstable; results may be inaccurate",
                RuntimeWarning,
            )

        self.dim = positions.shape[1]
        if initial_position is not None:
            initial_position = np.asarray(initial_position, dtype=float)
            if initial_position.shape != (self.dim,):
                raise InvalidArgumentError(
                    f"initial_position must have shape ({self.dim},), "
                    f"got {initial_position.shape}"
                )
        if not position_estimation_enabled and initial_position is None:
            raise InvalidArgumentError(
                "initial_position is required when position is not estimated"
            )
        if not transmitted_power_estimation_enabled and initial_transmitted_power_dbm is None:
            raise InvalidArgumentError(
                "initial_transmitted_power_dbm is required when power is not estimated"
            )
        if initial_path_loss_exponent <= 0:
            raise InvalidArgumentError(
                f"Path-loss exponent must be positive, got {initial_path_loss_exponent}"
            )

        self.positions = positions
        self.rssi = rssi
        self.standard_deviations = standard_deviations
        self.position_estimation_enabled = position_estimation_enabled
        self.transmitted_power_estimation_enabled = transmitted_power_estimation_enabled
        self.path_loss_estimation_enabled = path_loss_estimation_enabled
        self.initial_position = initial_position
        self.initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self.initial_path_loss_exponent = float(initial_path_loss_exponent)
        self.frequency = frequency
        self._k = friis_constant(frequency)

    @property
    def num_unknowns(self) -> int:
        """Number of estimated scalar parameters."""
        n = self.dim if self.position_estimation_enabled else 0
        n += 1 if self.transmitted_power_estimation_enabled else 0
        n += 1 if self.path_loss_estimation_enabled else 0
        return n

    @property
    def min_required_readings(self) -> int:
        return self.num_unknowns + 1

    def _subset(self, indices):
        if indices is None:
            return self.positions, self.rssi
        return self.positions[indices], self.rssi[indices]

    def _initial_position(self, positions: np.ndarray) -> np.ndarray:
        if self.initial_position is not None:
            return self.initial_position
        return np.mean(positions, axis=0)

    def _initial_power(self, positions, rssi, position, path_loss) -> float:
        if self.initial_transmitted_power_dbm is not None:
            return float(self.initial_transmitted_power_dbm)
        # model evaluated at the mean distance of the readings
        mean_distance = float(np.mean(np.linalg.norm(positions - position, axis=1)))
        mean_distance = max(mean_distance, 1.0)
        return float(np.mean(rssi) - 10.0 * path_loss * np.log10(self._k / mean_distance))

    def initial_solution(self, indices: Optional[np.ndarray] = None) -> Solution:
        """Starting point for iterative estimation over a subset."""
        positions, rssi = self._subset(indices)
        position = self._initial_position(positions)
        path_loss = self.initial_path_loss_exponent
        power = self._initial_power(positions, rssi, position, path_loss)
        return Solution(
            position=position.copy(),
            transmitted_power_dbm=power,
            path_loss_exponent=path_loss,
        )

    def _gains(self, position: np.ndarray, positions: np.ndarray) -> np.ndarray:
        """10·log10(k / dᵢ) per reading; rᵢ = P + n·gᵢ."""
        distances = np.linalg.norm(positions - position, axis=1)
        if np.any(distances < _MIN_DISTANCE):
            raise NumericalInstabilityError("A reading coincides with the source position")
        return 10.0 * np.log10(self._k / distances)

    def predicted_rssi(
        self, solution: Solution, indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """RSSI predicted by a solution at every (or the selected) reading position."""
        positions, _ = self._subset(indices)
        distances = np.maximum(
            np.linalg.norm(positions - solution.position, axis=1), _MIN_DISTANCE
        )
        return solution.transmitted_power_dbm + solution.path_loss_exponent * 10.0 * np.log10(
            self._k / distances
        )

    def residuals(self, solution: Solution) -> np.ndarray:
        """Absolute RSSI residuals (dB) of every reading against a solution."""
        return np.abs(self.rssi - self.predicted_rssi(solution))

    def solve(self, indices: Optional[np.ndarray] = None) -> Solution:
        """
        Estimate the enabled parameters from a subset of readings.

        Uses the closed form of the enabled combination, or an iterative
        solve from the initial guess when position and path-loss exponent
        are both estimated.

        Args:
            indices: Indices of the readings to use. All readings if None.

        Returns:
            Solution with every field populated (known values for the
            parameters that are not estimated).

        Raises:
            NumericalInstabilityError: If there are too few readings or the
                subset is degenerate.
        """
        positions, rssi = self._subset(indices)
        if len(rssi) < self.min_required_readings:
            raise NumericalInstabilityError(
                f"Need at least {self.min_required_readings} readings, got {len(rssi)}"
            )

        if self.position_estimation_enabled and self.path_loss_estimation_enabled:
            try:
                solution, _ = self.refine(
                    self.initial_solution(indices), indices, return_covariance=False
                )
            except RefinementError as e:
                raise NumericalInstabilityError(f"Iterative solve failed: {e}") from e
            return solution

        if self.position_estimation_enabled and self.transmitted_power_estimation_enabled:
            return self._solve_position_and_power(positions, rssi)
        if self.position_estimation_enabled:
            return self._solve_position(positions, rssi)
        if self.transmitted_power_estimation_enabled and self.path_loss_estimation_enabled:
            return self._solve_power_and_path_loss(positions, rssi)
        if self.transmitted_power_estimation_enabled:
            return self._solve_power(positions, rssi)
        return self._solve_path_loss(positions, rssi)

    def _solve_power(self, positions, rssi) -> Solution:
        n = self.initial_path_loss_exponent
        gains = self._gains(self.initial_position, positions)
        power = float(np.mean(rssi - n * gains))
        return Solution(self.initial_position.copy(), power, n)

    def _solve_path_loss(self, positions, rssi) -> Solution:
        power = float(self.initial_transmitted_power_dbm)
        gains = self._gains(self.initial_position, positions)
        x, _ = linear_least_squares(gains[:, None], rssi - power, return_covariance=False)
        return Solution(self.initial_position.copy(), power, float(x[0]))

    def _solve_power_and_path_loss(self, positions, rssi) -> Solution:
        gains = self._gains(self.initial_position, positions)
        A = np.column_stack([np.ones_like(gains), gains])
        x, _ = linear_least_squares(A, rssi, return_covariance=False)
        return Solution(self.initial_position.copy(), float(x[0]), float(x[1]))

    def _solve_position(self, positions, rssi) -> Solution:
        power = float(self.initial_transmitted_power_dbm)
        n = self.initial_path_loss_exponent
        distances = distance_from_rssi(rssi, power, n, self.frequency)
        position = linear_lateration(positions, np.atleast_1d(distances))
        return Solution(position, power, n)

    def _solve_position_and_power(self, positions, rssi) -> Solution:
        n = self.initial_path_loss_exponent
        w = 10.0 ** (-rssi / (5.0 * n))
        # scale the A column to keep the system well conditioned
        w_scale = float(np.max(w))
        A = np.column_stack([-2.0 * positions, np.ones(len(rssi)), -w / w_scale])
        b = -np.sum(positions**2, axis=1)

        x, _ = linear_least_squares(A, b, return_covariance=False)
        a = x[-1] / w_scale
        if not a > 0:
            raise NumericalInstabilityError("Non-positive power term in closed-form solution")

        position = x[: self.dim]
        power = 5.0 * n * np.log10(a) - 10.0 * n * np.log10(self._k)
        return Solution(position, float(power), n)

    def _pack(self, solution: Solution) -> np.ndarray:
        params = []
        if self.position_estimation_enabled:
            params.extend(solution.position)
        if self.transmitted_power_estimation_enabled:
            params.append(solution.transmitted_power_dbm)
        if self.path_loss_estimation_enabled:
            params.append(solution.path_loss_exponent)
        return np.asarray(params, dtype=float)

    def _unpack(self, params: np.ndarray) -> Solution:
        i = 0
        if self.position_estimation_enabled:
            position = params[: self.dim].copy()
            i = self.dim
        else:
            position = self.initial_position.copy()
        if self.transmitted_power_estimation_enabled:
            power = float(params[i])
            i += 1
        else:
            power = float(self.initial_transmitted_power_dbm)
        if self.path_loss_estimation_enabled:
            path_loss = float(params[i])
        else:
            path_loss = self.initial_path_loss_exponent
        return Solution(position, power, path_loss)

    def refine(
        self,
        initial: Solution,
        indices: Optional[np.ndarray] = None,
        return_covariance: bool = True,
        max_iters: int = 50,
        tol: float = 1e-10,
    ) -> Tuple[Solution, Optional[np.ndarray]]:
        """
        Refine the enabled parameters with Levenberg-Marquardt.

        Args:
            initial: Starting solution. Disabled parameters are ignored and
                held at their known values.
            indices: Indices of the readings to use. All readings if None.
            return_covariance: Whether to compute the covariance of the
                enabled parameters in the order position, power, path-loss.
            max_iters: Maximum iterations.
            tol: Convergence tolerance.

        Returns:
            Tuple (refined Solution, covariance or None).

        Raises:
            RefinementError: If there are too few readings or the iteration
                fails or does not converge within max_iters.
        """
        positions, rssi = self._subset(indices)
        if len(rssi) < self.min_required_readings:
            raise RefinementError(
                f"Need at least {self.min_required_readings} readings, got {len(rssi)}"
            )

        if self.standard_deviations is None:
            sigmas = np.full(len(rssi), DEFAULT_RSSI_STANDARD_DEVIATION)
        elif indices is None:
            sigmas = self.standard_deviations
        else:
            sigmas = self.standard_deviations[indices]

        def h(params):
            return self.predicted_rssi(self._unpack(params), indices)

        def jacobian(params):
            solution = self._unpack(params)
            diff = solution.position - positions
            sq_distances = np.maximum(np.sum(diff**2, axis=1), _MIN_DISTANCE**2)
            columns = []
            if self.position_estimation_enabled:
                scale = -10.0 * solution.path_loss_exponent / np.log(10.0)
                columns.append(scale * diff / sq_distances[:, None])
            if self.transmitted_power_estimation_enabled:
                columns.append(np.ones((len(rssi), 1)))
            if self.path_loss_estimation_enabled:
                gains = 10.0 * np.log10(self._k / np.sqrt(sq_distances))
                columns.append(gains[:, None])
            return np.hstack(columns)

        result = levenberg_marquardt(
            h,
            jacobian,
            rssi,
            self._pack(initial),
            weights=1.0 / sigmas**2,
            max_iter=max_iters,
            tol=tol,
            return_covariance=return_covariance,
        )
        if not result.converged:
            raise RefinementError(
                f"Refinement did not converge in {result.iterations} iterations"
            )
        return self._unpack(result.x), result.covariance


class RangingAndRssiRadioSourceEstimator:
    """
    Radio source estimation from readings carrying both a range and an RSSI.

    The source position is laterated from the ranges. With the position
    fixed, the transmitted power and/or path-loss exponent follow from the
    RSSI closed forms of RssiRadioSourceEstimator. Refinement repeats the two
    stages with Levenberg-Marquardt, so the covariance is block diagonal (position block,
    then the RSSI parameters).

    Residuals combine both measurements of a reading in units of their
    standard deviations:

        eᵢ = sqrt(((dᵢ − ‖x − pᵢ‖) / σ_dᵢ)² + ((rᵢ − r̂ᵢ) / σ_rᵢ)²)

    Attributes:
        positions: Reading positions, shape (N, d).
        distances: Measured ranges in meters, shape (N,).
        rssi: Measured RSSI in dBm, shape (N,).
        distance_standard_deviations: Range standard deviations, or None.
        rssi_standard_deviations: RSSI standard deviations, or None.
        dim: Dimension (2 or 3).
    """

    position_estimation_enabled = True

    def __init__(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        rssi: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        rssi_standard_deviations: Optional[np.ndarray] = None,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        frequency: float = DEFAULT_FREQUENCY,
    ):
        positions = np.asarray(positions, dtype=float)
        distances = np.asarray(distances, dtype=float)
        rssi = np.asarray(rssi, dtype=float)
        if positions.ndim != 2 or positions.shape[1] not in (2, 3):
            raise InvalidArgumentError(
                f"positions must have shape (N, 2) or (N, 3), got {positions.shape}"
            )
        n = positions.shape[0]
        if distances.shape != (n,) or rssi.shape != (n,):
            raise InvalidArgumentError(
                f"Expected {n} distances and RSSI values, "
                f"got shapes {distances.shape} and {rssi.shape}"
            )
        if np.any(distances < 0):
            raise InvalidArgumentError("Distances must be non-negative")
        if not transmitted_power_estimation_enabled and initial_transmitted_power_dbm is None:
            raise InvalidArgumentError(
                "initial_transmitted_power_dbm is required when power is not estimated"
            )
        if initial_path_loss_exponent <= 0:
            raise InvalidArgumentError(
                f"Path-loss exponent must be positive, got {initial_path_loss_exponent}"
            )

        self.dim = positions.shape[1]
        if initial_position is not None:
            initial_position = np.asarray(initial_position, dtype=float)
            if initial_position.shape != (self.dim,):
                raise InvalidArgumentError(
                    f"initial_position must have shape ({self.dim},), "
                    f"got {initial_position.shape}"
                )

        self.positions = positions
        self.distances = distances
        self.rssi = rssi
        self.distance_standard_deviations = _check_standard_deviations(
            distance_standard_deviations, n
        )
        self.rssi_standard_deviations = _check_standard_deviations(rssi_standard_deviations, n)
        self.transmitted_power_estimation_enabled = transmitted_power_estimation_enabled
        self.path_loss_estimation_enabled = path_loss_estimation_enabled
        self.initial_position = initial_position
        self.initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self.initial_path_loss_exponent = float(initial_path_loss_exponent)
        self.frequency = frequency
        self._k = friis_constant(frequency)

    @property
    def rssi_unknowns(self) -> int:
        n = 1 if self.transmitted_power_estimation_enabled else 0
        return n + (1 if self.path_loss_estimation_enabled else 0)

    @property
    def num_unknowns(self) -> int:
        return self.dim + self.rssi_unknowns

    @property
    def min_required_readings(self) -> int:
        # lateration needs d + 1 ranges; each extra RSSI unknown one more reading
        return self.dim + max(self.rssi_unknowns, 1)

    def _subset(self, indices):
        if indices is None:
            return self.positions, self.distances
        return self.positions[indices], self.distances[indices]

    @staticmethod
    def _select(values, indices):
        if values is None or indices is None:
            return values
        return values[indices]

    def _rssi_model(self, position: np.ndarray) -> RssiRadioSourceEstimator:
        return RssiRadioSourceEstimator(
            self.positions,
            self.rssi,
            standard_deviations=self.rssi_standard_deviations,
            position_estimation_enabled=False,
            transmitted_power_estimation_enabled=self.transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self.path_loss_estimation_enabled,
            initial_position=position,
            initial_transmitted_power_dbm=self.initial_transmitted_power_dbm,
            initial_path_loss_exponent=self.initial_path_loss_exponent,
            frequency=self.frequency,
        )

    def _known_rssi_parameters(self, position: np.ndarray) -> Solution:
        return Solution(
            position, float(self.initial_transmitted_power_dbm), self.initial_path_loss_exponent
        )

    def predicted_distances(self, solution: Solution) -> np.ndarray:
        return np.linalg.norm(self.positions - solution.position, axis=1)

    def predicted_rssi(self, solution: Solution) -> np.ndarray:
        distances = np.maximum(self.predicted_distances(solution), _MIN_DISTANCE)
        return solution.transmitted_power_dbm + solution.path_loss_exponent * 10.0 * np.log10(
            self._k / distances
        )

    def residuals(self, solution: Solution) -> np.ndarray:
        """Combined range and RSSI residual of every reading (standard deviations)."""
        sigma_d = (
            DEFAULT_DISTANCE_STANDARD_DEVIATION
            if self.distance_standard_deviations is None
            else self.distance_standard_deviations
        )
        sigma_r = (
            DEFAULT_RSSI_STANDARD_DEVIATION
            if self.rssi_standard_deviations is None
            else self.rssi_standard_deviations
        )
        range_errors = (self.distances - self.predicted_distances(solution)) / sigma_d
        rssi_errors = (self.rssi - self.predicted_rssi(solution)) / sigma_r
        return np.hypot(range_errors, rssi_errors)

    def solve(self, indices: Optional[np.ndarray] = None) -> Solution:
        """
        Laterate the position, then estimate the enabled RSSI parameters.

        Raises:
            NumericalInstabilityError: If there are too few readings or the
                subset is degenerate.
        """
        positions, distances = self._subset(indices)
        if len(distances) < self.min_required_readings:
            raise NumericalInstabilityError(
                f"Need at least {self.min_required_readings} readings, got {len(distances)}"
            )
        position = linear_lateration(
            positions,
            distances,
            standard_deviations=self._select(self.distance_standard_deviations, indices),
        )
        if self.rssi_unknowns == 0:
            return self._known_rssi_parameters(position)
        return self._rssi_model(position).solve(indices)

    def refine(
        self,
        initial: Solution,
        indices: Optional[np.ndarray] = None,
        return_covariance: bool = True,
        max_iters: int = 50,
        tol: float = 1e-10,
    ) -> Tuple[Solution, Optional[np.ndarray]]:
        """
        Refine the position from the ranges, then the RSSI parameters.

        Returns:
            Tuple (refined Solution, block-diagonal covariance or None).

        Raises:
            RefinementError: If there are too few readings or either stage
                fails or does not converge.
        """
        positions, distances = self._subset(indices)
        if len(distances) < self.min_required_readings:
            raise RefinementError(
                f"Need at least {self.min_required_readings} readings, got {len(distances)}"
            )
        ranging = NonLinearLaterationSolver(positions).solve(
            distances,
            initial_guess=initial.position,
            standard_deviations=self._select(self.distance_standard_deviations, indices),
            max_iters=max_iters,
            tol=tol,
            return_covariance=return_covariance,
        )
        if self.rssi_unknowns == 0:
            return self._known_rssi_parameters(ranging.x), ranging.covariance

        start = Solution(ranging.x, initial.transmitted_power_dbm, initial.path_loss_exponent)
        solution, rssi_covariance = self._rssi_model(ranging.x).refine(
            start, indices, return_covariance=return_covariance, max_iters=max_iters, tol=tol
        )
        covariance = None
        if return_covariance:
            covariance = block_diag(ranging.covariance, rssi_covariance)
        return solution, covariance
