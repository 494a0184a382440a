"""
Robust estimation of a radio source (WiFi access point, BLE beacon) from
RSSI readings taken at known positions.

Estimates any combination of the source position, its transmitted power and
the path-loss exponent of the environment, rejecting readings corrupted by
multipath or obstructions.

Example:
    >>> from robust_positioning.rf.measurement_models import rssi_from_distance
    >>> positions = np.array(
    ...     [[0, 0], [10, 0], [0, 10], [10, 10], [5, 0], [0, 5], [10, 5], [5, 10]],
    ...     dtype=float,
    ... )
    >>> rssi = rssi_from_distance(-10.0, np.linalg.norm(positions - [3.0, 4.0], axis=1))
    >>> estimator = RobustRssiRadioSourceEstimator(positions, rssi, method="lmeds", seed=0)
    >>> solution = estimator.estimate()
    >>> np.round(solution.position, 6), round(solution.transmitted_power_dbm, 6)
    (array([3., 4.]), -10.0)
"""

from typing import Optional, Sequence

import numpy as np

from robust_positioning.errors import InvalidArgumentError, NotReadyError
from robust_positioning.positioning.base import RobustSolverBase
from robust_positioning.positioning.refinement import refine_solution
from robust_positioning.rf.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    dbm_to_power,
)
from robust_positioning.rf.radio_source import (
    RangingAndRssiRadioSourceEstimator,
    RssiRadioSourceEstimator,
)
from robust_positioning.types import (
    RangingAndRssiSample,
    RssiSample,
    Solution,
    ranging_and_rssi_samples_to_arrays,
    rssi_samples_to_arrays,
)


class RobustRssiRadioSourceEstimator(RobustSolverBase):
    """
    Robust RSSI radio source estimator.

    By default the position and transmitted power are estimated and the
    path-loss exponent is held at its initial value (2.0, free space).
    Enabling all three is allowed but usually inaccurate.

    Args:
        positions: Reading positions, shape (N, 2) or (N, 3).
        rssi: Measured RSSI in dBm, shape (N,).
        standard_deviations: Optional RSSI standard deviations (dB).
        position_estimation_enabled: Estimate the source position.
        transmitted_power_estimation_enabled: Estimate the transmitted power.
        path_loss_estimation_enabled: Estimate the path-loss exponent.
        initial_position: Known or initial source position. Required when
            the position is not estimated.
        initial_transmitted_power_dbm: Known or initial transmitted power.
            Required when the power is not estimated.
        initial_path_loss_exponent: Known or initial path-loss exponent.
        frequency: Carrier frequency in Hz.
        **kwargs: Robust options (see RobustSolverBase).
    """

    def __init__(
        self,
        positions: Optional[np.ndarray] = None,
        rssi: Optional[np.ndarray] = None,
        standard_deviations: Optional[np.ndarray] = None,
        position_estimation_enabled: bool = True,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        frequency: float = DEFAULT_FREQUENCY,
        **kwargs,
    ):
        self._positions = None
        self._rssi = None
        self._standard_deviations = None
        self._position_estimation_enabled = True
        self._transmitted_power_estimation_enabled = True
        self._path_loss_estimation_enabled = False
        self._reset_estimates()

        super().__init__(**kwargs)
        if positions is not None or rssi is not None:
            self.set_readings(positions, rssi, standard_deviations)
        self._set_enabled(
            position_estimation_enabled,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        )
        self.initial_position = initial_position
        self.initial_transmitted_power_dbm = initial_transmitted_power_dbm
        self.initial_path_loss_exponent = initial_path_loss_exponent
        self.frequency = frequency

    @classmethod
    def from_samples(
        cls, samples: Sequence[RssiSample], **kwargs
    ) -> "RobustRssiRadioSourceEstimator":
        """Create an estimator from RSSI samples (see RobustLaterationSolver.from_samples)."""
        positions, rssi, stds, scores = rssi_samples_to_arrays(samples)
        if scores is not None:
            kwargs.setdefault("quality_scores", scores)
        return cls(positions, rssi, standard_deviations=stds, **kwargs)

    def _reset_estimates(self) -> None:
        self._estimated_solution: Optional[Solution] = None
        self._estimated_covariance: Optional[np.ndarray] = None
        self._estimated_position_covariance: Optional[np.ndarray] = None
        self._estimated_transmitted_power_variance: Optional[float] = None
        self._estimated_path_loss_exponent_variance: Optional[float] = None

    def set_readings(
        self,
        positions: np.ndarray,
        rssi: np.ndarray,
        standard_deviations: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set the reading positions, RSSI values and optional standard deviations.

        Raises:
            LockedError: If a run is in progress.
            InvalidArgumentError: If shapes are inconsistent or values invalid.
        """
        self._check_unlocked()
        if positions is None or rssi is None:
            raise InvalidArgumentError("positions and rssi must be provided together")
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
        if not np.all(np.isfinite(rssi)):
            raise InvalidArgumentError("RSSI values must be finite")
        if standard_deviations is not None:
            standard_deviations = np.asarray(standard_deviations, dtype=float)
            if standard_deviations.shape != rssi.shape:
                raise InvalidArgumentError(
                    f"Expected {len(rssi)} standard deviations, "
                    f"got shape {standard_deviations.shape}"
                )
            if np.any(standard_deviations <= 0):
                raise InvalidArgumentError("Standard deviations must be positive")

        self._positions = positions
        self._rssi = rssi
        self._standard_deviations = standard_deviations

    @property
    def positions(self) -> Optional[np.ndarray]:
        return self._positions

    @property
    def rssi(self) -> Optional[np.ndarray]:
        return self._rssi

    @property
    def standard_deviations(self) -> Optional[np.ndarray]:
        return self._standard_deviations

    @property
    def dim(self) -> Optional[int]:
        return None if self._positions is None else self._positions.shape[1]

    def _set_enabled(self, position: bool, power: bool, path_loss: bool) -> None:
        if not (position or power or path_loss):
            raise InvalidArgumentError("At least one parameter must be estimated")
        self._position_estimation_enabled = bool(position)
        self._transmitted_power_estimation_enabled = bool(power)
        self._path_loss_estimation_enabled = bool(path_loss)

    @property
    def position_estimation_enabled(self) -> bool:
        return self._position_estimation_enabled

    @position_estimation_enabled.setter
    def position_estimation_enabled(self, value: bool) -> None:
        self._set_enabled(
            value, self._transmitted_power_estimation_enabled, self._path_loss_estimation_enabled
        )

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._transmitted_power_estimation_enabled

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, value: bool) -> None:
        self._set_enabled(
            self._position_estimation_enabled, value, self._path_loss_estimation_enabled
        )

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._path_loss_estimation_enabled

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, value: bool) -> None:
        self._set_enabled(
            self._position_estimation_enabled, self._transmitted_power_estimation_enabled, value
        )

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
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_transmitted_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, value: Optional[float]) -> None:
        if value is not None and not np.isfinite(value):
            raise InvalidArgumentError(f"Transmitted power must be finite, got {value}")
        self._initial_transmitted_power_dbm = None if value is None else float(value)

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss_exponent

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, value: float) -> None:
        if not value > 0:
            raise InvalidArgumentError(f"Path-loss exponent must be positive, got {value}")
        self._initial_path_loss_exponent = float(value)

    @property
    def frequency(self) -> float:
        return self._frequency

    @frequency.setter
    def frequency(self, value: float) -> None:
        if not value > 0:
            raise InvalidArgumentError(f"Frequency must be positive, got {value}")
        self._frequency = float(value)

    @property
    def num_unknowns(self) -> int:
        n = (self.dim or 2) if self._position_estimation_enabled else 0
        n += 1 if self._transmitted_power_estimation_enabled else 0
        n += 1 if self._path_loss_estimation_enabled else 0
        return n

    @property
    def min_required_readings(self) -> int:
        return self.num_unknowns + 1

    @property
    def is_ready(self) -> bool:
        if self._positions is None:
            return False
        n = len(self._rssi)
        if not self._position_estimation_enabled and self._initial_position is None:
            return False
        if self._initial_position is not None and self._initial_position.size != self.dim:
            return False
        if (
            not self._transmitted_power_estimation_enabled
            and self._initial_transmitted_power_dbm is None
        ):
            return False
        return n >= self.min_required_readings and self._quality_scores_ready(n)

    @property
    def estimated_solution(self) -> Optional[Solution]:
        return self._estimated_solution

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        if self._estimated_solution is None:
            return None
        return self._estimated_solution.position

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        if self._estimated_solution is None:
            return None
        return self._estimated_solution.transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in watts."""
        power_dbm = self.estimated_transmitted_power_dbm
        return None if power_dbm is None else float(dbm_to_power(power_dbm))

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        if self._estimated_solution is None:
            return None
        return self._estimated_solution.path_loss_exponent

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        """Covariance of the estimated parameters (position, power, path-loss)."""
        return self._estimated_covariance

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        return self._estimated_position_covariance

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        return self._estimated_transmitted_power_variance

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        return self._estimated_path_loss_exponent_variance

    def _model(self) -> RssiRadioSourceEstimator:
        return RssiRadioSourceEstimator(
            self._positions,
            self._rssi,
            standard_deviations=self._standard_deviations,
            position_estimation_enabled=self._position_estimation_enabled,
            transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self._path_loss_estimation_enabled,
            initial_position=self._initial_position,
            initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
            initial_path_loss_exponent=self._initial_path_loss_exponent,
            frequency=self._frequency,
        )

    def estimate(self) -> Solution:
        """
        Estimate the radio source.

        Returns:
            Solution with position, transmitted power (dBm) and path-loss
            exponent. Parameters that are not estimated hold their known
            values.

        Raises:
            LockedError: If a run is already in progress.
            NotReadyError: If readings or required known values are missing.
            RobustEstimatorError: If no subset produced a solution.
        """
        self._check_unlocked()
        if not self.is_ready:
            raise NotReadyError("Estimator is not ready")

        with self._running():
            self._reset_estimates()
            model = self._model()
            self._estimator = self._create_estimator(
                lambda indices: [model.solve(indices)],
                model.residuals,
                total_samples=len(self._rssi),
                subset_size=model.min_required_readings,
            )
            solution = self._estimator.estimate()

            result = refine_solution(
                solution,
                self._estimator.best_inliers,
                lambda initial, indices, with_covariance: model.refine(
                    initial, indices, return_covariance=with_covariance
                ),
                dim=self.dim,
                refine_result=self.refine_result,
                keep_covariance=self.keep_covariance,
                position_enabled=self._position_estimation_enabled,
                power_enabled=self._transmitted_power_estimation_enabled,
                path_loss_enabled=self._path_loss_estimation_enabled,
            )
            self._estimated_solution = result.solution
            self._estimated_covariance = result.covariance
            self._estimated_position_covariance = result.position_covariance
            self._estimated_transmitted_power_variance = result.transmitted_power_variance
            self._estimated_path_loss_exponent_variance = result.path_loss_exponent_variance
            return self._estimated_solution


class RobustRangingAndRssiRadioSourceEstimator(RobustRssiRadioSourceEstimator):
    """
    Robust radio source estimator for readings with both a range and an RSSI.

    The source position is always estimated, from the ranges. The transmitted
    power (by default) and the path-loss exponent come from the RSSI with the
    position fixed, which keeps the three-parameter case well conditioned.
    ``threshold`` applies to the combined residual of a reading, expressed
    in standard deviations (1 m and 1 dB when none are provided).

    Args:
        positions: Reading positions, shape (N, 2) or (N, 3).
        distances: Measured ranges in meters, shape (N,).
        rssi: Measured RSSI in dBm, shape (N,).
        distance_standard_deviations: Optional range standard deviations.
        rssi_standard_deviations: Optional RSSI standard deviations (dB).
        transmitted_power_estimation_enabled: Estimate the transmitted power.
        path_loss_estimation_enabled: Estimate the path-loss exponent.
        initial_position: Initial source position for the refinement.
        initial_transmitted_power_dbm: Known or initial transmitted power.
        initial_path_loss_exponent: Known or initial path-loss exponent.
        frequency: Carrier frequency in Hz.
        **kwargs: Robust options (see RobustSolverBase).
    """

    def __init__(
        self,
        positions: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        rssi: Optional[np.ndarray] = None,
        distance_standard_deviations: Optional[np.ndarray] = None,
        rssi_standard_deviations: Optional[np.ndarray] = None,
        transmitted_power_estimation_enabled: bool = True,
        path_loss_estimation_enabled: bool = False,
        initial_position: Optional[np.ndarray] = None,
        initial_transmitted_power_dbm: Optional[float] = None,
        initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
        frequency: float = DEFAULT_FREQUENCY,
        **kwargs,
    ):
        self._distances = None
        self._distance_standard_deviations = None
        super().__init__(
            transmitted_power_estimation_enabled=transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=path_loss_estimation_enabled,
            initial_position=initial_position,
            initial_transmitted_power_dbm=initial_transmitted_power_dbm,
            initial_path_loss_exponent=initial_path_loss_exponent,
            frequency=frequency,
            **kwargs,
        )
        if positions is not None or distances is not None or rssi is not None:
            self.set_readings(
                positions,
                distances,
                rssi,
                distance_standard_deviations,
                rssi_standard_deviations,
            )

    @classmethod
    def from_samples(
        cls, samples: Sequence[RangingAndRssiSample], **kwargs
    ) -> "RobustRangingAndRssiRadioSourceEstimator":
        """Create an estimator from RangingAndRssiSample records."""
        (
            positions,
            distances,
            rssi,
            distance_stds,
            rssi_stds,
            scores,
        ) = ranging_and_rssi_samples_to_arrays(samples)
        if scores is not None:
            kwargs.setdefault("quality_scores", scores)
        return cls(
            positions,
            distances,
            rssi,
            distance_standard_deviations=distance_stds,
            rssi_standard_deviations=rssi_stds,
            **kwargs,
        )

    def set_readings(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        rssi: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
        rssi_standard_deviations: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set the reading positions, ranges, RSSI values and their standard deviations.

        Raises:
            LockedError: If a run is in progress.
            InvalidArgumentError: If shapes are inconsistent or values invalid.
        """
        self._check_unlocked()
        if distances is None or rssi is None:
            raise InvalidArgumentError("positions, distances and rssi must be provided together")
        distances = np.asarray(distances, dtype=float)
        if distances.shape != np.shape(rssi):
            raise InvalidArgumentError(
                f"Expected as many distances as RSSI values, got shape {distances.shape}"
            )
        if not np.all(np.isfinite(distances)) or np.any(distances < 0):
            raise InvalidArgumentError("Distances must be finite and non-negative")
        if distance_standard_deviations is not None:
            distance_standard_deviations = np.asarray(distance_standard_deviations, dtype=float)
            if distance_standard_deviations.shape != distances.shape:
                raise InvalidArgumentError(
                    f"Expected {len(distances)} distance standard deviations, "
                    f"got shape {distance_standard_deviations.shape}"
                )
            if np.any(distance_standard_deviations <= 0):
                raise InvalidArgumentError("Standard deviations must be positive")

        super().set_readings(positions, rssi, rssi_standard_deviations)
        self._distances = distances
        self._distance_standard_deviations = distance_standard_deviations

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return self._distance_standard_deviations

    @property
    def rssi_standard_deviations(self) -> Optional[np.ndarray]:
        return self._standard_deviations

    def _set_enabled(self, position: bool, power: bool, path_loss: bool) -> None:
        if not position:
            raise InvalidArgumentError("The position is always estimated from the ranges")
        super()._set_enabled(position, power, path_loss)

    @property
    def min_required_readings(self) -> int:
        rssi_unknowns = int(self._transmitted_power_estimation_enabled) + int(
            self._path_loss_estimation_enabled
        )
        return (self.dim or 2) + max(rssi_unknowns, 1)

    def _model(self) -> RangingAndRssiRadioSourceEstimator:
        return RangingAndRssiRadioSourceEstimator(
            self._positions,
            self._distances,
            self._rssi,
            distance_standard_deviations=self._distance_standard_deviations,
            rssi_standard_deviations=self._standard_deviations,
            transmitted_power_estimation_enabled=self._transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self._path_loss_estimation_enabled,
            initial_position=self._initial_position,
            initial_transmitted_power_dbm=self._initial_transmitted_power_dbm,
            initial_path_loss_exponent=self._initial_path_loss_exponent,
            frequency=self._frequency,
        )
