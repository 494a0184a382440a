"""
Robust positioning of a receiver from the RSSI of radio sources whose
position and transmitted power are known (surveyed access points, beacons).

Every RSSI reading is turned into a distance by inverting the path-loss
model and the distances are laterated robustly. Readings that also carry a
range to the same source (e.g. WiFi RTT next to its RSSI) add one more
distance each, so weak RSSI-derived distances and accurate ranges are
combined in one robust fit.

The distance standard deviation of an RSSI reading follows from first-order
propagation of its RSSI standard deviation σ_r (1 dB when not given):

    σ_d = d · ln(10) / (10 · n) · σ_r

Example:
    >>> from robust_positioning.rf.measurement_models import rssi_from_distance
    >>> sources = np.array([[0, 0], [10, 0], [0, 10], [10, 10], [5, 12]], dtype=float)
    >>> rssi = rssi_from_distance(-10.0, np.linalg.norm(sources - [4.0, 6.0], axis=1))
    >>> estimator = RobustRssiPositionEstimator(
    ...     sources, rssi, transmitted_powers_dbm=-10.0, method="lmeds", seed=0
    ... )
    >>> np.round(estimator.solve(), 6)
    array([4., 6.])
"""

from typing import Optional, Sequence

import numpy as np

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.positioning.robust_lateration import RobustLaterationSolver
from robust_positioning.rf.lateration import DEFAULT_DISTANCE_STANDARD_DEVIATION
from robust_positioning.rf.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    distance_from_rssi,
)
from robust_positioning.rf.radio_source import DEFAULT_RSSI_STANDARD_DEVIATION
from robust_positioning.types import RssiSample, rssi_samples_to_arrays


def _per_source(values, count: int, name: str) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if values.ndim == 0:
        values = np.full(count, float(values))
    if values.shape != (count,):
        raise InvalidArgumentError(
            f"{name} must be a scalar or have shape ({count},), got {values.shape}"
        )
    if not np.all(np.isfinite(values)):
        raise InvalidArgumentError(f"{name} must be finite")
    return values


class RobustRssiPositionEstimator(RobustLaterationSolver):
    """
    Robust receiver position from RSSI (and optionally ranges) of known sources.

    Samples are ordered RSSI-derived distances first, then ranges, which is
    also the order of ``quality_scores`` and of the inlier mask. The robust
    threshold is a distance error in meters.

    Args:
        source_positions: Known source positions, shape (N, 2) or (N, 3).
        rssi: RSSI received from every source in dBm, shape (N,).
        transmitted_powers_dbm: Transmitted power of the sources in dBm,
            scalar or shape (N,).
        path_loss_exponents: Path-loss exponents, scalar or shape (N,).
        rssi_standard_deviations: Optional RSSI standard deviations (dB).
        distances: Optional ranges to the same sources, shape (N,).
        distance_standard_deviations: Optional range standard deviations.
        frequency: Carrier frequency in Hz.
        **kwargs: Options of RobustLaterationSolver and the robust options
            (see RobustSolverBase).
    """

    def __init__(
        self,
        source_positions: Optional[np.ndarray] = None,
        rssi: Optional[np.ndarray] = None,
        transmitted_powers_dbm=None,
        path_loss_exponents=DEFAULT_PATH_LOSS_EXPONENT,
        rssi_standard_deviations: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        distance_standard_deviations: Optional[np.ndarray] = None,
        frequency: float = DEFAULT_FREQUENCY,
        **kwargs,
    ):
        self._source_positions = None
        self._rssi = None
        self._transmitted_powers_dbm = None
        self._path_loss_exponents = None
        self._rssi_standard_deviations = None
        self._ranging_distances = None
        if not frequency > 0:
            raise InvalidArgumentError(f"Frequency must be positive, got {frequency}")
        self._frequency = float(frequency)

        super().__init__(**kwargs)
        if source_positions is not None or rssi is not None:
            self.set_readings(
                source_positions,
                rssi,
                transmitted_powers_dbm,
                path_loss_exponents,
                rssi_standard_deviations,
                distances,
                distance_standard_deviations,
            )

    @classmethod
    def from_samples(
        cls,
        samples: Sequence[RssiSample],
        transmitted_powers_dbm,
        path_loss_exponents=DEFAULT_PATH_LOSS_EXPONENT,
        **kwargs,
    ) -> "RobustRssiPositionEstimator":
        """Create an estimator from RSSI samples taken at the source positions."""
        positions, rssi, stds, scores = rssi_samples_to_arrays(samples)
        if scores is not None:
            kwargs.setdefault("quality_scores", scores)
        return cls(
            positions,
            rssi,
            transmitted_powers_dbm,
            path_loss_exponents,
            rssi_standard_deviations=stds,
            **kwargs,
        )

    def set_readings(
        self,
        source_positions: np.ndarray,
        rssi: np.ndarray,
        transmitted_powers_dbm,
        path_loss_exponents=DEFAULT_PATH_LOSS_EXPONENT,
        rssi_standard_deviations: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        distance_standard_deviations: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set the source readings and convert them into lateration samples.

        Raises:
            LockedError: If a run is in progress.
            InvalidArgumentError: If shapes are inconsistent or values invalid.
        """
        self._check_unlocked()
        if source_positions is None or rssi is None or transmitted_powers_dbm is None:
            raise InvalidArgumentError(
                "source_positions, rssi and transmitted_powers_dbm must be provided together"
            )
        source_positions = np.asarray(source_positions, dtype=float)
        rssi = np.asarray(rssi, dtype=float)
        if rssi.ndim != 1:
            raise InvalidArgumentError(f"rssi must be 1D, got shape {rssi.shape}")
        count = len(rssi)
        rssi = _per_source(rssi, count, "rssi")
        powers = _per_source(transmitted_powers_dbm, count, "transmitted_powers_dbm")
        exponents = _per_source(path_loss_exponents, count, "path_loss_exponents")
        if np.any(exponents <= 0):
            raise InvalidArgumentError("Path-loss exponents must be positive")
        if rssi_standard_deviations is None:
            rssi_sigmas = np.full(count, DEFAULT_RSSI_STANDARD_DEVIATION)
        else:
            rssi_sigmas = _per_source(rssi_standard_deviations, count, "rssi_standard_deviations")
            if np.any(rssi_sigmas <= 0):
                raise InvalidArgumentError("Standard deviations must be positive")

        rssi_distances = np.asarray(
            distance_from_rssi(rssi, powers, exponents, self._frequency), dtype=float
        ).reshape(count)
        positions = source_positions
        all_distances = rssi_distances
        stds = rssi_distances * np.log(10.0) / (10.0 * exponents) * rssi_sigmas

        if distances is not None:
            ranges = np.asarray(distances, dtype=float)
            if ranges.shape != (count,):
                raise InvalidArgumentError(
                    f"Expected {count} distances, got shape {ranges.shape}"
                )
            if distance_standard_deviations is None:
                range_sigmas = np.full(count, DEFAULT_DISTANCE_STANDARD_DEVIATION)
            else:
                range_sigmas = np.asarray(distance_standard_deviations, dtype=float)
            positions = np.concatenate([source_positions, source_positions])
            all_distances = np.concatenate([rssi_distances, ranges])
            stds = np.concatenate([stds, range_sigmas])
        elif distance_standard_deviations is not None:
            raise InvalidArgumentError("distance_standard_deviations given without distances")

        # lateration validates positions, distances and standard deviations
        self.set_samples(positions, all_distances, stds)
        self._source_positions = source_positions
        self._rssi = rssi
        self._transmitted_powers_dbm = powers
        self._path_loss_exponents = exponents
        self._rssi_standard_deviations = (
            None if rssi_standard_deviations is None else rssi_sigmas
        )
        self._ranging_distances = None if distances is None else all_distances[count:]

    @property
    def source_positions(self) -> Optional[np.ndarray]:
        return self._source_positions

    @property
    def rssi(self) -> Optional[np.ndarray]:
        return self._rssi

    @property
    def transmitted_powers_dbm(self) -> Optional[np.ndarray]:
        return self._transmitted_powers_dbm

    @property
    def path_loss_exponents(self) -> Optional[np.ndarray]:
        return self._path_loss_exponents

    @property
    def rssi_standard_deviations(self) -> Optional[np.ndarray]:
        return self._rssi_standard_deviations

    @property
    def rssi_distances(self) -> Optional[np.ndarray]:
        """Distances inferred from the RSSI readings."""
        if self._rssi is None:
            return None
        return self.distances[: len(self._rssi)]

    @property
    def ranging_distances(self) -> Optional[np.ndarray]:
        return self._ranging_distances

    @property
    def frequency(self) -> float:
        return self._frequency
