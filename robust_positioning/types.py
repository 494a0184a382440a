"""Data types shared by the lateration and radio source estimators.

Samples are immutable measurement records taken at a known position. The
estimators work on parallel numpy arrays; the ``*_samples_to_arrays`` helpers
convert sample lists into that layout.

Solutions and inlier diagnostics are produced by the robust estimators and
handed back to the caller.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from robust_positioning.errors import InvalidArgumentError


def _as_position(position) -> np.ndarray:
    position = np.asarray(position, dtype=float)
    if position.ndim != 1 or position.size not in (2, 3):
        raise InvalidArgumentError(
            f"Position must be a 2D or 3D point, got shape {position.shape}"
        )
    return position


@dataclass(frozen=True)
class RangingSample:
    """Distance measured from a known position to the unknown point.

    Attributes:
        position: Known position where the reading was taken, shape (d,).
        distance: Measured distance in meters (>= 0).
        standard_deviation: Optional distance standard deviation (> 0).
        quality_score: Optional quality score. Larger means more reliable;
            only used by PROSAC and PROMedS.

    Example:
        >>> sample = RangingSample(position=np.array([0.0, 0.0]), distance=7.07)
    """

    position: np.ndarray
    distance: float
    standard_deviation: Optional[float] = None
    quality_score: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_position(self.position))
        if not np.isfinite(self.distance) or self.distance < 0:
            raise InvalidArgumentError(
                f"Distance must be finite and non-negative, got {self.distance}"
            )
        if self.standard_deviation is not None and not self.standard_deviation > 0:
            raise InvalidArgumentError(
                f"Standard deviation must be positive, got {self.standard_deviation}"
            )


@dataclass(frozen=True)
class RssiSample:
    """Received signal strength measured at a known position.

    Attributes:
        position: Known position where the reading was taken, shape (d,).
        rssi_dbm: Received power in dBm.
        standard_deviation: Optional RSSI standard deviation in dB (> 0).
        quality_score: Optional quality score (larger is better).
    """

    position: np.ndarray
    rssi_dbm: float
    standard_deviation: Optional[float] = None
    quality_score: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_position(self.position))
        if not np.isfinite(self.rssi_dbm):
            raise InvalidArgumentError(f"RSSI must be finite, got {self.rssi_dbm}")
        if self.standard_deviation is not None and not self.standard_deviation > 0:
            raise InvalidArgumentError(
                f"Standard deviation must be positive, got {self.standard_deviation}"
            )


@dataclass(frozen=True)
class RangingAndRssiSample:
    """Range and RSSI of the same source measured at a known position.

    Attributes:
        position: Known position where the reading was taken, shape (d,).
        distance: Measured distance in meters (>= 0).
        rssi_dbm: Received power in dBm.
        distance_standard_deviation: Optional distance standard deviation.
        rssi_standard_deviation: Optional RSSI standard deviation in dB.
        quality_score: Optional quality score (larger is better).
    """

    position: np.ndarray
    distance: float
    rssi_dbm: float
    distance_standard_deviation: Optional[float] = None
    rssi_standard_deviation: Optional[float] = None
    quality_score: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_position(self.position))
        if not np.isfinite(self.distance) or self.distance < 0:
            raise InvalidArgumentError(
                f"Distance must be finite and non-negative, got {self.distance}"
            )
        if not np.isfinite(self.rssi_dbm):
            raise InvalidArgumentError(f"RSSI must be finite, got {self.rssi_dbm}")
        for std in (self.distance_standard_deviation, self.rssi_standard_deviation):
            if std is not None and not std > 0:
                raise InvalidArgumentError(f"Standard deviation must be positive, got {std}")

@dataclass
class Solution:
    """Candidate or final estimate.

    Attributes:
        position: Estimated position, shape (d,).
        transmitted_power_dbm: Estimated transmitted power, if estimated.
        path_loss_exponent: Estimated path-loss exponent, if estimated.
    """

    position: np.ndarray
    transmitted_power_dbm: Optional[float] = None
    path_loss_exponent: Optional[float] = None


@dataclass
class InliersData:
    """Inlier diagnostics of a robust estimation run.

    Attributes:
        inliers: Boolean mask over all samples, or None if not kept.
        residuals: Residual of every sample against the best solution,
            or None if not kept.
        num_inliers: Number of samples flagged as inliers.
        estimated_threshold: Threshold used to classify inliers. For
            LMedS/PROMedS this is inferred from the residual distribution.
    """

    inliers: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    num_inliers: int
    estimated_threshold: Optional[float] = None


def _optional_column(values: Sequence[Optional[float]]) -> Optional[np.ndarray]:
    # a column is used only when every sample provides a value
    if any(v is None for v in values):
        return None
    return np.asarray(values, dtype=float)


def ranging_samples_to_arrays(
    samples: Sequence[RangingSample],
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]:
    """
    Split ranging samples into parallel arrays.

    Standard deviations and quality scores are returned only when every
    sample defines them; otherwise the corresponding entry is None.

    Args:
        samples: Sequence of RangingSample with equal dimensionality.

    Returns:
        Tuple (positions (N, d), distances (N,), standard_deviations or None,
        quality_scores or None).

    Raises:
        InvalidArgumentError: If samples is empty or dimensions differ.
    """
    if len(samples) == 0:
        raise InvalidArgumentError("At least one sample is required")
    dims = {s.position.size for s in samples}
    if len(dims) != 1:
        raise InvalidArgumentError(f"Samples mix dimensions {sorted(dims)}")

    positions = np.vstack([s.position for s in samples])
    distances = np.array([s.distance for s in samples], dtype=float)
    stds = _optional_column([s.standard_deviation for s in samples])
    scores = _optional_column([s.quality_score for s in samples])
    return positions, distances, stds, scores


def rssi_samples_to_arrays(
    samples: Sequence[RssiSample],
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]:
    """Split RSSI samples into parallel arrays (see ranging_samples_to_arrays)."""
    if len(samples) == 0:
        raise InvalidArgumentError("At least one sample is required")
    dims = {s.position.size for s in samples}
    if len(dims) != 1:
        raise InvalidArgumentError(f"Samples mix dimensions {sorted(dims)}")

    positions = np.vstack([s.position for s in samples])
    rssi = np.array([s.rssi_dbm for s in samples], dtype=float)
    stds = _optional_column([s.standard_deviation for s in samples])
    scores = _optional_column([s.quality_score for s in samples])
    return positions, rssi, stds, scores


def ranging_and_rssi_samples_to_arrays(
    samples: Sequence[RangingAndRssiSample],
) -> Tuple[
    np.ndarray,
    np.ndarray,
    np.ndarray,
    Optional[np.ndarray],
    Optional[np.ndarray],
    Optional[np.ndarray],
]:
    """
    Split ranging and RSSI samples into parallel arrays.

    Returns:
        Tuple (positions (N, d), distances (N,), rssi (N,),
        distance_standard_deviations or None, rssi_standard_deviations or
        None, quality_scores or None).
    """
    if len(samples) == 0:
        raise InvalidArgumentError("At least one sample is required")
    dims = {s.position.size for s in samples}
    if len(dims) != 1:
        raise InvalidArgumentError(f"Samples mix dimensions {sorted(dims)}")

    positions = np.vstack([s.position for s in samples])
    distances = np.array([s.distance for s in samples], dtype=float)
    rssi = np.array([s.rssi_dbm for s in samples], dtype=float)
    distance_stds = _optional_column([s.distance_standard_deviation for s in samples])
    rssi_stds = _optional_column([s.rssi_standard_deviation for s in samples])
    scores = _optional_column([s.quality_score for s in samples])
    return positions, distances, rssi, distance_stds, rssi_stds, scores
