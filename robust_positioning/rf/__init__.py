"""
RF (Radio Frequency) positioning module.

Submodules:
    measurement_models: Range and RSSI measurement functions
    lateration: Linear and nonlinear lateration solvers
    radio_source: RSSI and ranging+RSSI radio source solvers
"""

from robust_positioning.rf.lateration import (
    NonLinearLaterationSolver,
    linear_lateration,
)
from robust_positioning.rf.measurement_models import (
    DEFAULT_FREQUENCY,
    DEFAULT_PATH_LOSS_EXPONENT,
    SPEED_OF_LIGHT,
    dbm_to_power,
    distance_from_rssi,
    friis_constant,
    power_to_dbm,
    reference_rssi,
    rss_pathloss,
    rss_to_distance,
    rssi_from_distance,
    toa_range,
)
from robust_positioning.rf.radio_source import (
    RangingAndRssiRadioSourceEstimator,
    RssiRadioSourceEstimator,
)

__all__ = [
    # Lateration
    "NonLinearLaterationSolver",
    "linear_lateration",
    # Measurement models
    "DEFAULT_FREQUENCY",
    "DEFAULT_PATH_LOSS_EXPONENT",
    "SPEED_OF_LIGHT",
    "dbm_to_power",
    "distance_from_rssi",
    "friis_constant",
    "power_to_dbm",
    "reference_rssi",
    "rss_pathloss",
    "rss_to_distance",
    "rssi_from_distance",
    "toa_range",
    # Radio sources
    "RangingAndRssiRadioSourceEstimator",
    "RssiRadioSourceEstimator",
]
