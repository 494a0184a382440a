"""
Robust positioning front ends.

Submodules:
    base: Options, locking and listener forwarding shared by the front ends
    refinement: Inlier refit and covariance split
    robust_lateration: Robust lateration from distances
    robust_radio_source: Robust RSSI and ranging+RSSI radio source estimation
    robust_rssi_position: Robust receiver position from RSSI of known sources
"""

from robust_positioning.positioning.refinement import (
    RefinementResult,
    refine_solution,
    split_covariance,
)
from robust_positioning.positioning.robust_lateration import (
    RobustLaterationSolver,
    robust_lateration_2d,
    robust_lateration_3d,
)
from robust_positioning.positioning.robust_radio_source import (
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
)
from robust_positioning.positioning.robust_rssi_position import RobustRssiPositionEstimator

__all__ = [
    "RefinementResult",
    "refine_solution",
    "split_covariance",
    "RobustLaterationSolver",
    "robust_lateration_2d",
    "robust_lateration_3d",
    "RobustRangingAndRssiRadioSourceEstimator",
    "RobustRssiRadioSourceEstimator",
    "RobustRssiPositionEstimator",
]
