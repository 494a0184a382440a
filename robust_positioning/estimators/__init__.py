"""
Least squares estimators.

Submodules:
    least_squares: Linear LS and weighted LS with rank checks
    nonlinear_least_squares: Levenberg-Marquardt
"""

from robust_positioning.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from robust_positioning.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)

__all__ = [
    "linear_least_squares",
    "weighted_least_squares",
    "NonlinearLSResult",
    "levenberg_marquardt",
]
