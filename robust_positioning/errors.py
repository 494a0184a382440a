"""
Exception types raised by the robust positioning estimators.

Configuration problems are reported as ``ValueError`` subclasses, run-time
state problems as ``RuntimeError`` subclasses, so callers that only catch the
builtin types keep working.

Hierarchy:
    PositioningError
    ├── InvalidArgumentError        (ValueError)   bad configuration/inputs
    ├── NumericalInstabilityError   (ValueError)   degenerate linear system
    ├── NotReadyError               (RuntimeError) run requested without inputs
    ├── LockedError                 (RuntimeError) mutation while running
    ├── RefinementError             (RuntimeError) non-linear refit failed
    └── RobustEstimatorError        (RuntimeError) no solution found
"""


class PositioningError(Exception):
    """Base class for all errors raised by this package."""


class InvalidArgumentError(PositioningError, ValueError):
    """Malformed configuration: mismatched lengths, non-positive thresholds, etc."""


class NumericalInstabilityError(PositioningError, ValueError):
    """Linear system is rank deficient or produced a non-finite solution."""


class NotReadyError(PositioningError, RuntimeError):
    """An estimation run was requested while required inputs are missing."""


class LockedError(PositioningError, RuntimeError):
    """Configuration was modified, or a run started, while a run is in progress."""


class RefinementError(PositioningError, RuntimeError):
    """Iterative non-linear refinement diverged or hit a singular system."""


class RobustEstimatorError(PositioningError, RuntimeError):
    """No valid candidate solution was found in any iteration."""
