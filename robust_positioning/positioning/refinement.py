"""
Refinement and covariance stage of the robust front ends.

After the robust run has selected a solution, it is refit on the inlier
samples with a nonlinear solver and its covariance is split into the blocks
of the estimated parameters (position, transmitted power, path-loss
exponent, in that order).

If the refit fails the robust solution is kept unchanged and no covariance
is reported, so the covariance never describes a different estimate than
the one returned.
"""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from robust_positioning.errors import NumericalInstabilityError, RefinementError
from robust_positioning.types import Solution

Refiner = Callable[[Solution, np.ndarray, bool], Tuple[Solution, Optional[np.ndarray]]]


@dataclass
class RefinementResult:
    """Outcome of the refinement stage.

    Attributes:
        solution: Refined solution, or the input solution if not refined.
        refined: Whether the refit succeeded.
        covariance: Covariance of all estimated parameters, or None.
        position_covariance: Position block (d × d), or None.
        transmitted_power_variance: Power variance (dBm²), or None.
        path_loss_exponent_variance: Path-loss exponent variance, or None.
    """

    solution: Solution
    refined: bool = False
    covariance: Optional[np.ndarray] = None
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_variance: Optional[float] = None
    path_loss_exponent_variance: Optional[float] = None


def split_covariance(
    covariance: np.ndarray,
    dim: int,
    position_enabled: bool = True,
    power_enabled: bool = False,
    path_loss_enabled: bool = False,
) -> Tuple[Optional[np.ndarray], Optional[float], Optional[float]]:
    """
    Split a parameter covariance into position, power and path-loss parts.

    Args:
        covariance: Square covariance over the enabled parameters ordered
            position (dim), power, path-loss.
        dim: Position dimension.
        position_enabled: Whether the position is estimated.
        power_enabled: Whether the transmitted power is estimated.
        path_loss_enabled: Whether the path-loss exponent is estimated.

    Returns:
        Tuple (position block or None, power variance or None, path-loss
        variance or None).

    Example:
        >>> P = np.diag([1.0, 2.0, 3.0])
        >>> split_covariance(P, dim=2, power_enabled=True)
        (array([[1., 0.],
               [0., 2.]]), 3.0, None)
    """
    i = 0
    position_covariance = None
    power_variance = None
    path_loss_variance = None
    if position_enabled:
        position_covariance = covariance[:dim, :dim].copy()
        i = dim
    if power_enabled:
        power_variance = float(covariance[i, i])
        i += 1
    if path_loss_enabled:
        path_loss_variance = float(covariance[i, i])
    return position_covariance, power_variance, path_loss_variance


def refine_solution(
    solution: Solution,
    inliers: Optional[np.ndarray],
    refiner: Refiner,
    dim: int,
    refine_result: bool = True,
    keep_covariance: bool = True,
    position_enabled: bool = True,
    power_enabled: bool = False,
    path_loss_enabled: bool = False,
) -> RefinementResult:
    """
    Refit a robust solution on its inliers.

    Args:
        solution: Solution selected by the robust run.
        inliers: Boolean inlier mask over all samples. All samples are used
            when None.
        refiner: Callable (initial solution, sample indices, return
            covariance) -> (solution, covariance or None). May raise
            RefinementError or NumericalInstabilityError.
        dim: Position dimension.
        refine_result: If False, the solution is returned unchanged without
            covariance.
        keep_covariance: Whether to compute and split the covariance.
        position_enabled: Whether the position is estimated.
        power_enabled: Whether the transmitted power is estimated.
        path_loss_enabled: Whether the path-loss exponent is estimated.

    Returns:
        RefinementResult.
    """
    if not refine_result:
        return RefinementResult(solution=solution)

    indices = np.flatnonzero(inliers) if inliers is not None else None
    try:
        refined, covariance = refiner(solution, indices, keep_covariance)
    except (RefinementError, NumericalInstabilityError):
        return RefinementResult(solution=solution)

    result = RefinementResult(solution=refined, refined=True)
    if keep_covariance and covariance is not None:
        result.covariance = covariance
        (
            result.position_covariance,
            result.transmitted_power_variance,
            result.path_loss_exponent_variance,
        ) = split_covariance(covariance, dim, position_enabled, power_enabled, path_loss_enabled)
    return result
