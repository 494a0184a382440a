"""
Levenberg-Marquardt solver for weighted nonlinear least squares.

Used by the lateration and RSSI refiners to polish a preliminary solution
and to obtain its covariance.

Mathematical Formulation:
    Given observations y and measurement model h(x), we seek:
        x̂ = argmin ½‖r(x)‖²_W
    where r(x) = y - h(x) is the residual vector.

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r
    where μ is an adaptive damping parameter updated from the gain ratio.

The solver never falls back to a pseudo-inverse. A singular system, a
non-finite step or a non-invertible covariance raise RefinementError and
callers keep their unrefined estimate. Hitting max_iter is reported
through NonlinearLSResult.converged; the lateration and RSSI refiners turn
it into RefinementError as well.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from robust_positioning.errors import InvalidArgumentError, RefinementError

# Damping above which the step is considered to have diverged
_MAX_DAMPING = 1e12


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated parameter vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of accepted iterations.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        converged: Whether the solver converged within tolerance.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool


def _prepare(y, x0, weights):
    y = np.asarray(y, dtype=float)
    x = np.asarray(x0, dtype=float).copy()

    if y.ndim != 1:
        raise InvalidArgumentError(f"y must be 1D array, got shape {y.shape}")
    if x.ndim != 1:
        raise InvalidArgumentError(f"x0 must be 1D array, got shape {x.shape}")

    m = len(y)
    if weights is None:
        w = np.ones(m)
    else:
        w = np.asarray(weights, dtype=float)
        if w.ndim != 1 or len(w) != m:
            raise InvalidArgumentError(f"weights must be 1D array of length {m}")
        if np.any(w < 0):
            raise InvalidArgumentError("weights must be non-negative")
    return y, x, w


def _covariance(jacobian, x: np.ndarray, r: np.ndarray, w: np.ndarray) -> np.ndarray:
    """P = σ̂² (J'WJ)⁻¹ at the final estimate."""
    J = np.asarray(jacobian(x), dtype=float)
    m, n = J.shape
    JtWJ = (J.T * w) @ J

    if m > n:
        sigma2 = float(r @ (w * r)) / (m - n)
    else:
        sigma2 = 1.0

    try:
        P = sigma2 * np.linalg.inv(JtWJ)
    except np.linalg.LinAlgError as e:
        raise RefinementError(f"Covariance is not available: {e}")
    if not np.all(np.isfinite(P)):
        raise RefinementError("Covariance is not finite")
    return P


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Callable[[np.ndarray], np.ndarray],
    y: np.ndarray,
    x0: np.ndarray,
    weights: Optional[np.ndarray] = None,
    max_iter: int = 50,
    tol: float = 1e-10,
    mu0: float = 1e-3,
    return_covariance: bool = True,
) -> NonlinearLSResult:
    """
    Levenberg-Marquardt solver for nonlinear least squares.

    Solves: x̂ = argmin ½‖y - h(x)‖²_W

    Small μ behaves like Gauss-Newton (fast near the solution), large μ like
    gradient descent (robust far from it). μ is adapted from the ratio
    between actual and predicted cost decrease.

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning Jacobian matrix J = ∂h/∂x (m × n).
        y: Observation vector (m,).
        x0: Initial estimate (n,).
        weights: Optional measurement weights (m,), typically 1/σᵢ².
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖ and on the gradient ‖J'Wr‖∞.
        mu0: Initial damping parameter (default 1e-3).
        return_covariance: If True, compute covariance at final estimate.

    Returns:
        NonlinearLSResult containing estimate, covariance, and diagnostics.

    Raises:
        InvalidArgumentError: On inconsistent shapes or negative weights.
        RefinementError: If the normal equations are singular, the estimate
            becomes non-finite, or the damping diverges.

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> def jac(x):
        ...     diff = x - anchors
        ...     ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        ...     return diff / np.maximum(ranges, 1e-10)
        >>> y = h(np.array([5.0, 5.0]))
        >>> result = levenberg_marquardt(h, jac, y, x0=np.array([1.0, 2.0]))
        >>> bool(result.converged)
        True
    """
    y, x, w = _prepare(y, x0, weights)
    m = len(y)
    n = len(x)

    def evaluate(x_eval: np.ndarray):
        hx = np.asarray(h(x_eval), dtype=float)
        if hx.shape != (m,):
            raise InvalidArgumentError(f"h(x) returned shape {hx.shape}, expected ({m},)")
        r_eval = y - hx
        return r_eval, 0.5 * float(r_eval @ (w * r_eval))

    r, cost = evaluate(x)
    if not np.isfinite(cost):
        raise RefinementError("Initial cost is not finite")

    mu = mu0
    nu = 2.0
    converged = False
    iterations = 0

    for _ in range(max_iter):
        J = np.asarray(jacobian(x), dtype=float)
        if J.shape != (m, n):
            raise InvalidArgumentError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        JtW = J.T * w
        JtWJ = JtW @ J
        JtWr = JtW @ r

        # Already at a stationary point
        if np.max(np.abs(JtWr)) < tol:
            converged = True
            break

        accepted = False
        while not accepted:
            try:
                delta_x = np.linalg.solve(JtWJ + mu * np.eye(n), JtWr)
            except np.linalg.LinAlgError as e:
                raise RefinementError(f"Singular normal equations: {e}")
            if not np.all(np.isfinite(delta_x)):
                raise RefinementError("Non-finite update step")

            x_new = x + delta_x
            r_new, cost_new = evaluate(x_new)

            # Predicted decrease: ½ Δx'(μΔx + J'Wr)
            predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
            actual_decrease = cost - cost_new
            if predicted_decrease > 0 and np.isfinite(cost_new):
                gain_ratio = actual_decrease / predicted_decrease
            else:
                gain_ratio = 0.0

            if gain_ratio > 0:
                accepted = True
                x, r, cost = x_new, r_new, cost_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
            else:
                mu = mu * nu
                nu = 2.0 * nu
                if mu > _MAX_DAMPING:
                    break

        if not accepted:
            # Damping blew up. If the step was already negligible we are at
            # the minimum up to rounding; otherwise the problem diverged.
            if np.linalg.norm(delta_x) < tol * max(1.0, np.linalg.norm(x)):
                converged = True
                break
            raise RefinementError("Levenberg-Marquardt damping diverged")

        iterations += 1
        if np.linalg.norm(delta_x) < tol * max(1.0, np.linalg.norm(x)):
            converged = True
            break

    if not np.all(np.isfinite(x)):
        raise RefinementError("Estimate is not finite")

    P = _covariance(jacobian, x, r, w) if return_covariance else None

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iterations,
        residuals=r,
        cost=cost,
        converged=converged,
    )
