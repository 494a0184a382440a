"""
Linear least squares solvers used by the closed-form lateration and RSSI solvers.

Functions:
    - linear_least_squares: Ordinary LS with rank check and covariance
    - weighted_least_squares: LS with per-row weights or standard deviations

Both functions treat a rank-deficient design matrix as a degenerate
geometry and raise NumericalInstabilityError. Robust estimators catch that
error per subset and simply skip the draw.

Mathematical Formulation:
    x̂ = argmin ‖Ax − b‖²_W   →   (AᵀWA) x̂ = AᵀW b
    P = σ̂² (AᵀWA)⁻¹, with σ̂² the residual variance for m > n.
"""

from typing import Optional, Tuple

import numpy as np

from robust_positioning.errors import InvalidArgumentError, NumericalInstabilityError

# Relative tolerance used to decide numerical rank, matches numpy's default
# scaled by the largest dimension.
_RANK_RTOL_FACTOR = 1e3


def _check_system(A: np.ndarray, b: np.ndarray) -> Tuple[int, int]:
    if A.ndim != 2 or b.ndim != 1:
        raise InvalidArgumentError(
            f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}"
        )
    m, n = A.shape
    if len(b) != m:
        raise InvalidArgumentError(
            f"Dimension mismatch: A has {m} rows, b has {len(b)} elements"
        )
    if m < n:
        raise NumericalInstabilityError(
            f"Underdetermined system: m={m} < n={n}. Need m ≥ n."
        )
    return m, n


def _numerical_rank(A: np.ndarray) -> int:
    s = np.linalg.svd(A, compute_uv=False)
    if s.size == 0 or s[0] == 0.0:
        return 0
    tol = s[0] * max(A.shape) * np.finfo(float).eps * _RANK_RTOL_FACTOR
    return int(np.sum(s > tol))


def linear_least_squares(
    A: np.ndarray, b: np.ndarray, return_covariance: bool = True
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x_hat = argmin ||Ax - b||²

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        return_covariance: If True, compute covariance matrix.

    Returns:
        Tuple of:
            - x_hat: Estimated vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        InvalidArgumentError: If A and b shapes are inconsistent.
        NumericalInstabilityError: If the system is underdetermined, rank
            deficient, or the solution is not finite.

    Example:
        >>> A = np.array([[1, 0], [0, 1], [1, 1]], dtype=float)
        >>> b = np.array([1.0, 2.0, 3.0])
        >>> x_hat, P = linear_least_squares(A, b)
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m, n = _check_system(A, b)

    rank = _numerical_rank(A)
    if rank < n:
        raise NumericalInstabilityError(
            f"A is rank deficient: rank={rank} < n={n}. System has no unique solution."
        )

    # lstsq is better conditioned than forming A'A explicitly
    x_hat, _, _, _ = np.linalg.lstsq(A, b, rcond=None)
    if not np.all(np.isfinite(x_hat)):
        raise NumericalInstabilityError("Least squares solution is not finite")

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        if m > n:
            sigma2 = np.sum(residuals**2) / (m - n)
        else:
            sigma2 = 1.0  # Exact fit case
        try:
            P = sigma2 * np.linalg.inv(A.T @ A)
        except np.linalg.LinAlgError as e:
            raise NumericalInstabilityError(f"Failed to invert normal matrix: {e}")

    return x_hat, P


def weighted_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    W_or_sigma: np.ndarray,
    is_sigma: bool = False,
    return_covariance: bool = True,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Weighted least squares with diagonal weights or standard deviations.

    Solves: x_hat = argmin (Ax - b)' W (Ax - b), W = diag(w)

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        W_or_sigma: Per-row weights wᵢ, or standard deviations σᵢ when
            is_sigma is True (then wᵢ = 1/σᵢ²).
        is_sigma: Interpret W_or_sigma as standard deviations.
        return_covariance: If True, return P = (A'WA)⁻¹.

    Returns:
        Tuple of (x_hat, P or None).

    Raises:
        InvalidArgumentError: On shape mismatch or invalid weights.
        NumericalInstabilityError: If A'WA is rank deficient.
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    m, n = _check_system(A, b)

    w = np.asarray(W_or_sigma, dtype=float)
    if w.ndim != 1 or len(w) != m:
        raise InvalidArgumentError(
            f"W_or_sigma length mismatch: expected {m}, got shape {w.shape}"
        )
    if is_sigma:
        if np.any(w <= 0):
            raise InvalidArgumentError("Sigma values must be positive")
        w = 1.0 / w**2
    elif np.any(w < 0):
        raise InvalidArgumentError("Weights must be non-negative")

    # Scale rows by sqrt(w) and reuse the unweighted solver
    sqrt_w = np.sqrt(w)
    Aw = A * sqrt_w[:, None]
    bw = b * sqrt_w

    rank = _numerical_rank(Aw)
    if rank < n:
        raise NumericalInstabilityError(f"A'WA is rank deficient: rank={rank} < n={n}")

    x_hat, _, _, _ = np.linalg.lstsq(Aw, bw, rcond=None)
    if not np.all(np.isfinite(x_hat)):
        raise NumericalInstabilityError("Weighted least squares solution is not finite")

    P = None
    if return_covariance:
        try:
            P = np.linalg.inv(Aw.T @ Aw)
        except np.linalg.LinAlgError as e:
            raise NumericalInstabilityError(f"Failed to invert A'WA: {e}")

    return x_hat, P
