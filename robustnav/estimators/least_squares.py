"""
Linear least squares for minimal-subset solvers.

The robust estimators call a model's minimal solver thousands of times on
small subsets of the measurements. Linear models (gyroscope calibration,
linearized trilateration) solve each subset with the functions below, which
reject rank-deficient subsets with ``ValueError`` so that the robust
estimator can simply discard the trial.

Functions:
    - linear_least_squares: Standard LS, x = (A'A)⁻¹A'b
    - weighted_least_squares: LS with per-row weights, x = (A'WA)⁻¹A'Wb
"""

from typing import Optional, Tuple

import numpy as np


def linear_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    rcond: Optional[float] = None,
    return_covariance: bool = False,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Standard linear least squares estimation.

    Solves: x̂ = argmin ‖Ax - b‖²
    Solution: x̂ = (A'A)⁻¹ A'b

    Args:
        A: Design matrix (m × n), where m ≥ n.
        b: Observation vector (m,).
        rcond: Relative singular value cutoff used to decide whether A has
            full column rank. Defaults to numpy's ``matrix_rank`` tolerance.
        return_covariance: If True, compute the covariance σ̂²(A'A)⁻¹.

    Returns:
        Tuple of:
            - x_hat: Estimated parameter vector (n,).
            - P: Covariance matrix (n × n), or None if return_covariance is False.

    Raises:
        ValueError: If dimensions don't match, the system is underdetermined
            or A is rank deficient (degenerate subset).

    Example:
        >>> import numpy as np
        >>> A = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
        >>> b = np.array([1.0, 2.0, 3.0])
        >>> x_hat, _ = linear_least_squares(A, b)
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")

    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: m={m} < n={n}. Need m ≥ n.")
    if len(b) != m:
        raise ValueError(f"Dimension mismatch: A has {m} rows, b has {len(b)} elements")

    singular_values = np.linalg.svd(A, compute_uv=False)
    if rcond is None:
        tol = singular_values.max(initial=0.0) * max(m, n) * np.finfo(float).eps
    else:
        tol = rcond * singular_values.max(initial=0.0)
    rank = int(np.sum(singular_values > tol))
    if rank < n:
        raise ValueError(
            f"A is rank deficient: rank={rank} < n={n}. System has no unique solution."
        )

    x_hat, _, _, _ = np.linalg.lstsq(A, b, rcond=None)

    P = None
    if return_covariance:
        residuals = b - A @ x_hat
        sigma2 = np.sum(residuals**2) / (m - n) if m > n else 1.0
        P = sigma2 * np.linalg.inv(A.T @ A)

    return x_hat, P


def weighted_least_squares(
    A: np.ndarray,
    b: np.ndarray,
    weights: np.ndarray,
    return_covariance: bool = False,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Weighted least squares with diagonal weights.

    Solves: x̂ = argmin (Ax - b)' W (Ax - b), W = diag(weights)

    Setting wᵢ = 1/σᵢ² yields the best linear unbiased estimate, and the
    covariance (A'WA)⁻¹ is then the parameter uncertainty.

    Args:
        A: Design matrix (m × n).
        b: Observation vector (m,).
        weights: Non-negative row weights (m,).
        return_covariance: If True, compute (A'WA)⁻¹.

    Returns:
        Tuple of (x_hat, P) as in linear_least_squares.

    Raises:
        ValueError: On dimension mismatch, negative weights or rank deficiency.
    """
    A = np.asarray(A, dtype=float)
    b = np.asarray(b, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if A.ndim != 2 or b.ndim != 1:
        raise ValueError(f"A must be 2D and b must be 1D. Got A: {A.shape}, b: {b.shape}")
    if weights.shape != b.shape:
        raise ValueError(
            f"weights length mismatch: expected {len(b)}, got {weights.shape}"
        )
    if np.any(weights < 0):
        raise ValueError("Weights must be non-negative")

    # Row scaling by √w turns WLS into ordinary LS
    sqrt_w = np.sqrt(weights)
    x_hat, _ = linear_least_squares(A * sqrt_w[:, None], b * sqrt_w)

    P = None
    if return_covariance:
        P = np.linalg.inv(A.T @ (A * weights[:, None]))

    return x_hat, P
