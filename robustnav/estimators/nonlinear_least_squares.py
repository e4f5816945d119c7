"""
Nonlinear least squares with Levenberg-Marquardt.

Used in two places by the robust framework:
    - as the minimal-subset solver of nonlinear models (accelerometer
      calibration with known gravity norm), started from an initial guess;
    - as the refinement pass that polishes the best robust candidate over
      all of its inliers and estimates the parameter covariance.

Mathematical Formulation:
    Given observations y, measurement model h(x) and weights W, we seek:
        x̂ = argmin ½‖y - h(x)‖²_W

    Levenberg-Marquardt update:
        (J'WJ + μI) Δx = J'W r,   r = y - h(x)
    where μ is an adaptive damping parameter updated from the gain ratio
    between actual and predicted cost decrease.

Covariance:
    - weights known (W = Σ⁻¹):  P = (J'WJ)⁻¹
    - unit weights:             P = σ̂² (J'J)⁻¹,  σ̂² = r'r / (m - n)
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np


@dataclass
class NonlinearLSResult:
    """Result container for nonlinear least squares optimization.

    Attributes:
        x: Estimated parameter vector.
        covariance: Covariance matrix (n × n), or None.
        iterations: Number of iterations performed.
        residuals: Final residuals r = y - h(x̂).
        cost: Final cost value ½‖r‖²_W.
        initial_cost: Cost value at the initial guess.
        converged: Whether the solver converged within tolerance.
    """

    x: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    initial_cost: float
    converged: bool


def numerical_jacobian(
    h: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    epsilon: float = 1e-7,
) -> np.ndarray:
    """
    Compute the Jacobian of h at x using central differences.

    Args:
        h: Function R^n → R^m.
        x: Point at which to evaluate the Jacobian (n,).
        epsilon: Step size for finite differences.

    Returns:
        Jacobian matrix (m × n).
    """
    x = np.asarray(x, dtype=float)
    n_in = len(x)
    n_out = len(np.atleast_1d(h(x)))

    J = np.zeros((n_out, n_in))
    for i in range(n_in):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[i] += epsilon
        x_minus[i] -= epsilon
        J[:, i] = (h(x_plus) - h(x_minus)) / (2.0 * epsilon)

    return J


def levenberg_marquardt(
    h: Callable[[np.ndarray], np.ndarray],
    jacobian: Optional[Callable[[np.ndarray], np.ndarray]],
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

    LM combines Gauss-Newton (fast near solution) with gradient descent
    (robust far from solution) by adaptively adjusting μ:
        - Small μ: Gauss-Newton behavior (quadratic convergence)
        - Large μ: Gradient descent behavior (global convergence)

    Args:
        h: Measurement model function h: R^n → R^m.
        jacobian: Function returning J = ∂h/∂x (m × n). If None, a
            central-difference Jacobian is used.
        y: Observation vector (m,).
        x0: Initial parameter estimate (n,).
        weights: Optional measurement weights (m,), typically 1/σᵢ².
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖ and on the cost.
        mu0: Initial damping parameter.
        return_covariance: If True, compute covariance at final estimate.

    Returns:
        NonlinearLSResult containing estimate, covariance and diagnostics.

    Raises:
        ValueError: On malformed inputs or model output of the wrong size.

    Example:
        >>> import numpy as np
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]])
        >>> def h(x):
        ...     return np.linalg.norm(anchors - x, axis=1)
        >>> y = h(np.array([3.0, 4.0]))
        >>> result = levenberg_marquardt(h, None, y, x0=np.array([5.0, 5.0]))
    """
    y = np.asarray(y, dtype=float)
    x0 = np.asarray(x0, dtype=float)

    if y.ndim != 1:
        raise ValueError(f"y must be 1D array, got shape {y.shape}")
    if x0.ndim != 1:
        raise ValueError(f"x0 must be 1D array, got shape {x0.shape}")

    m = len(y)
    n = len(x0)

    if weights is None:
        w = np.ones(m)
    else:
        w = np.asarray(weights, dtype=float)
        if w.ndim != 1 or len(w) != m:
            raise ValueError(f"weights must be 1D array of length {m}")
        if np.any(w < 0):
            raise ValueError("weights must be non-negative")

    if jacobian is None:
        def jacobian(x):
            return numerical_jacobian(h, x)

    def evaluate(x):
        hx = np.asarray(h(x), dtype=float)
        if hx.shape != (m,):
            raise ValueError(f"h(x) returned shape {hx.shape}, expected ({m},)")
        return y - hx

    x = x0.copy()
    r = evaluate(x)
    cost = 0.5 * np.sum(w * r**2)
    initial_cost = cost

    mu = mu0
    nu = 2.0
    converged = cost == 0.0
    iteration = 0

    while not converged and iteration < max_iter:
        iteration += 1

        J = np.asarray(jacobian(x), dtype=float)
        if J.shape != (m, n):
            raise ValueError(f"Jacobian shape {J.shape}, expected ({m}, {n})")

        JtW = J.T * w
        JtWJ = JtW @ J
        JtWr = JtW @ r

        # Inner loop: increase damping until the step reduces the cost
        step_accepted = False
        delta_x = np.zeros(n)
        while not step_accepted:
            try:
                delta_x = np.linalg.solve(JtWJ + mu * np.eye(n), JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ + mu * np.eye(n), JtWr, rcond=None)[0]

            x_new = x + delta_x
            r_new = evaluate(x_new)
            cost_new = 0.5 * np.sum(w * r_new**2)

            predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
            actual_decrease = cost - cost_new

            if predicted_decrease > 0 and actual_decrease > 0:
                gain_ratio = actual_decrease / predicted_decrease
                x, r, cost = x_new, r_new, cost_new
                mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                nu = 2.0
                step_accepted = True
            else:
                mu = mu * nu
                nu = 2.0 * nu
                if mu > 1e10:
                    break

        if not step_accepted:
            # No descent direction left: current point is a (local) minimum
            converged = True
        elif np.linalg.norm(delta_x) < tol * (np.linalg.norm(x) + tol):
            converged = True
        elif cost < tol**2:
            converged = True

    P = None
    if return_covariance:
        J = np.asarray(jacobian(x), dtype=float)
        JtWJ = (J.T * w) @ J
        if weights is None:
            sigma2 = (r @ r) / (m - n) if m > n else 1.0
        else:
            sigma2 = 1.0
        try:
            P = sigma2 * np.linalg.inv(JtWJ)
        except np.linalg.LinAlgError:
            P = sigma2 * np.linalg.pinv(JtWJ)

    return NonlinearLSResult(
        x=x,
        covariance=P,
        iterations=iteration,
        residuals=r,
        cost=float(cost),
        initial_cost=float(initial_cost),
        converged=bool(converged),
    )
