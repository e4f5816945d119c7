"""
Nonlinear refinement of a robust estimate over its inliers.

The best candidate of a robust run is fitted to a minimal subset only.
Refinement re-estimates it with Levenberg-Marquardt on all inliers:

    x̂ = argmin Σᵢ wᵢ ‖zᵢ - hᵢ(x)‖²,   wᵢ = 1/σᵢ² (or 1 when σ is unknown)

and yields the parameter covariance (J'WJ)⁻¹, scaled by the residual
variance σ̂² when no standard deviations are available.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from robustnav.errors import RefinementError
from robustnav.estimators.nonlinear_least_squares import levenberg_marquardt
from robustnav.robust.model import RobustModel

logger = logging.getLogger(__name__)


@dataclass
class RefinementResult:
    """Outcome of a refinement pass.

    Attributes:
        parameters: Refined parameter vector.
        covariance: Parameter covariance, or None if not requested.
        cost: Final cost ½ Σ wᵢ ‖rᵢ‖².
        initial_cost: Cost of the unrefined candidate.
        iterations: Levenberg-Marquardt iterations.
        converged: Whether Levenberg-Marquardt converged.
    """

    parameters: np.ndarray
    covariance: Optional[np.ndarray]
    cost: float
    initial_cost: float
    iterations: int
    converged: bool


def refine(
    model: RobustModel,
    candidate: np.ndarray,
    indices: Sequence[int],
    keep_covariance: bool = True,
    max_iter: int = 50,
) -> RefinementResult:
    """
    Refine a candidate with nonlinear least squares over the given samples.

    Args:
        model: Model that produced the candidate.
        candidate: Parameter vector found by the robust estimator.
        indices: Samples to fit, normally the inliers of the candidate.
        keep_covariance: Whether to compute the parameter covariance.
        max_iter: Maximum number of Levenberg-Marquardt iterations.

    Returns:
        RefinementResult with the refined parameters.

    Raises:
        RefinementError: If there are too few samples, the problem is
            singular, the result is not finite or the cost increased.
    """
    indices = np.asarray(indices, dtype=int)
    candidate = np.asarray(candidate, dtype=float)
    dim = model.sample_dimension

    if len(indices) * dim < len(candidate):
        raise RefinementError(
            f"Need at least {len(candidate)} observations to refine, "
            f"got {len(indices) * dim}"
        )

    y = np.asarray(model.observations(indices), dtype=float).ravel()

    weights = None
    sigmas = model.standard_deviations(indices)
    if sigmas is not None:
        sigmas = np.asarray(sigmas, dtype=float)
        if np.all(np.isfinite(sigmas)) and np.all(sigmas > 0):
            weights = np.repeat(1.0 / sigmas**2, dim)
        else:
            logger.debug("Ignoring non-positive standard deviations in refinement")

    def h(x):
        return np.asarray(model.predict(x, indices), dtype=float).ravel()

    def jacobian(x):
        return model.jacobian(x, indices)

    try:
        result = levenberg_marquardt(
            h,
            jacobian,
            y,
            candidate,
            weights=weights,
            max_iter=max_iter,
            return_covariance=keep_covariance,
        )
    except (np.linalg.LinAlgError, ArithmeticError, ValueError) as e:
        raise RefinementError(f"Refinement failed: {e}") from e

    if not np.all(np.isfinite(result.x)) or not np.isfinite(result.cost):
        raise RefinementError("Refinement produced non-finite parameters")

    # Unobservable parameter directions: the refined values along them are arbitrary
    J = np.asarray(jacobian(result.x), dtype=float)
    if weights is not None:
        J = J * np.sqrt(weights)[:, None]
    rank = np.linalg.matrix_rank(J)
    if rank < len(candidate):
        raise RefinementError(
            f"Normal equations are rank deficient: rank={rank} < n={len(candidate)}"
        )
    if result.cost > result.initial_cost:
        raise RefinementError(
            f"Refinement increased the cost from {result.initial_cost:.6g} "
            f"to {result.cost:.6g}"
        )
    if keep_covariance and not np.all(np.isfinite(result.covariance)):
        raise RefinementError("Refinement produced a non-finite covariance")

    logger.debug(
        "Refined over %d samples in %d iterations, cost %.6g -> %.6g",
        len(indices), result.iterations, result.initial_cost, result.cost,
    )

    return RefinementResult(
        parameters=result.x,
        covariance=result.covariance if keep_covariance else None,
        cost=result.cost,
        initial_cost=result.initial_cost,
        iterations=result.iterations,
        converged=result.converged,
    )
