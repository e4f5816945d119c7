"""
Least squares solvers used by the robust estimation framework.

Available estimators:
    - Linear Least Squares (LS, WLS) for linear minimal-subset solvers
    - Nonlinear Least Squares (Levenberg-Marquardt) for nonlinear minimal
      solvers and for the refinement pass
"""

from robustnav.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from robustnav.estimators.nonlinear_least_squares import (
    levenberg_marquardt,
    numerical_jacobian,
    NonlinearLSResult,
)

__all__ = [
    # Linear LS
    "linear_least_squares",
    "weighted_least_squares",
    # Nonlinear LS
    "levenberg_marquardt",
    "numerical_jacobian",
    "NonlinearLSResult",
]
