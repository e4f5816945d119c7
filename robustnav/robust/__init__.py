"""
Robust model fitting framework.

Available components:
    - RobustEstimator: RANSAC, LMedS, MSAC, PROSAC and PROMedS over any
      minimal-solution model
    - RobustModel: base class for models that also support refinement
    - refine: nonlinear least squares refinement over the inliers
    - RobustFacade: base class of the calibrators and solvers
"""

from robustnav.robust.estimator import (
    DEFAULT_PROGRESS_DELTA,
    VARIANT_POLICIES,
    RobustEstimator,
    VariantPolicy,
)
from robustnav.robust.facade import DEFAULT_METHOD, RobustFacade
from robustnav.robust.model import RobustModel
from robustnav.robust.options import RobustEstimatorOptions
from robustnav.robust.refinement import RefinementResult, refine
from robustnav.robust.sampling import (
    ProgressiveSubsetSampler,
    UniformSubsetSampler,
    compute_iterations,
    prosac_stopping_size,
)
from robustnav.robust.scoring import (
    InlierCountScore,
    MedianScore,
    Score,
    TruncatedQuadraticScore,
)
from robustnav.robust.types import (
    EstimationListener,
    InliersData,
    MinimalSolver,
    RobustEstimatorMethod,
)

__all__ = [
    # Core
    "RobustEstimator",
    "RobustEstimatorMethod",
    "VARIANT_POLICIES",
    "VariantPolicy",
    "DEFAULT_PROGRESS_DELTA",
    # Plugins
    "MinimalSolver",
    "RobustModel",
    # Sampling and scoring
    "UniformSubsetSampler",
    "ProgressiveSubsetSampler",
    "compute_iterations",
    "prosac_stopping_size",
    "Score",
    "InlierCountScore",
    "TruncatedQuadraticScore",
    "MedianScore",
    # Refinement and facade
    "refine",
    "RefinementResult",
    "RobustFacade",
    "RobustEstimatorOptions",
    "DEFAULT_METHOD",
    # Events and results
    "EstimationListener",
    "InliersData",
]
