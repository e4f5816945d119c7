"""
Shared types for the robust estimation framework.

Defines:
    - RobustEstimatorMethod: the five supported consensus algorithms
    - InliersData: inlier membership / residuals kept after a run
    - MinimalSolver: the plugin contract a model must satisfy
    - EstimationListener: observer notified of run progress
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Sequence

import numpy as np


class RobustEstimatorMethod(str, Enum):
    """Robust estimation algorithm."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def requires_quality_scores(self) -> bool:
        """True for the quality-ordered variants (PROSAC, PROMedS)."""
        return self in (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)

    @property
    def uses_median(self) -> bool:
        """True for variants scoring candidates by their median residual."""
        return self in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


@dataclass
class InliersData:
    """Inlier information produced by a robust estimation run.

    Attributes:
        inliers: Boolean membership per sample, or None if not kept.
        residuals: Residual per sample for the best candidate, or None if
            not kept.
        threshold: Threshold used to classify inliers. Configured for
            RANSAC/MSAC/PROSAC, estimated for LMedS/PROMedS.
        num_inliers: Number of samples classified as inliers.
    """

    inliers: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    threshold: float
    num_inliers: int

    def inlier_indices(self) -> np.ndarray:
        """Indices of inlier samples.

        Uses the membership vector when kept, otherwise the residuals.

        Raises:
            ValueError: If neither inliers nor residuals were kept.
        """
        if self.inliers is not None:
            return np.flatnonzero(self.inliers)
        if self.residuals is not None:
            return np.flatnonzero(self.residuals <= self.threshold)
        raise ValueError("Neither inliers nor residuals were kept")


class MinimalSolver(Protocol):
    """Plugin contract consumed by the robust estimators.

    A model turns a small subset of sample indices into zero or more
    candidate parameter vectors and scores any sample against a candidate.
    Returning no candidates signals a degenerate subset.
    """

    @property
    def subset_size(self) -> int:
        ...

    @property
    def num_samples(self) -> int:
        ...

    def estimate_preliminary_solutions(self, indices: Sequence[int]) -> List[np.ndarray]:
        ...

    def compute_residual(self, candidate: np.ndarray, index: int) -> float:
        ...


class EstimationListener:
    """Observer of robust estimation runs.

    All callbacks are invoked synchronously on the thread running the
    estimation. ``source`` is the estimator, or the calibrator/solver when the
    event is forwarded by a facade. Subclasses override only what they need.
    """

    def on_start(self, source) -> None:
        pass

    def on_end(self, source) -> None:
        pass

    def on_next_iteration(self, source, iteration: int) -> None:
        pass

    def on_progress_change(self, source, progress: float) -> None:
        pass
