"""Configuration record for robust calibrators and solvers."""

import numbers
from dataclasses import dataclass
from typing import Optional

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05
DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-4


def _check_real(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"{name} must be a real number, got {value!r}")


@dataclass(frozen=True)
class RobustEstimatorOptions:
    """Settings shared by every calibrator/solver facade.

    Which fields matter depends on the robust method:
        - threshold: RANSAC, MSAC and PROSAC inlier threshold.
        - stop_threshold: LMedS and PROMedS early-stop median residual,
          also the lower bound of their estimated inlier threshold.
        - compute_and_keep_inliers / compute_and_keep_residuals: RANSAC,
          MSAC and PROSAC only. LMedS and PROMedS keep both exactly when
          refine_result is enabled.

    Attributes:
        threshold: Residual threshold to accept a sample as inlier (> 0).
        stop_threshold: Median residual that stops LMedS/PROMedS early (> 0).
        confidence: Probability that the returned estimate is outlier free,
            in (0, 1).
        max_iterations: Upper bound on the number of trials (≥ 1).
        progress_delta: Minimum progress change between progress
            notifications, in [0, 1].
        compute_and_keep_inliers: Keep the inlier membership vector.
        compute_and_keep_residuals: Keep the residual vector.
        refine_result: Refine the best candidate with nonlinear LS.
        keep_covariance: Keep the covariance of the refined estimate.
        seed: Seed for the subset sampler. None draws fresh entropy.

    Raises:
        ValueError: If any value is out of range.
    """

    threshold: float = DEFAULT_THRESHOLD
    stop_threshold: float = DEFAULT_STOP_THRESHOLD
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    progress_delta: float = DEFAULT_PROGRESS_DELTA
    compute_and_keep_inliers: bool = False
    compute_and_keep_residuals: bool = False
    refine_result: bool = True
    keep_covariance: bool = True
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        for name in (
            "threshold", "stop_threshold", "confidence", "max_iterations", "progress_delta"
        ):
            _check_real(name, getattr(self, name))
        if not self.threshold > 0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")
        if not self.stop_threshold > 0:
            raise ValueError(f"stop_threshold must be positive, got {self.stop_threshold}")
        if not 0.0 < self.confidence < 1.0:
            raise ValueError(f"confidence must be in (0, 1), got {self.confidence}")
        if not float(self.max_iterations).is_integer():
            raise ValueError(f"max_iterations must be an integer, got {self.max_iterations}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if not 0.0 <= self.progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {self.progress_delta}")
