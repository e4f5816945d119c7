"""
Candidate scoring rules of the robust estimators.

Each rule maps the residual vector of one candidate to a score where lower
is better, plus the inlier classification implied by that score:

| Rule                     | Score                       | Used by         |
|--------------------------|-----------------------------|-----------------|
| InlierCountScore         | -#{rᵢ ≤ t}                  | RANSAC, PROSAC  |
| TruncatedQuadraticScore  | Σ min(rᵢ², t²)              | MSAC            |
| MedianScore              | median(rᵢ)                  | LMedS, PROMedS  |

Median rules have no threshold during scoring; the inlier threshold is
derived afterwards from the robust standard deviation (Rousseeuw & Leroy,
"Robust Regression and Outlier Detection"):
    σ = 1.4826 (1 + 5 / (N - s)) median(rᵢ)
    t = max(k σ, stop_threshold)
"""

from dataclasses import dataclass

import numpy as np

# Scale factor making the MAD a consistent estimator of a Gaussian σ
MAD_SCALE = 1.4826

DEFAULT_INLIER_FACTOR = 1.5


@dataclass(frozen=True)
class Score:
    """Score of a candidate.

    Attributes:
        value: Score value, lower is better.
        inliers: Boolean inlier flags per sample.
        threshold: Threshold used to classify inliers.
    """

    value: float
    inliers: np.ndarray
    threshold: float

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))


class InlierCountScore:
    """Consensus size: number of residuals within the threshold."""

    requires_inliers = True

    def __init__(self, threshold: float):
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray) -> Score:
        inliers = residuals <= self.threshold
        return Score(-float(np.count_nonzero(inliers)), inliers, self.threshold)

    def should_stop(self, score: Score) -> bool:
        return False


class TruncatedQuadraticScore:
    """MSAC cost: squared residuals truncated at the squared threshold."""

    requires_inliers = True

    def __init__(self, threshold: float):
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray) -> Score:
        inliers = residuals <= self.threshold
        cost = np.sum(np.minimum(residuals**2, self.threshold**2))
        return Score(float(cost), inliers, self.threshold)

    def should_stop(self, score: Score) -> bool:
        return False


class MedianScore:
    """Least median of residuals with a derived inlier threshold."""

    requires_inliers = False

    def __init__(
        self,
        stop_threshold: float,
        subset_size: int,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
    ):
        self.stop_threshold = stop_threshold
        self.subset_size = subset_size
        self.inlier_factor = inlier_factor

    def evaluate(self, residuals: np.ndarray) -> Score:
        median = float(np.median(residuals))
        threshold = self.inlier_threshold(median, len(residuals))
        return Score(median, residuals <= threshold, threshold)

    def inlier_threshold(self, median: float, num_samples: int) -> float:
        redundancy = num_samples - self.subset_size
        correction = 1.0 + 5.0 / redundancy if redundancy > 0 else 1.0
        sigma = MAD_SCALE * correction * median
        return max(self.inlier_factor * sigma, self.stop_threshold)

    def should_stop(self, score: Score) -> bool:
        return score.value <= self.stop_threshold
