"""
Robust estimator core shared by all calibrators and solvers.

One skeleton implements the five consensus algorithms. Variants differ only
in their sampling rule and scoring rule (see VARIANT_POLICIES):

| Variant | Sampling    | Score                                   |
|---------|-------------|-----------------------------------------|
| RANSAC  | uniform     | inlier count (rᵢ ≤ threshold)           |
| LMedS   | uniform     | median residual, stops at stop_threshold|
| MSAC    | uniform     | Σ min(rᵢ², threshold²)                  |
| PROSAC  | progressive | inlier count (rᵢ ≤ threshold)           |
| PROMedS | progressive | median residual, stops at stop_threshold|

Each trial:
    1. draws a subset of ``subset_size`` sample indices,
    2. asks the model for candidate solutions on that subset,
    3. scores every candidate against all samples,
    4. keeps the best candidate and shrinks the iteration bound.

References:
    Fischler & Bolles (1981), RANSAC.
    Rousseeuw (1984), Least Median of Squares.
    Torr & Zisserman (2000), MLESAC / MSAC.
    Chum & Matas (2005), PROSAC.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from robustnav.errors import LockedError, NotReadyError, RobustEstimatorError
from robustnav.robust.options import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    RobustEstimatorOptions,
)
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

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_DELTA = 0.01

# Largest inlier ratio assumed by median scoring (LMedS breakdown point)
MEDIAN_BREAKDOWN_RATIO = 0.5

# Numerical failures of a single trial; the trial is discarded
_TRIAL_ERRORS = (np.linalg.LinAlgError, ArithmeticError, ValueError)


@dataclass(frozen=True)
class VariantPolicy:
    """Sampling and scoring rule of a robust variant."""

    progressive_sampling: bool
    scoring: str  # "inlier_count", "truncated_quadratic" or "median"


VARIANT_POLICIES = {
    RobustEstimatorMethod.RANSAC: VariantPolicy(False, "inlier_count"),
    RobustEstimatorMethod.LMEDS: VariantPolicy(False, "median"),
    RobustEstimatorMethod.MSAC: VariantPolicy(False, "truncated_quadratic"),
    RobustEstimatorMethod.PROSAC: VariantPolicy(True, "inlier_count"),
    RobustEstimatorMethod.PROMEDS: VariantPolicy(True, "median"),
}


class RobustEstimator:
    """
    Robust estimator selecting the best candidate of a minimal-solution model.

    Instances are meant to be short-lived: calibrators and solvers build one
    per run and read ``inliers_data`` afterwards.

    Attributes:
        method: Robust variant in use.
        threshold: Inlier threshold (RANSAC, MSAC, PROSAC).
        stop_threshold: Median residual stopping the search (LMedS, PROMedS).
        confidence: Required probability of an outlier-free best subset.
        max_iterations: Upper bound on the number of trials.
        progress_delta: Minimum progress change between notifications.
        compute_and_keep_inliers: Keep the inlier flags in inliers_data.
        compute_and_keep_residuals: Keep the residuals in inliers_data.
        quality_scores: Per-sample quality (PROSAC, PROMedS), higher is better.
        listener: Optional EstimationListener.
        inliers_data: InliersData of the last successful run, or None.
        iterations: Number of trials performed in the last run.

    Example:
        >>> estimator = RobustEstimator(model, RobustEstimatorMethod.RANSAC,
        ...                             threshold=0.1, rng=np.random.default_rng(0))
        >>> params = estimator.estimate()
        >>> inliers = estimator.inliers_data
    """

    def __init__(
        self,
        solver: MinimalSolver,
        method: RobustEstimatorMethod = RobustEstimatorMethod.RANSAC,
        *,
        threshold: float = DEFAULT_THRESHOLD,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        compute_and_keep_inliers: bool = False,
        compute_and_keep_residuals: bool = False,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        # Reuse the options record for range validation
        RobustEstimatorOptions(
            threshold=threshold,
            stop_threshold=stop_threshold,
            confidence=confidence,
            max_iterations=max_iterations,
            progress_delta=progress_delta,
        )

        self.solver = solver
        self.method = RobustEstimatorMethod(method)
        self.threshold = threshold
        self.stop_threshold = stop_threshold
        self.confidence = confidence
        self.max_iterations = int(max_iterations)
        self.progress_delta = progress_delta
        self.compute_and_keep_inliers = compute_and_keep_inliers
        self.compute_and_keep_residuals = compute_and_keep_residuals
        self.quality_scores = (
            None if quality_scores is None else np.asarray(quality_scores, dtype=float)
        )
        self.listener = listener
        self.rng = rng if rng is not None else np.random.default_rng()

        self.inliers_data: Optional[InliersData] = None
        self.iterations = 0
        self._running = False
        self._cancel_requested = False

    @property
    def policy(self) -> VariantPolicy:
        return VARIANT_POLICIES[self.method]

    @property
    def running(self) -> bool:
        """True while estimate() is executing."""
        return self._running

    def is_ready(self) -> bool:
        """Check that the model has enough samples and quality scores fit.

        Returns:
            True if at least subset_size samples are available and, for
            PROSAC/PROMedS, one finite quality score exists per sample.
        """
        num_samples = self.solver.num_samples
        if num_samples < self.solver.subset_size:
            return False
        model_ready = getattr(self.solver, "is_ready", None)
        if model_ready is not None and not model_ready():
            return False
        if self.method.requires_quality_scores:
            scores = self.quality_scores
            if scores is None or scores.shape != (num_samples,):
                return False
            if not np.all(np.isfinite(scores)):
                return False
        return True

    def cancel(self) -> None:
        """Stop the current run after the trial in progress.

        The best candidate found so far is returned by estimate(). Has no
        effect on later runs.
        """
        self._cancel_requested = True

    def estimate(self) -> np.ndarray:
        """
        Run the robust search and return the best candidate.

        Returns:
            Best candidate parameter vector.

        Raises:
            LockedError: If called while already running.
            NotReadyError: If is_ready() is False.
            RobustEstimatorError: If no usable candidate was found.
        """
        if self._running:
            raise LockedError("Robust estimator is already running")
        if not self.is_ready():
            raise NotReadyError(
                f"{self.method.name} estimator not ready: needs at least "
                f"{self.solver.subset_size} samples"
                + (" and one quality score per sample"
                   if self.method.requires_quality_scores else "")
            )

        self._running = True
        self._cancel_requested = False
        try:
            self.inliers_data = None
            self.iterations = 0
            if self.listener is not None:
                self.listener.on_start(self)

            candidate, score, residuals = self._search()

            self.inliers_data = self._build_inliers_data(score, residuals)
            logger.debug(
                "%s finished after %d iterations with %d/%d inliers",
                self.method.name, self.iterations, score.num_inliers, len(residuals),
            )

            if self.listener is not None:
                self.listener.on_end(self)
            return candidate
        finally:
            self._running = False

    def _search(self):
        num_samples = self.solver.num_samples
        subset_size = self.solver.subset_size
        policy = self.policy
        scoring = self._create_scoring(subset_size)

        if policy.progressive_sampling:
            sampler = ProgressiveSubsetSampler(
                self.quality_scores, subset_size, self.max_iterations, self.rng
            )
        else:
            sampler = UniformSubsetSampler(num_samples, subset_size, self.rng)

        logger.debug(
            "Starting %s over %d samples (subset size %d)",
            self.method.name, num_samples, subset_size,
        )

        best_candidate = None
        best_score: Optional[Score] = None
        best_residuals = None
        bound = self.max_iterations
        previous_progress = 0.0

        while self.iterations < bound and not self._cancel_requested:
            subset = sampler.next_subset()

            for candidate in self._preliminary_solutions(subset):
                residuals = self._residuals(candidate)
                if residuals is None:
                    continue
                score = scoring.evaluate(residuals)
                if scoring.requires_inliers and score.num_inliers == 0:
                    continue
                if best_score is None or score.value < best_score.value:
                    best_candidate, best_score, best_residuals = candidate, score, residuals
                    bound = self._iteration_bound(score, sampler)
                    logger.debug(
                        "Iteration %d: new best with %d inliers, bound %d",
                        self.iterations, score.num_inliers, bound,
                    )

            self.iterations += 1
            if self.listener is not None:
                self.listener.on_next_iteration(self, self.iterations)
                progress = min(self.iterations / max(bound, 1), 1.0)
                if progress - previous_progress > self.progress_delta:
                    previous_progress = progress
                    self.listener.on_progress_change(self, progress)

            if best_score is not None and scoring.should_stop(best_score):
                break

        if best_candidate is None:
            raise RobustEstimatorError(
                f"{self.method.name} found no valid solution after "
                f"{self.iterations} iterations"
            )
        return best_candidate, best_score, best_residuals

    def _create_scoring(self, subset_size: int):
        rule = self.policy.scoring
        if rule == "inlier_count":
            return InlierCountScore(self.threshold)
        if rule == "truncated_quadratic":
            return TruncatedQuadraticScore(self.threshold)
        return MedianScore(self.stop_threshold, subset_size)

    def _iteration_bound(self, score: Score, sampler) -> int:
        subset_size = self.solver.subset_size
        if self.policy.scoring == "median":
            # The derived threshold grows with the median of a contaminated
            # candidate, so its inlier mask overstates the inlier ratio
            inlier_ratio = min(
                score.num_inliers / len(score.inliers), MEDIAN_BREAKDOWN_RATIO
            )
            return compute_iterations(
                inlier_ratio, subset_size, self.confidence, self.max_iterations
            )

        if self.policy.progressive_sampling:
            stopping = prosac_stopping_size(
                score.inliers[sampler.sorted_indices],
                subset_size,
                self.confidence,
                self.max_iterations,
            )
            if stopping is not None:
                sampler.n_star, bound = stopping
                return bound

        inlier_ratio = score.num_inliers / len(score.inliers)
        return compute_iterations(
            inlier_ratio, subset_size, self.confidence, self.max_iterations
        )

    def _preliminary_solutions(self, subset: np.ndarray) -> List[np.ndarray]:
        try:
            solutions = self.solver.estimate_preliminary_solutions(subset)
        except _TRIAL_ERRORS as e:
            logger.debug("Discarding subset %s: %s", subset.tolist(), e)
            return []
        return [np.asarray(s, dtype=float) for s in solutions if s is not None]

    def _residuals(self, candidate: np.ndarray) -> Optional[np.ndarray]:
        vectorized = getattr(self.solver, "compute_residuals", None)
        try:
            if vectorized is not None:
                residuals = np.asarray(vectorized(candidate), dtype=float)
            else:
                residuals = np.array(
                    [self.solver.compute_residual(candidate, i)
                     for i in range(self.solver.num_samples)],
                    dtype=float,
                )
        except _TRIAL_ERRORS as e:
            logger.debug("Discarding candidate: %s", e)
            return None

        finite = np.isfinite(residuals)
        if not np.any(finite):
            return None
        return np.where(finite, residuals, np.inf)

    def _build_inliers_data(self, score: Score, residuals: np.ndarray) -> Optional[InliersData]:
        if not (self.compute_and_keep_inliers or self.compute_and_keep_residuals):
            return None
        return InliersData(
            inliers=score.inliers.copy() if self.compute_and_keep_inliers else None,
            residuals=residuals.copy() if self.compute_and_keep_residuals else None,
            threshold=score.threshold,
            num_inliers=score.num_inliers,
        )
