"""
Common facade of the robust calibrators and solvers.

A facade owns the user-facing configuration (RobustEstimatorOptions,
quality scores, listener), builds a fresh model and RobustEstimator on each
run, optionally refines the best candidate over its inliers and keeps the
results. Subclasses supply the model and the domain-specific views of the
estimated parameters.

Run sequence:
    1. reject re-entrant calls (LockedError) and missing inputs (NotReadyError)
    2. notify on_start, reset inliers_data
    3. robust estimation, core failures wrapped in ``error_class``
    4. refinement over the inliers, falling back to the unrefined estimate
    5. keep results, notify on_end
"""

import logging
import warnings
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Optional, Sequence

import numpy as np

from robustnav.errors import (
    LockedError,
    NavigationError,
    NotReadyError,
    RefinementError,
    RobustEstimatorError,
)
from robustnav.robust.estimator import RobustEstimator
from robustnav.robust.model import RobustModel
from robustnav.robust.options import DEFAULT_THRESHOLD, RobustEstimatorOptions
from robustnav.robust.refinement import refine
from robustnav.robust.types import EstimationListener, InliersData, RobustEstimatorMethod

logger = logging.getLogger(__name__)

DEFAULT_METHOD = RobustEstimatorMethod.PROMEDS


class _ForwardingListener(EstimationListener):
    """Relays core iteration events with the facade as source."""

    def __init__(self, facade: "RobustFacade"):
        self.facade = facade

    def on_next_iteration(self, source, iteration: int) -> None:
        listener = self.facade.listener
        if listener is not None:
            listener.on_next_iteration(self.facade, iteration)

    def on_progress_change(self, source, progress: float) -> None:
        listener = self.facade.listener
        if listener is not None:
            listener.on_progress_change(self.facade, progress)


class RobustFacade(ABC):
    """
    Base class of robust calibrators and solvers.

    Subclasses implement ``subset_size``, ``num_samples`` and
    ``_build_model()``, and may extend ``_inputs_ready()``.

    Attributes:
        error_class: Exception raised when the robust estimation fails.
        default_threshold: Inlier threshold used when no options are given.
    """

    error_class = NavigationError
    default_threshold = DEFAULT_THRESHOLD

    def __init__(
        self,
        method: RobustEstimatorMethod = DEFAULT_METHOD,
        *,
        options: Optional[RobustEstimatorOptions] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
    ):
        self._method = RobustEstimatorMethod(method)
        self._options = (
            options if options is not None
            else RobustEstimatorOptions(threshold=self.default_threshold)
        )
        self._quality_scores = self._validate_quality_scores(quality_scores)
        self._listener = listener

        self._running = False
        self._estimator: Optional[RobustEstimator] = None
        self._estimated_parameters: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._inliers_data: Optional[InliersData] = None
        # Model that produced the current results
        self._fitted_model: Optional[RobustModel] = None

    # -- model hooks ---------------------------------------------------------

    @property
    @abstractmethod
    def subset_size(self) -> int:
        """Minimum number of samples of the configured model."""

    @property
    @abstractmethod
    def num_samples(self) -> int:
        """Number of samples currently set."""

    @abstractmethod
    def _build_model(self) -> RobustModel:
        """Model over the current inputs, built at the start of each run."""

    def _inputs_ready(self) -> bool:
        return True

    # -- state ---------------------------------------------------------------

    @property
    def method(self) -> RobustEstimatorMethod:
        return self._method

    @property
    def running(self) -> bool:
        return self._running

    @property
    def locked(self) -> bool:
        return self._running

    def is_ready(self) -> bool:
        """True when a run can start: enough samples, inputs and scores set."""
        if not self._inputs_ready() or self.num_samples < self.subset_size:
            return False
        if self._method.requires_quality_scores:
            return (
                self._quality_scores is not None
                and len(self._quality_scores) == self.num_samples
            )
        return True

    def _check_not_locked(self) -> None:
        if self._running:
            raise LockedError(f"{type(self).__name__} is running")

    # -- configuration -------------------------------------------------------

    @property
    def options(self) -> RobustEstimatorOptions:
        return self._options

    @options.setter
    def options(self, value: RobustEstimatorOptions) -> None:
        self._check_not_locked()
        if not isinstance(value, RobustEstimatorOptions):
            raise ValueError("options must be a RobustEstimatorOptions instance")
        self._options = value

    def _update_options(self, **changes) -> None:
        self._check_not_locked()
        self._options = replace(self._options, **changes)

    @property
    def threshold(self) -> float:
        return self._options.threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._update_options(threshold=value)

    @property
    def stop_threshold(self) -> float:
        return self._options.stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._update_options(stop_threshold=value)

    @property
    def confidence(self) -> float:
        return self._options.confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._update_options(confidence=value)

    @property
    def max_iterations(self) -> int:
        return self._options.max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._update_options(max_iterations=value)

    @property
    def progress_delta(self) -> float:
        return self._options.progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._update_options(progress_delta=value)

    @property
    def compute_and_keep_inliers(self) -> bool:
        return self._options.compute_and_keep_inliers

    @compute_and_keep_inliers.setter
    def compute_and_keep_inliers(self, value: bool) -> None:
        self._update_options(compute_and_keep_inliers=bool(value))

    @property
    def compute_and_keep_residuals(self) -> bool:
        return self._options.compute_and_keep_residuals

    @compute_and_keep_residuals.setter
    def compute_and_keep_residuals(self, value: bool) -> None:
        self._update_options(compute_and_keep_residuals=bool(value))

    @property
    def refine_result(self) -> bool:
        return self._options.refine_result

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._update_options(refine_result=bool(value))

    @property
    def keep_covariance(self) -> bool:
        return self._options.keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._update_options(keep_covariance=bool(value))

    @property
    def seed(self) -> Optional[int]:
        return self._options.seed

    @seed.setter
    def seed(self, value: Optional[int]) -> None:
        self._update_options(seed=value)

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, value: Optional[Sequence[float]]) -> None:
        self._check_not_locked()
        self._quality_scores = self._validate_quality_scores(value)

    @property
    def listener(self) -> Optional[EstimationListener]:
        return self._listener

    @listener.setter
    def listener(self, value: Optional[EstimationListener]) -> None:
        self._check_not_locked()
        self._listener = value

    def _validate_quality_scores(self, value) -> Optional[np.ndarray]:
        if value is None:
            return None
        scores = np.array(value, dtype=float)
        if scores.ndim != 1:
            raise ValueError(f"quality_scores must be 1D, got shape {scores.shape}")
        if len(scores) < self.subset_size:
            raise ValueError(
                f"quality_scores needs at least {self.subset_size} values, got {len(scores)}"
            )
        if not np.all(np.isfinite(scores)) or np.any(scores < 0):
            raise ValueError("quality_scores must be finite and non-negative")
        return scores

    # -- results -------------------------------------------------------------

    @property
    def estimated_parameters(self) -> Optional[np.ndarray]:
        return self._estimated_parameters

    @property
    def covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        return self._inliers_data

    # -- run -----------------------------------------------------------------

    def cancel(self) -> None:
        """Ask a running estimation to stop after its current trial."""
        if self._estimator is not None:
            self._estimator.cancel()

    def _effective_keep_flags(self):
        if self._method.uses_median:
            return self._options.refine_result, self._options.refine_result
        return self._options.compute_and_keep_inliers, self._options.compute_and_keep_residuals

    def _run(self) -> np.ndarray:
        self._check_not_locked()
        if not self.is_ready():
            raise NotReadyError(f"{type(self).__name__} is not ready")

        self._running = True
        try:
            self._inliers_data = None
            if self._listener is not None:
                self._listener.on_start(self)

            options = self._options
            keep_inliers, keep_residuals = self._effective_keep_flags()
            model = self._build_model()
            self._estimator = RobustEstimator(
                model,
                self._method,
                threshold=options.threshold,
                stop_threshold=options.stop_threshold,
                confidence=options.confidence,
                max_iterations=options.max_iterations,
                progress_delta=options.progress_delta,
                compute_and_keep_inliers=keep_inliers or options.refine_result,
                compute_and_keep_residuals=keep_residuals or options.refine_result,
                quality_scores=self._quality_scores,
                listener=_ForwardingListener(self),
                rng=np.random.default_rng(options.seed),
            )

            try:
                candidate = self._estimator.estimate()
            except RobustEstimatorError as e:
                raise self.error_class(
                    f"{type(self).__name__} failed: {e}"
                ) from e

            inliers_data = self._estimator.inliers_data
            parameters, covariance = self._attempt_refine(model, candidate, inliers_data)

            self._estimated_parameters = parameters
            self._covariance = covariance
            self._fitted_model = model
            self._inliers_data = self._kept_inliers_data(
                inliers_data, keep_inliers, keep_residuals
            )

            if self._listener is not None:
                self._listener.on_end(self)
            return parameters
        finally:
            self._running = False
            self._estimator = None

    def _attempt_refine(self, model, candidate, inliers_data):
        options = self._options
        if not options.refine_result:
            return candidate, None

        try:
            result = refine(
                model, candidate, inliers_data.inlier_indices(), options.keep_covariance
            )
        except RefinementError as e:
            warnings.warn(
                f"Refinement failed, keeping unrefined estimate: {e}", RuntimeWarning
            )
            return candidate, None

        return result.parameters, result.covariance

    @staticmethod
    def _kept_inliers_data(
        inliers_data: Optional[InliersData], keep_inliers: bool, keep_residuals: bool
    ) -> Optional[InliersData]:
        if inliers_data is None or not (keep_inliers or keep_residuals):
            return None
        return InliersData(
            inliers=inliers_data.inliers if keep_inliers else None,
            residuals=inliers_data.residuals if keep_residuals else None,
            threshold=inliers_data.threshold,
            num_inliers=inliers_data.num_inliers,
        )
