"""
Base class for minimal-solution models that can also be refined.

A model describes one sample i with an observation zᵢ (dimension d) and a
prediction hᵢ(x) depending on the parameter vector x. The residual used by
the robust estimators is the Euclidean norm

    rᵢ(x) = ‖zᵢ - hᵢ(x)‖

and the refinement pass minimizes Σ wᵢ ‖zᵢ - hᵢ(x)‖² over the inliers.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from robustnav.estimators.nonlinear_least_squares import numerical_jacobian


class RobustModel(ABC):
    """
    Abstract minimal-solution model.

    Subclasses provide the minimal solver and the measurement model; the
    residuals, the default Jacobian and the readiness test are shared.
    """

    #: Dimension d of one observation
    sample_dimension: int = 1

    @property
    @abstractmethod
    def subset_size(self) -> int:
        """Minimum number of samples that determine a candidate."""

    @property
    @abstractmethod
    def num_samples(self) -> int:
        """Number of available samples."""

    @property
    @abstractmethod
    def num_parameters(self) -> int:
        """Length of the parameter vector."""

    @abstractmethod
    def estimate_preliminary_solutions(self, indices: Sequence[int]) -> List[np.ndarray]:
        """Candidate parameter vectors fitted to the samples in ``indices``."""

    @abstractmethod
    def predict(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        """Predicted observations h(x), shape (k,) or (k, d)."""

    @abstractmethod
    def observations(self, indices: np.ndarray) -> np.ndarray:
        """Observations z, same shape as predict()."""

    def is_ready(self) -> bool:
        return self.num_samples >= self.subset_size

    def standard_deviations(self, indices: np.ndarray) -> Optional[np.ndarray]:
        """Per-sample standard deviations (k,), or None when unknown."""
        return None

    def jacobian(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        """Jacobian of the flattened prediction, shape (k·d, n).

        Central differences unless a subclass has an analytic form.
        """
        return numerical_jacobian(lambda p: self.predict(p, indices).ravel(), params)

    def compute_residuals(
        self, params: np.ndarray, indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Residual ‖zᵢ - hᵢ(x)‖ of every sample (or of ``indices``)."""
        if indices is None:
            indices = np.arange(self.num_samples)
        indices = np.asarray(indices, dtype=int)
        diff = self.observations(indices) - self.predict(params, indices)
        return np.linalg.norm(diff.reshape(len(indices), -1), axis=1)

    def compute_residual(self, params: np.ndarray, index: int) -> float:
        return float(self.compute_residuals(params, np.array([index]))[0])
