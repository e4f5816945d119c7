"""
Robust 2D/3D trilateration.

Each sample is a circle (2D) or sphere (3D) with center cᵢ and radius rᵢ,
the measured distance between cᵢ and the unknown position x:

    ‖x - cᵢ‖ = rᵢ

Minimal solver (linear, inhomogeneous): subtracting the first equation of a
subset from the others cancels ‖x‖²,

    2 (cᵢ - c₀)ᵀ x = r₀² - rᵢ² + ‖cᵢ‖² - ‖c₀‖²,   i = 1..D

which needs D + 1 spheres for a D-dimensional position. Subsets with
collinear (2D) or coplanar (3D) centers are rank deficient and discarded.

Residual: |‖x - cᵢ‖ - rᵢ| [m]. Refinement minimizes Σ wᵢ (‖x - cᵢ‖ - rᵢ)²
with wᵢ = 1/σᵢ² when distance standard deviations are known.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from robustnav.errors import TrilaterationError
from robustnav.estimators.least_squares import linear_least_squares
from robustnav.robust.facade import DEFAULT_METHOD, RobustFacade
from robustnav.robust.model import RobustModel
from robustnav.robust.options import RobustEstimatorOptions
from robustnav.robust.types import EstimationListener, RobustEstimatorMethod

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1e-2

# Distances below this are treated as zero in the Jacobian
EPSILON = 1e-7


def validate_ranges(centers, distances, standard_deviations=None):
    """
    Validate trilateration inputs.

    Returns:
        Tuple of float arrays (centers (N, D), distances (N,), stds or None).

    Raises:
        ValueError: On wrong dimensions, negative distances or non-positive
            standard deviations.
    """
    centers = np.asarray(centers, dtype=float)
    distances = np.asarray(distances, dtype=float)
    if centers.ndim != 2 or centers.shape[1] not in (2, 3):
        raise ValueError(f"centers must have shape (N, 2) or (N, 3), got {centers.shape}")
    if distances.shape != (len(centers),):
        raise ValueError(
            f"distances must have shape ({len(centers)},), got {distances.shape}"
        )
    if not np.all(np.isfinite(centers)) or not np.all(np.isfinite(distances)):
        raise ValueError("centers and distances must be finite")
    if np.any(distances < 0):
        raise ValueError("distances must be non-negative")

    if standard_deviations is not None:
        standard_deviations = np.asarray(standard_deviations, dtype=float)
        if standard_deviations.shape != distances.shape:
            raise ValueError(
                f"standard deviations must have shape {distances.shape}, "
                f"got {standard_deviations.shape}"
            )
        if not np.all(standard_deviations > 0):
            raise ValueError("standard deviations must be positive")

    return centers, distances, standard_deviations


class TrilaterationModel(RobustModel):
    """Minimal-solution model of D-dimensional trilateration (D = 2 or 3)."""

    def __init__(
        self,
        centers: np.ndarray,
        distances: np.ndarray,
        standard_deviations: Optional[np.ndarray] = None,
    ):
        self.centers, self.distances, self.sigmas = validate_ranges(
            centers, distances, standard_deviations
        )

    @property
    def dimensions(self) -> int:
        return self.centers.shape[1]

    @property
    def num_parameters(self) -> int:
        return self.dimensions

    @property
    def subset_size(self) -> int:
        return self.dimensions + 1

    @property
    def num_samples(self) -> int:
        return len(self.centers)

    def predict(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        return np.linalg.norm(np.asarray(params, dtype=float) - self.centers[indices], axis=1)

    def observations(self, indices: np.ndarray) -> np.ndarray:
        return self.distances[indices]

    def standard_deviations(self, indices: np.ndarray) -> Optional[np.ndarray]:
        if self.sigmas is None:
            return None
        return self.sigmas[indices]

    def jacobian(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        """Unit vectors (x - cᵢ)/‖x - cᵢ‖, zero when x coincides with cᵢ."""
        diff = np.asarray(params, dtype=float) - self.centers[indices]
        norms = np.linalg.norm(diff, axis=1)
        J = np.zeros_like(diff)
        valid = norms > EPSILON
        J[valid] = diff[valid] / norms[valid, None]
        return J

    def estimate_preliminary_solutions(self, indices: Sequence[int]) -> List[np.ndarray]:
        indices = np.asarray(indices, dtype=int)
        c = self.centers[indices]
        r = self.distances[indices]
        c0, r0 = c[0], r[0]

        A = 2.0 * (c[1:] - c0)
        b = r0**2 - r[1:] ** 2 + np.sum(c[1:] ** 2, axis=1) - c0 @ c0
        x, _ = linear_least_squares(A, b)
        return [x]


class RobustTrilaterationSolver(RobustFacade):
    """
    Robust trilateration solver for 2D and 3D positions.

    The dimension is taken from the centers: (N, 2) for circles, (N, 3)
    for spheres. At least D + 1 samples are required.

    Example:
        >>> solver = RobustTrilaterationSolver(
        ...     centers, distances, method=RobustEstimatorMethod.PROSAC,
        ...     quality_scores=np.ones(len(centers)))
        >>> position = solver.solve()
    """

    error_class = TrilaterationError
    default_threshold = DEFAULT_THRESHOLD

    def __init__(
        self,
        centers: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
        distance_standard_deviations: Optional[np.ndarray] = None,
        method: RobustEstimatorMethod = DEFAULT_METHOD,
        *,
        options: Optional[RobustEstimatorOptions] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
    ):
        self._centers = None
        self._distances = None
        self._sigmas = None
        if centers is not None or distances is not None:
            if centers is None or distances is None:
                raise ValueError("centers and distances must be given together")
            self._centers, self._distances, self._sigmas = validate_ranges(
                centers, distances, distance_standard_deviations
            )
        super().__init__(
            method, options=options, quality_scores=quality_scores, listener=listener
        )

    def set_positions_and_distances(
        self,
        centers: np.ndarray,
        distances: np.ndarray,
        distance_standard_deviations: Optional[np.ndarray] = None,
    ) -> None:
        """
        Set the circle/sphere centers and radii.

        Args:
            centers: Known positions (N, D) with D = 2 or 3 [m].
            distances: Measured distances (N,) [m].
            distance_standard_deviations: Optional distance σ (N,) [m].

        Raises:
            LockedError: If the solver is running.
            ValueError: On malformed inputs.
        """
        self._check_not_locked()
        self._centers, self._distances, self._sigmas = validate_ranges(
            centers, distances, distance_standard_deviations
        )

    @property
    def centers(self) -> Optional[np.ndarray]:
        return self._centers

    @property
    def distances(self) -> Optional[np.ndarray]:
        return self._distances

    @property
    def distance_standard_deviations(self) -> Optional[np.ndarray]:
        return self._sigmas

    @property
    def dimensions(self) -> Optional[int]:
        return None if self._centers is None else self._centers.shape[1]

    @property
    def subset_size(self) -> int:
        # Before inputs are set, report the 3D minimum
        return (self.dimensions or 3) + 1

    @property
    def num_samples(self) -> int:
        return 0 if self._centers is None else len(self._centers)

    def _inputs_ready(self) -> bool:
        return self._centers is not None

    def _build_model(self) -> TrilaterationModel:
        return TrilaterationModel(self._centers, self._distances, self._sigmas)

    def solve(self) -> np.ndarray:
        """
        Estimate the position.

        Returns:
            Estimated position (D,) [m].

        Raises:
            LockedError: If already solving.
            NotReadyError: If inputs or quality scores are missing or too few.
            TrilaterationError: If no consistent position was found.
        """
        return self._run().copy()

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        if self.estimated_parameters is None:
            return None
        return self.estimated_parameters.copy()
