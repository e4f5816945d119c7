"""
Robust gyroscope calibration from samples taken at known frames.

When the true angular rate ω and specific force f of each sample are known
(turntable, surveyed static poses), the gyroscope error model is linear in
its unknowns:

    ω̃ = bg + (I + Mg) ω + Gg f

    - bg: gyroscope bias (3)
    - Mg: scale-factor and cross-coupling matrix (9, or 6 with the
      common-axis assumption)
    - Gg: g-dependent cross bias matrix (9), optional

Each sample gives one equation per axis, and the equations of one axis
only involve that axis: its bias, its row of Mg and its row of Gg. A
minimal subset therefore holds as many samples as the unknowns of the
fullest row (the x row keeps all three Mg entries even with the
common-axis assumption):

| Gg estimated | common axis | unknowns | subset size |
|--------------|-------------|----------|-------------|
| yes          | no          | 21       | 7           |
| yes          | yes         | 18       | 7           |
| no           | no          | 12       | 4           |
| no           | yes         | 9        | 4           |

Minimal subsets are solved with (weighted) linear least squares.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from robustnav.calibration.types import (
    StandardDeviationFrameBodyKinematics,
    cross_coupling_entries,
    matrix_from_parameters,
)
from robustnav.errors import CalibrationError
from robustnav.estimators.least_squares import (
    linear_least_squares,
    weighted_least_squares,
)
from robustnav.robust.facade import DEFAULT_METHOD, RobustFacade
from robustnav.robust.model import RobustModel
from robustnav.robust.options import RobustEstimatorOptions
from robustnav.robust.types import EstimationListener, RobustEstimatorMethod

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1e-3


def row_unknowns(estimate_g_dependent_cross_biases: bool) -> int:
    """Unknowns of the fullest output axis: bias, Mg row and optional Gg row."""
    return 7 if estimate_g_dependent_cross_biases else 4


class KnownFrameGyroscopeModel(RobustModel):
    """
    Linear minimal-solution model for gyroscope calibration.

    Parameter vector: [bgx, bgy, bgz, <Mg params>, <Gg row-major>] with the
    Gg block omitted when ``estimate_g_dependent_cross_biases`` is False.
    """

    sample_dimension = 3

    def __init__(
        self,
        measurements: Sequence[StandardDeviationFrameBodyKinematics],
        common_axis_used: bool = False,
        estimate_g_dependent_cross_biases: bool = True,
    ):
        self.measured_rates = np.array([m.angular_rate for m in measurements], dtype=float)
        self.true_rates = np.array([m.true_angular_rate for m in measurements], dtype=float)
        self.true_forces = np.array([m.true_specific_force for m in measurements], dtype=float)
        self.sigmas = np.array(
            [m.angular_rate_standard_deviation for m in measurements], dtype=float
        )
        self.common_axis_used = common_axis_used
        self.estimate_g_dependent_cross_biases = estimate_g_dependent_cross_biases

    @property
    def num_parameters(self) -> int:
        n = 3 + len(cross_coupling_entries(self.common_axis_used))
        return n + 9 if self.estimate_g_dependent_cross_biases else n

    @property
    def subset_size(self) -> int:
        return row_unknowns(self.estimate_g_dependent_cross_biases)

    @property
    def num_samples(self) -> int:
        return len(self.measured_rates)

    def split(self, params: np.ndarray):
        """Return (bg, Mg, Gg) from a parameter vector."""
        params = np.asarray(params, dtype=float)
        num_m = len(cross_coupling_entries(self.common_axis_used))
        bg = params[:3]
        mg = matrix_from_parameters(params[3:3 + num_m], self.common_axis_used)
        if self.estimate_g_dependent_cross_biases:
            gg = params[3 + num_m:].reshape(3, 3)
        else:
            gg = np.zeros((3, 3))
        return bg, mg, gg

    def design_matrix(self, indices: np.ndarray) -> np.ndarray:
        """
        Design matrix A (3k × n) of ω̃ - ω = A x for the selected samples.

        Rows are ordered sample by sample, x then y then z axis.
        """
        omega = self.true_rates[indices]
        force = self.true_forces[indices]
        k = len(indices)

        A = np.zeros((k, 3, self.num_parameters))
        for axis in range(3):
            A[:, axis, axis] = 1.0
        for p, (i, j) in enumerate(cross_coupling_entries(self.common_axis_used)):
            A[:, i, 3 + p] = omega[:, j]
        if self.estimate_g_dependent_cross_biases:
            offset = 3 + len(cross_coupling_entries(self.common_axis_used))
            for i in range(3):
                for j in range(3):
                    A[:, i, offset + 3 * i + j] = force[:, j]
        return A.reshape(3 * k, self.num_parameters)

    def predict(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        bg, mg, gg = self.split(params)
        omega = self.true_rates[indices]
        force = self.true_forces[indices]
        return bg + omega @ (np.eye(3) + mg).T + force @ gg.T

    def observations(self, indices: np.ndarray) -> np.ndarray:
        return self.measured_rates[indices]

    def standard_deviations(self, indices: np.ndarray) -> np.ndarray:
        return self.sigmas[indices]

    def jacobian(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        return self.design_matrix(indices)

    def estimate_preliminary_solutions(self, indices: Sequence[int]) -> List[np.ndarray]:
        indices = np.asarray(indices, dtype=int)
        A = self.design_matrix(indices)
        b = (self.measured_rates[indices] - self.true_rates[indices]).ravel()

        sigmas = self.sigmas[indices]
        if np.all(sigmas > 0):
            x, _ = weighted_least_squares(A, b, np.repeat(1.0 / sigmas**2, 3))
        else:
            x, _ = linear_least_squares(A, b)
        return [x]


class RobustKnownFrameGyroscopeCalibrator(RobustFacade):
    """
    Robust gyroscope calibrator using samples at known frames.

    Estimates bg, Mg and (optionally) Gg while discarding corrupted samples.

    Example:
        >>> calibrator = RobustKnownFrameGyroscopeCalibrator(
        ...     measurements, method=RobustEstimatorMethod.MSAC)
        >>> calibrator.calibrate()
        >>> bg, mg, gg = (calibrator.estimated_biases, calibrator.estimated_mg,
        ...               calibrator.estimated_gg)
    """

    error_class = CalibrationError
    default_threshold = DEFAULT_THRESHOLD

    def __init__(
        self,
        measurements: Optional[Sequence[StandardDeviationFrameBodyKinematics]] = None,
        method: RobustEstimatorMethod = DEFAULT_METHOD,
        *,
        common_axis_used: bool = False,
        estimate_g_dependent_cross_biases: bool = True,
        options: Optional[RobustEstimatorOptions] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
    ):
        # Inputs first: quality scores are checked against the subset size
        self._measurements = self._validate_measurements(measurements)
        self._common_axis_used = bool(common_axis_used)
        self._estimate_gg = bool(estimate_g_dependent_cross_biases)
        super().__init__(
            method, options=options, quality_scores=quality_scores, listener=listener
        )

    @staticmethod
    def _validate_measurements(value):
        if value is None:
            return None
        value = list(value)
        for m in value:
            if not isinstance(m, StandardDeviationFrameBodyKinematics):
                raise ValueError(
                    "measurements must be StandardDeviationFrameBodyKinematics instances"
                )
        return value

    @property
    def measurements(self) -> Optional[List[StandardDeviationFrameBodyKinematics]]:
        return self._measurements

    @measurements.setter
    def measurements(self, value) -> None:
        self._check_not_locked()
        self._measurements = self._validate_measurements(value)

    @property
    def common_axis_used(self) -> bool:
        return self._common_axis_used

    @common_axis_used.setter
    def common_axis_used(self, value: bool) -> None:
        self._check_not_locked()
        self._common_axis_used = bool(value)

    @property
    def estimate_g_dependent_cross_biases(self) -> bool:
        return self._estimate_gg

    @estimate_g_dependent_cross_biases.setter
    def estimate_g_dependent_cross_biases(self, value: bool) -> None:
        self._check_not_locked()
        self._estimate_gg = bool(value)

    @property
    def subset_size(self) -> int:
        return row_unknowns(self._estimate_gg)

    @property
    def num_samples(self) -> int:
        return 0 if self._measurements is None else len(self._measurements)

    def _inputs_ready(self) -> bool:
        return self._measurements is not None

    def _build_model(self) -> KnownFrameGyroscopeModel:
        return KnownFrameGyroscopeModel(
            self._measurements,
            common_axis_used=self._common_axis_used,
            estimate_g_dependent_cross_biases=self._estimate_gg,
        )

    def calibrate(self) -> None:
        """
        Estimate the gyroscope bias, Mg and Gg.

        Raises:
            LockedError: If already calibrating.
            NotReadyError: If measurements or quality scores are missing or
                too few.
            CalibrationError: If no consistent calibration was found.
        """
        self._run()

    @property
    def estimated_biases(self) -> Optional[np.ndarray]:
        """Estimated gyroscope bias bg (3,) [rad/s]."""
        if self.estimated_parameters is None:
            return None
        return self._fitted_model.split(self.estimated_parameters)[0].copy()

    @property
    def estimated_mg(self) -> Optional[np.ndarray]:
        """Estimated scale-factor and cross-coupling matrix Mg (3×3)."""
        if self.estimated_parameters is None:
            return None
        return self._fitted_model.split(self.estimated_parameters)[1]

    @property
    def estimated_gg(self) -> Optional[np.ndarray]:
        """Estimated g-dependent cross bias matrix Gg (3×3) [rad/s per m/s²].

        Zero when Gg was not estimated.
        """
        if self.estimated_parameters is None:
            return None
        return self._fitted_model.split(self.estimated_parameters)[2].copy()
