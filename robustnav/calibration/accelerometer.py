"""
Robust accelerometer calibration with known gravity norm.

A static accelerometer senses only the reaction to gravity, so at a site
where the gravity norm g is known every static sample satisfies

    ‖f‖ = g,   f = (I + Ma)⁻¹ (f̃ - ba)

with f̃ the measured specific force, ba the bias and Ma the scale-factor
and cross-coupling matrix. No attitude information is required, which
makes the model well suited to hand-held "tumble" calibration: the device
is held still in many orientations and each pose gives one sample.

Unknowns:
    - ba (3), unless the bias is known in advance
    - Ma: 9 entries, or 6 when the common-axis assumption holds (Ma upper
      triangular, the body z-axis being shared by the sensor triad)

Each sample gives one scalar equation, so the minimal subset is one sample
more than the number of unknowns. Minimal subsets are solved with
Levenberg-Marquardt from the initial guess.

References:
    Groves, "Principles of GNSS, Inertial, and Multisensor Integrated
    Navigation Systems", 2nd ed., Section 4.4 (IMU error model).
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from robustnav.calibration.types import (
    StandardDeviationBodyKinematics,
    cross_coupling_entries,
    matrix_from_parameters,
    parameters_from_matrix,
)
from robustnav.errors import CalibrationError
from robustnav.estimators.nonlinear_least_squares import levenberg_marquardt
from robustnav.robust.facade import DEFAULT_METHOD, RobustFacade
from robustnav.robust.model import RobustModel
from robustnav.robust.options import RobustEstimatorOptions
from robustnav.robust.types import EstimationListener, RobustEstimatorMethod

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1e-2

# Iterations of the minimal-subset solver
PRELIMINARY_MAX_ITERATIONS = 100

# Accepted subset misfit: ratio of the gravity norm plus multiples of σ
PRELIMINARY_RESIDUAL_RATIO = 1e-3
PRELIMINARY_RESIDUAL_SIGMAS = 3.0

# Bounds of a physical solution
MAX_CROSS_COUPLING_NORM = 0.5
MAX_BIAS_RATIO = 1.0


class KnownGravityNormAccelerometerModel(RobustModel):
    """
    Minimal-solution model for accelerometer calibration with known ‖g‖.

    Parameter vector: [bx, by, bz, <Ma params>] when the bias is unknown,
    [<Ma params>] when ``known_bias`` is given. See
    ``robustnav.calibration.types.CROSS_COUPLING_ENTRIES`` for the Ma layout.
    """

    def __init__(
        self,
        measurements: Sequence[StandardDeviationBodyKinematics],
        gravity_norm: float,
        common_axis_used: bool = False,
        initial_bias: Optional[np.ndarray] = None,
        initial_ma: Optional[np.ndarray] = None,
        known_bias: Optional[np.ndarray] = None,
    ):
        self.specific_forces = np.array([m.specific_force for m in measurements], dtype=float)
        self.sigmas = np.array(
            [m.specific_force_standard_deviation for m in measurements], dtype=float
        )
        self.gravity_norm = float(gravity_norm)
        self.common_axis_used = common_axis_used
        self.known_bias = None if known_bias is None else np.asarray(known_bias, dtype=float)

        initial_ma = np.zeros((3, 3)) if initial_ma is None else initial_ma
        x0 = parameters_from_matrix(initial_ma, common_axis_used)
        if self.known_bias is None:
            initial_bias = np.zeros(3) if initial_bias is None else initial_bias
            x0 = np.concatenate([np.asarray(initial_bias, dtype=float), x0])
        self.initial_guess = x0

    @property
    def num_ma_parameters(self) -> int:
        return len(cross_coupling_entries(self.common_axis_used))

    @property
    def num_parameters(self) -> int:
        return self.num_ma_parameters + (0 if self.known_bias is not None else 3)

    @property
    def subset_size(self) -> int:
        return self.num_parameters + 1

    @property
    def num_samples(self) -> int:
        return len(self.specific_forces)

    def split(self, params: np.ndarray):
        """Return (bias, Ma) from a parameter vector."""
        params = np.asarray(params, dtype=float)
        if self.known_bias is not None:
            return self.known_bias, matrix_from_parameters(params, self.common_axis_used)
        return params[:3], matrix_from_parameters(params[3:], self.common_axis_used)

    def true_specific_forces(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        """f = (I + Ma)⁻¹ (f̃ - ba) for the selected samples, shape (k, 3)."""
        bias, ma = self.split(params)
        T = np.eye(3) + ma
        return np.linalg.solve(T, (self.specific_forces[indices] - bias).T).T

    def predict(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        return np.linalg.norm(self.true_specific_forces(params, indices), axis=1)

    def observations(self, indices: np.ndarray) -> np.ndarray:
        return np.full(len(indices), self.gravity_norm)

    def standard_deviations(self, indices: np.ndarray) -> np.ndarray:
        return self.sigmas[indices]

    def jacobian(self, params: np.ndarray, indices: np.ndarray) -> np.ndarray:
        """
        Analytic Jacobian of ‖f‖.

        With u = T⁻¹(f̃ - b), T = I + Ma and v = T⁻ᵀ u / ‖u‖:
            ∂‖u‖/∂b = -v,   ∂‖u‖/∂Ma_ij = -vᵢ uⱼ
        """
        _, ma = self.split(params)
        T = np.eye(3) + ma
        u = self.true_specific_forces(params, indices)
        norms = np.linalg.norm(u, axis=1)
        v = np.linalg.solve(T.T, u.T).T / norms[:, None]

        entries = cross_coupling_entries(self.common_axis_used)
        d_ma = np.column_stack([-v[:, i] * u[:, j] for i, j in entries])
        if self.known_bias is not None:
            return d_ma
        return np.hstack([-v, d_ma])

    def estimate_preliminary_solutions(self, indices: Sequence[int]) -> List[np.ndarray]:
        indices = np.asarray(indices, dtype=int)
        result = levenberg_marquardt(
            lambda x: self.predict(x, indices),
            lambda x: self.jacobian(x, indices),
            self.observations(indices),
            self.initial_guess,
            max_iter=PRELIMINARY_MAX_ITERATIONS,
            return_covariance=False,
        )
        if not result.converged or not np.all(np.isfinite(result.x)):
            logger.debug("Minimal solver did not converge on subset %s", indices.tolist())
            return []
        if not self.is_physical(result.x):
            logger.debug("Discarding non-physical solution on subset %s", indices.tolist())
            return []

        # Redundant minimal subsets must be fitted almost exactly
        tolerance = (
            PRELIMINARY_RESIDUAL_RATIO * self.gravity_norm
            + PRELIMINARY_RESIDUAL_SIGMAS * float(np.max(self.sigmas[indices]))
        )
        if np.max(np.abs(result.residuals)) > tolerance:
            return []
        return [result.x]

    def is_physical(self, params: np.ndarray) -> bool:
        """
        Check that a solution is a plausible accelerometer error model.

        Far from the truth, a large bias together with a large I + Ma maps
        every sample onto the gravity sphere. Such solutions are rejected by
        bounding ‖Ma‖ (Frobenius) and ‖ba‖ relative to the gravity norm.
        """
        bias, ma = self.split(params)
        if np.linalg.norm(ma) > MAX_CROSS_COUPLING_NORM:
            return False
        return bool(np.linalg.norm(bias) <= MAX_BIAS_RATIO * self.gravity_norm)


class RobustKnownGravityNormAccelerometerCalibrator(RobustFacade):
    """
    Robust accelerometer calibrator using static samples and a known ‖g‖.

    Estimates the accelerometer bias ba and the scale-factor/cross-coupling
    matrix Ma while discarding corrupted samples (e.g. the device moved
    during a supposedly static pose).

    Example:
        >>> calibrator = RobustKnownGravityNormAccelerometerCalibrator(
        ...     measurements, ground_truth_gravity_norm=9.81,
        ...     method=RobustEstimatorMethod.RANSAC)
        >>> calibrator.calibrate()
        >>> ba, ma = calibrator.estimated_biases, calibrator.estimated_ma
    """

    error_class = CalibrationError
    default_threshold = DEFAULT_THRESHOLD

    def __init__(
        self,
        measurements: Optional[Sequence[StandardDeviationBodyKinematics]] = None,
        ground_truth_gravity_norm: Optional[float] = None,
        method: RobustEstimatorMethod = DEFAULT_METHOD,
        *,
        common_axis_used: bool = False,
        initial_bias: Optional[np.ndarray] = None,
        initial_ma: Optional[np.ndarray] = None,
        known_bias: Optional[np.ndarray] = None,
        options: Optional[RobustEstimatorOptions] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
    ):
        # Inputs first: quality scores are checked against the subset size
        self._measurements = self._validate_measurements(measurements)
        self._gravity_norm = self._validate_gravity_norm(ground_truth_gravity_norm)
        self._common_axis_used = bool(common_axis_used)
        self._initial_bias = self._validate_vector(initial_bias, "initial_bias", np.zeros(3))
        self._initial_ma = self._validate_matrix(initial_ma)
        self._known_bias = self._validate_vector(known_bias, "known_bias", None)
        super().__init__(
            method, options=options, quality_scores=quality_scores, listener=listener
        )

    @staticmethod
    def _validate_measurements(value):
        if value is None:
            return None
        value = list(value)
        for m in value:
            if not isinstance(m, StandardDeviationBodyKinematics):
                raise ValueError(
                    "measurements must be StandardDeviationBodyKinematics instances"
                )
        return value

    @staticmethod
    def _validate_gravity_norm(value):
        if value is None:
            return None
        if not np.isfinite(value) or value < 0:
            raise ValueError(f"gravity norm must be non-negative, got {value}")
        return float(value)

    @staticmethod
    def _validate_vector(value, name, default):
        if value is None:
            return default
        vector = np.asarray(value, dtype=float)
        if vector.shape != (3,):
            raise ValueError(f"{name} must have shape (3,), got {vector.shape}")
        return vector

    @staticmethod
    def _validate_matrix(value):
        if value is None:
            return np.zeros((3, 3))
        matrix = np.asarray(value, dtype=float)
        if matrix.shape != (3, 3):
            raise ValueError(f"initial_ma must be 3x3, got {matrix.shape}")
        return matrix

    @property
    def measurements(self) -> Optional[List[StandardDeviationBodyKinematics]]:
        return self._measurements

    @measurements.setter
    def measurements(self, value) -> None:
        self._check_not_locked()
        self._measurements = self._validate_measurements(value)

    @property
    def ground_truth_gravity_norm(self) -> Optional[float]:
        return self._gravity_norm

    @ground_truth_gravity_norm.setter
    def ground_truth_gravity_norm(self, value: Optional[float]) -> None:
        self._check_not_locked()
        self._gravity_norm = self._validate_gravity_norm(value)

    @property
    def common_axis_used(self) -> bool:
        return self._common_axis_used

    @common_axis_used.setter
    def common_axis_used(self, value: bool) -> None:
        self._check_not_locked()
        self._common_axis_used = bool(value)

    @property
    def initial_bias(self) -> np.ndarray:
        return self._initial_bias

    @initial_bias.setter
    def initial_bias(self, value) -> None:
        self._check_not_locked()
        self._initial_bias = self._validate_vector(value, "initial_bias", np.zeros(3))

    @property
    def initial_ma(self) -> np.ndarray:
        return self._initial_ma

    @initial_ma.setter
    def initial_ma(self, value) -> None:
        self._check_not_locked()
        self._initial_ma = self._validate_matrix(value)

    @property
    def known_bias(self) -> Optional[np.ndarray]:
        return self._known_bias

    @known_bias.setter
    def known_bias(self, value) -> None:
        self._check_not_locked()
        self._known_bias = self._validate_vector(value, "known_bias", None)

    @property
    def subset_size(self) -> int:
        num_ma = len(cross_coupling_entries(self._common_axis_used))
        return num_ma + (0 if self._known_bias is not None else 3) + 1

    @property
    def num_samples(self) -> int:
        return 0 if self._measurements is None else len(self._measurements)

    def _inputs_ready(self) -> bool:
        return self._measurements is not None and self._gravity_norm is not None

    def _build_model(self) -> KnownGravityNormAccelerometerModel:
        return KnownGravityNormAccelerometerModel(
            self._measurements,
            self._gravity_norm,
            common_axis_used=self._common_axis_used,
            initial_bias=self._initial_bias,
            initial_ma=self._initial_ma,
            known_bias=self._known_bias,
        )

    def calibrate(self) -> None:
        """
        Estimate the accelerometer bias and Ma.

        Raises:
            LockedError: If already calibrating.
            NotReadyError: If measurements, gravity norm or quality scores
                are missing or too few.
            CalibrationError: If no consistent calibration was found.
        """
        self._run()
        logger.debug("Accelerometer calibrated, bias=%s", self.estimated_biases)

    @property
    def estimated_biases(self) -> Optional[np.ndarray]:
        """Estimated bias ba (3,) [m/s²], or the known bias."""
        if self.estimated_parameters is None:
            return None
        bias, _ = self._fitted_model.split(self.estimated_parameters)
        return np.array(bias, dtype=float)

    @property
    def estimated_ma(self) -> Optional[np.ndarray]:
        """Estimated scale-factor and cross-coupling matrix Ma (3×3)."""
        if self.estimated_parameters is None:
            return None
        _, ma = self._fitted_model.split(self.estimated_parameters)
        return ma
