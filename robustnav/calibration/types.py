"""
Measurement records consumed by the inertial calibrators.

Both records store one static or dynamic IMU sample in the body frame B:
    - f̃ (specific force, m/s²) measured by the accelerometer triad
    - ω̃ (angular rate, rad/s) measured by the gyroscope triad
together with the standard deviation of each triad's noise, which becomes
the weight 1/σ² of the sample during refinement.

Sensor error model (same for both triads, per axis triad):
    ỹ = b + (I + M) y
where b is the bias vector and M the 3×3 scale-factor/cross-coupling
matrix (diagonal: scale factors, off-diagonal: misalignments).
"""

from dataclasses import dataclass

import numpy as np


def _as_vector3(value, name: str) -> np.ndarray:
    vector = np.asarray(value, dtype=float)
    if vector.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {vector.shape}")
    if not np.all(np.isfinite(vector)):
        raise ValueError(f"{name} must be finite")
    return vector


def _check_std(value: float, name: str) -> None:
    if not np.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be finite and non-negative, got {value}")


@dataclass(frozen=True)
class StandardDeviationBodyKinematics:
    """
    Measured body kinematics with noise standard deviations.

    Used when only the norm of the true specific force is known (static
    samples at a site of known gravity norm).

    Attributes:
        specific_force: Measured specific force f̃ in body frame (3,) [m/s²].
        angular_rate: Measured angular rate ω̃ in body frame (3,) [rad/s].
        specific_force_standard_deviation: Accelerometer noise σ [m/s²].
        angular_rate_standard_deviation: Gyroscope noise σ [rad/s].

    Example:
        >>> kin = StandardDeviationBodyKinematics(
        ...     specific_force=[0.0, 0.0, -9.81],
        ...     angular_rate=[0.0, 0.0, 0.0],
        ...     specific_force_standard_deviation=1e-3,
        ... )
    """

    specific_force: np.ndarray
    angular_rate: np.ndarray
    specific_force_standard_deviation: float = 0.0
    angular_rate_standard_deviation: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "specific_force", _as_vector3(self.specific_force, "specific_force")
        )
        object.__setattr__(
            self, "angular_rate", _as_vector3(self.angular_rate, "angular_rate")
        )
        _check_std(self.specific_force_standard_deviation, "specific_force_standard_deviation")
        _check_std(self.angular_rate_standard_deviation, "angular_rate_standard_deviation")


@dataclass(frozen=True)
class StandardDeviationFrameBodyKinematics:
    """
    Measured body kinematics paired with the true kinematics of a known frame.

    The true values come from a known body attitude and motion (e.g. a
    turntable or a surveyed static pose), so each sample constrains the
    full sensor error model, not just a norm.

    Attributes:
        specific_force: Measured specific force f̃ (3,) [m/s²].
        angular_rate: Measured angular rate ω̃ (3,) [rad/s].
        true_specific_force: Ground-truth specific force f (3,) [m/s²].
        true_angular_rate: Ground-truth angular rate ω (3,) [rad/s].
        specific_force_standard_deviation: Accelerometer noise σ [m/s²].
        angular_rate_standard_deviation: Gyroscope noise σ [rad/s].
    """

    specific_force: np.ndarray
    angular_rate: np.ndarray
    true_specific_force: np.ndarray
    true_angular_rate: np.ndarray
    specific_force_standard_deviation: float = 0.0
    angular_rate_standard_deviation: float = 0.0

    def __post_init__(self) -> None:
        for name in ("specific_force", "angular_rate", "true_specific_force", "true_angular_rate"):
            object.__setattr__(self, name, _as_vector3(getattr(self, name), name))
        _check_std(self.specific_force_standard_deviation, "specific_force_standard_deviation")
        _check_std(self.angular_rate_standard_deviation, "angular_rate_standard_deviation")


# Positions (row, col) of the scale-factor/cross-coupling parameters
#   general:     [sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy]
#   common axis: [sx, sy, sz, mxy, mxz, myz]  (M upper triangular)
CROSS_COUPLING_ENTRIES = (
    (0, 0), (1, 1), (2, 2), (0, 1), (0, 2), (1, 0), (1, 2), (2, 0), (2, 1),
)
COMMON_AXIS_ENTRIES = (
    (0, 0), (1, 1), (2, 2), (0, 1), (0, 2), (1, 2),
)


def cross_coupling_entries(common_axis_used: bool) -> tuple:
    return COMMON_AXIS_ENTRIES if common_axis_used else CROSS_COUPLING_ENTRIES


def matrix_from_parameters(params: np.ndarray, common_axis_used: bool) -> np.ndarray:
    """Build the 3×3 matrix M from its 6 or 9 free parameters."""
    entries = cross_coupling_entries(common_axis_used)
    params = np.asarray(params, dtype=float)
    if params.shape != (len(entries),):
        raise ValueError(f"Expected {len(entries)} parameters, got {params.shape}")
    M = np.zeros((3, 3))
    for value, (i, j) in zip(params, entries):
        M[i, j] = value
    return M


def parameters_from_matrix(M: np.ndarray, common_axis_used: bool) -> np.ndarray:
    """Free parameters of M (inverse of matrix_from_parameters)."""
    M = np.asarray(M, dtype=float)
    if M.shape != (3, 3):
        raise ValueError(f"M must be 3x3, got {M.shape}")
    return np.array([M[i, j] for i, j in cross_coupling_entries(common_axis_used)])
