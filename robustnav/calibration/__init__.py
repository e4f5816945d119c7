"""
Robust inertial sensor calibration.

Available calibrators:
    - RobustKnownGravityNormAccelerometerCalibrator: bias and Ma from static
      samples at a site of known gravity norm
    - RobustKnownFrameGyroscopeCalibrator: bias, Mg and Gg from samples at
      known frames
"""

from robustnav.calibration.accelerometer import (
    KnownGravityNormAccelerometerModel,
    RobustKnownGravityNormAccelerometerCalibrator,
)
from robustnav.calibration.gyroscope import (
    KnownFrameGyroscopeModel,
    RobustKnownFrameGyroscopeCalibrator,
)
from robustnav.calibration.types import (
    StandardDeviationBodyKinematics,
    StandardDeviationFrameBodyKinematics,
    matrix_from_parameters,
    parameters_from_matrix,
)

__all__ = [
    # Measurements
    "StandardDeviationBodyKinematics",
    "StandardDeviationFrameBodyKinematics",
    "matrix_from_parameters",
    "parameters_from_matrix",
    # Accelerometer
    "KnownGravityNormAccelerometerModel",
    "RobustKnownGravityNormAccelerometerCalibrator",
    # Gyroscope
    "KnownFrameGyroscopeModel",
    "RobustKnownFrameGyroscopeCalibrator",
]
