"""Robust inertial calibration and radio positioning.

This package contains reusable components built around a common robust
model-fitting framework:
- robust: RANSAC, LMedS, MSAC, PROSAC and PROMedS estimators, refinement and
  the calibrator/solver facade
- estimators: Linear and nonlinear least squares solvers
- calibration: Accelerometer and gyroscope calibrators
- positioning: Trilateration and ranging/RSSI position estimation
"""

__version__ = "0.1.0"
