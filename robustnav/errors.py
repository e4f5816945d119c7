"""
Exception hierarchy for robust estimation, calibration and positioning.

Invalid arguments (wrong shapes, out-of-range settings) raise the builtin
``ValueError``. The classes below cover the run-time conditions specific to
the robust estimators and the facades built on top of them.
"""


class NavigationError(Exception):
    """Base class for all errors raised by robustnav."""


class LockedError(NavigationError):
    """Raised when an instance is modified or re-run while it is running."""


class NotReadyError(NavigationError):
    """Raised when a run is requested before all required inputs are set."""


class RobustEstimatorError(NavigationError):
    """Raised when a robust estimator cannot produce any usable candidate."""


class RefinementError(NavigationError):
    """Raised when nonlinear refinement fails or makes the fit worse."""


class CalibrationError(NavigationError):
    """Raised when an accelerometer or gyroscope calibration fails."""


class TrilaterationError(NavigationError):
    """Raised when a robust trilateration solver fails."""


class PositionEstimationError(NavigationError):
    """Raised when a robust ranging/RSSI position estimation fails."""
