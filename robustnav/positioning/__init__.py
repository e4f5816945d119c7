"""
Robust radio positioning.

Available solvers:
    - RobustTrilaterationSolver: 2D/3D position from circle/sphere ranges
    - RobustPositionEstimator: position from ranging and RSSI readings of
      sources at known positions
"""

from robustnav.positioning.position_estimator import RobustPositionEstimator
from robustnav.positioning.readings import (
    RangingReadingLocated,
    RssiReadingLocated,
    readings_to_ranges,
    rssi_distance_standard_deviation,
    rssi_to_distance,
)
from robustnav.positioning.trilateration import (
    RobustTrilaterationSolver,
    TrilaterationModel,
)

__all__ = [
    # Readings
    "RangingReadingLocated",
    "RssiReadingLocated",
    "readings_to_ranges",
    "rssi_to_distance",
    "rssi_distance_standard_deviation",
    # Solvers
    "TrilaterationModel",
    "RobustTrilaterationSolver",
    "RobustPositionEstimator",
]
