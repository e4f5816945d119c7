"""
Radio readings from sources at known positions.

A receiver at an unknown position collects readings from radio sources
(Wi-Fi access points, BLE beacons, UWB anchors) whose positions are known.
Each reading becomes one trilateration sample (source position, distance,
distance standard deviation):

    - RangingReadingLocated: distance measured directly (RTT, UWB TWR)
    - RssiReadingLocated: received power converted to distance with the
      log-distance path-loss model

Log-distance path-loss model:
    p = p_ref - 10 η log10(d / d_ref)
    d = d_ref · 10^((p_ref - p) / (10 η))

Distance standard deviation from the RSSI standard deviation σ_p
(first-order propagation):
    σ_d = |∂d/∂p| σ_p = d · ln(10) / (10 η) · σ_p
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np


def rssi_to_distance(
    rssi_dbm: float,
    reference_power_dbm: float,
    path_loss_exponent: float = 2.0,
    reference_distance: float = 1.0,
) -> float:
    """
    Distance from received power with the log-distance path-loss model.

    Args:
        rssi_dbm: Received power in dBm.
        reference_power_dbm: Power received at the reference distance, dBm.
        path_loss_exponent: Path-loss exponent η (2 in free space).
        reference_distance: Reference distance d_ref in meters.

    Returns:
        Distance in meters.

    Example:
        >>> rssi_to_distance(-65.0, -40.0, path_loss_exponent=2.5)
        10.0
    """
    exponent = (reference_power_dbm - rssi_dbm) / (10.0 * path_loss_exponent)
    return float(reference_distance * 10.0**exponent)


def rssi_distance_standard_deviation(
    distance: float,
    rssi_standard_deviation: float,
    path_loss_exponent: float = 2.0,
) -> float:
    """Distance standard deviation implied by an RSSI standard deviation."""
    return float(distance * np.log(10.0) / (10.0 * path_loss_exponent) * rssi_standard_deviation)


def _as_position(value) -> np.ndarray:
    position = np.asarray(value, dtype=float)
    if position.ndim != 1 or len(position) not in (2, 3):
        raise ValueError(f"source_position must be 2D or 3D, got shape {position.shape}")
    if not np.all(np.isfinite(position)):
        raise ValueError("source_position must be finite")
    return position


def _check_positive_or_none(value: Optional[float], name: str) -> None:
    if value is not None and not value > 0:
        raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class RangingReadingLocated:
    """
    Measured distance to a radio source at a known position.

    Attributes:
        source_id: Identifier of the radio source (e.g. BSSID).
        source_position: Source position (2,) or (3,) [m].
        distance: Measured distance [m], non-negative.
        distance_standard_deviation: Distance σ [m], or None if unknown.
    """

    source_id: str
    source_position: np.ndarray
    distance: float
    distance_standard_deviation: Optional[float] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_position", _as_position(self.source_position))
        if not np.isfinite(self.distance) or self.distance < 0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        _check_positive_or_none(self.distance_standard_deviation, "distance_standard_deviation")

    def to_range(self) -> Tuple[np.ndarray, float, Optional[float]]:
        return self.source_position, float(self.distance), self.distance_standard_deviation


@dataclass(frozen=True)
class RssiReadingLocated:
    """
    Received signal strength from a radio source at a known position.

    Attributes:
        source_id: Identifier of the radio source.
        source_position: Source position (2,) or (3,) [m].
        rssi: Received power [dBm].
        reference_power: Power received at ``reference_distance`` [dBm].
        path_loss_exponent: Path-loss exponent η (> 0).
        rssi_standard_deviation: RSSI σ [dB], or None if unknown.
        reference_distance: Reference distance [m] (> 0).
    """

    source_id: str
    source_position: np.ndarray
    rssi: float
    reference_power: float
    path_loss_exponent: float = 2.0
    rssi_standard_deviation: Optional[float] = None
    reference_distance: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_position", _as_position(self.source_position))
        if not np.isfinite(self.rssi) or not np.isfinite(self.reference_power):
            raise ValueError("rssi and reference_power must be finite")
        _check_positive_or_none(self.path_loss_exponent, "path_loss_exponent")
        _check_positive_or_none(self.reference_distance, "reference_distance")
        _check_positive_or_none(self.rssi_standard_deviation, "rssi_standard_deviation")

    @property
    def distance(self) -> float:
        """Distance to the source implied by the RSSI [m]."""
        return rssi_to_distance(
            self.rssi, self.reference_power, self.path_loss_exponent, self.reference_distance
        )

    @property
    def distance_standard_deviation(self) -> Optional[float]:
        if self.rssi_standard_deviation is None:
            return None
        return rssi_distance_standard_deviation(
            self.distance, self.rssi_standard_deviation, self.path_loss_exponent
        )

    def to_range(self) -> Tuple[np.ndarray, float, Optional[float]]:
        return self.source_position, self.distance, self.distance_standard_deviation


ReadingLocated = Union[RangingReadingLocated, RssiReadingLocated]


def readings_to_ranges(readings: Sequence[ReadingLocated]):
    """
    Convert readings into trilateration inputs.

    Args:
        readings: Ranging and/or RSSI readings, all in the same dimension.

    Returns:
        Tuple (centers (N, D), distances (N,), standard deviations (N,) or
        None when any reading has no standard deviation).

    Raises:
        ValueError: If readings are empty or mix 2D and 3D sources.
    """
    if len(readings) == 0:
        raise ValueError("At least one reading is required")

    centers, distances, stds = [], [], []
    for reading in readings:
        center, distance, std = reading.to_range()
        centers.append(center)
        distances.append(distance)
        stds.append(std)

    dims = {len(c) for c in centers}
    if len(dims) != 1:
        raise ValueError("All source positions must have the same dimension")

    centers = np.vstack(centers)
    distances = np.array(distances, dtype=float)
    if any(s is None for s in stds):
        return centers, distances, None
    return centers, distances, np.array(stds, dtype=float)
