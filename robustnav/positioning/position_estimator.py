"""
Robust position estimation from ranging and RSSI readings.

Readings from radio sources at known positions are turned into
trilateration samples (see ``readings.readings_to_ranges``): ranging
readings give distances directly, RSSI readings through the log-distance
path-loss model. Mixed ranging/RSSI readings are supported, and a source
may contribute several readings.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from robustnav.errors import PositionEstimationError
from robustnav.positioning.readings import (
    RangingReadingLocated,
    ReadingLocated,
    RssiReadingLocated,
    readings_to_ranges,
)
from robustnav.positioning.trilateration import DEFAULT_THRESHOLD, TrilaterationModel
from robustnav.robust.facade import DEFAULT_METHOD, RobustFacade
from robustnav.robust.options import RobustEstimatorOptions
from robustnav.robust.types import EstimationListener, RobustEstimatorMethod

logger = logging.getLogger(__name__)


class RobustPositionEstimator(RobustFacade):
    """
    Robust receiver position estimator over ranging/RSSI readings.

    Quality scores, when required, are given per reading.

    Example:
        >>> estimator = RobustPositionEstimator(
        ...     readings, method=RobustEstimatorMethod.RANSAC)
        >>> position = estimator.estimate()
    """

    error_class = PositionEstimationError
    default_threshold = DEFAULT_THRESHOLD

    def __init__(
        self,
        readings: Optional[Sequence[ReadingLocated]] = None,
        method: RobustEstimatorMethod = DEFAULT_METHOD,
        *,
        options: Optional[RobustEstimatorOptions] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[EstimationListener] = None,
    ):
        self._readings, self._ranges = self._convert_readings(readings)
        super().__init__(
            method, options=options, quality_scores=quality_scores, listener=listener
        )

    @property
    def readings(self) -> Optional[List[ReadingLocated]]:
        return self._readings

    @readings.setter
    def readings(self, value: Optional[Sequence[ReadingLocated]]) -> None:
        self._check_not_locked()
        self._readings, self._ranges = self._convert_readings(value)

    @staticmethod
    def _convert_readings(value):
        if value is None:
            return None, None
        value = list(value)
        for reading in value:
            if not isinstance(reading, (RangingReadingLocated, RssiReadingLocated)):
                raise ValueError(
                    "readings must be RangingReadingLocated or RssiReadingLocated"
                )
        return value, readings_to_ranges(value)

    @property
    def dimensions(self) -> Optional[int]:
        return None if self._ranges is None else self._ranges[0].shape[1]

    @property
    def subset_size(self) -> int:
        return (self.dimensions or 3) + 1

    @property
    def num_samples(self) -> int:
        return 0 if self._readings is None else len(self._readings)

    def _inputs_ready(self) -> bool:
        return self._readings is not None

    def _build_model(self) -> TrilaterationModel:
        centers, distances, sigmas = self._ranges
        return TrilaterationModel(centers, distances, sigmas)

    def estimate(self) -> np.ndarray:
        """
        Estimate the receiver position.

        Returns:
            Estimated position (D,) [m].

        Raises:
            LockedError: If already estimating.
            NotReadyError: If readings or quality scores are missing or too few.
            PositionEstimationError: If no consistent position was found.
        """
        position = self._run().copy()
        logger.debug("Estimated position %s from %d readings", position, self.num_samples)
        return position

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        if self.estimated_parameters is None:
            return None
        return self.estimated_parameters.copy()

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        return self.covariance
