"""
Unit tests for radio readings and the robust position estimator.

Tests cover:
    - Log-distance RSSI conversion and distance uncertainty
    - Conversion of mixed readings into trilateration inputs
    - Position from ranging, RSSI and mixed readings with outliers
    - Validation and failure reporting
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from robustnav.errors import LockedError, PositionEstimationError
from robustnav.positioning import (
    RangingReadingLocated,
    RobustPositionEstimator,
    RssiReadingLocated,
    readings_to_ranges,
    rssi_distance_standard_deviation,
    rssi_to_distance,
)
from robustnav.robust import EstimationListener, RobustEstimatorMethod, RobustEstimatorOptions

REFERENCE_POWER = -40.0
PATH_LOSS_EXPONENT = 2.5


def rssi_at(distance, reference_power=REFERENCE_POWER, eta=PATH_LOSS_EXPONENT):
    """Exact log-distance RSSI at ``distance`` from the source."""
    return reference_power - 10.0 * eta * np.log10(distance)


def source_positions(num, dims=2, seed=0, extent=30.0):
    return np.random.default_rng(seed).uniform(-extent, extent, size=(num, dims))


class TestRssiModel(unittest.TestCase):
    def test_reference_distance(self):
        self.assertAlmostEqual(rssi_to_distance(-40.0, -40.0), 1.0)

    def test_path_loss(self):
        # 25 dB drop with η = 2.5 is one decade
        self.assertAlmostEqual(rssi_to_distance(-65.0, -40.0, path_loss_exponent=2.5), 10.0)
        self.assertAlmostEqual(
            rssi_to_distance(-65.0, -40.0, path_loss_exponent=2.5, reference_distance=2.0),
            20.0,
        )

    def test_inverse_of_log_distance(self):
        for d in (0.5, 3.0, 42.0):
            self.assertAlmostEqual(rssi_to_distance(rssi_at(d), REFERENCE_POWER, PATH_LOSS_EXPONENT), d)

    def test_distance_standard_deviation(self):
        sigma = rssi_distance_standard_deviation(10.0, 2.0, 2.0)
        self.assertAlmostEqual(sigma, 10.0 * np.log(10.0) / 20.0 * 2.0)


class TestReadings(unittest.TestCase):
    def test_ranging_reading(self):
        reading = RangingReadingLocated("ap-1", [1.0, 2.0], 5.0, 0.5)
        center, distance, std = reading.to_range()

        assert_allclose(center, [1.0, 2.0])
        self.assertEqual(distance, 5.0)
        self.assertEqual(std, 0.5)

    def test_rssi_reading(self):
        reading = RssiReadingLocated(
            "ap-2", [0.0, 0.0, 3.0], rssi_at(8.0), REFERENCE_POWER,
            path_loss_exponent=PATH_LOSS_EXPONENT, rssi_standard_deviation=1.0,
        )

        self.assertAlmostEqual(reading.distance, 8.0)
        self.assertAlmostEqual(
            reading.distance_standard_deviation,
            rssi_distance_standard_deviation(8.0, 1.0, PATH_LOSS_EXPONENT),
        )

    def test_readings_to_ranges(self):
        readings = [
            RangingReadingLocated("a", [0.0, 0.0], 1.0, 0.1),
            RssiReadingLocated("b", [5.0, 0.0], rssi_at(2.0), REFERENCE_POWER,
                               PATH_LOSS_EXPONENT, rssi_standard_deviation=2.0),
        ]

        centers, distances, stds = readings_to_ranges(readings)

        assert_allclose(centers, [[0.0, 0.0], [5.0, 0.0]])
        assert_allclose(distances, [1.0, 2.0])
        self.assertEqual(stds.shape, (2,))

    def test_missing_standard_deviation_drops_all(self):
        readings = [
            RangingReadingLocated("a", [0.0, 0.0], 1.0, 0.1),
            RangingReadingLocated("b", [1.0, 0.0], 1.0),
        ]
        self.assertIsNone(readings_to_ranges(readings)[2])

    def test_invalid_readings(self):
        with self.assertRaises(ValueError):
            readings_to_ranges([])
        with self.assertRaises(ValueError):
            readings_to_ranges([
                RangingReadingLocated("a", [0.0, 0.0], 1.0),
                RangingReadingLocated("b", [0.0, 0.0, 0.0], 1.0),
            ])
        with self.assertRaises(ValueError):
            RangingReadingLocated("a", [0.0, 0.0], -1.0)
        with self.assertRaises(ValueError):
            RangingReadingLocated("a", [0.0], 1.0)
        with self.assertRaises(ValueError):
            RssiReadingLocated("a", [0.0, 0.0], -50.0, -40.0, path_loss_exponent=0.0)


class TestRobustPositionEstimator(unittest.TestCase):
    def setUp(self):
        self.position = np.array([3.0, -4.0])

    def test_ranging_readings(self):
        sources = source_positions(8, seed=1)
        readings = [
            RangingReadingLocated(f"ap-{i}", s, float(np.linalg.norm(s - self.position)))
            for i, s in enumerate(sources)
        ]

        estimator = RobustPositionEstimator(
            readings, RobustEstimatorMethod.RANSAC, options=RobustEstimatorOptions(seed=0)
        )
        self.assertEqual(estimator.dimensions, 2)
        self.assertEqual(estimator.subset_size, 3)

        position = estimator.estimate()

        assert_allclose(position, self.position, atol=1e-6)
        assert_allclose(estimator.estimated_position, self.position, atol=1e-6)
        self.assertEqual(estimator.estimated_position_covariance.shape, (2, 2))

    def test_rssi_readings(self):
        sources = source_positions(8, seed=2)
        readings = [
            RssiReadingLocated(
                f"ap-{i}", s, rssi_at(np.linalg.norm(s - self.position)), REFERENCE_POWER,
                path_loss_exponent=PATH_LOSS_EXPONENT, rssi_standard_deviation=1.0,
            )
            for i, s in enumerate(sources)
        ]

        estimator = RobustPositionEstimator(
            readings, RobustEstimatorMethod.MSAC, options=RobustEstimatorOptions(seed=0)
        )

        assert_allclose(estimator.estimate(), self.position, atol=1e-6)

    def test_mixed_readings_with_outliers(self):
        rng = np.random.default_rng(3)
        sources = source_positions(40, seed=3)
        outliers = rng.random(40) < 0.2
        readings, quality = [], []
        for i, s in enumerate(sources):
            distance = float(np.linalg.norm(s - self.position))
            error = rng.uniform(1.0, 10.0) if outliers[i] else 0.0
            distance += error
            quality.append(1.0 / (1.0 + error))
            if i % 2:
                readings.append(RangingReadingLocated(f"ap-{i}", s, distance))
            else:
                readings.append(RssiReadingLocated(
                    f"ap-{i}", s, rssi_at(distance), REFERENCE_POWER, PATH_LOSS_EXPONENT,
                ))

        for method in RobustEstimatorMethod:
            with self.subTest(method=method):
                estimator = RobustPositionEstimator(
                    readings, method, quality_scores=quality,
                    options=RobustEstimatorOptions(compute_and_keep_inliers=True, seed=4),
                )

                estimator.estimate()

                assert_allclose(estimator.estimated_position, self.position, atol=1e-6)
                np.testing.assert_array_equal(estimator.inliers_data.inliers, ~outliers)

    def test_failure_raises_position_estimation_error(self):
        readings = [
            RangingReadingLocated(f"ap-{i}", [float(i), 0.0], 1.0 + i) for i in range(5)
        ]
        estimator = RobustPositionEstimator(
            readings, RobustEstimatorMethod.RANSAC,
            options=RobustEstimatorOptions(max_iterations=20, seed=0),
        )

        with self.assertRaises(PositionEstimationError):
            estimator.estimate()

    def test_readings_locked_while_running(self):
        errors = []

        class Listener(EstimationListener):
            def on_end(self, source):
                try:
                    source.readings = None
                except LockedError as e:
                    errors.append(e)

        sources = source_positions(5, seed=5)
        readings = [
            RangingReadingLocated(f"ap-{i}", s, float(np.linalg.norm(s - self.position)))
            for i, s in enumerate(sources)
        ]
        estimator = RobustPositionEstimator(
            readings, RobustEstimatorMethod.RANSAC, listener=Listener()
        )
        estimator.estimate()

        self.assertEqual(len(errors), 1)
        self.assertEqual(len(estimator.readings), 5)

    def test_defaults_and_validation(self):
        estimator = RobustPositionEstimator()

        self.assertEqual(estimator.method, RobustEstimatorMethod.PROMEDS)
        self.assertIsNone(estimator.readings)
        self.assertIsNone(estimator.dimensions)
        self.assertFalse(estimator.is_ready())
        with self.assertRaises(ValueError):
            estimator.readings = [(0.0, 0.0)]


if __name__ == "__main__":
    unittest.main()
