"""
Unit tests for robust gyroscope calibration at known frames.

Tests cover:
    - Bias, Mg and Gg recovery with 20% corrupted samples for every method
    - Common-axis and no-Gg model variants and their subset sizes
    - Weighted minimal solver when rate standard deviations are known
    - Input validation, readiness and locking
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose, assert_array_equal

from robustnav.calibration import (
    KnownFrameGyroscopeModel,
    RobustKnownFrameGyroscopeCalibrator,
    StandardDeviationFrameBodyKinematics,
)
from robustnav.errors import CalibrationError, LockedError, NotReadyError
from robustnav.robust import EstimationListener, RobustEstimatorMethod, RobustEstimatorOptions


def make_frame_measurements(num, bg, mg, gg, outlier_ratio=0.0, rate_std=0.0, seed=0):
    """Samples ω̃ = bg + (I + Mg) ω + Gg f at random known frames.

    Returns:
        (measurements, outlier mask, quality scores)
    """
    rng = np.random.default_rng(seed)
    omega = rng.uniform(-1.0, 1.0, size=(num, 3))
    directions = rng.normal(size=(num, 3))
    force = 9.81 * directions / np.linalg.norm(directions, axis=1, keepdims=True)
    measured = bg + omega @ (np.eye(3) + mg).T + force @ gg.T

    outliers = rng.random(num) < outlier_ratio
    offsets = rng.normal(size=(num, 3))
    offsets *= rng.uniform(0.01, 0.1, size=(num, 1)) / np.linalg.norm(offsets, axis=1, keepdims=True)
    measured[outliers] += offsets[outliers]
    error = np.where(outliers, np.linalg.norm(offsets, axis=1), 0.0)

    measurements = [
        StandardDeviationFrameBodyKinematics(
            specific_force=f,
            angular_rate=w_meas,
            true_specific_force=f,
            true_angular_rate=w,
            angular_rate_standard_deviation=rate_std,
        )
        for f, w_meas, w in zip(force, measured, omega)
    ]
    return measurements, outliers, 1.0 / (1.0 + error)


class TestRobustGyroscopeCalibration(unittest.TestCase):
    def setUp(self):
        self.bg = np.array([1e-3, -2e-3, 5e-4])
        self.mg = np.array([
            [2e-3, 1e-3, -1e-3],
            [5e-4, -1e-3, 2e-3],
            [-3e-4, 1e-3, 3e-3],
        ])
        self.gg = np.array([
            [1e-4, 0.0, -2e-4],
            [0.0, 3e-4, 1e-4],
            [2e-4, -1e-4, 0.0],
        ])
        self.measurements, self.outliers, self.quality = make_frame_measurements(
            60, self.bg, self.mg, self.gg, outlier_ratio=0.2, seed=2
        )

    def test_all_methods_with_outliers(self):
        for method in RobustEstimatorMethod:
            with self.subTest(method=method):
                calibrator = RobustKnownFrameGyroscopeCalibrator(
                    self.measurements, method,
                    quality_scores=self.quality,
                    options=RobustEstimatorOptions(
                        threshold=1e-3, confidence=0.999,
                        compute_and_keep_inliers=True, seed=0,
                    ),
                )
                self.assertEqual(calibrator.subset_size, 7)

                calibrator.calibrate()

                assert_allclose(calibrator.estimated_biases, self.bg, atol=1e-8)
                assert_allclose(calibrator.estimated_mg, self.mg, atol=1e-8)
                assert_allclose(calibrator.estimated_gg, self.gg, atol=1e-8)
                assert_array_equal(calibrator.inliers_data.inliers, ~self.outliers)
                self.assertEqual(calibrator.covariance.shape, (21, 21))

    def test_common_axis_without_gg(self):
        mg = np.triu(self.mg)
        measurements, _, quality = make_frame_measurements(
            30, self.bg, mg, np.zeros((3, 3)), outlier_ratio=0.2, seed=3
        )
        calibrator = RobustKnownFrameGyroscopeCalibrator(
            measurements, RobustEstimatorMethod.PROSAC,
            common_axis_used=True,
            estimate_g_dependent_cross_biases=False,
            quality_scores=quality,
            options=RobustEstimatorOptions(threshold=1e-3, seed=0),
        )
        self.assertEqual(calibrator.subset_size, 4)

        calibrator.calibrate()

        assert_allclose(calibrator.estimated_biases, self.bg, atol=1e-8)
        assert_allclose(calibrator.estimated_mg, mg, atol=1e-8)
        assert_allclose(calibrator.estimated_gg, np.zeros((3, 3)))
        self.assertEqual(len(calibrator.estimated_parameters), 9)

    def test_weighted_minimal_solver(self):
        measurements, _, _ = make_frame_measurements(
            20, self.bg, self.mg, self.gg, rate_std=1e-4, seed=4
        )
        model = KnownFrameGyroscopeModel(measurements)

        (candidate,) = model.estimate_preliminary_solutions(np.arange(7))
        bg, mg, gg = model.split(candidate)

        assert_allclose(bg, self.bg, atol=1e-8)
        assert_allclose(mg, self.mg, atol=1e-8)
        assert_allclose(gg, self.gg, atol=1e-8)
        assert_allclose(model.compute_residuals(candidate), np.zeros(20), atol=1e-8)

    def test_subset_sizes(self):
        calibrator = RobustKnownFrameGyroscopeCalibrator()
        self.assertEqual(calibrator.subset_size, 7)
        calibrator.common_axis_used = True
        self.assertEqual(calibrator.subset_size, 7)
        calibrator.estimate_g_dependent_cross_biases = False
        self.assertEqual(calibrator.subset_size, 4)
        calibrator.common_axis_used = False
        self.assertEqual(calibrator.subset_size, 4)

    def test_minimal_subsets_are_solvable(self):
        for common_axis in (False, True):
            for estimate_gg in (False, True):
                with self.subTest(common_axis=common_axis, estimate_gg=estimate_gg):
                    model = KnownFrameGyroscopeModel(
                        self.measurements,
                        common_axis_used=common_axis,
                        estimate_g_dependent_cross_biases=estimate_gg,
                    )
                    A = model.design_matrix(np.arange(model.subset_size))

                    self.assertEqual(np.linalg.matrix_rank(A), model.num_parameters)
                    # One sample less leaves the x axis underdetermined
                    A = model.design_matrix(np.arange(model.subset_size - 1))
                    self.assertLess(np.linalg.matrix_rank(A), model.num_parameters)

    def test_common_axis_with_gg(self):
        mg = np.triu(self.mg)
        measurements, outliers, quality = make_frame_measurements(
            40, self.bg, mg, self.gg, outlier_ratio=0.2, seed=6
        )
        calibrator = RobustKnownFrameGyroscopeCalibrator(
            measurements, RobustEstimatorMethod.LMEDS,
            common_axis_used=True,
            quality_scores=quality,
            options=RobustEstimatorOptions(threshold=1e-3, seed=1),
        )
        self.assertEqual(calibrator.subset_size, 7)

        calibrator.calibrate()

        assert_allclose(calibrator.estimated_biases, self.bg, atol=1e-8)
        assert_allclose(calibrator.estimated_mg, mg, atol=1e-8)
        assert_allclose(calibrator.estimated_gg, self.gg, atol=1e-8)
        assert_array_equal(calibrator.inliers_data.inliers, ~outliers)

    def test_design_matrix_matches_prediction(self):
        model = KnownFrameGyroscopeModel(self.measurements)
        params = np.random.default_rng(5).normal(size=model.num_parameters)
        indices = np.arange(10)

        predicted = model.predict(params, indices).ravel()
        rates = model.true_rates[indices].ravel()

        assert_allclose(model.design_matrix(indices) @ params + rates, predicted, atol=1e-12)


class TestGyroscopeCalibratorState(unittest.TestCase):
    def test_defaults(self):
        calibrator = RobustKnownFrameGyroscopeCalibrator()

        self.assertEqual(calibrator.method, RobustEstimatorMethod.PROMEDS)
        self.assertEqual(calibrator.threshold, 1e-3)
        self.assertFalse(calibrator.common_axis_used)
        self.assertTrue(calibrator.estimate_g_dependent_cross_biases)
        self.assertIsNone(calibrator.measurements)
        self.assertIsNone(calibrator.estimated_biases)
        self.assertIsNone(calibrator.estimated_mg)
        self.assertIsNone(calibrator.estimated_gg)
        self.assertFalse(calibrator.is_ready())

    def test_not_ready_without_quality_scores(self):
        measurements, _, _ = make_frame_measurements(10, np.zeros(3), np.zeros((3, 3)), np.zeros((3, 3)))
        calibrator = RobustKnownFrameGyroscopeCalibrator(measurements, RobustEstimatorMethod.PROSAC)

        self.assertFalse(calibrator.is_ready())
        with self.assertRaises(NotReadyError):
            calibrator.calibrate()

    def test_degenerate_frames_raise_calibration_error(self):
        # Identical frames: every subset is rank deficient
        sample = StandardDeviationFrameBodyKinematics(
            np.array([0.0, 0.0, 9.81]), np.array([0.1, 0.0, 0.0]),
            np.array([0.0, 0.0, 9.81]), np.array([0.1, 0.0, 0.0]),
        )
        calibrator = RobustKnownFrameGyroscopeCalibrator(
            [sample] * 10, RobustEstimatorMethod.RANSAC,
            options=RobustEstimatorOptions(max_iterations=10),
        )

        with self.assertRaises(CalibrationError):
            calibrator.calibrate()
        self.assertFalse(calibrator.running)

    def test_measurements_locked_while_running(self):
        errors = []

        class Listener(EstimationListener):
            def on_start(self, source):
                try:
                    source.measurements = []
                except LockedError as e:
                    errors.append(e)

        measurements, _, _ = make_frame_measurements(10, np.zeros(3), np.zeros((3, 3)), np.zeros((3, 3)))
        calibrator = RobustKnownFrameGyroscopeCalibrator(
            measurements, RobustEstimatorMethod.RANSAC, listener=Listener()
        )
        calibrator.calibrate()

        self.assertEqual(len(errors), 1)
        self.assertEqual(len(calibrator.measurements), 10)

    def test_invalid_measurements(self):
        with self.assertRaises(ValueError):
            RobustKnownFrameGyroscopeCalibrator(measurements=[object()])
        with self.assertRaises(ValueError):
            StandardDeviationFrameBodyKinematics(
                np.zeros(3), np.zeros(3), np.zeros(3), np.zeros(4)
            )


if __name__ == "__main__":
    unittest.main()
