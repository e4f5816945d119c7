"""
Unit tests for robust 2D/3D trilateration.

Tests cover:
    - Exact spheres solved with PROSAC and every sample kept as inlier
    - 20% corrupted ranges rejected by every method
    - 2D minimum sample count, readiness and input validation
    - Degenerate (collinear) geometry
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose, assert_array_equal

from robustnav.errors import NotReadyError, TrilaterationError
from robustnav.positioning import RobustTrilaterationSolver, TrilaterationModel
from robustnav.robust import RobustEstimatorMethod, RobustEstimatorOptions


def make_ranges(position, num, outlier_ratio=0.0, seed=0, extent=20.0):
    """Random centers around ``position`` with exact distances.

    Returns:
        (centers, distances, outlier mask, quality scores)
    """
    rng = np.random.default_rng(seed)
    dims = len(position)
    centers = rng.uniform(-extent, extent, size=(num, dims))
    distances = np.linalg.norm(centers - position, axis=1)

    outliers = rng.random(num) < outlier_ratio
    offsets = rng.uniform(0.5, 5.0, size=num)
    distances[outliers] += offsets[outliers]
    error = np.where(outliers, offsets, 0.0)
    return centers, distances, outliers, 1.0 / (1.0 + error)


class TestRobustTrilateration(unittest.TestCase):
    def test_ten_spheres_prosac(self):
        position = np.array([1.0, -2.0, 3.0])
        centers, distances, _, _ = make_ranges(position, 10, seed=1)

        solver = RobustTrilaterationSolver(
            centers, distances,
            method=RobustEstimatorMethod.PROSAC,
            quality_scores=np.ones(10),
            options=RobustEstimatorOptions(compute_and_keep_inliers=True, seed=0),
        )
        self.assertTrue(solver.is_ready())

        result = solver.solve()

        assert_allclose(result, position, atol=1e-6)
        assert_allclose(solver.estimated_position, position, atol=1e-6)
        self.assertTrue(np.all(solver.inliers_data.inliers))
        self.assertEqual(solver.covariance.shape, (3, 3))

    def test_3d_with_outliers_all_methods(self):
        position = np.array([4.0, 1.5, -0.5])
        centers, distances, outliers, quality = make_ranges(
            position, 100, outlier_ratio=0.2, seed=2
        )

        for method in RobustEstimatorMethod:
            with self.subTest(method=method):
                solver = RobustTrilaterationSolver(
                    centers, distances, method=method,
                    quality_scores=quality,
                    options=RobustEstimatorOptions(
                        compute_and_keep_inliers=True, seed=3
                    ),
                )

                result = solver.solve()

                assert_allclose(result, position, atol=1e-6)
                assert_array_equal(solver.inliers_data.inliers, ~outliers)

    def test_2d_minimum_samples(self):
        position = np.array([2.0, 3.0])
        centers = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        distances = np.linalg.norm(centers - position, axis=1)

        solver = RobustTrilaterationSolver(
            centers, distances, method=RobustEstimatorMethod.RANSAC
        )
        self.assertEqual(solver.dimensions, 2)
        self.assertEqual(solver.subset_size, 3)

        assert_allclose(solver.solve(), position, atol=1e-9)

        solver.set_positions_and_distances(centers[:2], distances[:2])
        self.assertFalse(solver.is_ready())
        with self.assertRaises(NotReadyError):
            solver.solve()

    def test_collinear_centers_raise_trilateration_error(self):
        centers = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0], [4.0, 0.0]])
        distances = np.array([1.0, 1.0, 1.5, 2.0, 3.0])
        solver = RobustTrilaterationSolver(
            centers, distances, method=RobustEstimatorMethod.RANSAC,
            options=RobustEstimatorOptions(max_iterations=20, seed=0),
        )

        with self.assertRaises(TrilaterationError):
            solver.solve()
        self.assertIsNone(solver.estimated_position)

    def test_distance_standard_deviations_used_as_weights(self):
        position = np.array([1.0, 1.0, 1.0])
        centers, distances, _, _ = make_ranges(position, 12, seed=5)
        sigmas = np.full(12, 0.1)

        solver = RobustTrilaterationSolver(
            centers, distances, sigmas, method=RobustEstimatorMethod.LMEDS,
            options=RobustEstimatorOptions(seed=0),
        )
        solver.solve()

        assert_allclose(solver.estimated_position, position, atol=1e-6)
        assert_allclose(solver.distance_standard_deviations, sigmas)
        self.assertTrue(np.all(np.isfinite(solver.covariance)))


class TestTrilaterationModel(unittest.TestCase):
    def test_minimal_solution_is_exact(self):
        position = np.array([0.5, -1.0, 2.0])
        centers, distances, _, _ = make_ranges(position, 4, seed=6)
        model = TrilaterationModel(centers, distances)

        (candidate,) = model.estimate_preliminary_solutions([0, 1, 2, 3])

        assert_allclose(candidate, position, atol=1e-9)
        assert_allclose(model.compute_residuals(candidate), np.zeros(4), atol=1e-9)

    def test_residual_is_range_error(self):
        model = TrilaterationModel(np.array([[0.0, 0.0]]), np.array([5.0]))
        self.assertAlmostEqual(model.compute_residual(np.array([3.0, 0.0]), 0), 2.0)

    def test_jacobian_unit_vectors(self):
        model = TrilaterationModel(np.array([[0.0, 0.0], [1.0, 1.0]]), np.array([1.0, 1.0]))

        J = model.jacobian(np.array([1.0, 1.0]), np.array([0, 1]))

        assert_allclose(J[0], np.array([1.0, 1.0]) / np.sqrt(2.0))
        # Position on top of the center
        assert_allclose(J[1], np.zeros(2))


class TestTrilaterationSolverState(unittest.TestCase):
    def test_defaults(self):
        solver = RobustTrilaterationSolver()

        self.assertEqual(solver.method, RobustEstimatorMethod.PROMEDS)
        self.assertEqual(solver.threshold, 1e-2)
        self.assertIsNone(solver.centers)
        self.assertIsNone(solver.dimensions)
        self.assertEqual(solver.subset_size, 4)
        self.assertFalse(solver.is_ready())

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(np.zeros((4, 3)))
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(np.zeros((4, 4)), np.ones(4))
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(np.zeros((4, 3)), np.ones(3))
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(np.zeros((4, 3)), -np.ones(4))
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(np.zeros((4, 3)), np.ones(4), np.zeros(4))

    def test_quality_scores_validation(self):
        centers, distances, _, _ = make_ranges(np.zeros(3), 6)
        solver = RobustTrilaterationSolver(
            centers, distances, method=RobustEstimatorMethod.PROSAC
        )

        # Fewer scores than the 4 samples of a 3D subset
        with self.assertRaises(ValueError):
            solver.quality_scores = np.ones(3)
        with self.assertRaises(ValueError):
            RobustTrilaterationSolver(
                centers, distances, method=RobustEstimatorMethod.PROSAC,
                quality_scores=[1.0, 0.5, -0.5, 1.0, 1.0, 1.0],
            )
        self.assertIsNone(solver.quality_scores)
        self.assertFalse(solver.is_ready())


if __name__ == "__main__":
    unittest.main()
