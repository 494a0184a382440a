"""
Unit tests for the Levenberg-Marquardt solver.

Range-only positioning is used as the nonlinear test problem.
"""

import unittest

import numpy as np
from numpy.testing import assert_allclose

from robust_positioning.errors import InvalidArgumentError, RefinementError
from robust_positioning.estimators.nonlinear_least_squares import levenberg_marquardt


def _range_problem(anchors):
    def h(x):
        return np.linalg.norm(anchors - x, axis=1)

    def jac(x):
        diff = x - anchors
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return diff / np.maximum(ranges, 1e-10)

    return h, jac


class TestLevenbergMarquardt(unittest.TestCase):
    """Test cases for the Levenberg-Marquardt solver."""

    def setUp(self):
        self.anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)
        self.h, self.jac = _range_problem(self.anchors)

    def test_converges_from_far_guess(self):
        """Damping lets LM converge from a poor initial guess."""
        x_true = np.array([5.0, 5.0])
        y = self.h(x_true)

        result = levenberg_marquardt(self.h, self.jac, y, x0=np.array([-8.0, 14.0]))

        self.assertTrue(result.converged)
        assert_allclose(result.x, x_true, atol=1e-6)

    def test_iteration_limit_reported(self):
        """Stopping at max_iter far from the solution is not convergence."""
        y = self.h(np.array([5.0, 5.0]))

        result = levenberg_marquardt(
            self.h, self.jac, y, x0=np.array([-8.0, 14.0]), max_iter=1
        )

        self.assertFalse(result.converged)
        self.assertEqual(result.iterations, 1)

    def test_starting_at_solution(self):
        """Starting at the exact solution converges without iterating."""
        x_true = np.array([5.0, 5.0])
        y = self.h(x_true)

        result = levenberg_marquardt(self.h, self.jac, y, x0=x_true)

        self.assertTrue(result.converged)
        self.assertEqual(result.iterations, 0)
        assert_allclose(result.x, x_true)
        # Residuals are zero, so the estimated variance is too
        self.assertTrue(np.all(np.abs(result.covariance) < 1e-12))

    def test_noisy_covariance(self):
        """Covariance reflects the residual variance of noisy ranges."""
        rng = np.random.default_rng(1)
        x_true = np.array([4.0, 6.0])
        y = self.h(x_true) + 0.1 * rng.normal(size=4)

        result = levenberg_marquardt(self.h, self.jac, y, x0=np.array([5.0, 5.0]))

        assert_allclose(result.x, x_true, atol=0.5)
        self.assertTrue(np.all(np.linalg.eigvalsh(result.covariance) > 0))
        assert_allclose(result.covariance, result.covariance.T)

    def test_weights_favor_accurate_ranges(self):
        """A heavily weighted range is fitted almost exactly."""
        x_true = np.array([5.0, 5.0])
        y = self.h(x_true)
        y[1] += 0.5
        weights = np.array([1.0, 1e6, 1.0, 1.0])

        result = levenberg_marquardt(
            self.h, self.jac, y, x0=np.array([4.0, 4.0]), weights=weights
        )

        self.assertAlmostEqual(abs(result.residuals[1]), 0.0, places=4)

    def test_without_covariance(self):
        """Covariance is skipped on request."""
        y = self.h(np.array([2.0, 3.0]))

        result = levenberg_marquardt(
            self.h, self.jac, y, x0=np.array([5.0, 5.0]), return_covariance=False
        )

        self.assertIsNone(result.covariance)

    def test_unobservable_covariance(self):
        """Collinear anchors leave one coordinate unobservable."""
        anchors = np.array([[0, 0], [10, 0], [20, 0]], dtype=float)
        h, jac = _range_problem(anchors)
        x_true = np.array([5.0, 0.0])

        with self.assertRaises(RefinementError):
            levenberg_marquardt(h, jac, h(x_true), x0=x_true)

    def test_negative_weights(self):
        """Test that negative weights are rejected."""
        y = self.h(np.array([2.0, 3.0]))

        with self.assertRaises(InvalidArgumentError):
            levenberg_marquardt(
                self.h, self.jac, y, x0=np.zeros(2), weights=np.array([1, -1, 1, 1])
            )

    def test_measurement_shape_mismatch(self):
        """h(x) must return one value per observation."""
        with self.assertRaises(InvalidArgumentError):
            levenberg_marquardt(self.h, self.jac, np.ones(3), x0=np.zeros(2))


if __name__ == "__main__":
    unittest.main()
