"""
Unit tests for linear and nonlinear lateration.

Tests cover:
    - Exact 2D and 3D solutions of the linear solver
    - Degenerate geometries (too few, co-located or collinear positions)
    - Weighting of the linear solver by distance standard deviations
    - Nonlinear refinement, its covariance, weighting and convergence
"""

import numpy as np
import pytest

from robust_positioning.errors import (
    InvalidArgumentError,
    NumericalInstabilityError,
    RefinementError,
)
from robust_positioning.rf.lateration import (
    NonLinearLaterationSolver,
    linear_lateration,
)


@pytest.fixture
def square_anchors():
    return np.array([[0, 0], [10, 0], [0, 10], [10, 10]], dtype=float)


class TestLinearLateration:
    """Test the closed-form linear lateration."""

    def test_square_center(self, square_anchors):
        """Four anchors around (5, 5) give the exact position."""
        ranges = np.linalg.norm(square_anchors - np.array([5.0, 5.0]), axis=1)

        position = linear_lateration(square_anchors, ranges)

        np.testing.assert_allclose(position, [5.0, 5.0], atol=1e-9)

    def test_minimum_samples_2d(self):
        """Three non-collinear anchors are enough in 2D."""
        anchors = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        true_pos = np.array([2.0, 3.0])

        position = linear_lateration(anchors, np.linalg.norm(anchors - true_pos, axis=1))

        np.testing.assert_allclose(position, true_pos, atol=1e-9)

    def test_3d(self):
        """Four non-coplanar anchors are enough in 3D."""
        anchors = np.array([[0, 0, 0], [10, 0, 0], [0, 10, 0], [0, 0, 10]], dtype=float)
        true_pos = np.array([1.0, 2.0, 3.0])

        position = linear_lateration(anchors, np.linalg.norm(anchors - true_pos, axis=1))

        np.testing.assert_allclose(position, true_pos, atol=1e-9)

    def test_reference_index_does_not_matter_without_noise(self, square_anchors):
        true_pos = np.array([3.0, 8.0])
        ranges = np.linalg.norm(square_anchors - true_pos, axis=1)

        for ref_idx in range(4):
            np.testing.assert_allclose(
                linear_lateration(square_anchors, ranges, ref_idx=ref_idx),
                true_pos,
                atol=1e-9,
            )

    def test_too_few_samples(self, square_anchors):
        """Two ranges cannot fix a 2D position."""
        with pytest.raises(NumericalInstabilityError):
            linear_lateration(square_anchors[:2], np.array([5.0, 5.0]))

    def test_collinear_anchors(self):
        """Anchors on a line leave the position ambiguous."""
        anchors = np.array([[0, 0], [5, 0], [10, 0]], dtype=float)

        with pytest.raises(NumericalInstabilityError):
            linear_lateration(anchors, np.array([5.0, 1.0, 5.0]))

    def test_colocated_anchors(self):
        anchors = np.array([[1, 1], [1, 1], [1, 1]], dtype=float)

        with pytest.raises(NumericalInstabilityError):
            linear_lateration(anchors, np.array([1.0, 1.0, 1.0]))

    def test_length_mismatch(self, square_anchors):
        with pytest.raises(InvalidArgumentError):
            linear_lateration(square_anchors, np.array([1.0, 2.0, 3.0]))

    def test_invalid_reference_index(self, square_anchors):
        with pytest.raises(InvalidArgumentError):
            linear_lateration(square_anchors, np.ones(4), ref_idx=4)

    def test_weighted_exact_data(self, square_anchors):
        ranges = np.linalg.norm(square_anchors - np.array([1.0, 9.0]), axis=1)

        position = linear_lateration(
            square_anchors, ranges, standard_deviations=np.array([0.1, 0.2, 0.3, 0.4])
        )

        np.testing.assert_allclose(position, [1.0, 9.0], atol=1e-9)

    def test_weights_discount_uncertain_range(self):
        """A biased range with a large standard deviation barely moves the solution."""
        anchors = np.array([[0, 0], [10, 0], [0, 10], [10, 10], [5, 12]], dtype=float)
        true_pos = np.array([4.0, 6.0])
        ranges = np.linalg.norm(anchors - true_pos, axis=1)
        ranges[4] += 2.0
        sigmas = np.array([0.01, 0.01, 0.01, 0.01, 10.0])

        unweighted = linear_lateration(anchors, ranges)
        weighted = linear_lateration(anchors, ranges, standard_deviations=sigmas)

        assert np.linalg.norm(weighted - true_pos) < 1e-3
        assert np.linalg.norm(weighted - true_pos) < np.linalg.norm(unweighted - true_pos)

    @pytest.mark.parametrize("sigmas", [np.ones(3), np.array([1.0, 1.0, 0.0, 1.0])])
    def test_invalid_standard_deviations(self, square_anchors, sigmas):
        with pytest.raises(InvalidArgumentError):
            linear_lateration(square_anchors, np.ones(4), standard_deviations=sigmas)


class TestNonLinearLateration:
    """Test the iterative lateration solver."""

    def test_refine_from_exact_position(self, square_anchors):
        """Starting at the solution converges immediately with zero covariance."""
        ranges = np.linalg.norm(square_anchors - np.array([5.0, 5.0]), axis=1)

        result = NonLinearLaterationSolver(square_anchors).solve(
            ranges, initial_guess=np.array([5.0, 5.0])
        )

        assert result.converged
        assert result.iterations == 0
        np.testing.assert_allclose(result.x, [5.0, 5.0])
        assert np.all(np.abs(result.covariance) < 1e-12)

    def test_converges_from_offset_guess(self, square_anchors):
        true_pos = np.array([7.0, 2.0])
        ranges = np.linalg.norm(square_anchors - true_pos, axis=1)

        result = NonLinearLaterationSolver(square_anchors).solve(
            ranges, initial_guess=np.array([5.0, 5.0])
        )

        assert result.converged
        np.testing.assert_allclose(result.x, true_pos, atol=1e-6)

    def test_default_initial_guess(self, square_anchors):
        """Without an initial guess the linear solution is used."""
        true_pos = np.array([4.0, 6.5])
        ranges = np.linalg.norm(square_anchors - true_pos, axis=1)

        result = NonLinearLaterationSolver(square_anchors).solve(ranges)

        np.testing.assert_allclose(result.x, true_pos, atol=1e-6)

    def test_noisy_ranges_covariance(self, square_anchors):
        rng = np.random.default_rng(3)
        true_pos = np.array([5.0, 5.0])
        ranges = np.linalg.norm(square_anchors - true_pos, axis=1) + 0.05 * rng.normal(size=4)

        result = NonLinearLaterationSolver(square_anchors).solve(ranges)

        np.testing.assert_allclose(result.x, true_pos, atol=0.2)
        assert result.covariance.shape == (2, 2)
        assert np.all(np.linalg.eigvalsh(result.covariance) > 0)

    def test_standard_deviations_weight_ranges(self, square_anchors):
        """A biased range with a large sigma barely moves the estimate."""
        true_pos = np.array([5.0, 5.0])
        ranges = np.linalg.norm(square_anchors - true_pos, axis=1)
        ranges[0] += 1.0

        unweighted = NonLinearLaterationSolver(square_anchors).solve(ranges)
        weighted = NonLinearLaterationSolver(square_anchors).solve(
            ranges, standard_deviations=np.array([100.0, 0.1, 0.1, 0.1])
        )

        error_unweighted = np.linalg.norm(unweighted.x - true_pos)
        error_weighted = np.linalg.norm(weighted.x - true_pos)
        assert error_weighted < error_unweighted

    def test_too_few_samples(self, square_anchors):
        with pytest.raises(RefinementError):
            NonLinearLaterationSolver(square_anchors[:2]).solve(np.array([5.0, 5.0]))

    def test_invalid_standard_deviations(self, square_anchors):
        with pytest.raises(InvalidArgumentError):
            NonLinearLaterationSolver(square_anchors).solve(
                np.ones(4), standard_deviations=np.array([1.0, 0.0, 1.0, 1.0])
            )

    def test_iteration_limit_raises(self, square_anchors):
        """Running out of iterations far from the solution is a failure."""
        ranges = np.linalg.norm(square_anchors - np.array([5.0, 5.0]), axis=1)

        with pytest.raises(RefinementError):
            NonLinearLaterationSolver(square_anchors).solve(
                ranges, initial_guess=np.array([-8.0, 14.0]), max_iters=1
            )

    def test_invalid_initial_guess(self, square_anchors):
        with pytest.raises(InvalidArgumentError):
            NonLinearLaterationSolver(square_anchors).solve(
                np.ones(4), initial_guess=np.zeros(3)
            )

    def test_predicted_distances_and_jacobian(self, square_anchors):
        solver = NonLinearLaterationSolver(square_anchors)
        position = np.array([0.0, 5.0])

        np.testing.assert_allclose(
            solver.predicted_distances(position),
            [5.0, np.hypot(10, 5), 5.0, np.hypot(10, 5)],
        )
        J = solver.jacobian(position)
        assert J.shape == (4, 2)
        # Unit vectors from each anchor towards the position
        np.testing.assert_allclose(np.linalg.norm(J, axis=1), 1.0)
        np.testing.assert_allclose(J[0], [0.0, 1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
