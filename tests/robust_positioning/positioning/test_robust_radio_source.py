"""
Unit tests for robust RSSI radio source estimation.

Readings are simulated with the free-space model around a source at (3, 4)
transmitting -10 dBm, optionally with gross RSSI errors.
"""

import numpy as np
import pytest

from robust_positioning.errors import InvalidArgumentError, LockedError, NotReadyError
from robust_positioning.errors import RefinementError
from robust_positioning.positioning import robust_radio_source
from robust_positioning.positioning.robust_radio_source import (
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
)
from robust_positioning.rf import radio_source
from robust_positioning.rf.measurement_models import rssi_from_distance
from robust_positioning.robust import RobustEstimatorListener
from robust_positioning.types import RangingAndRssiSample, RssiSample

SOURCE = np.array([3.0, 4.0])
POWER_DBM = -10.0
OUTLIERS = np.array([1, 6, 12])

ALL_METHODS = ["ransac", "msac", "lmeds", "prosac", "promeds"]


def _positions(num_readings=16, seed=0):
    rng = np.random.default_rng(seed)
    return rng.uniform(-5.0, 12.0, size=(num_readings, 2))


def _rssi(positions, path_loss=2.0, power=POWER_DBM):
    distances = np.linalg.norm(positions - SOURCE, axis=1)
    return rssi_from_distance(power, distances, path_loss)


def _corrupted(rssi):
    rssi = rssi.copy()
    rssi[OUTLIERS] += np.array([15.0, -20.0, 25.0])
    return rssi


def _quality_scores(num_readings=16):
    scores = np.ones(num_readings)
    scores[OUTLIERS] = 0.1
    return scores


class TestRobustRadioSourceMethods:
    """Position and power of a source with every robust method."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_zero_noise(self, method):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _rssi(positions),
            method=method,
            quality_scores=_quality_scores(),
            compute_and_keep_inliers=True,
            seed=0,
        )

        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)
        assert solution.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        assert solution.path_loss_exponent == 2.0
        assert np.all(estimator.inliers_data.inliers)

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_gross_rssi_errors(self, method):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _corrupted(_rssi(positions)),
            method=method,
            threshold=0.5,
            quality_scores=_quality_scores(),
            compute_and_keep_inliers=True,
            seed=0,
        )

        estimator.estimate()

        np.testing.assert_allclose(estimator.estimated_position, SOURCE, atol=1e-6)
        assert estimator.estimated_transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        expected = np.ones(16, dtype=bool)
        expected[OUTLIERS] = False
        np.testing.assert_array_equal(estimator.inliers_data.inliers, expected)

    def test_noisy_readings_covariance(self):
        rng = np.random.default_rng(8)
        positions = _positions(num_readings=30, seed=3)
        rssi = _rssi(positions) + 1.0 * rng.normal(size=30)
        rssi[[2, 9]] -= 25.0
        estimator = RobustRssiRadioSourceEstimator(
            positions, rssi, method="ransac", threshold=3.0, seed=1
        )

        estimator.estimate()

        assert np.linalg.norm(estimator.estimated_position - SOURCE) < 2.0
        assert abs(estimator.estimated_transmitted_power_dbm - POWER_DBM) < 3.0
        assert estimator.estimated_covariance.shape == (3, 3)
        assert estimator.estimated_position_covariance.shape == (2, 2)
        assert estimator.estimated_transmitted_power_variance > 0
        assert estimator.estimated_path_loss_exponent_variance is None

    def test_transmitted_power_only(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _corrupted(_rssi(positions)),
            position_estimation_enabled=False,
            initial_position=SOURCE,
            method="ransac",
            threshold=0.5,
            seed=0,
        )

        solution = estimator.estimate()

        assert solution.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        np.testing.assert_allclose(solution.position, SOURCE)
        assert estimator.estimated_position_covariance is None
        assert estimator.estimated_transmitted_power_variance is not None

    def test_power_and_path_loss(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _corrupted(_rssi(positions, path_loss=2.8)),
            position_estimation_enabled=False,
            path_loss_estimation_enabled=True,
            initial_position=SOURCE,
            method="msac",
            threshold=0.5,
            seed=0,
        )

        estimator.estimate()

        assert estimator.estimated_transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        assert estimator.estimated_path_loss_exponent == pytest.approx(2.8, abs=1e-6)
        assert estimator.estimated_covariance.shape == (2, 2)

    def test_position_and_path_loss(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _rssi(positions, path_loss=2.4),
            transmitted_power_estimation_enabled=False,
            path_loss_estimation_enabled=True,
            initial_position=np.array([3.5, 3.5]),
            initial_transmitted_power_dbm=POWER_DBM,
            method="lmeds",
            seed=0,
        )

        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-4)
        assert solution.path_loss_exponent == pytest.approx(2.4, abs=1e-4)

    def test_all_parameters_warns(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions,
            _rssi(positions),
            path_loss_estimation_enabled=True,
            initial_position=np.array([3.2, 3.8]),
            method="lmeds",
            seed=0,
        )

        with pytest.warns(RuntimeWarning):
            solution = estimator.estimate()

        assert np.linalg.norm(solution.position - SOURCE) < 0.5

    def test_transmitted_power_in_watts(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _rssi(positions), method="ransac", seed=0
        )
        assert estimator.estimated_transmitted_power is None

        estimator.estimate()

        assert estimator.estimated_transmitted_power == pytest.approx(1e-4, rel=1e-6)


class TestRobustRadioSourceConfiguration:
    """Readiness, flags and validation."""

    def test_ready_boundary(self):
        """Position and power in 2D need four readings."""
        positions = _positions()
        rssi = _rssi(positions)
        estimator = RobustRssiRadioSourceEstimator(positions[:3], rssi[:3], method="ransac")

        assert estimator.min_required_readings == 4
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

        estimator.set_readings(positions[:4], rssi[:4])
        assert estimator.is_ready

    def test_min_required_readings_per_flags(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _rssi(positions), initial_position=SOURCE
        )

        estimator.path_loss_estimation_enabled = True
        assert estimator.min_required_readings == 5
        estimator.position_estimation_enabled = False
        assert estimator.min_required_readings == 3
        estimator.transmitted_power_estimation_enabled = False
        assert estimator.min_required_readings == 2

    def test_no_parameter_enabled(self):
        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(
                position_estimation_enabled=False,
                transmitted_power_estimation_enabled=False,
            )

        estimator = RobustRssiRadioSourceEstimator(transmitted_power_estimation_enabled=False)
        with pytest.raises(InvalidArgumentError):
            estimator.position_estimation_enabled = False

    def test_known_values_required(self):
        positions = _positions()
        rssi = _rssi(positions)

        without_position = RobustRssiRadioSourceEstimator(
            positions, rssi, position_estimation_enabled=False, method="ransac"
        )
        without_power = RobustRssiRadioSourceEstimator(
            positions, rssi, transmitted_power_estimation_enabled=False, method="ransac"
        )

        assert not without_position.is_ready
        assert not without_power.is_ready

    def test_default_method_needs_quality_scores(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(positions, _rssi(positions))

        assert not estimator.is_ready
        estimator.quality_scores = np.ones(16)
        assert estimator.is_ready

    def test_invalid_values(self):
        positions = _positions()
        rssi = _rssi(positions)

        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(positions, rssi[:5])
        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(positions, np.full(16, np.inf))
        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(positions, rssi, initial_path_loss_exponent=0.0)
        with pytest.raises(InvalidArgumentError):
            RobustRssiRadioSourceEstimator(positions, rssi, frequency=-1.0)

    def test_from_samples(self):
        positions = _positions()
        samples = [
            RssiSample(position=p, rssi_dbm=r, standard_deviation=1.0, quality_score=1.0)
            for p, r in zip(positions, _rssi(positions))
        ]

        estimator = RobustRssiRadioSourceEstimator.from_samples(samples, seed=0)
        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)


class TestRobustRadioSourceRun:
    """Locking and refinement fallback."""

    def test_options_locked_while_estimating(self):
        outcomes = []

        class LockCheckingListener(RobustEstimatorListener):
            def on_estimate_start(self, estimator):
                for change in (
                    lambda: setattr(estimator, "path_loss_estimation_enabled", True),
                    lambda: setattr(estimator, "initial_position", SOURCE),
                    lambda: estimator.set_readings(estimator.positions, estimator.rssi),
                    estimator.estimate,
                ):
                    try:
                        change()
                    except LockedError:
                        outcomes.append(True)
                    else:
                        outcomes.append(False)

        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _rssi(positions), method="ransac", listener=LockCheckingListener()
        )
        estimator.estimate()

        assert outcomes == [True, True, True, True]
        assert not estimator.path_loss_estimation_enabled

    def test_refinement_failure_clears_covariance(self, monkeypatch):
        def failing_refine(self, *args, **kwargs):
            raise RefinementError("diverged")

        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _rssi(positions), method="ransac", seed=0
        )
        monkeypatch.setattr(
            robust_radio_source.RssiRadioSourceEstimator, "refine", failing_refine
        )

        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)
        assert estimator.estimated_covariance is None
        assert estimator.estimated_position_covariance is None
        assert estimator.estimated_transmitted_power_variance is None

    def test_unconverged_refinement_keeps_robust_solution(self, monkeypatch):
        original = radio_source.levenberg_marquardt

        def stalled(*args, **kwargs):
            result = original(*args, **kwargs)
            result.converged = False
            return result

        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _corrupted(_rssi(positions)), method="msac", threshold=0.5, seed=0
        )
        monkeypatch.setattr(radio_source, "levenberg_marquardt", stalled)

        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)
        assert estimator.estimated_covariance is None

    def test_refinement_disabled(self):
        positions = _positions()
        estimator = RobustRssiRadioSourceEstimator(
            positions, _rssi(positions), method="ransac", refine_result=False, seed=0
        )

        estimator.estimate()

        assert estimator.estimated_covariance is None
        np.testing.assert_allclose(estimator.estimated_position, SOURCE, atol=1e-6)


def _distances(positions):
    distances = np.linalg.norm(positions - SOURCE, axis=1)
    distances[OUTLIERS] += np.array([5.0, 8.0, 12.0])
    return distances


class TestRobustRangingAndRssiRadioSource:
    """Readings with a range and an RSSI of the same source."""

    @pytest.mark.parametrize("method", ALL_METHODS)
    def test_gross_errors(self, method):
        positions = _positions()
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            positions,
            _distances(positions),
            _corrupted(_rssi(positions)),
            method=method,
            threshold=0.5,
            quality_scores=_quality_scores(),
            compute_and_keep_inliers=True,
            seed=0,
        )

        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)
        assert solution.transmitted_power_dbm == pytest.approx(POWER_DBM, abs=1e-6)
        expected = np.ones(16, dtype=bool)
        expected[OUTLIERS] = False
        np.testing.assert_array_equal(estimator.inliers_data.inliers, expected)

    def test_power_and_path_loss_covariance(self):
        rng = np.random.default_rng(4)
        positions = _positions(num_readings=30, seed=2)
        distances = np.linalg.norm(positions - SOURCE, axis=1) + 0.1 * rng.normal(size=30)
        rssi = _rssi(positions, path_loss=2.4) + 0.5 * rng.normal(size=30)
        distances[[3, 17]] += 6.0
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            positions,
            distances,
            rssi,
            distance_standard_deviations=np.full(30, 0.1),
            rssi_standard_deviations=np.full(30, 0.5),
            path_loss_estimation_enabled=True,
            method="msac",
            threshold=4.0,
            seed=1,
        )

        solution = estimator.estimate()

        assert np.linalg.norm(solution.position - SOURCE) < 0.2
        assert solution.path_loss_exponent == pytest.approx(2.4, abs=0.2)
        assert estimator.estimated_covariance.shape == (4, 4)
        np.testing.assert_array_equal(estimator.estimated_covariance[:2, 2:], 0.0)
        assert estimator.estimated_path_loss_exponent_variance > 0

    def test_position_always_estimated(self):
        with pytest.raises(InvalidArgumentError):
            RobustRangingAndRssiRadioSourceEstimator(position_estimation_enabled=False)

        estimator = RobustRangingAndRssiRadioSourceEstimator()
        with pytest.raises(InvalidArgumentError):
            estimator.position_estimation_enabled = False

    def test_min_required_readings(self):
        positions = _positions()
        estimator = RobustRangingAndRssiRadioSourceEstimator(
            positions[:2], _distances(positions)[:2], _rssi(positions)[:2], method="ransac"
        )

        assert estimator.min_required_readings == 3
        assert not estimator.is_ready
        estimator.path_loss_estimation_enabled = True
        assert estimator.min_required_readings == 4

    def test_invalid_readings(self):
        positions = _positions()
        rssi = _rssi(positions)

        with pytest.raises(InvalidArgumentError):
            RobustRangingAndRssiRadioSourceEstimator(positions, np.ones(5), rssi)
        with pytest.raises(InvalidArgumentError):
            RobustRangingAndRssiRadioSourceEstimator(positions, -np.ones(16), rssi)
        with pytest.raises(InvalidArgumentError):
            RobustRangingAndRssiRadioSourceEstimator(
                positions, np.ones(16), rssi, distance_standard_deviations=np.zeros(16)
            )

    def test_from_samples(self):
        positions = _positions()
        samples = [
            RangingAndRssiSample(position=p, distance=d, rssi_dbm=r, quality_score=1.0)
            for p, d, r in zip(
                positions, np.linalg.norm(positions - SOURCE, axis=1), _rssi(positions)
            )
        ]

        estimator = RobustRangingAndRssiRadioSourceEstimator.from_samples(samples, seed=0)
        solution = estimator.estimate()

        np.testing.assert_allclose(solution.position, SOURCE, atol=1e-6)
        assert estimator.quality_scores is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
