"""Unit tests for the sample records and their array conversion."""

import numpy as np
import pytest

from robust_positioning.errors import InvalidArgumentError
from robust_positioning.types import (
    RangingAndRssiSample,
    RangingSample,
    RssiSample,
    ranging_and_rssi_samples_to_arrays,
    ranging_samples_to_arrays,
    rssi_samples_to_arrays,
)


class TestSamples:
    """Test sample validation."""

    def test_position_converted_to_array(self):
        sample = RangingSample(position=[1, 2], distance=3.0)

        assert isinstance(sample.position, np.ndarray)
        assert sample.position.dtype == float

    def test_samples_are_immutable(self):
        sample = RssiSample(position=np.zeros(3), rssi_dbm=-60.0)

        with pytest.raises(AttributeError):
            sample.rssi_dbm = -50.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"position": np.zeros(4), "distance": 1.0},
            {"position": np.zeros(2), "distance": -1.0},
            {"position": np.zeros(2), "distance": np.nan},
            {"position": np.zeros(2), "distance": 1.0, "standard_deviation": 0.0},
        ],
    )
    def test_invalid_ranging_sample(self, kwargs):
        with pytest.raises(InvalidArgumentError):
            RangingSample(**kwargs)

    def test_invalid_rssi_sample(self):
        with pytest.raises(InvalidArgumentError):
            RssiSample(position=np.zeros(2), rssi_dbm=np.inf)
        with pytest.raises(InvalidArgumentError):
            RssiSample(position=np.zeros(2), rssi_dbm=-40.0, standard_deviation=-1.0)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"distance": -1.0},
            {"rssi_dbm": np.nan},
            {"distance_standard_deviation": 0.0},
            {"rssi_standard_deviation": -2.0},
        ],
    )
    def test_invalid_ranging_and_rssi_sample(self, kwargs):
        arguments = {"position": np.zeros(2), "distance": 1.0, "rssi_dbm": -50.0}
        arguments.update(kwargs)

        with pytest.raises(InvalidArgumentError):
            RangingAndRssiSample(**arguments)


class TestSamplesToArrays:
    """Test the split into parallel arrays."""

    def test_ranging_arrays(self):
        samples = [
            RangingSample(np.array([0.0, 0.0]), 1.0, 0.1, 0.9),
            RangingSample(np.array([5.0, 0.0]), 2.0, 0.2, 0.5),
        ]

        positions, distances, stds, scores = ranging_samples_to_arrays(samples)

        np.testing.assert_array_equal(positions, [[0, 0], [5, 0]])
        np.testing.assert_array_equal(distances, [1.0, 2.0])
        np.testing.assert_array_equal(stds, [0.1, 0.2])
        np.testing.assert_array_equal(scores, [0.9, 0.5])

    def test_partial_columns_dropped(self):
        samples = [
            RssiSample(np.array([0.0, 0.0]), -40.0, standard_deviation=1.0),
            RssiSample(np.array([1.0, 0.0]), -45.0),
        ]

        _, rssi, stds, scores = rssi_samples_to_arrays(samples)

        np.testing.assert_array_equal(rssi, [-40.0, -45.0])
        assert stds is None
        assert scores is None

    def test_ranging_and_rssi_arrays(self):
        samples = [
            RangingAndRssiSample(np.array([0.0, 0.0]), 1.0, -40.0, 0.1, 2.0, 0.9),
            RangingAndRssiSample(np.array([5.0, 0.0]), 2.0, -45.0, 0.2, None, 0.5),
        ]

        positions, distances, rssi, distance_stds, rssi_stds, scores = (
            ranging_and_rssi_samples_to_arrays(samples)
        )

        np.testing.assert_array_equal(positions, [[0, 0], [5, 0]])
        np.testing.assert_array_equal(distances, [1.0, 2.0])
        np.testing.assert_array_equal(rssi, [-40.0, -45.0])
        np.testing.assert_array_equal(distance_stds, [0.1, 0.2])
        assert rssi_stds is None
        np.testing.assert_array_equal(scores, [0.9, 0.5])

    def test_empty_and_mixed_dimensions(self):
        with pytest.raises(InvalidArgumentError):
            ranging_samples_to_arrays([])
        with pytest.raises(InvalidArgumentError):
            rssi_samples_to_arrays(
                [RssiSample(np.zeros(2), -40.0), RssiSample(np.zeros(3), -40.0)]
            )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
