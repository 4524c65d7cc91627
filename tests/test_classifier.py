"""
Unit tests for the Status Classifier and countdown formatting.
"""

import numpy as np
import pytest

from rally_sync.interfaces.countdown_state import CountdownStatus


COUNTING = CountdownStatus.COUNTING


class TestBands:
    """Test the ordered band table."""

    @pytest.mark.parametrize("time_to_launch,time_to_arrival,expected", [
        (30.0, 60.0, "WAITING"),
        (10.5, 40.0, "WAITING"),
        (10.0, 40.0, "GET READY"),     # strict > 10
        (0.1, 30.0, "GET READY"),
        (0.0, 30.0, "LAUNCH NOW"),     # strict > 0
        (-1.9, 28.0, "LAUNCH NOW"),
        (-2.0, 28.0, "IN TRANSIT"),    # strict > -2
        (-5.0, 0.1, "IN TRANSIT"),
        (-5.0, 0.0, "HIT TARGET"),     # strict > 0
        (-50.0, -20.0, "HIT TARGET"),
    ])
    def test_boundaries(self, time_to_launch, time_to_arrival, expected):
        from rally_sync.timing.classifier import label_for

        assert label_for(COUNTING, time_to_launch, time_to_arrival).value == expected

    def test_idle_is_standby_regardless_of_times(self):
        from rally_sync.timing.classifier import StatusLabel, classify

        for elapsed in (0.0, 5.0, 1000.0):
            result = classify(CountdownStatus.IDLE, elapsed, 20.0, 50.0, warmup=10.0)
            assert result.label == StatusLabel.STANDBY

    def test_finished_is_classified_by_magnitudes(self):
        from rally_sync.timing.classifier import StatusLabel, classify

        result = classify(CountdownStatus.FINISHED, 100.0, 0.0, 40.0, warmup=10.0)
        assert result.label == StatusLabel.HIT_TARGET

    def test_exactly_one_label_for_any_pair(self):
        from rally_sync.timing.classifier import StatusLabel, label_for

        grid = np.linspace(-30, 30, 121)
        for ttl in grid:
            for tta in grid:
                label = label_for(COUNTING, float(ttl), float(tta))
                assert isinstance(label, StatusLabel)
                assert label != StatusLabel.STANDBY


class TestClassify:
    """Test magnitudes and warmup handling."""

    def test_magnitudes_are_signed_and_unclamped(self):
        from rally_sync.timing.classifier import classify

        result = classify(COUNTING, elapsed=52.0, leader_launch=0.0, leader_arrival=40.0, warmup=10.0)

        assert result.time_to_launch == -42.0
        assert result.time_to_arrival == -2.0

    def test_end_to_end_scenario(self, two_phase_roster):
        """At elapsed=52 the counter leader gets ready and main has landed."""
        from rally_sync.timing.classifier import StatusLabel, classify
        from rally_sync.timing.timeline import compute_timeline

        timeline = compute_timeline(two_phase_roster.phases)
        main = timeline.find_leader('main', 'a')
        counter = timeline.find_leader('counter', 'b')

        counter_status = classify(COUNTING, 52.0, counter.launch, counter.arrival, warmup=10.0)
        assert counter_status.time_to_launch == 3.0
        assert counter_status.label == StatusLabel.GET_READY

        main_status = classify(COUNTING, 52.0, main.launch, main.arrival, warmup=10.0)
        assert main_status.time_to_arrival == -2.0
        assert main_status.time_to_launch < 0
        assert main_status.label == StatusLabel.HIT_TARGET

    def test_warmup_is_configurable(self):
        from rally_sync.timing.classifier import StatusLabel, classify

        assert classify(COUNTING, 0.0, 0.0, 10.0, warmup=30.0).label == StatusLabel.WAITING
        assert classify(COUNTING, 0.0, 0.0, 10.0, warmup=5.0).label == StatusLabel.GET_READY
        assert classify(COUNTING, 0.0, 0.0, 10.0, warmup=0.0).label == StatusLabel.LAUNCH_NOW


class TestClassifyMany:
    """The vectorised path must agree with classify()."""

    def test_agrees_with_scalar(self):
        from rally_sync.timing.classifier import LABEL_ORDER, classify, classify_many

        rng = np.random.default_rng(7)
        launches = rng.uniform(0, 120, size=40)
        arrivals = launches + rng.uniform(0, 60, size=40)

        for status in CountdownStatus:
            for elapsed in (0.0, 9.0, 10.0, 45.5, 130.0, 200.0):
                indices, ttl, tta = classify_many(status, elapsed, launches, arrivals, warmup=10.0)
                for i in range(len(launches)):
                    expected = classify(status, elapsed, launches[i], arrivals[i], warmup=10.0)
                    assert LABEL_ORDER[int(indices[i])] == expected.label
                    assert ttl[i] == pytest.approx(expected.time_to_launch)
                    assert tta[i] == pytest.approx(expected.time_to_arrival)

    def test_empty_arrays(self):
        from rally_sync.timing.classifier import classify_many

        indices, ttl, tta = classify_many(COUNTING, 5.0, np.array([]), np.array([]))

        assert len(indices) == 0
        assert len(ttl) == 0


class TestFormatCountdown:

    @pytest.mark.parametrize("seconds,expected", [
        (0, "00:00"),
        (-3.5, "00:00"),
        (None, "00:00"),
        (0.4, "0:00"),
        (5, "0:05"),
        (59.9, "0:59"),
        (60, "1:00"),
        (125.7, "2:05"),
        (3600, "60:00"),
    ])
    def test_format(self, seconds, expected):
        from rally_sync.timing.classifier import format_countdown

        assert format_countdown(seconds) == expected


class TestDisplayValues:

    def test_readouts_per_label(self):
        from rally_sync.timing.classifier import StatusLabel, display_values

        assert display_values(StatusLabel.STANDBY, 0, 0, 30.0, 40.0) == (30.0, 40.0)
        assert display_values(StatusLabel.GET_READY, 3.0, 23.0, 0, 0) == (3.0, 23.0)
        assert display_values(StatusLabel.LAUNCH_NOW, -1.0, 19.0, 0, 0) == (0.0, 19.0)
        assert display_values(StatusLabel.IN_TRANSIT, -8.0, 12.0, 0, 0) == (0.0, 12.0)
        assert display_values(StatusLabel.HIT_TARGET, -30.0, -2.0, 0, 0) == (0.0, 0.0)
