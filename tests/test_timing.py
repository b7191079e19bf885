import time

import pytest
from hypothesis import given
from hypothesis import strategies as st

from connbench.errors import ConfigurationError, StopwatchError
from connbench.timing import Stopwatch, Unit, format_duration


@pytest.mark.parametrize("capacity", [0, -1, 1.5, "10", True])
def test_invalid_capacity_rejected(capacity):
    """Capacity must be a positive integer."""
    with pytest.raises(ConfigurationError):
        Stopwatch(capacity)


def test_laps_recorded_in_order():
    """Completed laps come back in start order with non-negative durations."""
    sw = Stopwatch(3, "work")
    for delay in (0.0, 0.002, 0.0):
        lap = sw.start()
        time.sleep(delay)
        sw.stop(lap)

    elapsed = sw.elapsed_ns()
    assert len(elapsed) == 3
    assert len(sw) == 3
    assert all(d >= 0 for d in elapsed)
    assert elapsed[1] >= 2_000_000


def test_capacity_exhausted():
    sw = Stopwatch(1)
    sw.stop(sw.start())
    with pytest.raises(StopwatchError):
        sw.start()


def test_overlapping_laps_rejected():
    """A lap must be stopped before the next one starts."""
    sw = Stopwatch(2)
    sw.start()
    with pytest.raises(StopwatchError):
        sw.start()


def test_lap_stopped_twice_rejected():
    sw = Stopwatch(2)
    lap = sw.start()
    sw.stop(lap)
    with pytest.raises(StopwatchError):
        sw.stop(lap)
    assert len(sw) == 1


def test_foreign_lap_rejected():
    a = Stopwatch(1)
    b = Stopwatch(1)
    a.start()
    lap_b = b.start()
    with pytest.raises(StopwatchError):
        a.stop(lap_b)


def test_unstopped_lap_excluded():
    """An in-flight lap is not part of the elapsed durations."""
    sw = Stopwatch(2)
    sw.stop(sw.start())
    sw.start()

    assert sw.in_flight
    assert len(sw) == 1
    assert len(sw.elapsed_ns()) == 1


def test_discard_releases_slot():
    """A discarded lap frees its slot for the next start."""
    sw = Stopwatch(1)
    lap = sw.start()
    sw.discard(lap)

    assert len(sw) == 0
    assert not sw.in_flight

    sw.stop(sw.start())
    assert len(sw) == 1


def test_unit_scale_factors():
    assert Unit.NS.to_display(1_500) == 1_500
    assert Unit.US.to_display(1_500) == pytest.approx(1.5)
    assert Unit.MS.to_display(2_000_000) == pytest.approx(2.0)
    assert Unit.S.to_display(3_000_000_000) == pytest.approx(3.0)
    assert Unit("ms") is Unit.MS


@given(
    unit=st.sampled_from(list(Unit)),
    value=st.floats(min_value=0.0, max_value=1e9, allow_nan=False, allow_infinity=False),
)
def test_unit_conversion_round_trip(unit, value):
    """Converting to native and back returns the original value."""
    assert unit.to_display(unit.to_native(value)) == pytest.approx(value, rel=1e-9, abs=1e-12)


@given(
    unit=st.sampled_from(list(Unit)),
    a=st.integers(min_value=0, max_value=10**12),
    b=st.integers(min_value=0, max_value=10**12),
)
def test_unit_conversion_is_linear(unit, a, b):
    assert unit.to_display(a + b) == pytest.approx(unit.to_display(a) + unit.to_display(b), rel=1e-9)


@pytest.mark.parametrize(
    "ns, expected",
    [
        (0, "0ns"),
        (850, "850ns"),
        (12_500, "12.5µs"),
        (3_042_000, "3.042ms"),
        (2_000_000, "2ms"),
        (1_200_000_000, "1.2s"),
        (999_999, "999.999µs"),
        (999_999_600, "1s"),
        (999_999_400, "999.999ms"),
    ],
)
def test_format_duration(ns, expected):
    assert format_duration(ns) == expected
