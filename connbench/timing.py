"""
Core timing primitives for the benchmarking system.

A ``Stopwatch`` is a fixed arena of ``(start_ns, stop_ns)`` slots, one per
trial, filled strictly in order. All timestamps come from
``time.perf_counter_ns``, which is monotonic, so recorded intervals are never
negative.
"""

from __future__ import annotations

import time
from enum import Enum

from connbench.errors import ConfigurationError, StopwatchError


def now_ns() -> int:
    """Current monotonic timestamp in nanoseconds."""
    return time.perf_counter_ns()


class Unit(str, Enum):
    """Display units for recorded durations."""

    NS = "ns"
    US = "us"
    MS = "ms"
    S = "s"

    @property
    def scale(self) -> float:
        """Display units per nanosecond."""
        return _SCALES[self]

    def to_display(self, ns: float) -> float:
        return ns * self.scale

    def to_native(self, value: float) -> float:
        return value / self.scale


_SCALES = {
    Unit.NS: 1.0,
    Unit.US: 1e-3,
    Unit.MS: 1e-6,
    Unit.S: 1e-9,
}


def format_duration(ns: int) -> str:
    """Format a nanosecond duration the way a human reads it, e.g. ``3.042ms``."""
    if ns < 1_000:
        return f"{ns}ns"
    for divisor, suffix in ((1_000, "µs"), (1_000_000, "ms")):
        # pick the unit after rounding so 999.9996ms reads as 1s
        value = round(ns / divisor, 3)
        if value < 1_000:
            return _trim(value) + suffix
    return _trim(ns / 1_000_000_000) + "s"


def _trim(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


class Lap:
    """Handle for one in-flight interval on a stopwatch."""

    __slots__ = ("index",)

    def __init__(self, index: int):
        self.index = index

    def __repr__(self) -> str:
        return f"Lap({self.index})"


class Stopwatch:
    """Records up to ``capacity`` start/stop intervals for one named phase.

    Laps are issued and consumed in FIFO order and never overlap: a lap must be
    stopped (or discarded) before the next one starts. Slots are preallocated
    so that taking a lap never grows a list mid-measurement.

    Usage:
        lap = stopwatch.start()
        do_work()
        stopwatch.stop(lap)
    """

    def __init__(self, capacity: int, name: str = ""):
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ConfigurationError(f"Stopwatch capacity must be a positive integer, got {capacity!r}")
        self.name = name
        self.capacity = capacity
        self._starts = [0] * capacity
        self._stops = [0] * capacity
        self._next = 0
        self._in_flight: Lap | None = None

    def __len__(self) -> int:
        """Number of completed laps."""
        return self._next - (1 if self._in_flight is not None else 0)

    def __repr__(self) -> str:
        return f"Stopwatch(name={self.name!r}, capacity={self.capacity}, completed={len(self)})"

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    def start(self) -> Lap:
        """Reserve the next slot and record its start timestamp."""
        if self._in_flight is not None:
            raise StopwatchError(f"{self.name or 'stopwatch'}: {self._in_flight!r} is still running")
        if self._next >= self.capacity:
            raise StopwatchError(f"{self.name or 'stopwatch'}: capacity of {self.capacity} laps exhausted")

        lap = Lap(self._next)
        self._next += 1
        self._in_flight = lap
        # Clock read last so slot bookkeeping is outside the interval.
        self._starts[lap.index] = time.perf_counter_ns()
        return lap

    def stop(self, lap: Lap) -> None:
        """Record the stop timestamp for ``lap``."""
        stopped_at = time.perf_counter_ns()
        self._check_in_flight(lap)
        self._stops[lap.index] = stopped_at
        self._in_flight = None

    def discard(self, lap: Lap) -> None:
        """Release the slot held by ``lap`` without recording a sample."""
        self._check_in_flight(lap)
        self._next = lap.index
        self._in_flight = None

    def _check_in_flight(self, lap: Lap) -> None:
        if lap is not self._in_flight:
            raise StopwatchError(f"{self.name or 'stopwatch'}: {lap!r} is not the running lap")

    def elapsed_ns(self) -> list[int]:
        """Durations of all completed laps, in start order.

        A lap that was started but not stopped is not included.
        """
        return [self._stops[i] - self._starts[i] for i in range(len(self))]
