"""
Error taxonomy for the benchmarking harness.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from connbench.lifecycle import Phase


class BenchmarkError(Exception):
    """Base class for all harness errors."""


class ConfigurationError(BenchmarkError):
    """Invalid trial count, capacity, or other run setting."""


class ProvisioningError(BenchmarkError):
    """The remote database could not be created or dropped."""


class ProfilingError(BenchmarkError):
    """CPU profiling could not be started."""


class StopwatchError(BenchmarkError):
    """A stopwatch lap was started or stopped out of contract."""


class TrialError(BenchmarkError):
    """A trial failed in one of its phases."""

    def __init__(self, phase: Phase, cause: BaseException):
        super().__init__(f"{phase.value} failed: {cause}")
        self.phase = phase
        self.cause = cause
