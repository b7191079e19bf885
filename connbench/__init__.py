"""
Connection lifecycle benchmark.

Measures the latency of connecting to a remote database service, running one
fixed query, and closing the connection, over many sequential trials, and
plots the distribution of each phase.

Usage:
    python -m connbench
    python -m connbench -n 1000 -o ./results
    python -m connbench --no-start-server --server http://localhost:8000
"""

from connbench.timing import Lap, Stopwatch, Unit, format_duration, now_ns
from connbench.errors import (
    BenchmarkError,
    ConfigurationError,
    ProfilingError,
    ProvisioningError,
    StopwatchError,
    TrialError,
)
from connbench.cancellation import CancellationToken, cancel_on_interrupt
from connbench.lifecycle import Phase, PhaseStopwatches, TrialLifecycle, TrialOutcome
from connbench.loop import BenchmarkLoop, LoopResult, LoopState, ProgressEvent
from connbench.metrics import PhaseStats, SampleSet
from connbench.report import DistributionReporter
from connbench.client import AdminClient, HttpConnection, HttpConnector
from connbench.session import BenchmarkConfig, BenchmarkSession, BenchmarkResult

__all__ = [
    # Timing primitives
    "Lap",
    "Stopwatch",
    "Unit",
    "format_duration",
    "now_ns",
    # Errors
    "BenchmarkError",
    "ConfigurationError",
    "ProfilingError",
    "ProvisioningError",
    "StopwatchError",
    "TrialError",
    # Cancellation
    "CancellationToken",
    "cancel_on_interrupt",
    # Trial loop
    "Phase",
    "PhaseStopwatches",
    "TrialLifecycle",
    "TrialOutcome",
    "BenchmarkLoop",
    "LoopResult",
    "LoopState",
    "ProgressEvent",
    # Reporting
    "PhaseStats",
    "SampleSet",
    "DistributionReporter",
    # HTTP client
    "AdminClient",
    "HttpConnection",
    "HttpConnector",
    # Session management
    "BenchmarkConfig",
    "BenchmarkSession",
    "BenchmarkResult",
]
