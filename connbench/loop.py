"""
Bounded repeated-trial loop with cooperative cancellation and progress reporting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from connbench.cancellation import CancellationToken
from connbench.errors import ConfigurationError, TrialError
from connbench.lifecycle import PhaseStopwatches, TrialLifecycle
from connbench.timing import now_ns

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ProgressEvent:
    """Coarse progress: where the loop is and how long the last trial took."""

    index: int
    total: int
    last_trial_ns: int

    @property
    def percent(self) -> int:
        return self.index * 100 // self.total


@dataclass(frozen=True)
class LoopResult:
    """How the loop ended and how many trials completed."""

    state: LoopState
    trials: int
    error: TrialError | None = None

    @property
    def reportable(self) -> bool:
        """Completed and cancelled runs are reported; aborted runs are not."""
        return self.state is not LoopState.ABORTED


class BenchmarkLoop:
    """Drives ``TrialLifecycle`` for a fixed number of trials.

    The loop owns the three phase stopwatches. The cancellation token is
    checked before every trial, never during one. Every ``progress_every``-th
    trial (starting with trial 0) produces a ``ProgressEvent``.
    """

    def __init__(
        self,
        lifecycle: TrialLifecycle,
        trials: int,
        progress_every: int = 100,
        progress_callback: Callable[[ProgressEvent], None] | None = None,
    ):
        if isinstance(trials, bool) or not isinstance(trials, int) or trials < 1:
            raise ConfigurationError(f"Trial count must be a positive integer, got {trials!r}")
        if isinstance(progress_every, bool) or not isinstance(progress_every, int) or progress_every < 1:
            raise ConfigurationError(f"Progress interval must be a positive integer, got {progress_every!r}")

        self.lifecycle = lifecycle
        self.trials = trials
        self.progress_every = progress_every
        self.stopwatches = PhaseStopwatches.create(trials)
        self._progress_callback = progress_callback

    def _report_progress(self, event: ProgressEvent) -> None:
        if self._progress_callback:
            self._progress_callback(event)

    def run(self, token: CancellationToken) -> LoopResult:
        logger.info(f"Running {self.trials} trials")

        for k in range(self.trials):
            if token.is_set():
                logger.info(f"Cancelled after {k} of {self.trials} trials")
                return LoopResult(LoopState.CANCELLED, k)

            start = now_ns()
            outcome = self.lifecycle.run_once(self.stopwatches)
            finish = now_ns()

            if not outcome.ok:
                logger.error(f"Trial {k} failed, aborting run: {outcome.error}")
                return LoopResult(LoopState.ABORTED, k, outcome.error)

            if k % self.progress_every == 0:
                self._report_progress(ProgressEvent(k, self.trials, finish - start))

        logger.info(f"Completed {self.trials} trials")
        return LoopResult(LoopState.COMPLETED, self.trials)
