"""
A single benchmark trial: acquire a connection, run one query, release it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Protocol

from connbench.errors import TrialError
from connbench.timing import Stopwatch

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """The timed sub-steps of a trial, in execution order."""

    ACQUIRE = "acquire"
    WORK = "work"
    RELEASE = "release"


class Connection(Protocol):
    def execute(self, sql: str) -> Any: ...

    def close(self) -> None: ...


class Connector(Protocol):
    def connect(self) -> Connection: ...


@dataclass
class PhaseStopwatches:
    """One stopwatch per phase, all with the same capacity."""

    acquire: Stopwatch
    work: Stopwatch
    release: Stopwatch

    @classmethod
    def create(cls, capacity: int) -> PhaseStopwatches:
        return cls(
            acquire=Stopwatch(capacity, Phase.ACQUIRE.value),
            work=Stopwatch(capacity, Phase.WORK.value),
            release=Stopwatch(capacity, Phase.RELEASE.value),
        )

    def get(self, phase: Phase) -> Stopwatch:
        return getattr(self, phase.value)

    def __iter__(self) -> Iterator[tuple[Phase, Stopwatch]]:
        for phase in Phase:
            yield phase, self.get(phase)

    def counts(self) -> dict[Phase, int]:
        """Completed laps per phase."""
        return {phase: len(sw) for phase, sw in self}


@dataclass(frozen=True)
class TrialOutcome:
    """Result of one trial. ``error`` is None when every phase succeeded."""

    error: TrialError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def phase(self) -> Phase | None:
        """Phase that failed, if any."""
        return self.error.phase if self.error else None

    @classmethod
    def failed(cls, phase: Phase, cause: BaseException) -> TrialOutcome:
        return cls(error=TrialError(phase, cause))


SUCCESS = TrialOutcome()


class TrialLifecycle:
    """Runs acquire -> work -> release, lapping each phase's stopwatch.

    Each lap brackets exactly one collaborator call. A failed acquire or work
    step discards its lap, so every phase ends up with the same number of
    samples. Release failures are fatal unless ``release_best_effort`` is set,
    in which case they are logged and the trial still counts.
    """

    def __init__(self, connector: Connector, query: str, release_best_effort: bool = False):
        self.connector = connector
        self.query = query
        self.release_best_effort = release_best_effort

    def run_once(self, stopwatches: PhaseStopwatches) -> TrialOutcome:
        lap = stopwatches.acquire.start()
        try:
            connection = self.connector.connect()
        except Exception as e:
            stopwatches.acquire.discard(lap)
            return TrialOutcome.failed(Phase.ACQUIRE, e)
        else:
            stopwatches.acquire.stop(lap)

        lap = stopwatches.work.start()
        try:
            connection.execute(self.query)
        except Exception as e:
            stopwatches.work.discard(lap)
            _close_quietly(connection)
            return TrialOutcome.failed(Phase.WORK, e)
        else:
            stopwatches.work.stop(lap)

        lap = stopwatches.release.start()
        try:
            connection.close()
        except Exception as e:
            stopwatches.release.stop(lap)
            if not self.release_best_effort:
                return TrialOutcome.failed(Phase.RELEASE, e)
            logger.warning(f"Ignoring release failure: {e}")
        else:
            stopwatches.release.stop(lap)

        return SUCCESS


def _close_quietly(connection: Connection) -> None:
    """Close a connection after a failed trial; errors are only logged."""
    try:
        connection.close()
    except Exception as e:
        logger.warning(f"Failed to close connection after trial error: {e}")
