"""
Sample extraction and summary statistics for recorded phases.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Any

from connbench.timing import Stopwatch, Unit


@dataclass(frozen=True)
class SampleSet:
    """Durations from one stopwatch, converted to a display unit."""

    name: str
    unit: Unit
    values: tuple[float, ...]

    @classmethod
    def from_stopwatch(
        cls,
        name: str,
        stopwatch: Stopwatch,
        unit: Unit = Unit.MS,
        scale: float | None = None,
    ) -> SampleSet:
        """Convert ``stopwatch`` samples with ``scale`` (display units per ns).

        ``scale`` defaults to the unit's own factor.
        """
        factor = unit.scale if scale is None else scale
        return cls(name, unit, tuple(ns * factor for ns in stopwatch.elapsed_ns()))

    def __len__(self) -> int:
        return len(self.values)


def percentile(data: list[float], p: float) -> float:
    """Linear-interpolated percentile of already sorted ``data``."""
    if not data:
        return 0.0
    k = (len(data) - 1) * p / 100
    f = int(k)
    c = f + 1 if f + 1 < len(data) else f
    return data[f] + (k - f) * (data[c] - data[f]) if c != f else data[f]


@dataclass
class PhaseStats:
    """Statistical summary for a single phase."""

    name: str
    unit: str
    count: int
    mean: float
    std: float
    min: float
    max: float
    p50: float
    p90: float
    p95: float
    p99: float
    total: float

    @classmethod
    def from_samples(cls, samples: SampleSet) -> PhaseStats:
        values = list(samples.values)
        if not values:
            return cls(
                name=samples.name,
                unit=samples.unit.value,
                count=0,
                mean=0.0,
                std=0.0,
                min=0.0,
                max=0.0,
                p50=0.0,
                p90=0.0,
                p95=0.0,
                p99=0.0,
                total=0.0,
            )

        ordered = sorted(values)
        return cls(
            name=samples.name,
            unit=samples.unit.value,
            count=len(values),
            mean=statistics.mean(values),
            std=statistics.stdev(values) if len(values) > 1 else 0.0,
            min=ordered[0],
            max=ordered[-1],
            p50=percentile(ordered, 50),
            p90=percentile(ordered, 90),
            p95=percentile(ordered, 95),
            p99=percentile(ordered, 99),
            total=sum(values),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "unit": self.unit,
            "count": self.count,
            "mean": self.mean,
            "std": self.std,
            "min": self.min,
            "max": self.max,
            "p50": self.p50,
            "p90": self.p90,
            "p95": self.p95,
            "p99": self.p99,
            "total": self.total,
        }
