"""
Distribution plots and summary files for benchmark results.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend
import matplotlib.pyplot as plt

from connbench.metrics import PhaseStats, SampleSet
from connbench.timing import Stopwatch, Unit

logger = logging.getLogger(__name__)

SEQUENCE_COLOR = "#3498db"
HIST_COLOR = "#2ecc71"
CDF_COLOR = "#9b59b6"


class DistributionReporter:
    """Renders one SVG plot bundle per phase.

    Each bundle is a single figure with three panels: duration per trial in
    run order, a histogram with mean/p50/p99 markers, and the cumulative
    distribution. Rendering only reads the stopwatch.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def render(
        self,
        name: str,
        stopwatch: Stopwatch,
        unit: Unit = Unit.MS,
        scale: float | None = None,
    ) -> Path:
        """Render ``stopwatch`` samples, converted with ``scale``, to ``<name>.svg``."""
        return self.render_samples(SampleSet.from_stopwatch(name, stopwatch, unit, scale))

    def render_samples(self, samples: SampleSet) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{samples.name}.svg"

        fig, (ax_seq, ax_hist, ax_cdf) = plt.subplots(3, 1, figsize=(10, 12))
        fig.suptitle(f"{samples.name}: {len(samples)} samples ({samples.unit.value})")

        if samples.values:
            self._plot_sequence(ax_seq, samples)
            self._plot_histogram(ax_hist, samples)
            self._plot_cdf(ax_cdf, samples)
        else:
            for ax in (ax_seq, ax_hist, ax_cdf):
                ax.text(0.5, 0.5, "no samples", ha="center", va="center", transform=ax.transAxes)
                ax.set_xticks([])
                ax.set_yticks([])

        fig.tight_layout()
        # Keep text as text so the SVG stays searchable.
        with matplotlib.rc_context({"svg.fonttype": "none"}):
            fig.savefig(path, format="svg")
        plt.close(fig)

        logger.info(f"Saved {samples.name} distribution ({len(samples)} samples) to {path}")
        return path

    def _plot_sequence(self, ax, samples: SampleSet) -> None:
        ax.plot(range(len(samples.values)), samples.values, linewidth=0.6, color=SEQUENCE_COLOR)
        ax.set_xlabel("Trial")
        ax.set_ylabel(f"Time ({samples.unit.value})")
        ax.set_title("Duration by trial")

    def _plot_histogram(self, ax, samples: SampleSet) -> None:
        stats = PhaseStats.from_samples(samples)
        unit = samples.unit.value

        ax.hist(samples.values, bins=min(50, len(samples.values)), color=HIST_COLOR, edgecolor="white", alpha=0.8)
        ax.axvline(stats.mean, color="#e74c3c", linestyle="--", linewidth=1.5, label=f"Mean: {stats.mean:.3f}{unit}")
        ax.axvline(stats.p50, color="#34495e", linestyle=":", linewidth=1.5, label=f"P50: {stats.p50:.3f}{unit}")
        ax.axvline(stats.p99, color="#f39c12", linestyle="--", linewidth=1.5, label=f"P99: {stats.p99:.3f}{unit}")
        ax.set_xlabel(f"Time ({unit})")
        ax.set_ylabel("Count")
        ax.set_title("Distribution")
        ax.legend()

    def _plot_cdf(self, ax, samples: SampleSet) -> None:
        ordered = sorted(samples.values)
        n = len(ordered)
        ranks = [100 * (i + 1) / n for i in range(n)]

        ax.step(ordered, ranks, where="post", color=CDF_COLOR)
        ax.set_xlabel(f"Time ({samples.unit.value})")
        ax.set_ylabel("Percentile")
        ax.set_ylim(0, 100)
        ax.set_title("Cumulative distribution")

    def write_summary(self, sample_sets: Iterable[SampleSet], path: Path | None = None) -> Path:
        """Write per-phase ``PhaseStats`` to summary.json."""
        path = path or self.output_dir / "summary.json"
        data = {s.name: PhaseStats.from_samples(s).to_dict() for s in sample_sets}
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Wrote summary to {path}")
        return path

    def write_samples(self, sample_sets: Iterable[SampleSet], path: Path | None = None) -> Path:
        """Write the converted raw samples for every phase."""
        path = path or self.output_dir / "samples.json"
        data = {s.name: {"unit": s.unit.value, "values": list(s.values)} for s in sample_sets}
        with open(path, "w") as f:
            json.dump(data, f)
        logger.info(f"Wrote raw samples to {path}")
        return path
