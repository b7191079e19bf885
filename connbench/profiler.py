"""
CPU profiler wrapper around torch.profiler.

Produces, under ``<output_dir>/traces``:
- cpu_trace.json: Chrome Trace format, viewable in Perfetto UI
  (https://ui.perfetto.dev/) or chrome://tracing
- cpu_stacks.txt: collapsed stacks for flamegraph tools such as speedscope
- profiler_summary.txt: table of the most expensive operators
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import torch.profiler

from connbench.errors import ProfilingError

logger = logging.getLogger(__name__)


class CpuProfiler:
    """Records CPU activity (with Python stacks) between ``start`` and ``stop``.

    Failing to start raises ``ProfilingError``. Anything that goes wrong while
    stopping or exporting is logged and otherwise ignored.
    """

    def __init__(self, output_dir: Path, enabled: bool = True):
        self.output_dir = Path(output_dir)
        self.enabled = enabled
        self._profiler: torch.profiler.profile | None = None

    @property
    def is_active(self) -> bool:
        return self._profiler is not None

    @property
    def traces_dir(self) -> Path:
        return self.output_dir / "traces"

    def start(self) -> None:
        if not self.enabled:
            return
        if self._profiler is not None:
            raise ProfilingError("CPU profiler is already recording")

        try:
            self.traces_dir.mkdir(parents=True, exist_ok=True)
            profiler = torch.profiler.profile(
                activities=[torch.profiler.ProfilerActivity.CPU],
                with_stack=True,
            )
            profiler.start()
        except Exception as e:
            raise ProfilingError(f"Failed to start CPU profiler: {e}") from e

        self._profiler = profiler
        logger.info("CPU profiler started")

    def stop(self) -> None:
        if self._profiler is None:
            return

        profiler, self._profiler = self._profiler, None
        try:
            profiler.stop()
        except Exception as e:
            logger.warning(f"Failed to stop CPU profiler: {e}")
            return

        logger.info("CPU profiler stopped")
        self._export(profiler)

    @contextmanager
    def recording(self) -> Generator[None, None, None]:
        """Profile the enclosed block."""
        self.start()
        try:
            yield
        finally:
            self.stop()

    def _export(self, profiler: torch.profiler.profile) -> None:
        trace_path = self.traces_dir / "cpu_trace.json"
        try:
            profiler.export_chrome_trace(str(trace_path))
            logger.info(f"Exported Chrome trace to {trace_path}")
        except Exception as e:
            logger.warning(f"Failed to export Chrome trace: {e}")

        stacks_path = self.traces_dir / "cpu_stacks.txt"
        try:
            profiler.export_stacks(str(stacks_path), "self_cpu_time_total")
            logger.info(f"Exported CPU stacks to {stacks_path}")
        except Exception as e:
            logger.warning(f"Failed to export CPU stacks: {e}")

        summary_path = self.traces_dir / "profiler_summary.txt"
        try:
            summary = profiler.key_averages().table(sort_by="cpu_time_total", row_limit=50)
            with open(summary_path, "w") as f:
                f.write(summary)
            logger.info(f"Exported profiler summary to {summary_path}")
        except Exception as e:
            logger.warning(f"Failed to export profiler summary: {e}")
