#!/usr/bin/env python3
"""
CLI entry point for the connection lifecycle benchmark.

Usage:
    python -m connbench
    python -m connbench -n 1000 --progress-every 50 -o ./results
    python -m connbench --no-start-server --server http://db-host:8000
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from connbench.cancellation import CancellationToken, cancel_on_interrupt
from connbench.errors import BenchmarkError, ConfigurationError
from connbench.loop import ProgressEvent
from connbench.session import BenchmarkConfig, BenchmarkSession, DEFAULT_QUERY, default_server_url
from connbench.timing import Unit, format_duration

console = Console(highlight=False)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the benchmark run."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO, three per trial
    logging.getLogger("httpx").setLevel(logging.WARNING)


def print_progress(event: ProgressEvent) -> None:
    console.print(f"{event.percent}%  last:{format_duration(event.last_trial_ns)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="connbench",
        description="Measure connect / query / close latency against a remote database service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # 10000 trials against a locally started query service
    python -m connbench

    # Shorter run, progress every 50 trials, results in ./results
    python -m connbench -n 1000 --progress-every 50 -o ./results

    # Target an already running service
    python -m connbench --no-start-server --server http://db-host:8000

    # Skip CPU profiling
    python -m connbench --no-profiler
        """,
    )

    parser.add_argument(
        "-n", "--trials",
        type=int,
        default=10_000,
        help="Number of trials to run (default: 10000)",
    )

    parser.add_argument(
        "--progress-every",
        type=int,
        default=100,
        help="Print progress every K trials (default: 100)",
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output directory for results (default: connbench_YYYYMMDD_HHMMSS)",
    )

    parser.add_argument(
        "-u", "--unit",
        default=Unit.MS.value,
        choices=[u.value for u in Unit],
        help="Unit used in plots and summary (default: ms)",
    )

    parser.add_argument(
        "--server",
        default=default_server_url(),
        help="Query service URL (default: $CONNBENCH_SERVER_URL or http://localhost:8000)",
    )

    parser.add_argument(
        "--no-start-server",
        action="store_true",
        help="Use an already running query service instead of starting one",
    )

    parser.add_argument(
        "--database",
        default="alpha",
        help="Name of the database created for the run (default: alpha)",
    )

    parser.add_argument(
        "--query",
        default=DEFAULT_QUERY,
        help=f"Query executed once per trial (default: {DEFAULT_QUERY!r})",
    )

    parser.add_argument(
        "--best-effort-release",
        action="store_true",
        help="Log failures to close a session instead of aborting the run",
    )

    parser.add_argument(
        "--no-profiler",
        action="store_true",
        help="Disable CPU profiling",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the benchmark CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose)

    output_dir = args.output or Path(f"connbench_{datetime.now():%Y%m%d_%H%M%S}")

    try:
        config = BenchmarkConfig(
            output_dir=output_dir,
            trials=args.trials,
            progress_every=args.progress_every,
            unit=args.unit,
            database=args.database,
            query=args.query,
            release_best_effort=args.best_effort_release,
            server_url=args.server,
            start_server=not args.no_start_server,
            enable_profiler=not args.no_profiler,
        )
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        return 2

    console.rule("Connection Lifecycle Benchmark")
    console.print(f"  Server:           {config.server_url}{' (started locally)' if config.start_server else ''}")
    console.print(f"  Database:         {config.database}")
    console.print(f"  Query:            {config.query}")
    console.print(f"  Trials:           {config.trials}")
    console.print(f"  Output directory: {config.output_dir}")
    console.print(f"  Profiler enabled: {config.enable_profiler}")
    console.rule()

    token = CancellationToken()
    session = BenchmarkSession(config, token=token, progress_callback=print_progress)

    try:
        with cancel_on_interrupt(token):
            result = session.run()
    except KeyboardInterrupt:
        console.print("\nBenchmark interrupted by user")
        return 130
    except BenchmarkError as e:
        logging.getLogger(__name__).debug("Benchmark failed", exc_info=True)
        console.print(f"\n[red]Error:[/red] {escape(str(e))}")
        return 1

    console.print()
    console.rule("Benchmark Cancelled" if result.cancelled else "Benchmark Complete")
    console.print(f"  Trials run:      {result.trials_completed} of {result.trials_requested}")
    console.print(f"  Wall clock time: {result.wall_time_s:.2f}s")
    console.print()
    console.print("Phase breakdown:")
    for name, stats in result.stats.items():
        console.print(
            f"  {name:<8} mean {stats.mean:>9.3f}{stats.unit}  "
            f"p50 {stats.p50:>9.3f}{stats.unit}  p99 {stats.p99:>9.3f}{stats.unit}"
        )
    console.print()
    console.print(f"Results saved to: {result.output_dir}")
    for name, path in result.plots.items():
        console.print(f"  - {name + ':':<9} {path}")
    console.print(f"  - summary:  {result.output_dir / 'summary.json'}")
    if config.enable_profiler:
        console.print(f"  - profile:  {result.output_dir / 'traces' / 'cpu_trace.json'}")
    console.rule()

    return 0


if __name__ == "__main__":
    sys.exit(main())
