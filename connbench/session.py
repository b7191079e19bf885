"""
Benchmark session orchestrator.

Manages the full run: optional server startup, database provisioning, CPU
profiling around the trial loop, teardown, and report generation.
"""

from __future__ import annotations

import logging
import os
import socket
import subprocess
import sys
from contextlib import ExitStack, closing, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, Protocol

import httpx

from connbench.cancellation import CancellationToken
from connbench.client import AdminClient, HttpConnector, wait_for_server
from connbench.errors import ConfigurationError, ProvisioningError
from connbench.lifecycle import Connector, TrialLifecycle
from connbench.loop import BenchmarkLoop, LoopState, ProgressEvent
from connbench.metrics import PhaseStats, SampleSet
from connbench.profiler import CpuProfiler
from connbench.report import DistributionReporter
from connbench.timing import Unit

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DDL = [
    "CREATE TABLE IF NOT EXISTS projects ( project_id BLOB NOT NULL PRIMARY KEY )",
]
DEFAULT_QUERY = "SELECT count(1) FROM projects"
DEFAULT_SERVER_PORT = 8000


class Provisioner(Protocol):
    def create_database(self, name: str, statements: list[str] | None = None) -> None: ...

    def drop_database(self, name: str) -> None: ...


def default_server_url() -> str:
    return os.environ.get("CONNBENCH_SERVER_URL", "http://localhost:8000")


def _port_in_use(host: str, port: int) -> bool:
    """True if something already accepts connections on ``host:port``."""
    try:
        with closing(socket.create_connection((host, port), timeout=0.5)):
            return True
    except OSError:
        return False


@dataclass
class BenchmarkConfig:
    """Configuration for a benchmark run."""

    output_dir: Path
    trials: int = 10_000
    progress_every: int = 100
    unit: Unit = Unit.MS

    # What each trial does
    database: str = "alpha"
    ddl: list[str] = field(default_factory=lambda: list(DEFAULT_DDL))
    query: str = DEFAULT_QUERY
    release_best_effort: bool = False

    # Server configuration
    server_url: str = field(default_factory=default_server_url)
    start_server: bool = True  # If True, start the query service as a subprocess
    server_startup_timeout: float = 60.0  # Seconds to wait for server
    request_timeout: float = 30.0

    enable_profiler: bool = True

    def __post_init__(self) -> None:
        """Coerce types and reject invalid settings before anything runs."""
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if isinstance(self.unit, str) and not isinstance(self.unit, Unit):
            try:
                self.unit = Unit(self.unit)
            except ValueError:
                raise ConfigurationError(f"Unknown unit {self.unit!r}") from None
        if not isinstance(self.unit, Unit):
            raise ConfigurationError(f"Unknown unit {self.unit!r}")

        if isinstance(self.trials, bool) or not isinstance(self.trials, int) or self.trials < 1:
            raise ConfigurationError(f"Trial count must be a positive integer, got {self.trials!r}")
        if isinstance(self.progress_every, bool) or not isinstance(self.progress_every, int) or self.progress_every < 1:
            raise ConfigurationError(f"Progress interval must be a positive integer, got {self.progress_every!r}")
        if not self.database:
            raise ConfigurationError("Database name must not be empty")
        if not self.query.strip():
            raise ConfigurationError("Query must not be empty")
        if self.server_startup_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")


@dataclass
class BenchmarkResult:
    """Result of a completed or cancelled benchmark run."""

    state: LoopState
    trials_requested: int
    trials_completed: int
    stats: dict[str, PhaseStats]
    plots: dict[str, Path]
    output_dir: Path
    start_time: datetime
    end_time: datetime

    @property
    def cancelled(self) -> bool:
        return self.state is LoopState.CANCELLED

    @property
    def wall_time_s(self) -> float:
        """Total wall clock time in seconds."""
        return (self.end_time - self.start_time).total_seconds()


class BenchmarkSession:
    """Manages a complete benchmark run.

    Orchestrates:
    - Server startup (optional)
    - Database creation, and its removal on the way out
    - CPU profiling around the trial loop
    - The trial loop itself
    - Report generation (skipped when the loop aborts)

    Collaborators default to the HTTP implementations and can be injected.
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        token: CancellationToken | None = None,
        progress_callback: Callable[[ProgressEvent], None] | None = None,
        provisioner: Provisioner | None = None,
        connector: Connector | None = None,
        profiler: CpuProfiler | None = None,
    ):
        self.config = config
        self.token = token or CancellationToken()
        self.profiler = profiler or CpuProfiler(config.output_dir, enabled=config.enable_profiler)
        self._progress_callback = progress_callback
        self._provisioner = provisioner
        self._connector = connector
        self.server_url = config.server_url
        self._server_process: subprocess.Popen | None = None
        self._log_handler: logging.Handler | None = None

    def _start_server(self) -> None:
        """Start the query service as a uvicorn subprocess."""
        url = httpx.URL(self.config.server_url)
        host = url.host or "127.0.0.1"
        port = url.port or DEFAULT_SERVER_PORT
        if url.port is None:
            self.server_url = str(url.copy_with(port=port))
        server_log_path = self.config.output_dir / "logs" / "server.log"

        if _port_in_use(host, port):
            raise ProvisioningError(
                f"Cannot start query service: {host}:{port} is already in use. "
                f"Pass --no-start-server to benchmark the running service"
            )

        logger.info(f"Starting query service on {host}:{port}...")

        env = os.environ.copy()
        env.setdefault("DATA_DIR", str((self.config.output_dir / "data").resolve()))
        server_log = open(server_log_path, "ab")
        try:
            self._server_process = subprocess.Popen(
                [sys.executable, "-m", "uvicorn", "main:app", "--host", host, "--port", str(port)],
                stdout=server_log,
                stderr=subprocess.STDOUT,
                cwd=PROJECT_ROOT,
                env=env,
            )
        finally:
            server_log.close()

        logger.info(f"Waiting for server at {self.server_url}...")
        ready = wait_for_server(
            self.server_url,
            timeout=self.config.server_startup_timeout,
            is_alive=self._server_running,
        )
        if not self._server_running():
            code = self._server_process.returncode
            self._stop_server()
            raise ProvisioningError(f"Server exited with code {code} during startup. See {server_log_path}")
        if not ready:
            self._stop_server()
            raise ProvisioningError(
                f"Server failed to start within {self.config.server_startup_timeout}s. See {server_log_path}"
            )

        logger.info("Server is ready")

    def _server_running(self) -> bool:
        return self._server_process is not None and self._server_process.poll() is None

    def _stop_server(self) -> None:
        """Stop the server subprocess if running."""
        if self._server_process:
            logger.info("Stopping server...")
            self._server_process.terminate()
            try:
                self._server_process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._server_process.kill()
                self._server_process.wait()
            self._server_process = None

    def setup(self) -> None:
        """Create output directories and the run log."""
        self.config.output_dir.mkdir(parents=True, exist_ok=True)
        (self.config.output_dir / "logs").mkdir(exist_ok=True)

        log_path = self.config.output_dir / "logs" / "benchmark.log"
        self._log_handler = logging.FileHandler(log_path)
        self._log_handler.setLevel(logging.DEBUG)
        self._log_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logging.getLogger().addHandler(self._log_handler)

    def teardown(self) -> None:
        if self._log_handler:
            logging.getLogger().removeHandler(self._log_handler)
            self._log_handler.close()
            self._log_handler = None

    @contextmanager
    def _provisioned(self, provisioner: Provisioner) -> Generator[None, None, None]:
        """Create the benchmark database and drop it when the block exits.

        A failed drop is fatal, unless the block is already failing, in which
        case it is only logged so the original error surfaces.
        """
        provisioner.create_database(self.config.database, self.config.ddl)
        try:
            yield
        except BaseException:
            try:
                provisioner.drop_database(self.config.database)
            except ProvisioningError as e:
                logger.error(f"Cleanup failed: {e}")
            raise
        provisioner.drop_database(self.config.database)

    def run(self) -> BenchmarkResult:
        """Execute the full benchmark.

        Raises:
            ProvisioningError: the database could not be created or dropped
            ProfilingError: the CPU profiler could not be started
            TrialError: a trial failed; no reports are written
        """
        start_time = datetime.now()
        self.setup()
        try:
            logger.info(f"Starting benchmark at {start_time}")

            with ExitStack() as stack:
                if self.config.start_server:
                    stack.callback(self._stop_server)
                    self._start_server()

                provisioner = self._provisioner
                if provisioner is None:
                    provisioner = stack.enter_context(
                        AdminClient(self.server_url, timeout=self.config.request_timeout)
                    )
                connector = self._connector or HttpConnector(
                    self.server_url,
                    self.config.database,
                    timeout=self.config.request_timeout,
                )

                loop = BenchmarkLoop(
                    TrialLifecycle(connector, self.config.query, self.config.release_best_effort),
                    self.config.trials,
                    self.config.progress_every,
                    self._progress_callback,
                )
                with self._provisioned(provisioner):
                    with self.profiler.recording():
                        loop_result = loop.run(self.token)
                    if not loop_result.reportable:
                        raise loop_result.error

            end_time = datetime.now()
            logger.info(f"Benchmark finished ({loop_result.state.value}) at {end_time}")
            return self._generate_reports(loop, loop_result.state, loop_result.trials, start_time, end_time)
        finally:
            self.teardown()

    def _generate_reports(
        self,
        loop: BenchmarkLoop,
        state: LoopState,
        trials: int,
        start_time: datetime,
        end_time: datetime,
    ) -> BenchmarkResult:
        reporter = DistributionReporter(self.config.output_dir)
        unit = self.config.unit

        plots = {phase.value: reporter.render(phase.value, sw, unit) for phase, sw in loop.stopwatches}
        sample_sets = [SampleSet.from_stopwatch(phase.value, sw, unit) for phase, sw in loop.stopwatches]
        reporter.write_summary(sample_sets)
        reporter.write_samples(sample_sets)

        logger.info(f"Reports generated in {self.config.output_dir}")
        return BenchmarkResult(
            state=state,
            trials_requested=self.config.trials,
            trials_completed=trials,
            stats={s.name: PhaseStats.from_samples(s) for s in sample_sets},
            plots=plots,
            output_dir=self.config.output_dir,
            start_time=start_time,
            end_time=end_time,
        )
