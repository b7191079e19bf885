import os
import sys
import time
import socket
import subprocess
import shutil
from contextlib import closing
from pathlib import Path

import pytest

from connbench.cancellation import CancellationToken
from connbench.errors import ProvisioningError


def pytest_configure(config):
    """
    Hook that runs before test collection.
    Set DATA_DIR environment variable for all tests.
    """
    temp_dir = Path("pytest-data-tmp")

    # Clean up if it exists from a previous run
    if temp_dir.exists():
        shutil.rmtree(temp_dir)

    # Create the directory
    temp_dir.mkdir(parents=True, exist_ok=True)

    # Set environment variable BEFORE any test code imports modules
    os.environ["DATA_DIR"] = str(temp_dir)


def pytest_unconfigure(config):
    """
    Hook that runs after all tests complete.
    Clean up temporary data directory.
    """
    temp_dir = Path("pytest-data-tmp")
    if temp_dir.exists():
        shutil.rmtree(temp_dir)


def _wait_for_port(host: str, port: int, timeout: float = 10.0) -> bool:
    """Wait until a TCP port is accepting connections or timeout."""
    end = time.time() + timeout
    while time.time() < end:
        try:
            with closing(socket.create_connection((host, port), timeout=0.5)):
                return True
        except OSError:
            time.sleep(0.1)
    return False


@pytest.fixture(scope="session")
def api_server(tmp_path_factory):
    """
    Start the query service from `main:app` in a subprocess using uvicorn.

    Yields the base URL (e.g. http://127.0.0.1:8787) to run tests against.
    """
    host = os.environ.get("API_HOST", "127.0.0.1")
    port = int(os.environ.get("API_PORT", "8787"))

    # Launch uvicorn as a subprocess: python -m uvicorn main:app --host HOST --port PORT
    python = sys.executable
    cmd = [python, "-m", "uvicorn", "main:app", "--host", host, "--port", str(port), "--log-level", "warning"]

    env = os.environ.copy()
    log_path = tmp_path_factory.mktemp("server") / "server.log"
    log_file = open(log_path, "wb")

    proc = subprocess.Popen(
        cmd,
        cwd=os.getcwd(),
        stdout=log_file,
        stderr=subprocess.STDOUT,
        env=env,
    )

    started = _wait_for_port(host, port, timeout=15.0)
    if not started:
        proc.kill()
        proc.wait()
        log_file.close()
        raise RuntimeError(f"Server failed to start (port {port} not open). Output:\n{log_path.read_text(errors='ignore')}")

    base_url = f"http://{host}:{port}"

    try:
        yield base_url
    finally:
        # Terminate the server subprocess
        proc.terminate()
        try:
            proc.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        log_file.close()


class FakeConnection:
    def __init__(self, connector: "FakeConnector"):
        self.connector = connector
        self.closed = False

    def execute(self, sql: str):
        self.connector.queries.append(sql)
        if self.connector.fail_work_on == self.connector.connects - 1:
            raise RuntimeError("query failed")
        return [[0]]

    def close(self) -> None:
        self.closed = True
        self.connector.closes += 1
        if self.connector.fail_release_on == self.connector.connects - 1:
            raise RuntimeError("close failed")


class FakeConnector:
    """In-memory connector; can fail a given trial's phase or cancel a token."""

    def __init__(
        self,
        fail_acquire_on: int | None = None,
        fail_work_on: int | None = None,
        fail_release_on: int | None = None,
        cancel_after: int | None = None,
        token: CancellationToken | None = None,
    ):
        self.fail_acquire_on = fail_acquire_on
        self.fail_work_on = fail_work_on
        self.fail_release_on = fail_release_on
        self.cancel_after = cancel_after
        self.token = token
        self.connects = 0
        self.closes = 0
        self.queries: list[str] = []
        self.connections: list[FakeConnection] = []

    def connect(self) -> FakeConnection:
        trial = self.connects
        self.connects += 1
        if self.token is not None and self.connects == self.cancel_after:
            self.token.cancel()
        if self.fail_acquire_on == trial:
            raise ConnectionError("connect failed")
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection


class FakeProvisioner:
    def __init__(self, fail_create: bool = False, fail_drop: bool = False):
        self.fail_create = fail_create
        self.fail_drop = fail_drop
        self.created: list[tuple[str, list[str]]] = []
        self.dropped: list[str] = []

    def create_database(self, name, statements=None):
        if self.fail_create:
            raise ProvisioningError(f"Failed to create database {name}")
        self.created.append((name, list(statements or [])))

    def drop_database(self, name):
        if self.fail_drop:
            raise ProvisioningError(f"Failed to drop database {name}")
        self.dropped.append(name)


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def provisioner():
    return FakeProvisioner()
