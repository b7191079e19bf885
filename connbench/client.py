"""
HTTP clients for the reference query service.

``AdminClient`` provisions and drops the benchmark database once per run.
``HttpConnector`` is what a trial measures: every ``connect()`` opens a fresh
HTTP connection and a server-side session.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from connbench.errors import ProvisioningError

logger = logging.getLogger(__name__)


class AdminClient:
    """Creates and drops databases on the query service."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.Client | None = None

    def __enter__(self) -> AdminClient:
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
        )
        return self

    def __exit__(self, *args) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'with' context manager.")
        return self._client

    def health_check(self) -> bool:
        """Check if the server is responding."""
        try:
            response = self.client.get("/health")
            return response.status_code == 200
        except httpx.RequestError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    def create_database(self, name: str, statements: list[str] | None = None) -> None:
        try:
            response = self.client.post(
                "/databases",
                json={"name": name, "statements": statements or []},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProvisioningError(f"Failed to create database {name}: {_describe(e)}") from e
        logger.info(f"Created database {name}")

    def drop_database(self, name: str) -> None:
        try:
            response = self.client.delete(f"/databases/{name}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProvisioningError(f"Failed to drop database {name}: {_describe(e)}") from e
        logger.info(f"Dropped database {name}")


class HttpConnection:
    """One open session on the query service."""

    def __init__(self, client: httpx.Client, session_id: str):
        self._client = client
        self.session_id = session_id
        self.closed = False

    def execute(self, sql: str) -> list[list[Any]]:
        response = self._client.post(f"/sessions/{self.session_id}/query", json={"sql": sql})
        response.raise_for_status()
        return response.json()["rows"]

    def close(self) -> None:
        """Delete the session, then close the HTTP connection either way."""
        if self.closed:
            return
        self.closed = True
        try:
            response = self._client.delete(f"/sessions/{self.session_id}")
            response.raise_for_status()
        finally:
            self._client.close()


class HttpConnector:
    """Opens sessions on one database, each over its own HTTP connection."""

    def __init__(self, base_url: str, database: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.database = database
        self.timeout = timeout

    def connect(self) -> HttpConnection:
        client = httpx.Client(base_url=self.base_url, timeout=httpx.Timeout(self.timeout))
        try:
            response = client.post(f"/databases/{self.database}/sessions")
            response.raise_for_status()
            session_id = response.json()["session_id"]
        except Exception:
            client.close()
            raise
        return HttpConnection(client, session_id)


def _describe(error: httpx.HTTPError) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"{error.response.status_code} {error.response.text}"
    return str(error)


def wait_for_server(
    base_url: str,
    timeout: float = 60.0,
    poll_interval: float = 0.5,
    is_alive: Callable[[], bool] | None = None,
) -> bool:
    """Wait for the server to become available.

    Args:
        base_url: Server URL to check
        timeout: Maximum time to wait in seconds
        poll_interval: Time between checks in seconds
        is_alive: Optional check for a locally started server process; waiting
            stops as soon as it returns False

    Returns:
        True if server is available, False if timeout reached or the process died
    """
    start = time.monotonic()
    with httpx.Client(base_url=base_url, timeout=5.0) as client:
        while time.monotonic() - start < timeout:
            if is_alive is not None and not is_alive():
                return False
            try:
                response = client.get("/health")
                if response.status_code == 200:
                    return True
            except httpx.RequestError:
                pass
            time.sleep(poll_interval)

    return False
