import httpx
import pytest

from connbench.client import AdminClient, HttpConnector, wait_for_server
from connbench.errors import ProvisioningError
from connbench.loop import LoopState
from connbench.session import DEFAULT_DDL, BenchmarkConfig, BenchmarkSession


def test_wait_for_server(api_server):
    assert wait_for_server(api_server, timeout=5.0)


def test_wait_for_server_times_out():
    assert not wait_for_server("http://127.0.0.1:9", timeout=0.3, poll_interval=0.1)


def test_admin_requires_context_manager():
    with pytest.raises(RuntimeError):
        AdminClient().client


def test_admin_create_and_drop(api_server):
    with AdminClient(api_server) as admin:
        assert admin.health_check()
        admin.create_database("client_admin", DEFAULT_DDL)
        with pytest.raises(ProvisioningError, match="409"):
            admin.create_database("client_admin", DEFAULT_DDL)
        admin.drop_database("client_admin")
        with pytest.raises(ProvisioningError, match="404"):
            admin.drop_database("client_admin")


def test_admin_unreachable_server():
    with AdminClient("http://127.0.0.1:9", timeout=1.0) as admin:
        assert not admin.health_check()
        with pytest.raises(ProvisioningError):
            admin.create_database("client_unreachable")


def test_connection_lifecycle(api_server):
    with AdminClient(api_server) as admin:
        admin.create_database("client_conn", DEFAULT_DDL)
        try:
            connection = HttpConnector(api_server, "client_conn").connect()
            assert connection.execute("SELECT count(1) FROM projects") == [[0]]
            connection.close()
            assert connection.closed
            connection.close()
        finally:
            admin.drop_database("client_conn")


def test_connect_to_missing_database(api_server):
    with pytest.raises(httpx.HTTPStatusError):
        HttpConnector(api_server, "client_missing").connect()


def test_failed_query_raises(api_server):
    with AdminClient(api_server) as admin:
        admin.create_database("client_badquery", DEFAULT_DDL)
        try:
            connection = HttpConnector(api_server, "client_badquery").connect()
            with pytest.raises(httpx.HTTPStatusError):
                connection.execute("SELECT * FROM nowhere")
            connection.close()
        finally:
            admin.drop_database("client_badquery")


def test_end_to_end_run(api_server, tmp_path):
    """A short run against the real service produces all artifacts and cleans up."""
    events = []
    config = BenchmarkConfig(
        output_dir=tmp_path,
        trials=20,
        progress_every=5,
        database="client_e2e",
        server_url=api_server,
        start_server=False,
        enable_profiler=False,
    )

    result = BenchmarkSession(config, progress_callback=events.append).run()

    assert result.state is LoopState.COMPLETED
    assert result.trials_completed == 20
    assert [e.index for e in events] == [0, 5, 10, 15]
    for name in ("acquire", "work", "release"):
        assert "20 samples" in (tmp_path / f"{name}.svg").read_text()
        assert result.stats[name].count == 20
        assert result.stats[name].min >= 0

    with httpx.Client(base_url=api_server) as http:
        assert http.post("/databases/client_e2e/sessions").status_code == 404


def test_wait_for_server_stops_when_process_dies(api_server):
    """A dead local process ends the wait even if something else answers on the port."""
    assert not wait_for_server(api_server, timeout=5.0, is_alive=lambda: False)


def test_session_refuses_port_held_by_another_server(api_server, tmp_path):
    """Starting a server on a busy port fails instead of benchmarking whoever owns it."""
    config = BenchmarkConfig(
        output_dir=tmp_path,
        trials=5,
        database="client_foreign",
        server_url=api_server,
        start_server=True,
        enable_profiler=False,
    )
    session = BenchmarkSession(config)

    with pytest.raises(ProvisioningError, match="already in use"):
        session.run()

    assert session._server_process is None
    assert not (tmp_path / "acquire.svg").exists()
    with AdminClient(api_server) as admin:
        with pytest.raises(ProvisioningError, match="404"):
            admin.drop_database("client_foreign")


def test_server_url_without_port_uses_default_port(api_server, tmp_path, monkeypatch):
    """The port the server is spawned on is the one that gets polled."""
    monkeypatch.setattr("connbench.session.DEFAULT_SERVER_PORT", httpx.URL(api_server).port)
    config = BenchmarkConfig(
        output_dir=tmp_path,
        trials=5,
        server_url=f"http://{httpx.URL(api_server).host}",
        start_server=True,
        enable_profiler=False,
    )
    session = BenchmarkSession(config)

    with pytest.raises(ProvisioningError, match="already in use"):
        session.run()

    assert httpx.URL(session.server_url).port == httpx.URL(api_server).port


def test_session_starts_its_own_server(tmp_path):
    """With start_server the session owns a uvicorn process for the run only."""
    config = BenchmarkConfig(
        output_dir=tmp_path,
        trials=5,
        progress_every=1,
        database="client_own_server",
        server_url="http://127.0.0.1:8791",
        start_server=True,
        enable_profiler=False,
    )
    session = BenchmarkSession(config)

    result = session.run()

    assert result.state is LoopState.COMPLETED
    assert result.stats["work"].count == 5
    assert session._server_process is None
    assert not wait_for_server(config.server_url, timeout=0.5, poll_interval=0.1)
    assert (tmp_path / "logs" / "server.log").exists()
