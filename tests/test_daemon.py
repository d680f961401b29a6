"""Tests for the daemon protocol, server and client."""
import asyncio

import pytest

from northctl.daemon import DaemonClient, DaemonServer, run_via_daemon, stop_daemon
from northctl.daemon import server as server_module
from northctl.daemon.protocol import (
    DaemonResponse,
    ExitRequest,
    RunRequest,
    decode_request,
    decode_response,
    encode,
)
from northctl.db import MemoryBackend, Snapshot
from northctl.engine.errors import DaemonError, DatabaseConnectionError


class TestProtocol:
    """Tests for the newline-delimited JSON messages."""

    def test_encode_is_one_line(self):
        line = encode(RunRequest(args=["--", "ls-list"]))
        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1

    def test_decode_run(self):
        request = decode_request(b'{"method": "run", "args": ["ls-list"]}\n')
        assert isinstance(request, RunRequest)
        assert request.args == ["ls-list"]

    def test_decode_exit(self):
        assert isinstance(decode_request(b'{"method": "exit"}'), ExitRequest)

    def test_decode_unknown_method(self):
        with pytest.raises(DaemonError, match="invalid request"):
            decode_request(b'{"method": "reboot"}')

    def test_decode_garbage(self):
        with pytest.raises(DaemonError, match="invalid request"):
            decode_request(b"not json")

    def test_response_round_trip(self):
        response = decode_response(encode(DaemonResponse(result="ok\n")))
        assert response.result == "ok\n"
        assert response.error is None

    def test_closed_connection(self):
        with pytest.raises(DaemonError, match="connection closed by daemon"):
            decode_response(b"")


@pytest.fixture
def server(snapshot, short_tmp):
    return DaemonServer(snapshot, short_tmp / "northctl.ctl")


def _run(*args):
    return RunRequest(args=list(args))


class TestDaemonServer:
    """Tests for request handling, without a socket."""

    @pytest.mark.asyncio
    async def test_run_request(self, server, backend):
        response = await server.run_request(_run("--", "ls-add", "sw0", "--", "ls-list"))
        assert response.error is None
        assert "(sw0)" in response.result
        assert server.requests_served == 1

    @pytest.mark.asyncio
    async def test_options_do_not_leak_between_requests(self, server):
        """--oneline in one request does not affect the next one."""
        await server.run_request(_run("--", "ls-add", "sw0", "--", "ls-add", "sw1"))

        oneline = await server.run_request(_run("--oneline", "--", "ls-list"))
        plain = await server.run_request(_run("--", "ls-list"))
        assert oneline.result.count("\n") == 1
        assert plain.result.count("\n") == 2

    @pytest.mark.asyncio
    async def test_dry_run_does_not_leak(self, server, backend):
        await server.run_request(_run("--dry-run", "--", "ls-add", "sw0"))
        await server.run_request(_run("--", "ls-add", "sw1"))
        names = [row["name"] for row in backend.store.tables["Logical_Switch"].values()]
        assert names == ["sw1"]

    @pytest.mark.asyncio
    async def test_wait_does_not_leak(self, server, backend):
        """A --wait request leaves the next request free of waiting."""
        waited = await server.run_request(_run("--wait=sb", "-t", "1", "--", "ls-add", "sw0"))
        assert waited.error == "timeout expired"

        plain = await asyncio.wait_for(server.run_request(_run("--", "ls-add", "sw1")), 0.5)
        assert plain.error is None
        [nb] = backend.store.tables["NB_Global"].values()
        assert nb["nb_cfg"] == 1

    @pytest.mark.asyncio
    async def test_command_error_reported(self, server):
        response = await server.run_request(_run("--", "ls-del", "nosuch"))
        assert response.result is None
        assert response.error == "nosuch: switch name not found"

    @pytest.mark.asyncio
    async def test_usage_error_reported(self, server):
        response = await server.run_request(_run("--", "lsp-add", "sw0"))
        assert "requires at least 2 arguments" in response.error

    @pytest.mark.asyncio
    async def test_process_options_rejected(self, server):
        response = await server.run_request(_run("--detach", "--", "ls-list"))
        assert response.error == "--detach not supported in daemon requests"

    @pytest.mark.asyncio
    async def test_sees_external_changes(self, server, backend):
        """The warm snapshot picks up writes made by other clients."""
        await server.run_request(_run("--", "ls-list"))
        MemoryBackend("memory:test").apply_external("Logical_Switch", name="other")
        response = await server.run_request(_run("--", "ls-list"))
        assert "(other)" in response.result

    @pytest.mark.asyncio
    async def test_malformed_line(self, server):
        response = await server.handle_line(b"{}\n")
        assert response.error.startswith("invalid request")

    @pytest.mark.asyncio
    async def test_exit_request(self, server):
        response = await server.handle_line(encode(ExitRequest()))
        assert response.error is None
        assert server._stopped.is_set()


class TestDaemonSocket:
    """End-to-end tests over the Unix control socket."""

    @pytest.mark.asyncio
    async def test_client_round_trip_and_exit(self, server):
        await server.start()
        serving = asyncio.create_task(server.serve_forever())
        try:
            output = await run_via_daemon(server.socket_path, ["--", "ls-add", "sw0", "--", "ls-list"])
            assert "(sw0)" in output

            async with DaemonClient(server.socket_path) as client:
                first = await client.run(["--oneline", "--", "ls-list"])
                second = await client.run(["--", "ls-list"])
            assert first.result.count("\n") == 1
            assert second.result == output

            await stop_daemon(server.socket_path)
            await asyncio.wait_for(serving, 2)
        finally:
            serving.cancel()
        assert not server.socket_path.exists()

    @pytest.mark.asyncio
    async def test_error_raised_by_client(self, server):
        await server.start()
        try:
            with pytest.raises(DaemonError, match="nosuch: switch name not found"):
                await run_via_daemon(server.socket_path, ["--", "ls-del", "nosuch"])
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_no_daemon(self, short_tmp):
        with pytest.raises(DaemonError, match="cannot connect to daemon"):
            await run_via_daemon(short_tmp / "missing.ctl", ["--", "ls-list"])

    @pytest.mark.asyncio
    async def test_stale_socket_replaced(self, short_tmp):
        path = short_tmp / "northctl.ctl"
        path.write_text("stale")
        server = DaemonServer(Snapshot(MemoryBackend("memory:test")), path)
        await server.start()
        try:
            assert await run_via_daemon(path, ["--", "ls-list"]) == ""
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_running_request(self, server, backend):
        await server.start()
        await server._lock.acquire()
        closing = asyncio.create_task(server.close())
        await asyncio.sleep(0.05)
        assert backend.is_alive()

        server._lock.release()
        await asyncio.wait_for(closing, 2)
        assert not backend.is_alive()

    @pytest.mark.asyncio
    async def test_refresher_survives_connection_errors(self, server, backend, monkeypatch):
        """A failed refresh is logged and retried instead of ending the refresher."""
        monkeypatch.setattr(server_module, "REFRESH_RETRY_DELAY", 0)
        await server.start()
        refresh = server.snapshot.run
        calls = 0

        async def flaky_run():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise DatabaseConnectionError("memory:test: database connection failed (gone)")
            await refresh()

        monkeypatch.setattr(server.snapshot, "run", flaky_run)
        try:
            backend.apply_external("Logical_Switch", name="other")
            for _ in range(100):
                if server.snapshot.seqno == backend.store.seqno:
                    break
                await asyncio.sleep(0.01)
            assert server.snapshot.seqno == backend.store.seqno
            assert calls == 2
            assert not server._refresher.done()
        finally:
            await server.close()
