"""Integration tests for the Dr. Route control surface.

These run the aiohttp application in-process and poll real HTTP and TCP
targets on localhost.
"""

import asyncio
import os
import socket
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import test_utils, web

from drroute.client import ControlClient, ControlClientError
from drroute.config import Settings
from drroute.core.controller import RunState
from drroute.core.errors import RequestValidationError, StartupError
from drroute.core.target import ProbeProtocol
from drroute.server import CONTROLLER_KEY, ControlServer, create_app, parse_start_request, write_pid_file


@pytest.fixture
async def control(fast_settings):
    """Test client for a control app with a fast poll interval."""
    client = test_utils.TestClient(test_utils.TestServer(create_app(fast_settings)))
    await client.start_server()
    yield client
    await client.close()


def controller_of(client):
    return client.server.app[CONTROLLER_KEY]


async def health(client):
    resp = await client.get("/health")
    assert resp.status == 200
    return await resp.json()


class TestControlServer:

    @pytest.mark.asyncio
    async def test_health_before_start(self, control):
        assert await health(control) == {"TotalRequests": 0, "Responses": {}}

    @pytest.mark.asyncio
    async def test_poll_http_target_then_stop(self, control, http_target, wait_until):
        resp = await control.post("/start", json={"Endpoint": http_target["url"]})
        assert resp.status == 204
        assert controller_of(control).target.protocol is ProbeProtocol.HTTP

        seen = []

        async def grows():
            seen.append((await health(control))["TotalRequests"])
            return seen[-1] >= 3

        while not await grows():
            await asyncio.sleep(0.01)
        assert seen == sorted(seen)

        resp = await control.post("/stop")
        assert resp.status == 204
        await wait_until(lambda: controller_of(control).state is RunState.IDLE)

        settled = await health(control)
        assert settled["TotalRequests"] >= 3
        assert settled["Responses"] == {"200": settled["TotalRequests"]}
        assert http_target["hits"] == settled["TotalRequests"]

        # stop is idempotent once idle
        assert (await control.post("/stop")).status == 204
        assert (await control.post("/stop")).status == 204
        assert await health(control) == settled

    @pytest.mark.asyncio
    async def test_second_start_is_rejected(self, control, http_target, wait_until):
        assert (await control.post("/start", json={"Endpoint": http_target["url"]})).status == 204
        await wait_until(lambda: controller_of(control).health().total_requests >= 1)

        resp = await control.post("/start", json={"Endpoint": "127.0.0.1:1"})
        assert resp.status == 400
        assert "Already started!" in await resp.text()
        assert controller_of(control).target.address == http_target["url"]
        assert set((await health(control))["Responses"]) == {"200"}

    @pytest.mark.asyncio
    async def test_unreachable_tcp_target_records_500(self, control, closed_port, wait_until):
        resp = await control.post("/start", json={"Endpoint": f"127.0.0.1:{closed_port}"})
        assert resp.status == 204
        assert controller_of(control).target.protocol is ProbeProtocol.TCP

        await wait_until(lambda: controller_of(control).health().responses.get("500", 0) >= 1)
        assert (await health(control))["Responses"]["500"] >= 1

    @pytest.mark.asyncio
    async def test_start_without_endpoint_polls_own_host(self, control, wait_until):
        resp = await control.post("/start", json={})
        assert resp.status == 204

        target = controller_of(control).target
        assert target.address == f"{control.host}:{control.port}"
        assert target.protocol is ProbeProtocol.TCP

        # The raw request hits our own /health, which answers 200.
        await wait_until(lambda: controller_of(control).health().total_requests >= 1)
        body = await health(control)
        assert body["Responses"] == {"200": body["TotalRequests"]}

    @pytest.mark.asyncio
    async def test_invalid_body_is_rejected_without_claiming_the_poller(self, control, http_target):
        resp = await control.post("/start", data=b"{not json")
        assert resp.status == 400
        resp = await control.post("/start", json=["Endpoint"])
        assert resp.status == 400
        assert controller_of(control).state is RunState.IDLE

        assert (await control.post("/start", json={"Endpoint": http_target["url"]})).status == 204

    @pytest.mark.asyncio
    async def test_deeply_nested_body_is_400(self, control):
        resp = await control.post("/start", data=b"[" * 100000)
        assert resp.status == 400
        assert controller_of(control).state is RunState.IDLE

    @pytest.mark.asyncio
    async def test_unreadable_body_is_500(self, control):
        with patch.object(web.Request, "read", AsyncMock(side_effect=ConnectionResetError("peer went away"))):
            resp = await control.post("/start", json={"Endpoint": "127.0.0.1:1"})

        assert resp.status == 500
        assert "Error while reading request" in await resp.text()
        assert controller_of(control).state is RunState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path", [
        ("GET", "/start"),
        ("PUT", "/start"),
        ("GET", "/stop"),
        ("POST", "/health"),
        ("HEAD", "/health"),
    ])
    async def test_wrong_method_is_405(self, control, method, path):
        resp = await control.request(method, path)
        assert resp.status == 405


@pytest.mark.parametrize("payload,expected", [
    (b'{"Endpoint": "http://foo.com/health"}', "http://foo.com/health"),
    (b'{"endpoint": "foo.com:9000"}', "foo.com:9000"),
    (b'{}', ""),
    (b'{"Endpoint": null}', ""),
    (b'null', ""),
    (b'{"Other": 1}', ""),
])
def test_parse_start_request(payload, expected):
    assert parse_start_request(payload) == expected


@pytest.mark.parametrize("payload", [
    b"", b"{", b"[]", b'"x"', b'{"Endpoint": 5}', b"\xff", b"[" * 100000,
])
def test_parse_start_request_rejects(payload):
    with pytest.raises(RequestValidationError):
        parse_start_request(payload)


def test_write_pid_file(tmp_path):
    pid_file = tmp_path / "drroute.pid"
    write_pid_file(str(pid_file))
    assert pid_file.read_text() == str(os.getpid())


def test_write_pid_file_failure(tmp_path):
    with pytest.raises(StartupError):
        write_pid_file(str(tmp_path / "missing" / "drroute.pid"))


@pytest.mark.asyncio
async def test_control_server_lifecycle(tmp_path):
    pid_file = tmp_path / "drroute.pid"
    settings = Settings(host="127.0.0.1", port=0, pid_file=str(pid_file))

    async with ControlServer(settings) as server:
        assert pid_file.exists()
        assert server.controller.state is RunState.IDLE

    assert not pid_file.exists()


@pytest.mark.asyncio
async def test_control_server_bind_failure(tmp_path):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    pid_file = tmp_path / "drroute.pid"
    try:
        server = ControlServer(Settings(host="127.0.0.1", port=port, pid_file=str(pid_file)))
        with pytest.raises(StartupError):
            await server.start()
        assert not pid_file.exists()
    finally:
        blocker.close()


@pytest.mark.asyncio
async def test_control_client_round_trip(fast_settings, http_target, wait_until):
    server = test_utils.TestServer(create_app(fast_settings))
    await server.start_server()
    client = ControlClient(str(server.make_url("")))
    try:
        await client.start(http_target["url"])
        with pytest.raises(ControlClientError) as excinfo:
            await client.start(http_target["url"])
        assert excinfo.value.status == 400

        await wait_until(lambda: server.app[CONTROLLER_KEY].health().total_requests >= 1)
        results = await client.health()
        assert results["Responses"] == {"200": results["TotalRequests"]}

        await client.stop()
    finally:
        await server.close()
