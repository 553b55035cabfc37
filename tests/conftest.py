import asyncio
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from drroute.config import Settings


@pytest.fixture
def fast_settings():
    """Settings with a short poll interval so runs advance quickly."""
    return Settings(poll_interval=0.02, connect_timeout=1.0)


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 5.0, step: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(step)
    return _wait


@pytest.fixture
async def http_target():
    """An HTTP server whose /health answers with a configurable status."""
    state = {"status": 200, "hits": 0}

    async def health(request):
        state["hits"] += 1
        return web.Response(status=state["status"], text="ok")

    app = web.Application()
    app.router.add_get("/health", health)
    server = TestServer(app)
    await server.start_server()
    state["url"] = str(server.make_url("/health"))
    yield state
    await server.close()


@pytest.fixture
async def tcp_target():
    """Factory for raw TCP servers that answer every connection with ``reply``."""
    servers = []
    received = []

    async def _make(reply: bytes):
        async def handle(reader, writer):
            try:
                received.append(await reader.readuntil(b"\r\n\r\n"))
            except asyncio.IncompleteReadError as e:
                received.append(e.partial)
            if reply:
                writer.write(reply)
                await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        servers.append(server)
        port = server.sockets[0].getsockname()[1]
        return f"127.0.0.1:{port}", received

    yield _make

    for server in servers:
        server.close()
        await server.wait_closed()


@pytest.fixture
def closed_port():
    """A localhost port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class StubProber:
    """Prober returning canned statuses; optionally stops its controller after N probes."""

    def __init__(self, statuses=("200",), stop_after=None, controller=None):
        self.statuses = list(statuses)
        self.stop_after = stop_after
        self.controller = controller
        self.calls = []

    async def poll(self, target: str) -> str:
        self.calls.append(target)
        status = self.statuses[(len(self.calls) - 1) % len(self.statuses)]
        if self.stop_after is not None and len(self.calls) == self.stop_after:
            self.controller.stop()
        return status


@pytest.fixture
def stub_prober():
    return StubProber
