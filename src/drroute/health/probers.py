"""Probers for Dr. Route.

A prober performs a single liveness check against a target and reports the
status code it saw as a string. Probers never raise: any connection, transport
or parsing failure is logged and reported as "500" so the poll loop can treat
every outcome the same way.

Two variants exist:
- HttpProber issues a GET with aiohttp and reports the response status.
- TcpProber opens a plain socket, writes a minimal HTTP request and parses the
  status token out of whatever comes back.
"""

import asyncio
import logging
from typing import Optional, Protocol, Tuple

import aiohttp

from drroute.config import Settings
from drroute.core.errors import ProbeTransportError
from drroute.core.target import PollTarget, ProbeProtocol

logger = logging.getLogger(__name__)

INTERNAL_SERVER_ERROR = "500"

REQUEST_TEMPLATE = "GET /health HTTP/1.1\r\nHost: {host}\r\n\r\n"


class Prober(Protocol):
    """Anything that can check a target once."""

    async def poll(self, target: str) -> str: ...  # pragma: no cover


class HttpProber:
    """Probe an ``http://`` URL with a GET request."""

    def __init__(self, timeout: Optional[float] = None):
        """
        timeout: Total request timeout in seconds. None keeps aiohttp's default.
        """
        self.timeout = timeout

    async def poll(self, url: str) -> str:
        try:
            if self.timeout is None:
                session = aiohttp.ClientSession()
            else:
                session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            async with session:
                async with session.get(url) as resp:
                    status_code = str(resp.status)
        except Exception as e:
            logger.warning(f"Error connecting to app {url}: {e!r}")
            return INTERNAL_SERVER_ERROR

        logger.debug(f"statusCode: {status_code}")
        return status_code


def split_host_port(endpoint: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6addr]:port``) into its parts.

    Raises:
        ProbeTransportError: If the endpoint has no usable port
    """
    host, sep, port = endpoint.rpartition(":")
    if not sep:
        raise ProbeTransportError(f"missing port in address {endpoint!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ProbeTransportError(f"too many colons in address {endpoint!r}")
    try:
        port_number = int(port)
    except ValueError:
        raise ProbeTransportError(f"invalid port in address {endpoint!r}")
    if not 0 < port_number < 65536:
        raise ProbeTransportError(f"invalid port in address {endpoint!r}")
    return host or "localhost", port_number


def parse_status_token(body: str) -> str:
    """Pull the status code out of an HTTP status line.

    The reply is split on single spaces and the second token is returned;
    anything shorter than two tokens reports "500".
    """
    parts = body.split(" ")
    if len(parts) > 1:
        return parts[1]
    return INTERNAL_SERVER_ERROR


class TcpProber:
    """Probe a ``host:port`` target over a raw TCP connection."""

    def __init__(self, connect_timeout: float = 5.0, read_size: int = 1024):
        self.connect_timeout = connect_timeout
        self.read_size = read_size

    async def poll(self, endpoint: str) -> str:
        try:
            host, port = split_host_port(endpoint)
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Error connecting to app {endpoint}: timed out after {self.connect_timeout}s")
            return INTERNAL_SERVER_ERROR
        except Exception as e:
            logger.warning(f"Error connecting to app {endpoint}: {e!r}")
            return INTERNAL_SERVER_ERROR

        try:
            body = await self._exchange(reader, writer, endpoint)
        except Exception as e:
            logger.warning(f"Error talking to app {endpoint}: {e!r}")
            return INTERNAL_SERVER_ERROR
        finally:
            await self._close(writer)

        logger.debug(f"body: {body!r}")
        status_code = parse_status_token(body)
        logger.debug(f"statusCode: {status_code}")
        return status_code

    async def _exchange(self, reader: asyncio.StreamReader,
                        writer: asyncio.StreamWriter, endpoint: str) -> str:
        """Send the health request and return the decoded reply."""
        writer.write(REQUEST_TEMPLATE.format(host=endpoint).encode("latin-1", errors="replace"))
        await writer.drain()

        data = await reader.read(self.read_size)
        if not data:
            raise ProbeTransportError("empty response")
        return data.decode("utf-8", errors="replace")

    @staticmethod
    async def _close(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error closing connection: {e!r}")


def build_prober(target: PollTarget, settings: Optional[Settings] = None) -> Prober:
    """Pick the prober for a target's protocol."""
    settings = settings or Settings()
    if target.protocol is ProbeProtocol.HTTP:
        return HttpProber(timeout=settings.http_timeout)
    return TcpProber(connect_timeout=settings.connect_timeout, read_size=settings.read_size)
