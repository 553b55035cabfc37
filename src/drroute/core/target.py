"""Poll target classification."""

from dataclasses import dataclass
from enum import Enum

HTTP_SCHEME = "http://"


class ProbeProtocol(Enum):
    """How a target is probed."""
    HTTP = "http"  # aiohttp GET, status taken from the response
    TCP = "tcp"  # raw socket, status parsed from the reply's status line


@dataclass(frozen=True)
class PollTarget:
    """Address being polled during one run, e.g. ``http://foo.com/health`` or ``foo.com:9000``."""
    address: str
    protocol: ProbeProtocol

    @classmethod
    def classify(cls, address: str) -> "PollTarget":
        if address.startswith(HTTP_SCHEME):
            return cls(address, ProbeProtocol.HTTP)
        return cls(address, ProbeProtocol.TCP)

    @classmethod
    def resolve(cls, endpoint: str, request_host: str) -> "PollTarget":
        """Classify ``endpoint``, falling back to the control request's own host."""
        return cls.classify(endpoint or request_host)
