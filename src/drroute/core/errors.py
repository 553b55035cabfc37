"""Error taxonomy for Dr. Route.

Control-plane errors carry the HTTP status the control surface answers with.
Probe errors never leave the prober; they end up as a "500" bucket entry.
"""


class DrRouteError(Exception):
    """Base class for all Dr. Route errors."""

    status = 500


class RequestValidationError(DrRouteError):
    """The body of a control request could not be understood."""

    status = 400


class AlreadyRunningError(DrRouteError):
    """A start was requested while a poll run is active."""

    status = 400

    def __init__(self, message: str = "Already started!"):
        super().__init__(message)


class BodyReadError(DrRouteError):
    """The request body could not be read from the connection."""

    status = 500


class SerializationError(DrRouteError):
    """The results snapshot could not be encoded."""

    status = 500


class ProbeTransportError(DrRouteError):
    """Connecting to, writing to or reading from a probe target failed."""


class ConfigError(DrRouteError):
    """Settings could not be loaded."""


class StartupError(DrRouteError):
    """The service could not be brought up (bind or PID file failure)."""
