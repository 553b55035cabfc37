"""HTTP control surface for Dr. Route.

Exposes the poll controller over aiohttp:

- ``POST /start`` with an optional ``{"Endpoint": ...}`` body starts polling
- ``POST /stop`` stops it
- ``GET /health`` returns the latest results

Any other method on these paths is answered with 405 by aiohttp's router.
"""

import os
import json
import asyncio
import logging
from typing import Any, Optional

from aiohttp import web

from drroute.config import Settings
from drroute.core.controller import PollController
from drroute.core.errors import (
    BodyReadError,
    DrRouteError,
    RequestValidationError,
    SerializationError,
    StartupError,
)

logger = logging.getLogger(__name__)

CONTROLLER_KEY = web.AppKey("controller", PollController)


def parse_start_request(payload: bytes) -> str:
    """Decode a ``/start`` body and return the requested endpoint ("" if none).

    Field names match case-insensitively, so ``{"endpoint": ...}`` works too.
    A JSON ``null`` body is accepted and means "no override".

    Raises:
        RequestValidationError: If the body is not JSON or not a start request
    """
    try:
        data: Any = json.loads(payload)
    except (ValueError, RecursionError) as e:
        raise RequestValidationError(f"Invalid start request: {e}")

    if data is None:
        return ""
    if not isinstance(data, dict):
        raise RequestValidationError("Invalid start request: expected a JSON object")

    endpoint: Any = ""
    for key, value in data.items():
        if key.lower() == "endpoint":
            endpoint = value
    if endpoint is None:
        return ""
    if not isinstance(endpoint, str):
        raise RequestValidationError("Invalid start request: Endpoint must be a string")
    return endpoint


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Translate Dr. Route errors into plain-text HTTP errors."""
    try:
        return await handler(request)
    except DrRouteError as e:
        if e.status >= 500:
            logger.error(f"Error while handling {request.method} {request.path}: {e}")
        else:
            logger.info(f"Rejected {request.method} {request.path}: {e}")
        return web.Response(status=e.status, text=str(e))


async def handle_start(request: web.Request) -> web.Response:
    controller = request.app[CONTROLLER_KEY]
    logger.info("Starting...")
    try:
        payload = await request.read()
    except web.HTTPException:
        raise
    except Exception as e:
        raise BodyReadError(f"Error while reading request: {e}")

    endpoint = parse_start_request(payload)
    controller.start(endpoint=endpoint, request_host=request.host)
    return web.Response(status=204)


async def handle_stop(request: web.Request) -> web.Response:
    request.app[CONTROLLER_KEY].stop()
    return web.Response(status=204)


async def handle_health(request: web.Request) -> web.Response:
    logger.debug("Checking health...")
    snapshot = request.app[CONTROLLER_KEY].health()
    try:
        return web.json_response(snapshot.to_dict())
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Error encoding results: {e}")


async def _shutdown_controller(app: web.Application) -> None:
    await app[CONTROLLER_KEY].shutdown()


def create_app(settings: Optional[Settings] = None,
               controller: Optional[PollController] = None) -> web.Application:
    """Build the control application around a (new) poll controller."""
    settings = settings or Settings()
    app = web.Application(middlewares=[error_middleware])
    app[CONTROLLER_KEY] = controller or PollController(settings)

    app.router.add_post("/start", handle_start)
    app.router.add_post("/stop", handle_stop)
    app.router.add_get("/health", handle_health, allow_head=False)
    app.on_cleanup.append(_shutdown_controller)
    return app


def write_pid_file(pid_file: Optional[str]) -> None:
    """Write the current PID to ``pid_file`` when one is configured."""
    if not pid_file:
        return
    try:
        with open(pid_file, "w") as f:
            f.write(str(os.getpid()))
        os.chmod(pid_file, 0o660)
    except OSError as e:
        raise StartupError(f"cannot create pid file: {e}")
    logger.info(f"Wrote pid file {pid_file}")


def remove_pid_file(pid_file: Optional[str]) -> None:
    if not pid_file:
        return
    try:
        os.remove(pid_file)
    except FileNotFoundError:
        pass


class ControlServer:
    """Runs the control application on a TCP listener."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.app = create_app(self.settings)
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    @property
    def controller(self) -> PollController:
        return self.app[CONTROLLER_KEY]

    async def start(self) -> None:
        """Write the PID file and start listening.

        Raises:
            StartupError: If the PID file cannot be written or the port cannot
                be bound
        """
        logger.info("Starting dr. Route....")
        write_pid_file(self.settings.pid_file)

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.settings.host, self.settings.port)
        try:
            await self.site.start()
        except OSError as e:
            await self.runner.cleanup()
            remove_pid_file(self.settings.pid_file)
            raise StartupError(f"Error listening on {self.settings.host}:{self.settings.port}: {e}")

        logger.info(f"Doctor route running on http://{self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        """Stop listening and shut the poller down."""
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        remove_pid_file(self.settings.pid_file)
        logger.info("Doctor route stopped")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
