"""Lifecycle controller for the poller.

Owns the single poll session: the stop signal, the poll task and the results
of the latest run. At most one poll loop runs at a time; a new start is
accepted only after the previous loop has observed its stop signal and
released it.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from drroute.config import Settings
from drroute.core.errors import AlreadyRunningError
from drroute.core.poll_loop import PollLoop
from drroute.core.results import Results, ResultsSnapshot
from drroute.core.target import PollTarget
from drroute.health.probers import Prober, build_prober

logger = logging.getLogger(__name__)

ProberFactory = Callable[[PollTarget, Settings], Prober]


class RunState(Enum):
    """Whether a poll loop is active."""
    IDLE = "idle"
    RUNNING = "running"


class PollController:
    """Start, stop and inspect the background poller."""

    def __init__(self, settings: Optional[Settings] = None,
                 prober_factory: ProberFactory = build_prober):
        self.settings = settings or Settings()
        self.prober_factory = prober_factory
        self._results = Results()
        self._stop_signal: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[PollLoop] = None

    @property
    def state(self) -> RunState:
        return RunState.RUNNING if self._stop_signal is not None else RunState.IDLE

    @property
    def target(self) -> Optional[PollTarget]:
        """Target of the active run, if any."""
        return self._loop.target if self._loop is not None else None

    def start(self, endpoint: str = "", request_host: str = "") -> PollTarget:
        """Begin polling in the background.

        Must be called from inside the running event loop. Returns as soon as
        the poll task is scheduled, before any probe has been made.

        Args:
            endpoint: Target override; ``http://`` URLs are probed over HTTP,
                anything else is treated as ``host:port`` and probed over TCP
            request_host: Host of the control request, used when no override
                is given

        Returns:
            The resolved poll target

        Raises:
            AlreadyRunningError: If a poll loop is already active
        """
        if self._stop_signal is not None:
            raise AlreadyRunningError()

        target = PollTarget.resolve(endpoint, request_host)
        prober = self.prober_factory(target, self.settings)

        logger.info("Creating stop signal")
        self._stop_signal = asyncio.Event()
        self._results = Results()
        self._loop = PollLoop(
            target=target,
            prober=prober,
            results=self._results,
            stop_signal=self._stop_signal,
            interval=self.settings.poll_interval,
            on_exit=self._release,
        )
        self._task = asyncio.get_running_loop().create_task(self._loop.run())
        logger.info(f"Started polling {target.address}")
        return target

    def stop(self) -> bool:
        """Ask the active loop to stop without waiting for it.

        Returns:
            True if a running loop was signalled, False if nothing was running
        """
        if self._stop_signal is None:
            logger.debug("Stop requested while idle")
            return False
        logger.info("Stopping...")
        self._stop_signal.set()
        return True

    def health(self) -> ResultsSnapshot:
        """Snapshot of the latest run's results, running or not."""
        return self._results.snapshot()

    async def wait_stopped(self) -> None:
        """Wait for the active poll task, if any, to finish."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Stop polling for good, cancelling an in-flight probe if needed."""
        task = self._task
        loop = self._loop
        self.stop()
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        # A task cancelled before its first step never runs the loop's finally.
        if loop is not None and self._loop is loop:
            self._release(loop)
        logger.info("Poll task shut down")

    def _release(self, loop: PollLoop) -> None:
        """Return to idle once ``loop`` has ended."""
        if loop is not self._loop:
            return
        self._stop_signal = None
        self._task = None
        self._loop = None
        logger.info("Stop signal released")
