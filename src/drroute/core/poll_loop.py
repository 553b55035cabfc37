"""Background poll loop.

The loop probes its target once per interval and tallies each outcome in a
``Results`` store. It is stopped cooperatively: the stop signal is checked
before every probe, never in the middle of one, so a stop request takes effect
within one probe plus one interval.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from drroute.core.results import Results
from drroute.core.target import PollTarget
from drroute.health.probers import Prober

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """States of a poll loop."""
    POLLING = "polling"
    STOPPING = "stopping"
    STOPPED = "stopped"


class PollLoop:
    """Repeatedly probe one target until the stop signal is set."""

    def __init__(self, target: PollTarget, prober: Prober, results: Results,
                 stop_signal: asyncio.Event, interval: float = 1.0,
                 on_exit: Optional[Callable[["PollLoop"], None]] = None):
        """Bind a loop to its target, prober and shared state.

        Args:
            target: Target probed on every iteration
            prober: Prober chosen for the target's protocol
            results: Store receiving every outcome
            stop_signal: Event set by the controller to request a stop
            interval: Seconds slept after each probe
            on_exit: Called once when the loop ends, however it ends
        """
        self.target = target
        self.prober = prober
        self.results = results
        self.stop_signal = stop_signal
        self.interval = interval
        self.on_exit = on_exit
        self.state = LoopState.POLLING
        self.iterations = 0

    async def run(self) -> None:
        logger.info(f"Endpoint to poll {self.target.address} ({self.target.protocol.value})")
        try:
            while not self.stop_signal.is_set():
                self.iterations += 1
                logger.debug(f"Poll [{self.iterations}]...")
                status_code = await self.prober.poll(self.target.address)
                self.results.record(self.iterations, status_code)
                await asyncio.sleep(self.interval)

            self.state = LoopState.STOPPING
            logger.info("Request to stop polling..")
        finally:
            if self.on_exit is not None:
                self.on_exit(self)
            self.state = LoopState.STOPPED
            logger.info(f"Polling of {self.target.address} stopped after {self.iterations} probes")
