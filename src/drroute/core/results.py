"""Results store shared between the poll loop and health queries.

The poll loop is the only writer; health queries read through ``snapshot``,
which hands back a detached copy taken under the lock.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class ResultsSnapshot:
    """Point-in-time copy of a run's statistics."""
    total_requests: int = 0
    responses: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Wire representation used by ``GET /health``."""
        return {
            "TotalRequests": self.total_requests,
            "Responses": dict(self.responses),
        }


class Results:
    """Mutable aggregate of probe outcomes for one poll run."""

    def __init__(self):
        self.total_requests = 0
        self.responses: Dict[str, int] = {}
        self.lock = threading.Lock()

    def record(self, iteration: int, status_code: str) -> None:
        """Record the outcome of probe number ``iteration`` (1-based).

        Args:
            iteration: Index of the completed probe since the run started
            status_code: Status string returned by the prober
        """
        with self.lock:
            self.responses[status_code] = self.responses.get(status_code, 0) + 1
            self.total_requests = iteration

    def snapshot(self) -> ResultsSnapshot:
        with self.lock:
            return ResultsSnapshot(
                total_requests=self.total_requests,
                responses=dict(self.responses),
            )
