"""Convergence wait: block until a downstream consumer catches up.

After a commit that incremented ``NB_Global.nb_cfg`` to V, the consumers
copy V into ``sb_cfg`` (and ``hv_cfg``) once they have processed it. The
waiter re-reads the snapshot on every change until one of them is >= V.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..db.snapshot import Snapshot
from .errors import TimeoutExpired

logger = logging.getLogger(__name__)


class Deadline:
    """Absolute point in time after which blocking waits fail."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._at = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> Optional[float]:
        """Seconds left, ``None`` when there is no deadline."""
        if self._at is None:
            return None
        return max(self._at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self._at is not None and time.monotonic() >= self._at


@dataclass(frozen=True)
class WaitTarget:
    column: str  # sb_cfg or hv_cfg
    value: int


class ConvergenceWaiter:
    """Polls the snapshot until the target counter reaches its value."""

    def __init__(self, snapshot: Snapshot, deadline: Optional[Deadline] = None):
        self.snapshot = snapshot
        self.deadline = deadline or Deadline(None)

    def satisfied(self, target: WaitTarget) -> bool:
        return any(
            (row.get(target.column) or 0) >= target.value
            for row in self.snapshot.rows("NB_Global")
        )

    async def wait(self, target: WaitTarget) -> None:
        """Return once satisfied; raise TimeoutExpired when the deadline passes."""
        logger.debug(f"Waiting for {target.column} >= {target.value}")
        while True:
            await self.snapshot.run()
            if self.satisfied(target):
                logger.debug(f"{target.column} reached {target.value}")
                return
            if self.deadline.expired:
                raise TimeoutExpired()
            changed = await self.snapshot.wait(self.deadline.remaining())
            if not changed and self.deadline.expired:
                raise TimeoutExpired()
