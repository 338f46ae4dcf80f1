import asyncio
import logging
import time
from typing import Callable, List, Optional

from .protocol import CLOSE_INACTIVE, CLOSE_REASONS
from .registry import Session, SessionRegistry

logger = logging.getLogger(__name__)

IDLE_TIMEOUT = 60 * 60
SWEEP_INTERVAL = 10 * 60


class Reaper:
    """Closes grouped sessions that have been silent longer than the timeout.

    Activity is any processed action from the session, whatever its role.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        idle_timeout: float = IDLE_TIMEOUT,
        sweep_interval: float = SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        if idle_timeout <= 0 or sweep_interval <= 0:
            raise ValueError("idle_timeout and sweep_interval must be positive")
        self.registry = registry
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self.clock = clock

    def sweep(self, now: Optional[float] = None) -> List[Session]:
        now = self.clock() if now is None else now
        reaped = []
        with self.registry.lock:
            for scale_id, group in self.registry.all_groups():
                for session in list(group):
                    if now - session.last_activity > self.idle_timeout:
                        logger.info(
                            "Timeout: closing inactive connection (%s) on scale %s",
                            session.role.value, scale_id,
                        )
                        session.close(CLOSE_INACTIVE, CLOSE_REASONS[CLOSE_INACTIVE])
                        group.discard(session)
                        reaped.append(session)
                self.registry.remove_if_empty(scale_id)
        return reaped

    async def run(self):
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                reaped = self.sweep()
                if reaped:
                    logger.info("Reaped %d idle session(s)", len(reaped))
        except asyncio.CancelledError:
            logger.info("Reaper stopped")
            raise
