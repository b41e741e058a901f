"""Background eviction of expired protective state."""

import asyncio
import logging

from request_shield.store import SecurityState

logger = logging.getLogger(__name__)


class SecuritySweeper:
    """Runs ``SecurityState.sweep`` on a fixed interval until stopped.

    The task is owned by the application lifespan: ``start`` on startup,
    ``stop`` on shutdown. A failed sweep is logged and retried on the next
    tick rather than ending the loop.
    """

    def __init__(self, state: SecurityState, interval: float | None = None):
        self.state = state
        self.interval = interval if interval is not None else state.settings.SWEEP_INTERVAL_SECONDS
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="security-sweeper")
        logger.info(f"Security sweeper started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Security sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.state.sweep()
            except Exception as e:
                logger.error(f"Security sweep failed: {e}")
