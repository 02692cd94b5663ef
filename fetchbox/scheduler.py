"""
Periodic cleanup scheduler.

Runs a sweep coroutine on a fixed interval in a background asyncio task.
A sweep that raises is logged and the loop keeps going, so one bad tick
never stops reclamation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CleanupScheduler:
    """
    Background task calling ``sweep`` every ``interval`` seconds.

    Usage:
        scheduler = CleanupScheduler(300, manager.sweep_stale, name="sandbox")
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        interval: float,
        sweep: Callable[[], Awaitable[object]],
        *,
        name: str = "cleanup",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self._sweep = sweep
        self._task: Optional[asyncio.Task] = None
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop. Calling it again is a no-op."""
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name=f"{self.name}-scheduler")
            logger.info("Started %s scheduler (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stopped %s scheduler", self.name)

    async def run_once(self) -> None:
        """Run a single sweep, logging rather than raising on failure."""
        try:
            await self._sweep()
        except Exception:
            logger.exception("%s sweep failed", self.name)
        finally:
            self.sweeps += 1

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
