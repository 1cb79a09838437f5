"""
Periodic timer for background token refresh.

One pending ``loop.call_later`` handle plus the time it is due. Each tick
runs the callback to completion and then schedules the next tick, whether
the callback succeeded or not.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RefreshTimer:
    """Reschedulable single-handle timer running an async callback."""

    def __init__(self, callback: Callable[[], Awaitable[Any]], interval: float):
        """
        Initialize RefreshTimer.

        Args:
            callback: Coroutine function run on every tick
            interval: Seconds between the end of one tick and the next
        """
        self.callback = callback
        self.interval = interval
        self.scheduled_at: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self.tick_count = 0

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Arm the timer for one interval from now."""
        self._active = True
        self.schedule(self.interval)
        logger.info(f"Token refresh timer started (interval: {self.interval}s)")

    def schedule(self, delay: float) -> None:
        """Replace any pending tick with one ``delay`` seconds from now."""
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self.scheduled_at = loop.time() + delay
        self._handle = loop.call_later(delay, self._fire)

    def next_run_in(self) -> Optional[float]:
        """Seconds until the next tick, or None when nothing is scheduled."""
        if self._handle is None or self.scheduled_at is None:
            return None
        return max(0.0, self.scheduled_at - asyncio.get_running_loop().time())

    def _fire(self) -> None:
        self._handle = None
        self.scheduled_at = None
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        self.tick_count += 1
        try:
            await self.callback()
        except Exception as e:
            logger.exception(f"Token refresh tick failed: {e}")
        finally:
            if self._active:
                self.schedule(self.interval)

    async def cancel(self) -> None:
        """Stop the timer and any tick in progress."""
        self._active = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.scheduled_at = None

        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
