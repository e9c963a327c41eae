"""
==============================================================================
Frame Poll Loop
==============================================================================

Repeatable tick task for the live decode loop.

Each tick runs to completion before the next delay is scheduled, so two
ticks of one loop never overlap. The stop predicate is evaluated before
every tick and again after it; once it is false nothing further is
scheduled.

An in-flight tick is never interrupted. ``cancel()`` only marks the loop
and wakes a pending delay; the tick callback is expected to re-check its
own session before acting on a late result.

==============================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional


# Module logger
logger = logging.getLogger(__name__)


TickCallback = Callable[["FramePollLoop"], Awaitable[bool]]


class FramePollLoop:
    """
    Cooperative poll loop running as one asyncio task.

    Args:
        tick: Coroutine function called with this loop; returns True when
            polling is finished (result delivered or session gone)
        should_continue: Stop predicate evaluated around every tick
        interval: Delay between ticks in seconds

    Example:
        >>> loop = FramePollLoop(tick, lambda: session.is_scanning, 0.05)
        >>> loop.start()
        >>> loop.cancel()
    """

    def __init__(
        self,
        tick: TickCallback,
        should_continue: Callable[[], bool],
        interval: float
    ) -> None:
        self._tick = tick
        self._should_continue = should_continue
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._waiting = False
        self.ticks = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> "FramePollLoop":
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def cancel(self) -> None:
        """Mark the loop stopped. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._waiting and self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    def _alive(self) -> bool:
        return not self._cancelled and self._should_continue()

    async def _run(self) -> None:
        try:
            while self._alive():
                self.ticks += 1
                finished = await self._tick(self)
                if finished or not self._alive():
                    return
                self._waiting = True
                try:
                    await asyncio.sleep(self._interval)
                finally:
                    self._waiting = False
        except asyncio.CancelledError:
            if not self._cancelled:
                raise
            logger.debug(f"Poll loop cancelled after {self.ticks} tick(s)")
