"""One-second countdown used to enforce quiz time limits."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Union[None, Awaitable[None]]]
ExpireCallback = Callable[[], Union[None, Awaitable[None]]]


async def _call(callback, *args) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CountdownTimer:
    """Counts down from ``limit_seconds`` once per second.

    ``limit_seconds=None`` makes the timer untimed: it never ticks or expires
    and ``remaining_seconds`` stays ``None``. Ticks and the expiry callback run
    from a single task, one after another.
    """

    def __init__(
        self,
        limit_seconds: Optional[int],
        on_tick: Optional[TickCallback] = None,
        on_expire: Optional[ExpireCallback] = None,
        *,
        remaining_seconds: Optional[int] = None,
        interval: float = 1.0,
    ):
        self.limit_seconds = limit_seconds
        if limit_seconds is None:
            self.remaining_seconds: Optional[int] = None
        elif remaining_seconds is None:
            self.remaining_seconds = max(int(limit_seconds), 0)
        else:
            self.remaining_seconds = max(min(int(remaining_seconds), int(limit_seconds)), 0)
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.interval = interval
        self.expired = False
        self.stopped = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_timed(self) -> bool:
        return self.limit_seconds is not None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin ticking on the running event loop."""
        if not self.is_timed or self.stopped or self.expired or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        if self.remaining_seconds == 0:
            await self._expire()
            return
        while not self.stopped and not self.expired:
            await asyncio.sleep(self.interval)
            if self.stopped:
                return
            await self.tick()

    async def tick(self) -> None:
        """Advance the countdown by one second."""
        if not self.is_timed or self.stopped or self.expired:
            return
        self.remaining_seconds = max(self.remaining_seconds - 1, 0)
        await _call(self.on_tick, self.remaining_seconds)
        if self.remaining_seconds == 0:
            await self._expire()

    async def _expire(self) -> None:
        if self.expired:
            return
        self.expired = True
        logger.debug("Countdown of %ss expired", self.limit_seconds)
        await _call(self.on_expire)

    def stop(self) -> None:
        """Cancel the countdown. A stopped timer never fires again."""
        self.stopped = True
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
