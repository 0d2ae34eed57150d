# services/timer_service.py
"""Cooperative countdowns for trials, feedback and recall phases.

Everything runs on the event loop; there are no timer threads. A countdown
fires ``on_expire`` at most once and never after ``cancel()``.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class Countdown:
    TICK_SECONDS = 1

    def __init__(
        self,
        seconds: int,
        on_expire: Callable[[], None],
        on_tick: Optional[Callable[[int], None]] = None,
        sleep: SleepFn = asyncio.sleep,
        name: str = "countdown",
    ):
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self.seconds_remaining = seconds
        self.name = name
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.cancelled = False
        self.expired = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "Countdown":
        if self._task is not None:
            raise RuntimeError(f"{self.name} already started")
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    async def _run(self) -> None:
        while self.seconds_remaining > 0:
            await self._sleep(self.TICK_SECONDS)
            if self.cancelled:
                return
            self.seconds_remaining -= 1
            if self._on_tick is not None:
                self._on_tick(self.seconds_remaining)
        if self.cancelled:
            return
        self.expired = True
        self._on_expire()

    def cancel(self) -> None:
        if self.cancelled or self.expired:
            return
        self.cancelled = True
        task = self._task
        # the expiry callback may cancel its own countdown while advancing
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        logger.debug("%s cancelled with %ss remaining", self.name, self.seconds_remaining)
