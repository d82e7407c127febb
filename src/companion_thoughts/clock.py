"""Clock and cancellable timers.

All scheduling goes through a clock object so tests can drive virtual time.
``Timer`` fires once after a delay; ``ConditionTimer`` polls a predicate at a
fixed interval and fires the first time it holds. Once a timer has fired its
callback runs to completion: ``cancel()`` only stops a timer that is still
waiting. ``force_cancel()`` is reserved for shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .protocols import ClockProtocol

logger = logging.getLogger("companion_thoughts.clock")

TimerCallback = Callable[[], Awaitable[None]]


class SystemClock:
    """Real time: ``time.monotonic`` plus ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class _BaseTimer:
    def __init__(self, clock: ClockProtocol, callback: TimerCallback, name: str):
        self._clock = clock
        self._callback = callback
        self.name = name
        self.fired = False
        self.cancelled = False
        self._task: asyncio.Task[None] = asyncio.create_task(self._run(), name=name)

    @property
    def active(self) -> bool:
        """True while the timer is still waiting to fire."""
        return not self.fired and not self.cancelled

    def cancel(self) -> bool:
        """Stop a pending timer. Returns False if it already fired or was cancelled."""
        if not self.active:
            return False
        self.cancelled = True
        self._task.cancel()
        return True

    def force_cancel(self) -> None:
        """Cancel the underlying task even if the callback is running."""
        self.cancelled = True
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the timer task to finish (fired, cancelled or failed)."""
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _wait_until_due(self) -> bool:
        raise NotImplementedError

    async def _run(self) -> None:
        if not await self._wait_until_due():
            return
        if self.cancelled:
            return
        self.fired = True
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Timer %s callback failed: %s", self.name, exc)


class Timer(_BaseTimer):
    """One-shot timer firing ``callback`` after ``delay`` seconds."""

    def __init__(self, clock: ClockProtocol, delay: float, callback: TimerCallback, name: str = "timer"):
        self.delay = max(0.0, delay)
        self.deadline = clock.monotonic() + self.delay
        super().__init__(clock, callback, name)

    async def _wait_until_due(self) -> bool:
        await self._clock.sleep(self.delay)
        return True


class ConditionTimer(_BaseTimer):
    """Checks ``condition`` every ``interval`` seconds and fires once it holds."""

    def __init__(
        self,
        clock: ClockProtocol,
        interval: float,
        condition: Callable[[], bool],
        callback: TimerCallback,
        name: str = "condition",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._condition = condition
        super().__init__(clock, callback, name)

    async def _wait_until_due(self) -> bool:
        while not self.cancelled:
            await self._clock.sleep(self.interval)
            if self.cancelled:
                return False
            try:
                if self._condition():
                    return True
            except Exception as exc:
                logger.warning("Condition check %s failed: %s", self.name, exc)
        return False
