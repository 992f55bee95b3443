#!/usr/bin/env python3
"""Timer service for the driver.

All waiting in the driver is expressed as a scheduled callback on the asyncio
event loop. Callbacks run one at a time on the loop thread, so every timer
fire is a discrete event just like an inbound command or a state snapshot.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellation token for one scheduled callback.

    The callback receives the handle itself, so the owner can check which of
    its records the fire belongs to.
    """

    def __init__(self, callback: Callable[["TimerHandle"], None], duration_ms: int):
        self._callback = callback
        self.duration_ms = duration_ms
        self.cancelled = False
        self.fired = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        """Cancel the timer. Cancelling a fired or cancelled timer is a no-op."""
        if not self.active:
            return
        self.cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()
            self._loop_handle = None

    def fire(self) -> None:
        if not self.active:
            return
        self.fired = True
        self._loop_handle = None
        self._callback(self)


class TimerService:
    """Schedules callbacks on the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        """Current time on the loop's monotonic clock, in ms."""
        return int(self._get_loop().time() * 1000)

    def schedule(self, duration_ms: int, callback: Callable[[TimerHandle], None]) -> TimerHandle:
        handle = TimerHandle(callback, duration_ms)
        handle._loop_handle = self._get_loop().call_later(max(duration_ms, 0) / 1000.0, handle.fire)
        logger.debug(f"Scheduled timer for {duration_ms}ms")
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()
