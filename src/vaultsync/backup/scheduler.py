"""Timer scheduling for the change coalescer.

This module provides:
- TimerHandle: protocol for a cancellable scheduled callback
- Scheduler: protocol exposing now() and schedule(delay, fn)
- AsyncioScheduler: implementation on top of the running event loop

Tests substitute a virtual clock implementing the same protocol.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None:
        """Cancel the callback. Cancelling twice is a no-op."""
        ...


class Scheduler(Protocol):
    """Clock and one-shot timer source."""

    def now(self) -> float:
        """Current monotonic time in seconds."""
        ...

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback once after delay seconds."""
        ...

    def spawn(self, coro: object) -> asyncio.Future[None]:
        """Run a coroutine in the background and return its future."""
        ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    The loop is looked up lazily so the scheduler can be created before
    the loop starts running.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback)

    def spawn(self, coro: object) -> asyncio.Future[None]:
        return asyncio.ensure_future(coro, loop=self.loop)  # type: ignore[arg-type]
