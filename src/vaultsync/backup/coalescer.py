"""Change coalescing with a quiescence window.

This module provides:
- CoalescerState: the buffer, timer handle and processing flag
- ChangeCoalescer: buffers ChangeEvents and runs one processing pass
  after a period of total inactivity

Lifecycle:
    on_change() -> arm() ... (timer) ... fire() -> pass -> [re-arm]
    shutdown() -> cancel timer -> drain()

Every on_change() cancels the armed timer and re-arms it for the full
window, so a burst of edits yields a single pass measured from the last
edit. fire() re-reads the time since the last edit and reschedules when
the window has not actually elapsed. At most one pass runs at a time; a
fire while a pass is in flight is a no-op, and the pass re-arms on
completion if events arrived meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from vaultsync.backup.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from vaultsync.core.types import ChangeEvent

logger = logging.getLogger(__name__)

DEFAULT_QUIESCENCE_WINDOW = 15.0  # seconds

ProcessCallback = Callable[[list[ChangeEvent]], Awaitable[None]]


@dataclass
class CoalescerState:
    """Mutable state of one coalescer.

    Attributes:
        buffer: Events accumulated since the last pass took a snapshot
        last_edit_at: Scheduler time of the most recent event
        scheduled_fire_at: Scheduler time the armed timer will fire at
        is_processing: True while a pass is in flight
        timer: Handle of the armed timer, if any
        closed: Set by shutdown(); no further timers are armed
    """

    buffer: list[ChangeEvent] = field(default_factory=list)
    last_edit_at: float = 0.0
    scheduled_fire_at: float | None = None
    is_processing: bool = False
    timer: TimerHandle | None = None
    closed: bool = False

    def take(self) -> list[ChangeEvent]:
        """Snapshot and clear the buffer."""
        snapshot = self.buffer
        self.buffer = []
        return snapshot


class ChangeCoalescer:
    """Coalesces bursts of change events into single processing passes.

    Usage:
        coalescer = ChangeCoalescer(service.process_changes, quiescence_window=15)
        host.on_change(coalescer.on_change)
        ...
        await coalescer.shutdown()  # flushes anything still buffered
    """

    def __init__(
        self,
        callback: ProcessCallback,
        scheduler: Scheduler | None = None,
        quiescence_window: float = DEFAULT_QUIESCENCE_WINDOW,
    ) -> None:
        """Initialize the coalescer.

        Args:
            callback: Coroutine function receiving each snapshot of events.
            scheduler: Clock and timer source (defaults to the running loop).
            quiescence_window: Seconds of inactivity required before a pass.
        """
        if quiescence_window <= 0:
            raise ValueError("quiescence_window must be positive")
        self._callback = callback
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._window = float(quiescence_window)
        self._state = CoalescerState()
        self._task: asyncio.Future[None] | None = None

    @property
    def state(self) -> CoalescerState:
        return self._state

    @property
    def quiescence_window(self) -> float:
        return self._window

    @quiescence_window.setter
    def quiescence_window(self, value: float) -> None:
        if value <= 0:
            raise ValueError("quiescence_window must be positive")
        self._window = float(value)

    @property
    def pending_count(self) -> int:
        """Number of buffered events not yet handed to a pass."""
        return len(self._state.buffer)

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    @property
    def is_armed(self) -> bool:
        return self._state.timer is not None

    def reset(self) -> None:
        """Cancel the timer and discard buffered events.

        A pass already in flight keeps running and is_processing stays set
        until it ends, so a reset never lets a second pass overlap it.
        """
        self._cancel_timer()
        state = self._state
        state.buffer = []
        state.last_edit_at = 0.0
        state.closed = False
        logger.debug("Coalescer reset")

    def on_change(self, event: ChangeEvent) -> None:
        """Buffer an event and restart the quiescence window."""
        state = self._state
        if state.closed:
            logger.debug("Coalescer closed, dropping %r", event)
            return

        state.buffer.append(event)
        state.last_edit_at = self._scheduler.now()
        self.arm()

    def arm(self, delay: float | None = None) -> None:
        """(Re)arm the single timer, cancelling any armed one first."""
        self._cancel_timer()
        if self._state.closed:
            return

        delay = self._window if delay is None else max(delay, 0.0)
        self._state.scheduled_fire_at = self._scheduler.now() + delay
        self._state.timer = self._scheduler.schedule(delay, self.fire)

    def fire(self) -> None:
        """Timer callback: start a pass if the window really elapsed."""
        state = self._state
        state.timer = None
        state.scheduled_fire_at = None
        if state.closed:
            return

        elapsed = self._scheduler.now() - state.last_edit_at
        if elapsed < self._window:
            # An edit slipped in between the timer firing and its cancellation
            logger.debug(
                "Only %.3fs since last edit, rescheduling", elapsed
            )
            self.arm(self._window - elapsed)
            return

        if state.is_processing:
            logger.debug(
                "Pass in flight, %d events wait for the next one", len(state.buffer)
            )
            return

        if not state.buffer:
            return

        snapshot = state.take()
        state.is_processing = True
        logger.debug(
            "Processing %d changes after %.1fs of inactivity", len(snapshot), elapsed
        )
        self._task = self._scheduler.spawn(self._run_pass(snapshot))

    async def drain(self) -> None:
        """Process the buffer now, bypassing the quiescence wait.

        No-op when a pass is in flight or the buffer is empty.
        """
        state = self._state
        if state.is_processing or not state.buffer:
            return

        snapshot = state.take()
        state.is_processing = True
        await self._run_pass(snapshot)

    async def wait_idle(self) -> None:
        """Wait for the pass in flight, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await task

    async def shutdown(self) -> None:
        """Cancel the timer and flush buffered events through the callback."""
        self._state.closed = True
        self._cancel_timer()
        await self.wait_idle()

        if self._state.buffer:
            logger.info(
                "Flushing %d buffered changes before shutdown", len(self._state.buffer)
            )
        await self.drain()

    async def _run_pass(self, snapshot: list[ChangeEvent]) -> None:
        state = self._state
        try:
            logger.info("Processing %d change events", len(snapshot))
            await self._callback(snapshot)
        except Exception:
            # The snapshot is consumed either way
            logger.exception("Error processing changes")
        finally:
            state.is_processing = False
            if state.buffer and not state.closed:
                remaining = self._window - (self._scheduler.now() - state.last_edit_at)
                self.arm(remaining)

    def _cancel_timer(self) -> None:
        if self._state.timer is not None:
            self._state.timer.cancel()
            self._state.timer = None
            self._state.scheduled_fire_at = None
