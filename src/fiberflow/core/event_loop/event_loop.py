"""
Callback event loop for fiberflow's cooperative execution model.

This module provides a lightweight, single-threaded event loop that handles:
- Ready callbacks scheduled for a future loop turn
- Timers
- Stepping the loop one unit of work at a time

The loop never preempts anything: a callback runs to completion before the next
one starts. The top-level :func:`~fiberflow.core.fiber.awaiting.await_` drives the
loop with :meth:`EventLoop.run_once` so that it can stop the instant the awaited
future settles.

Examples:
    >>> from fiberflow.core.event_loop.event_loop import EventLoop
    >>>
    >>> loop = EventLoop()
    >>> _ = loop.call_soon(print, "first")
    >>> _ = loop.call_later(0.01, print, "timer")
    >>> _ = loop.call_soon(print, "second")
    >>> loop.run()
    first
    second
    timer
"""

import heapq
import logging
import threading
import time as _time
from collections import deque
from itertools import count
from timeit import default_timer as timer
from typing import Any

from fiberflow.core.event_loop.instrumentation import (
    CallbackMetadata,
    get_current_instrument,
)
from fiberflow.core.event_loop.types import Callback, DeltaTime, Time

logger = logging.getLogger(__name__)

# Thread-local storage for the default event loop
_thread_local = threading.local()


def get_event_loop() -> "EventLoop":
    """
    Get the default EventLoop for this thread, creating it on first use.

    Returns:
        The EventLoop used by top-level awaits and timers in this thread.
    """
    loop = getattr(_thread_local, "event_loop", None)
    if loop is None:
        loop = EventLoop()
        _thread_local.event_loop = loop
    return loop


def set_event_loop(loop: "EventLoop | None") -> None:
    """
    Replace the default event loop for this thread.

    Passing None discards the current default; the next call to
    :func:`get_event_loop` creates a fresh one.
    """
    _thread_local.event_loop = loop


class Handle:
    """
    A callback scheduled on the loop.

    Cancelling a handle before it runs drops the callback and its arguments.
    """

    __slots__ = ("callback", "args", "cancelled")

    def __init__(self, callback: Callback, args: tuple[Any, ...]) -> None:
        self.callback: Callback | None = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.callback = None
        self.args = ()

    def _run(self) -> None:
        callback, args = self.callback, self.args
        # a handle runs at most once
        self.callback = None
        self.args = ()
        assert callback is not None
        callback(*args)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else getattr(self.callback, "__qualname__", repr(self.callback))
        return f"<{type(self).__name__} {state}>"


class TimerHandle(Handle):
    """A callback scheduled to run at an absolute loop time."""

    __slots__ = ("when",)

    def __init__(self, when: Time, callback: Callback, args: tuple[Any, ...]) -> None:
        super().__init__(callback, args)
        self.when = when


class EventLoop:
    """
    The callback event loop used by fiberflow.

    Manages a FIFO queue of ready callbacks and a heap of timers. Due timers are
    moved to the back of the ready queue, so work that was already queued runs
    first.
    """

    def __init__(self) -> None:
        self.ready: deque[Handle] = deque()
        self.timers: list[tuple[Time, int, TimerHandle]] = []
        self._sequence = count()
        self._stopping = False

    def time(self) -> Time:
        """Return the loop's monotonic clock."""
        return timer()

    def call_soon(self, callback: Callback, *args: Any) -> Handle:
        """
        Schedule ``callback(*args)`` for a future loop turn.

        Callbacks run in the order they were scheduled.
        """
        handle = Handle(callback, args)
        self.ready.append(handle)
        return handle

    def call_later(self, delay: DeltaTime, callback: Callback, *args: Any) -> TimerHandle:
        """
        Schedule ``callback(*args)`` to run after ``delay`` seconds.

        Timers with the same deadline run in the order they were scheduled.
        """
        return self.call_at(self.time() + max(delay, 0.0), callback, *args)

    def call_at(self, when: Time, callback: Callback, *args: Any) -> TimerHandle:
        """Schedule ``callback(*args)`` to run at loop time ``when``."""
        handle = TimerHandle(when, callback, args)
        heapq.heappush(self.timers, (when, next(self._sequence), handle))
        return handle

    def has_pending_work(self) -> bool:
        """Return True if any live callback or timer is still scheduled."""
        self._drop_cancelled()
        if self.ready:
            return True
        return any(not handle.cancelled for _, _, handle in self.timers)

    def run_once(self) -> bool:
        """
        Run exactly one unit of pending work.

        If no callback is ready, sleeps until the earliest timer is due and runs
        it. Exceptions raised by the callback propagate to the caller.

        Returns:
            True if a callback ran, False if the loop had nothing left to do.
        """
        self._move_due_timers()
        self._drop_cancelled()
        if not self.ready:
            if not self.timers:
                return False
            delay = self.timers[0][0] - self.time()
            if delay > 0:
                _time.sleep(delay)
            self._move_due_timers()
            self._drop_cancelled()
            if not self.ready:
                return False

        handle = self.ready.popleft()
        self._on_callback_before_run(handle)
        handle._run()
        self._on_callback_after_run(handle)
        return True

    def run(self) -> None:
        """
        Run callbacks until :meth:`stop` is called or no work remains.
        """
        self._stopping = False
        try:
            while not self._stopping:
                if not self.run_once():
                    break
        finally:
            self._stopping = False

    def stop(self) -> None:
        """Make :meth:`run` return after the current callback."""
        self._stopping = True

    def _move_due_timers(self) -> None:
        now = self.time()
        while self.timers and self.timers[0][0] <= now:
            _, _, handle = heapq.heappop(self.timers)
            if not handle.cancelled:
                self.ready.append(handle)

    def _drop_cancelled(self) -> None:
        while self.ready and self.ready[0].cancelled:
            _ = self.ready.popleft()
        while self.timers and self.timers[0][2].cancelled:
            _ = heapq.heappop(self.timers)

    def _on_callback_before_run(self, handle: Handle) -> None:
        """
        Hook called before a ready callback runs.

        Subclasses can override this method to add custom behavior.
        The default implementation delegates to the current instrumentation.
        """
        get_current_instrument().on_callback_before_run(CallbackMetadata(loop=self, handle=handle))

    def _on_callback_after_run(self, handle: Handle) -> None:
        """
        Hook called after a ready callback returned.

        Subclasses can override this method to add custom behavior.
        The default implementation delegates to the current instrumentation.
        """
        get_current_instrument().on_callback_after_run(CallbackMetadata(loop=self, handle=handle))

    def dump_debug_info(self, reason: str = "Requested") -> None:
        """
        Log the current state of the loop at WARNING level.

        Useful when a top-level await appears to be stuck.

        Args:
            reason: Why the dump was requested
        """
        logger.warning(f"=== EVENT LOOP DEBUG INFO ({reason}) ===")
        logger.warning(f"Ready callbacks: {len(self.ready)}")
        logger.warning(f"Timers: {len(self.timers)}")

        if self.ready:
            logger.warning("=== READY CALLBACKS ===")
            for i, handle in enumerate(list(self.ready)[:5]):
                logger.warning(f"  Callback {i}: {handle!r}")
            if len(self.ready) > 5:
                logger.warning(f"  ... and {len(self.ready) - 5} more callbacks")

        if self.timers:
            logger.warning("=== TIMERS ===")
            now = self.time()
            for when, _, handle in heapq.nsmallest(5, self.timers):
                logger.warning(f"  Timer: {handle!r}, fires in {when - now:.3f}s")
            if len(self.timers) > 5:
                logger.warning(f"  ... and {len(self.timers) - 5} more timers")

        logger.warning("=== END DEBUG INFO ===")


__all__ = [
    "EventLoop",
    "Handle",
    "TimerHandle",
    "get_event_loop",
    "set_event_loop",
]
