"""
fiberflow: sequential-looking code on a single-threaded callback event loop.

Three ways to wait for a :class:`Future`:

- :func:`await_` parks the calling logical thread until the future settles.
- :func:`async_` launches a function in its own logical thread and returns a
  future for its result, so the caller never blocks.
- :func:`coroutine` drives a generator that yields futures, without greenlets.
"""

from fiberflow.core.combinators import delay, parallel, series, waterfall
from fiberflow.core.coroutine import InvalidYield, coroutine
from fiberflow.core.event_loop import (
    Deferred,
    EventLoop,
    Future,
    FutureCancelled,
    UnexpectedRejectionValue,
    get_event_loop,
    rejected,
    resolved,
    set_event_loop,
)
from fiberflow.core.fiber import InvalidState, LoopExhausted, async_, await_

__all__ = [
    "Deferred",
    "EventLoop",
    "Future",
    "FutureCancelled",
    "InvalidState",
    "InvalidYield",
    "LoopExhausted",
    "UnexpectedRejectionValue",
    "async_",
    "await_",
    "coroutine",
    "delay",
    "get_event_loop",
    "parallel",
    "rejected",
    "resolved",
    "series",
    "set_event_loop",
    "waterfall",
]
