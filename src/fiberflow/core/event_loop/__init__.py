from .event_loop import EventLoop, Handle, TimerHandle, get_event_loop, set_event_loop
from .futures import (
    Deferred,
    Future,
    FutureCancelled,
    FutureState,
    UnexpectedRejectionValue,
    rejected,
    resolved,
)

__all__ = [
    "Deferred",
    "EventLoop",
    "Future",
    "FutureCancelled",
    "FutureState",
    "Handle",
    "TimerHandle",
    "UnexpectedRejectionValue",
    "get_event_loop",
    "rejected",
    "resolved",
    "set_event_loop",
]
