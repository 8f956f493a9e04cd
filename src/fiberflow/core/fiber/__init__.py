from .awaiting import LoopExhausted, async_, await_
from .engine import ContextStatus, InvalidState, SuspensionContext, current_context

__all__ = [
    "ContextStatus",
    "InvalidState",
    "LoopExhausted",
    "SuspensionContext",
    "async_",
    "await_",
    "current_context",
]
