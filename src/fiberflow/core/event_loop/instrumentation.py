"""
Event Loop Instrumentation System.

This module provides a flexible instrumentation system for monitoring and debugging
fiberflow. It captures events for loop callbacks, suspension contexts and
generator coroutines.

The instrumentation system uses a context manager pattern, allowing instrumentation
hooks to be applied within different scopes of code. Suspension contexts copy the
caller's context variables when they start, so an instrument that is active when
a routine is launched keeps observing it after the routine suspends.

Example:
    >>> from fiberflow import async_, await_, resolved
    >>> from fiberflow.core.event_loop.instrumentation import PrintInstrument
    >>>
    >>> def answer():
    ...     return await_(resolved(42))
    >>>
    >>> with PrintInstrument():
    ...     future = async_(answer)()
    ...
    [CONTEXT-START] context 1
    [CONTEXT-EXIT] context 1 fulfilled
    >>> future.result()
    42
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from time import time
from types import TracebackType
from typing import TYPE_CHECKING, Any, Final

from typing_extensions import Self, override

if TYPE_CHECKING:
    from fiberflow.core.coroutine import CoroutineState
    from fiberflow.core.event_loop.event_loop import EventLoop, Handle
    from fiberflow.core.fiber.engine import Outcome, SuspensionContext

import logging

logger = logging.getLogger(__name__)

_current_instrument: ContextVar["EventLoopInstrument | None"] = ContextVar("_current_instrument", default=None)


@dataclass
class CallbackMetadata:
    """Metadata for a loop callback about to run or just finished."""
    loop: "EventLoop"
    handle: "Handle"
    start_time: float = field(default_factory=time)


@dataclass
class ResumeMetadata:
    """Metadata for a resume delivered to a suspended context."""
    context: "SuspensionContext"
    value: Any
    error: BaseException | None


class EventLoopInstrument:
    """
    Base class for event loop instrumentation.

    This class provides hooks for loop, context and coroutine operations. Subclasses
    can override these methods to implement custom monitoring or logging.
    """
    _token: Token[Self | None] | None = None

    def on_callback_before_run(self, metadata: CallbackMetadata) -> None:
        """
        Called before the loop invokes a ready callback.

        Args:
            metadata: The loop and the handle being run
        """
        pass

    def on_callback_after_run(self, metadata: CallbackMetadata) -> None:
        """
        Called after a ready callback returned without raising.

        Args:
            metadata: The loop and the handle that ran
        """
        pass

    def on_context_started(self, context: "SuspensionContext") -> None:
        """
        Called when the suspension engine creates a context, before its body runs.

        Args:
            context: The new context
        """
        pass

    def on_context_suspended(self, context: "SuspensionContext") -> None:
        """
        Called when a context parks itself.

        ``context.awaiting`` holds the future it waits on, if any.

        Args:
            context: The context that suspended
        """
        pass

    def on_context_resumed(self, metadata: ResumeMetadata) -> None:
        """
        Called before a suspended context receives its resume payload.

        Args:
            metadata: The context and the value or error being delivered
        """
        pass

    def on_context_terminated(self, context: "SuspensionContext", outcome: "Outcome") -> None:
        """
        Called once when a context's body returns or raises.

        Args:
            context: The terminated context
            outcome: The return value or exception of the body
        """
        pass

    def on_coroutine_step(self, state: "CoroutineState", item: object) -> None:
        """
        Called every time a generator coroutine yields.

        Args:
            state: The coroutine state record
            item: The yielded object (normally a future)
        """
        pass

    def on_coroutine_finished(self, state: "CoroutineState") -> None:
        """
        Called when a generator coroutine settles its result future.

        Args:
            state: The coroutine state record, with its final status
        """
        pass

    def __enter__(self: Self) -> Self:
        # token to restore old value of instrument
        self._token = _current_instrument.set(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        _current_instrument.reset(self._token)
        return False


class PrintInstrument(EventLoopInstrument):
    """
    Instrument that prints context and coroutine transitions to stdout.
    """
    print = print

    @override
    def on_context_started(self, context: "SuspensionContext") -> None:
        self.print(f"[CONTEXT-START] context {context.id}")

    @override
    def on_context_suspended(self, context: "SuspensionContext") -> None:
        self.print(f"[CONTEXT-SUSPEND] context {context.id} awaiting {context.awaiting!r}")

    @override
    def on_context_resumed(self, metadata: ResumeMetadata) -> None:
        if metadata.error is not None:
            self.print(f"[CONTEXT-RESUME] context {metadata.context.id} with error {metadata.error!r}")
        else:
            self.print(f"[CONTEXT-RESUME] context {metadata.context.id} with value {metadata.value!r}")

    @override
    def on_context_terminated(self, context: "SuspensionContext", outcome: "Outcome") -> None:
        if outcome.error is not None:
            self.print(f"[CONTEXT-EXIT] context {context.id} raised {outcome.error!r}")
        else:
            self.print(f"[CONTEXT-EXIT] context {context.id} fulfilled")

    @override
    def on_coroutine_step(self, state: "CoroutineState", item: object) -> None:
        self.print(f"[COROUTINE-STEP] {state!r} yielded {type(item).__name__}")

    @override
    def on_coroutine_finished(self, state: "CoroutineState") -> None:
        self.print(f"[COROUTINE-DONE] {state!r} {state.status.value}")


class LogInstrument(PrintInstrument):
    """
    Instrument that logs transitions using the logging module.

    This instrument uses the debug log level for all messages.
    """
    print = logger.debug


EMPTY_INSTRUMENT: Final[EventLoopInstrument] = EventLoopInstrument()


def get_current_instrument() -> EventLoopInstrument:
    """
    Get the current instrumentation context.

    Returns:
        The currently active instrument or an empty instrument if none is active.
    """
    instrument = _current_instrument.get()
    if instrument:
        return instrument
    else:
        return EMPTY_INSTRUMENT


__all__ = [
    "CallbackMetadata",
    "EventLoopInstrument",
    "LogInstrument",
    "PrintInstrument",
    "ResumeMetadata",
    "get_current_instrument",
]
