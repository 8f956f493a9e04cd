"""
Suspension engine: resumable logical threads on top of greenlets.

A :class:`SuspensionContext` wraps one greenlet. :func:`start` runs a body inside
a new context until the body returns, raises or calls :func:`suspend`; a later
:func:`resume` continues it from that point. Control always goes back to the
greenlet that called :func:`start` or :func:`resume`, so contexts can be resumed
from any settlement callback, including one running inside another context.

.. warning::
    :func:`suspend` and :func:`resume` are the building blocks of
    :func:`~fiberflow.core.fiber.awaiting.await_` and
    :func:`~fiberflow.core.fiber.awaiting.async_`. Application code should use
    those instead.

Examples:
    >>> from fiberflow.core.fiber.engine import start, suspend, resume
    >>>
    >>> def body():
    ...     return suspend() * 2
    >>>
    >>> context = start(body)
    >>> context.status
    <ContextStatus.SUSPENDED: 'suspended'>
    >>> resume(context, 21)
    >>> context.outcome.value
    42
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextvars import ContextVar, copy_context
from dataclasses import dataclass
from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Any

from greenlet import getcurrent, greenlet

from fiberflow.core.event_loop.instrumentation import ResumeMetadata, get_current_instrument

if TYPE_CHECKING:
    from fiberflow.core.event_loop.futures import Future

logger = logging.getLogger(__name__)

_context_ids = count(1)

_current_context: ContextVar["SuspensionContext | None"] = ContextVar("_current_context", default=None)


def current_context() -> "SuspensionContext | None":
    """
    Get the suspension context of the running logical thread.

    Returns:
        The running context, or None when called at top level.
    """
    return _current_context.get()


class InvalidState(RuntimeError):
    """
    Raised when a context is resumed while it is not suspended, or when
    :func:`suspend` is called outside of any context.
    """


class ContextStatus(Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    RESUMED = "resumed"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Outcome:
    """The value or exception a body or a resume carries."""
    value: Any = None
    error: BaseException | None = None

    def unwrap(self) -> Any:
        if self.error is not None:
            try:
                raise self.error
            finally:
                self = None  # type: ignore[assignment]
        return self.value


class SuspensionContext:
    """
    One logical thread of execution.

    Attributes:
        id: Process-unique identity.
        status: Where the context is in its lifecycle.
        awaiting: The future whose settlement the context is waiting for, and
            therefore the future a cancel request is forwarded to.
        cancel_requested: Set once cancellation was requested. Every future the
            context awaits from then on is cancelled as soon as it is awaited.
        outcome: The body's return value or exception, once terminated.
        on_exit: Called once with the outcome when the context terminates
            after having suspended.
    """

    def __init__(self) -> None:
        self.id = next(_context_ids)
        self.status = ContextStatus.RUNNING
        self.awaiting: Future[Any] | None = None
        self.cancel_requested = False
        self.outcome: Outcome | None = None
        self.on_exit: Callable[[Outcome], None] | None = None
        self._payload: Outcome | None = None
        self._cancelled_target: Future[Any] | None = None
        self._greenlet: greenlet | None = greenlet(self._run)
        # run with a copy of the starting context, as asyncio tasks do
        self._greenlet.gr_context = copy_context()

    def request_cancel(self) -> None:
        """
        Mark the context as cancelled and forward the request to the awaited
        future.
        """
        if self.status is ContextStatus.TERMINATED:
            return
        self.cancel_requested = True
        self.cancel_awaited()

    def cancel_awaited(self) -> None:
        """
        Forward a cancel request to the awaited future.

        Each awaited future receives at most one forwarded request.
        """
        target = self.awaiting
        if target is None or target is self._cancelled_target:
            return
        logger.debug(f"Context {self.id} forwarding cancellation to {target!r}")
        self._cancelled_target = target
        try:
            target.cancel()
        finally:
            self = target = None  # type: ignore[assignment]

    def _run(self, body: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        _current_context.set(self)
        return body(*args, **kwargs)

    def _enter(self, switch: Callable[..., Any], *args: Any) -> None:
        glet = self._greenlet
        assert glet is not None
        # suspend() and termination both return here
        glet.parent = getcurrent()
        try:
            result = switch(*args)
        except Exception as exc:
            self._terminate(Outcome(error=exc))
            return
        except BaseException as exc:
            # KeyboardInterrupt and the like still end the context, then keep going up
            self._terminate(Outcome(error=exc))
            raise
        finally:
            switch = args = None  # type: ignore[assignment]
        if glet.dead:
            self._terminate(Outcome(value=result))

    def _terminate(self, outcome: Outcome) -> None:
        self.status = ContextStatus.TERMINATED
        self.outcome = outcome
        self.awaiting = None
        self._cancelled_target = None
        self._greenlet = None
        if outcome.error is not None:
            logger.debug(f"Context {self.id} terminated with {outcome.error!r}")
        else:
            logger.debug(f"Context {self.id} terminated")
        get_current_instrument().on_context_terminated(self, outcome)
        on_exit, self.on_exit = self.on_exit, None
        if on_exit is not None:
            try:
                on_exit(outcome)
            finally:
                self = outcome = on_exit = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<SuspensionContext {self.id} {self.status.value}>"


def start(body: Callable[..., Any], *args: Any, **kwargs: Any) -> SuspensionContext:
    """
    Run ``body(*args, **kwargs)`` in a new context until it returns, raises or
    suspends.

    Returns:
        The context. If the body did not suspend, the context is already
        terminated and ``context.outcome`` holds its result.
    """
    context = SuspensionContext()
    logger.debug(f"Starting context {context.id}")
    get_current_instrument().on_context_started(context)
    context._enter(context._greenlet.switch, body, args, kwargs)  # type: ignore[union-attr]
    return context


def suspend() -> Any:
    """
    Park the running context until it is resumed.

    Returns:
        The value passed to :func:`resume`.

    Raises:
        InvalidState: If called outside of a context.
        BaseException: The error passed to :func:`resume`.
    """
    context = _current_context.get()
    if context is None or context._greenlet is not getcurrent():
        raise InvalidState("suspend() called outside of a suspension context")
    context.status = ContextStatus.SUSPENDED
    logger.debug(f"Context {context.id} suspended")
    get_current_instrument().on_context_suspended(context)
    glet = context._greenlet
    assert glet is not None
    glet.parent.switch()
    payload, context._payload = context._payload, None
    context.status = ContextStatus.RUNNING
    assert payload is not None
    try:
        return payload.unwrap()
    finally:
        context = glet = payload = None


def resume(context: SuspensionContext, value: Any = None, error: BaseException | None = None) -> None:
    """
    Deliver a value or an error to a suspended context and run it until it
    suspends again or terminates.

    Raises:
        InvalidState: If the context is not suspended.
    """
    if context.status is not ContextStatus.SUSPENDED:
        raise InvalidState(f"Cannot resume context {context.id} while it is {context.status.value}")
    context._payload = Outcome(value=value, error=error)
    context.status = ContextStatus.RESUMED
    get_current_instrument().on_context_resumed(ResumeMetadata(context=context, value=value, error=error))
    try:
        context._enter(context._greenlet.switch)  # type: ignore[union-attr]
    finally:
        context = value = error = None  # type: ignore[assignment]


__all__ = [
    "ContextStatus",
    "InvalidState",
    "Outcome",
    "SuspensionContext",
    "current_context",
    "resume",
    "start",
    "suspend",
]
