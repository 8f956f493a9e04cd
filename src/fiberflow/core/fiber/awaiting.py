"""
Blocking-style awaits on top of the suspension engine.

:func:`await_` lets ordinary, sequential-looking code wait for a
:class:`~fiberflow.core.event_loop.futures.Future`. Inside a routine launched with
:func:`async_` the routine's context is parked until the future settles, while the
caller of the launcher carries on. At top level, where there is no context to
park, :func:`await_` drives the event loop itself, one callback at a time, and
returns the moment the future settles.

Examples:
    >>> from fiberflow import Deferred, async_, await_, get_event_loop
    >>>
    >>> deferred = Deferred()
    >>>
    >>> @async_
    ... def add_one():
    ...     return await_(deferred.future) + 1
    >>>
    >>> future = add_one()
    >>> future.is_pending()
    True
    >>> _ = get_event_loop().call_soon(deferred.resolve, 41)
    >>> await_(future)
    42
"""

import logging
from collections.abc import Callable
from functools import partial, wraps
from typing import Any, TypeVar, cast

from fiberflow.core.event_loop.event_loop import get_event_loop
from fiberflow.core.event_loop.futures import (
    Deferred,
    Future,
    as_exception,
    rejected,
    resolved,
)
from fiberflow.core.fiber.engine import (
    ContextStatus,
    Outcome,
    SuspensionContext,
    current_context,
    resume,
    start,
    suspend,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class LoopExhausted(RuntimeError):
    """
    Raised by a top-level :func:`await_` when the event loop runs out of work
    while the awaited future is still pending.
    """


def await_(future: Future[_T]) -> _T:
    """
    Wait for ``future`` to settle and return its value.

    Already settled futures are unwrapped immediately, without running the loop
    or registering callbacks. Inside a routine whose future was cancelled, the
    awaited future is cancelled before the routine suspends on it.

    Returns:
        The fulfillment value.

    Raises:
        BaseException: The rejection reason, unchanged, if it is an exception.
        UnexpectedRejectionValue: If the future was rejected with anything else.
        LoopExhausted: At top level, if no loop work is left to settle the future.
    """
    try:
        if future.is_settled():
            return _unwrap(future)

        context = current_context()
        if context is None:
            loop = get_event_loop()
            while future.is_pending():
                if not loop.run_once():
                    raise LoopExhausted("Event loop ran out of work before the awaited future settled")
            return _unwrap(future)

        context.awaiting = future
        if context.cancel_requested:
            context.cancel_awaited()
            if future.is_settled():
                context.awaiting = None
                return _unwrap(future)

        future.add_callbacks(partial(_resume_fulfilled, context), partial(_resume_rejected, context))
        try:
            return cast(_T, suspend())
        finally:
            context.awaiting = None
    finally:
        # a stored traceback may keep this frame alive
        future = context = None  # type: ignore[assignment]


def async_(fn: Callable[..., _T]) -> Callable[..., Future[_T]]:
    """
    Turn ``fn`` into a launcher that runs each call in its own context.

    The launcher returns a future for the call's result straight away. If ``fn``
    finishes without suspending, the future is already settled. Otherwise it
    settles when ``fn`` returns or raises. Cancelling the future cancels
    whatever ``fn`` is awaiting at the time, and any future it awaits later;
    ``fn`` sees the rejection raised from :func:`await_` and may handle it.

    Examples:
        >>> @async_
        ... def greet(name):
        ...     return f"hello {name}"
        >>> greet("world").result()
        'hello world'
    """

    @wraps(fn)
    def launcher(*args: Any, **kwargs: Any) -> Future[_T]:
        context = start(fn, *args, **kwargs)
        if context.status is ContextStatus.TERMINATED:
            assert context.outcome is not None
            future = _settled(context.outcome)
        else:
            deferred: Deferred[_T] = Deferred(canceller=partial(_cancel_context, context))
            context.on_exit = partial(_settle_deferred, deferred)
            future = deferred.future

        parent = current_context()
        if parent is not None:
            # cancelling the launching routine now reaches the launched one
            parent.awaiting = future
            if parent.cancel_requested:
                parent.cancel_awaited()
        return future

    return launcher


def _unwrap(future: Future[_T]) -> _T:
    try:
        if future.is_fulfilled():
            return future.result()
        raise as_exception(future.reason())
    finally:
        future = None  # type: ignore[assignment]


def _resume_fulfilled(context: SuspensionContext, value: object) -> None:
    try:
        resume(context, value=value)
    finally:
        context = value = None  # type: ignore[assignment]


def _resume_rejected(context: SuspensionContext, reason: object) -> None:
    try:
        resume(context, error=as_exception(reason))
    finally:
        context = reason = None  # type: ignore[assignment]


def _cancel_context(context: SuspensionContext, resolve: object, reject: object) -> None:
    try:
        context.request_cancel()
    finally:
        context = resolve = reject = None  # type: ignore[assignment]


def _settle_deferred(deferred: Deferred[Any], outcome: Outcome) -> None:
    try:
        if outcome.error is not None:
            deferred.reject(outcome.error)
        else:
            deferred.resolve(outcome.value)
    finally:
        deferred = outcome = None  # type: ignore[assignment]


def _settled(outcome: Outcome) -> Future[Any]:
    if outcome.error is not None:
        return rejected(outcome.error)
    return resolved(outcome.value)


__all__ = [
    "LoopExhausted",
    "async_",
    "await_",
]
