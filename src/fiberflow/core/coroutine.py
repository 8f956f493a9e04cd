"""
Generator coroutines driven by future settlement.

:func:`coroutine` runs a generator function that yields futures. Each yield
pauses the generator until the yielded future settles; the fulfillment value is
sent back as the result of the ``yield`` expression and a rejection is thrown at
the yield point. No greenlet is involved: the generator is advanced from the
yielded futures' callbacks.

Examples:
    >>> from fiberflow import coroutine, resolved
    >>>
    >>> def total():
    ...     first = yield resolved(40)
    ...     second = yield resolved(2)
    ...     return first + second
    >>>
    >>> coroutine(total).result()
    42
"""

import logging
from collections.abc import Callable, Generator
from enum import Enum
from typing import Any, TypeVar

from fiberflow.core.event_loop.futures import (
    Deferred,
    Future,
    as_exception,
    rejected,
    resolved,
)
from fiberflow.core.event_loop.instrumentation import get_current_instrument

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class InvalidYield(TypeError):
    """Raised when a coroutine yields something other than a future."""

    def __init__(self, item: object) -> None:
        self.item_type = type(item).__name__
        super().__init__(f"Expected coroutine to yield Future, but got {self.item_type}")


class CoroutineStatus(Enum):
    RUNNING_STEP = "running-step"
    AWAITING_FUTURE = "awaiting-future"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class CoroutineState:
    """
    Bookkeeping for one running generator coroutine.

    The generator is advanced in a loop for as long as it yields settled futures;
    it only goes back to waiting on callbacks when it yields a pending one.
    """

    def __init__(self, generator: Generator[Any, Any, Any]) -> None:
        self.generator: Generator[Any, Any, Any] | None = generator
        self.status = CoroutineStatus.RUNNING_STEP
        self.awaiting: Future[Any] | None = None
        self._cancel_requested = False
        self._cancelled_target: Future[Any] | None = None
        self._deferred: Deferred[Any] = Deferred(canceller=self._cancel)

    @property
    def future(self) -> Future[Any]:
        return self._deferred.future

    def advance(self, value: Any = None, error: BaseException | None = None) -> None:
        """
        Send ``value`` (or throw ``error``) into the generator and keep going
        until it yields a pending future, returns or raises.

        A pending future yielded after cancellation was requested is cancelled
        straight away.
        """
        try:
            while self.generator is not None:
                self.status = CoroutineStatus.RUNNING_STEP
                try:
                    if error is not None:
                        item = self.generator.throw(error)
                    else:
                        item = self.generator.send(value)
                except StopIteration as stop:
                    self._finish(result=stop.value)
                    return
                except Exception as exc:
                    self._finish(error=exc)
                    return

                get_current_instrument().on_coroutine_step(self, item)
                if not isinstance(item, Future):
                    self._finish(error=InvalidYield(item))
                    return

                if item.is_pending():
                    self.awaiting = item
                    if self._cancel_requested:
                        self._forward_cancel()
                if item.is_pending():
                    self.status = CoroutineStatus.AWAITING_FUTURE
                    item.add_callbacks(self._on_fulfilled, self._on_rejected)
                    return
                self.awaiting = None

                if item.is_fulfilled():
                    value, error = item.result(), None
                else:
                    value, error = None, as_exception(item.reason())
        finally:
            self = value = error = item = None  # type: ignore[assignment]

    def _on_fulfilled(self, value: Any) -> None:
        try:
            self.awaiting = None
            self.advance(value=value)
        finally:
            self = value = None  # type: ignore[assignment]

    def _on_rejected(self, reason: object) -> None:
        try:
            self.awaiting = None
            self.advance(error=as_exception(reason))
        finally:
            self = reason = None  # type: ignore[assignment]

    def _cancel(self, resolve: object, reject: object) -> None:
        try:
            self._cancel_requested = True
            self._forward_cancel()
        finally:
            self = resolve = reject = None  # type: ignore[assignment]

    def _forward_cancel(self) -> None:
        target = self.awaiting
        if target is None or target is self._cancelled_target:
            return
        logger.debug(f"{self!r} forwarding cancellation to {target!r}")
        self._cancelled_target = target
        try:
            target.cancel()
        finally:
            self = target = None  # type: ignore[assignment]

    def _finish(self, result: Any = None, error: BaseException | None = None) -> None:
        self.generator = None
        self.awaiting = None
        self._cancelled_target = None
        if self._cancel_requested:
            self.status = CoroutineStatus.CANCELLED
        elif error is not None:
            self.status = CoroutineStatus.REJECTED
        else:
            self.status = CoroutineStatus.FULFILLED
        get_current_instrument().on_coroutine_finished(self)
        try:
            if error is not None:
                self._deferred.reject(error)
            else:
                self._deferred.resolve(result)
        finally:
            self = result = error = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<CoroutineState {self.status.value}>"


def coroutine(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
    """
    Run the generator function ``fn(*args, **kwargs)`` as a coroutine.

    Returns:
        A future for the generator's return value. It rejects with whatever the
        generator raises, or with :class:`InvalidYield` if it yields anything but
        a future. If ``fn`` is a plain function, the future settles with its
        return value or exception right away. Cancelling the future cancels the
        future the generator is currently waiting on.
    """
    try:
        generator = fn(*args, **kwargs)
    except Exception as exc:
        return rejected(exc)

    if not isinstance(generator, Generator):
        return resolved(generator)

    state = CoroutineState(generator)
    future = state.future
    try:
        state.advance()
        return future
    finally:
        # a stored traceback may keep this frame alive
        generator = state = future = None  # type: ignore[assignment]


__all__ = [
    "CoroutineState",
    "CoroutineStatus",
    "InvalidYield",
    "coroutine",
]
