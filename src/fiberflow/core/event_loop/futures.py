"""
Futures for the fiberflow event loop.

A :class:`Future` is a handle to an eventual value with exactly one terminal
settlement. Callbacks registered on a future run synchronously, in registration
order, at the moment it settles; callbacks registered on an already settled
future run synchronously during registration. Nothing here touches the event
loop: scheduling is left to whoever settles the future.

A rejection reason carries its traceback, and the traceback keeps alive every
frame it passed through together with the callers of those frames. Methods on
the settlement path therefore drop their locals in ``finally`` blocks, so that
no retained frame still refers to the future or to the reason it holds.

Examples:
    >>> from fiberflow.core.event_loop.futures import Deferred
    >>>
    >>> deferred = Deferred()
    >>> doubled = deferred.future.then(lambda value: value * 2)
    >>> doubled.is_pending()
    True
    >>> deferred.resolve(21)
    >>> doubled.result()
    42
"""

import logging
from enum import Enum
from typing import Any, Generic, TypeVar, cast, final

from fiberflow.core.event_loop.types import Canceller, Executor, OnFulfilled, OnRejected

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_T_co = TypeVar("_T_co", covariant=True)


class FutureState(Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class FutureCancelled(Exception):
    """
    Rejection reason of a future cancelled without a canceller of its own.
    """

    def __init__(self, message: str = "Future was cancelled") -> None:
        super().__init__(message)


class UnexpectedRejectionValue(Exception):
    """
    Raised in place of a rejection reason that is not an exception.

    Futures may be rejected with any object. Where such a reason has to be raised,
    it is wrapped in this exception, which names the reason's type and keeps the
    original object in :attr:`value`.
    """

    code = 0

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Future rejected with unexpected value of type {type(value).__name__}")


def as_exception(reason: object) -> BaseException:
    """Return ``reason`` if it can be raised, otherwise wrap it."""
    if isinstance(reason, BaseException):
        return reason
    return UnexpectedRejectionValue(reason)


class Future(Generic[_T_co]):
    """
    An eventual value: pending, then fulfilled or rejected exactly once.

    Args:
        executor: Called synchronously with ``(resolve, reject)``. An exception it
            raises rejects the future.
        canceller: Called with ``(resolve, reject)`` when :meth:`cancel` is
            requested while the future is pending. The canceller decides whether
            to settle; an exception it raises rejects the future. Without a
            canceller, cancelling rejects with :class:`FutureCancelled`.
    """

    def __init__(self, executor: Executor | None = None, canceller: Canceller | None = None) -> None:
        self._state = FutureState.PENDING
        self._value: Any = None
        self._callbacks: list[tuple[OnFulfilled | None, OnRejected | None]] = []
        self._canceller = canceller
        self._adopted: "Future[Any] | None" = None
        self._settler: _Settler | None = None
        if executor is not None:
            settler = self._get_settler()
            try:
                executor(settler.resolve, settler.reject)
            except Exception as exc:
                settler.reject(exc)
            finally:
                self = settler = None  # type: ignore[assignment]

    def is_pending(self) -> bool:
        return self._state is FutureState.PENDING

    def is_fulfilled(self) -> bool:
        return self._state is FutureState.FULFILLED

    def is_rejected(self) -> bool:
        return self._state is FutureState.REJECTED

    def is_settled(self) -> bool:
        return self._state is not FutureState.PENDING

    @property
    def state(self) -> FutureState:
        return self._state

    def result(self) -> _T_co:
        """
        Return the fulfillment value.

        Raises:
            RuntimeError: If the future is not fulfilled.
        """
        if self._state is not FutureState.FULFILLED:
            raise RuntimeError(f"Future is {self._state.value}, not fulfilled")
        return cast(_T_co, self._value)

    def reason(self) -> object:
        """
        Return the rejection reason.

        Raises:
            RuntimeError: If the future is not rejected.
        """
        if self._state is not FutureState.REJECTED:
            raise RuntimeError(f"Future is {self._state.value}, not rejected")
        return self._value

    def add_callbacks(self, on_fulfilled: OnFulfilled | None = None, on_rejected: OnRejected | None = None) -> None:
        """
        Register settlement callbacks without creating a chained future.

        Exceptions raised by the callbacks propagate to whoever settled the
        future (or to this call, if it is already settled).
        """
        try:
            if self._state is FutureState.PENDING:
                self._callbacks.append((on_fulfilled, on_rejected))
            else:
                self._dispatch(on_fulfilled, on_rejected)
        finally:
            self = on_fulfilled = on_rejected = None  # type: ignore[assignment]

    def then(self, on_fulfilled: OnFulfilled | None = None, on_rejected: OnRejected | None = None) -> "Future[Any]":
        """
        Chain a transformation onto this future.

        The returned future settles with the callback's return value, or rejects
        with the exception it raises. A missing callback passes the outcome
        through. Cancelling the returned future cancels this one.
        """
        child: Future[Any] = Future(canceller=_cancel_source(self))

        def fulfilled(value: object) -> None:
            if on_fulfilled is None:
                child._resolve(value)
                return
            try:
                child._resolve(on_fulfilled(value))
            except Exception as exc:
                child._reject(exc)

        def rejected(reason: object) -> None:
            if on_rejected is None:
                child._reject(reason)
                return
            try:
                child._resolve(on_rejected(reason))
            except Exception as exc:
                child._reject(exc)

        self.add_callbacks(fulfilled, rejected)
        return child

    def cancel(self) -> None:
        """
        Request cancellation. A no-op once the future has settled.
        """
        if self._state is not FutureState.PENDING:
            return
        try:
            if self._adopted is not None:
                self._adopted.cancel()
                return
            canceller = self._canceller
            logger.debug(f"Cancelling {self!r}")
            if canceller is None:
                self._reject(FutureCancelled())
                return
            settler = self._get_settler()
            try:
                canceller(settler.resolve, settler.reject)
            except Exception as exc:
                settler.reject(exc)
        finally:
            self = canceller = settler = None  # type: ignore[assignment]

    def _get_settler(self) -> "_Settler":
        if self._settler is None:
            self._settler = _Settler(self)
        return self._settler

    def _resolve(self, value: object = None) -> None:
        if self._state is not FutureState.PENDING or self._adopted is not None:
            return
        try:
            if isinstance(value, Future):
                if value is self:
                    self._reject(TypeError("Cannot resolve a future with itself"))
                    return
                if value.is_pending():
                    # follow the other future until it settles
                    self._adopted = value
                    value.add_callbacks(self._settle_fulfilled, self._settle_rejected)
                    return
                self._settle(value._state, value._value)
                return
            self._settle(FutureState.FULFILLED, value)
        finally:
            self = value = None  # type: ignore[assignment]

    def _reject(self, reason: object) -> None:
        if self._state is not FutureState.PENDING or self._adopted is not None:
            return
        try:
            self._settle(FutureState.REJECTED, reason)
        finally:
            self = reason = None  # type: ignore[assignment]

    def _settle_fulfilled(self, value: object) -> None:
        try:
            self._settle(FutureState.FULFILLED, value)
        finally:
            self = value = None  # type: ignore[assignment]

    def _settle_rejected(self, reason: object) -> None:
        try:
            self._settle(FutureState.REJECTED, reason)
        finally:
            self = reason = None  # type: ignore[assignment]

    def _settle(self, state: FutureState, value: object) -> None:
        if self._state is not FutureState.PENDING:
            return
        self._state = state
        self._value = value
        self._adopted = None
        self._canceller = None
        if self._settler is not None:
            self._settler.future = None
            self._settler = None
        callbacks, self._callbacks = self._callbacks, []
        try:
            for on_fulfilled, on_rejected in callbacks:
                self._dispatch(on_fulfilled, on_rejected)
        finally:
            self = value = callbacks = on_fulfilled = on_rejected = None  # type: ignore[assignment]

    def _dispatch(self, on_fulfilled: OnFulfilled | None, on_rejected: OnRejected | None) -> None:
        try:
            if self._state is FutureState.FULFILLED:
                if on_fulfilled is not None:
                    on_fulfilled(self._value)
            elif on_rejected is not None:
                on_rejected(self._value)
        finally:
            self = on_fulfilled = on_rejected = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._state is FutureState.PENDING:
            return "<Future pending>"
        return f"<Future {self._state.value} {self._value!r}>"


@final
class _Settler:
    """
    The ``(resolve, reject)`` pair handed to executors and cancellers.

    It lets go of its future once the future settles, so an executor frame kept
    alive by a stored traceback does not keep the future alive with it.
    """

    __slots__ = ("future",)

    def __init__(self, future: Future[Any]) -> None:
        self.future: Future[Any] | None = future

    def resolve(self, value: object = None) -> None:
        try:
            if self.future is not None:
                self.future._resolve(value)
        finally:
            value = None

    def reject(self, reason: object) -> None:
        try:
            if self.future is not None:
                self.future._reject(reason)
        finally:
            reason = None


def _cancel_source(source: Future[Any]) -> Canceller:
    def canceller(resolve: object, reject: object) -> None:
        source.cancel()

    return canceller


@final
class Deferred(Generic[_T]):
    """
    A future together with the means to settle it.

    Examples:
        >>> deferred = Deferred()
        >>> deferred.reject(ValueError("nope"))
        >>> deferred.future.reason()
        ValueError('nope')
    """

    def __init__(self, canceller: Canceller | None = None) -> None:
        self.future: Future[_T] = Future(canceller=canceller)

    def resolve(self, value: object = None) -> None:
        try:
            self.future._resolve(value)
        finally:
            self = value = None  # type: ignore[assignment]

    def reject(self, reason: object) -> None:
        try:
            self.future._reject(reason)
        finally:
            self = reason = None  # type: ignore[assignment]


def resolved(value: _T | Future[_T] = None) -> Future[_T]:
    """
    Return a future already fulfilled with ``value``.

    A future passed as ``value`` is returned unchanged.
    """
    if isinstance(value, Future):
        return value
    future: Future[_T] = Future()
    future._settle(FutureState.FULFILLED, value)
    return future


def rejected(reason: object) -> Future[Any]:
    """Return a future already rejected with ``reason``."""
    future: Future[Any] = Future()
    future._settle(FutureState.REJECTED, reason)
    return future


__all__ = [
    "Deferred",
    "Future",
    "FutureCancelled",
    "FutureState",
    "UnexpectedRejectionValue",
    "as_exception",
    "rejected",
    "resolved",
]
