"""
Higher-order patterns for composing futures.

Utilities for delaying, and for running groups of future-returning tasks either
all at once or one after another.
"""

import logging
from collections.abc import Callable, Generator, Iterable
from typing import Any, TypeVar

from fiberflow.core.coroutine import coroutine
from fiberflow.core.event_loop.event_loop import TimerHandle, get_event_loop
from fiberflow.core.event_loop.futures import Deferred, Future, FutureCancelled
from fiberflow.core.fiber.awaiting import await_

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Task = Callable[[], Future[_T]]


def delay(seconds: float) -> None:
    """
    Pause the calling logical thread for ``seconds``.

    Inside a routine launched with :func:`~fiberflow.async_` only that routine
    waits, and cancelling the routine's future clears the timer and raises
    :class:`~fiberflow.FutureCancelled` here. At top level the event loop is run
    until the timer fires.

    Examples:
        >>> from fiberflow import async_
        >>> @async_
        ... def slow_answer():
        ...     delay(0.01)
        ...     return 42
        >>> await_(slow_answer())
        42
    """
    timer: TimerHandle | None = None

    def cancel(resolve: object, reject: Callable[[object], None]) -> None:
        if timer is not None:
            timer.cancel()
        reject(FutureCancelled("Delay was cancelled"))

    deferred: Deferred[None] = Deferred(canceller=cancel)
    timer = get_event_loop().call_later(seconds, deferred.resolve, None)
    await_(deferred.future)


def parallel(tasks: Iterable[Task[_T]]) -> Future[list[_T]]:
    """
    Start every task at once and collect their results.

    Args:
        tasks: Zero-argument callables, each returning a future.

    Returns:
        A future for the results, in task order. It rejects with the first
        rejection reason, after cancelling the tasks still pending. Cancelling it
        cancels every pending task.

    Examples:
        >>> from fiberflow import resolved
        >>> parallel([lambda: resolved(1), lambda: resolved(2)]).result()
        [1, 2]
    """
    pending: dict[int, Future[_T]] = {}
    results: dict[int, _T] = {}
    launching = True

    def cancel_pending() -> None:
        futures = list(pending.values())
        pending.clear()
        for future in futures:
            future.cancel()

    def cancel(resolve: object, reject: object) -> None:
        cancel_pending()

    deferred: Deferred[list[_T]] = Deferred(canceller=cancel)

    def task_failed(reason: object) -> None:
        nonlocal launching
        launching = False
        if pending:
            logger.debug(f"Task failed with {reason!r}, cancelling {len(pending)} pending tasks")
        deferred.reject(reason)
        cancel_pending()

    def task_done(index: int) -> Callable[[_T], None]:
        def done(result: _T) -> None:
            results[index] = result
            _ = pending.pop(index, None)
            if not pending and not launching:
                deferred.resolve([results[i] for i in sorted(results)])

        return done

    for index, task in enumerate(tasks):
        future = task()
        pending[index] = future
        future.add_callbacks(task_done(index), task_failed)
        if not launching:
            break

    if launching:
        launching = False
        if not pending:
            deferred.resolve([results[i] for i in sorted(results)])
    return deferred.future


def series(tasks: Iterable[Task[_T]]) -> Future[list[_T]]:
    """
    Run tasks one after another and collect their results.

    Each task starts only after the previous one fulfilled. The returned future
    rejects with the first rejection reason; later tasks are never started.
    Cancelling it cancels the running task.

    Examples:
        >>> from fiberflow import resolved
        >>> series([lambda: resolved("a"), lambda: resolved("b")]).result()
        ['a', 'b']
    """

    def run() -> Generator[Future[Any], Any, list[_T]]:
        results: list[_T] = []
        for task in tasks:
            results.append((yield task()))
        return results

    return coroutine(run)


def waterfall(tasks: Iterable[Callable[..., Future[Any]]]) -> Future[Any]:
    """
    Run tasks one after another, feeding each the previous result.

    The first task is called without arguments. The returned future fulfills
    with the last result (None when there are no tasks) and otherwise behaves
    like :func:`series`.

    Examples:
        >>> from fiberflow import resolved
        >>> waterfall([lambda: resolved(20), lambda n: resolved(n + 22)]).result()
        42
    """

    def run() -> Generator[Future[Any], Any, Any]:
        result = None
        first = True
        for task in tasks:
            result = yield (task() if first else task(result))
            first = False
        return result

    return coroutine(run)


__all__ = [
    "delay",
    "parallel",
    "series",
    "waterfall",
]
