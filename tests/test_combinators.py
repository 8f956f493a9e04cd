import time

import pytest
from fiberflow import (
    Deferred,
    Future,
    FutureCancelled,
    async_,
    await_,
    delay,
    parallel,
    rejected,
    resolved,
    series,
    waterfall,
)


class TestDelay:
    def test_top_level_delay_runs_loop_until_timer_fires(self, event_loop):
        start = time.monotonic()
        delay(0.02)

        assert time.monotonic() - start >= 0.015
        assert not event_loop.has_pending_work()

    def test_delay_runs_other_callbacks_meanwhile(self, event_loop):
        ran = []
        event_loop.call_soon(ran.append, "callback")

        delay(0.01)

        assert ran == ["callback"]

    def test_delay_inside_routine_does_not_block_caller(self, event_loop):
        @async_
        def sleeper():
            delay(0.01)
            return "woke"

        future = sleeper()

        assert future.is_pending()
        assert event_loop.has_pending_work()
        assert await_(future) == "woke"

    def test_cancelled_delay_raises_future_cancelled(self):
        @async_
        def sleeper():
            try:
                delay(10)
            except FutureCancelled as e:
                return str(e)

        future = sleeper()
        future.cancel()

        assert future.result() == "Delay was cancelled"


class TestParallel:
    def test_empty_list_fulfills_immediately(self):
        assert parallel([]).result() == []

    def test_results_keep_task_order(self):
        first = Deferred()
        second = Deferred()

        future = parallel([lambda: first.future, lambda: second.future, lambda: resolved(3)])
        second.resolve(2)
        assert future.is_pending()

        first.resolve(1)
        assert future.result() == [1, 2, 3]

    def test_all_tasks_start_at_once(self):
        started = []

        def task(name):
            def run():
                started.append(name)
                return Future()

            return run

        parallel([task("a"), task("b"), task("c")])

        assert started == ["a", "b", "c"]

    def test_rejection_cancels_pending_tasks(self):
        cancelled = []
        failing = Deferred()
        error = ValueError("boom")

        future = parallel([
            lambda: Future(canceller=lambda resolve, reject: cancelled.append("first")),
            lambda: failing.future,
        ])
        failing.reject(error)

        assert future.reason() is error
        assert cancelled == ["first"]

    def test_already_rejected_task_stops_launching(self):
        started = []
        error = ValueError("early")

        def later():
            started.append("later")
            return resolved(None)

        future = parallel([lambda: rejected(error), later])

        assert future.reason() is error
        assert started == []

    def test_cancel_cancels_every_pending_task(self):
        cancelled = []

        def task(name):
            return lambda: Future(canceller=lambda resolve, reject: cancelled.append(name))

        future = parallel([task("a"), lambda: resolved(None), task("c")])
        future.cancel()

        assert cancelled == ["a", "c"]

    def test_cancel_rejects_with_task_cancellation(self):
        future = parallel([lambda: Future()])
        future.cancel()

        assert isinstance(future.reason(), FutureCancelled)

    def test_routines_run_concurrently(self, event_loop):
        @async_
        def sleeper(seconds, value):
            delay(seconds)
            return value

        start = time.monotonic()
        future = parallel([lambda: sleeper(0.03, "a"), lambda: sleeper(0.03, "b")])

        assert await_(future) == ["a", "b"]
        assert time.monotonic() - start < 0.06


class TestSeries:
    def test_empty_list_fulfills_immediately(self):
        assert series([]).result() == []

    def test_tasks_start_one_after_another(self):
        started = []
        deferreds = [Deferred(), Deferred()]

        def task(index):
            def run():
                started.append(index)
                return deferreds[index].future

            return run

        future = series([task(0), task(1)])
        assert started == [0]

        deferreds[0].resolve("a")
        assert started == [0, 1]

        deferreds[1].resolve("b")
        assert future.result() == ["a", "b"]

    def test_rejection_stops_remaining_tasks(self):
        started = []
        error = RuntimeError("stop")

        def later():
            started.append("later")
            return resolved(None)

        future = series([lambda: rejected(error), later])

        assert future.reason() is error
        assert started == []

    def test_cancel_cancels_running_task(self):
        cancelled = []

        future = series([
            lambda: resolved(1),
            lambda: Future(canceller=lambda resolve, reject: cancelled.append(True)),
        ])
        future.cancel()

        assert cancelled == [True]

    def test_runs_with_loop(self, event_loop):
        def task(value):
            def run():
                deferred = Deferred()
                event_loop.call_soon(deferred.resolve, value)
                return deferred.future

            return run

        assert await_(series([task(1), task(2), task(3)])) == [1, 2, 3]


class TestWaterfall:
    def test_empty_list_fulfills_with_none(self):
        assert waterfall([]).result() is None

    def test_passes_previous_result_on(self):
        calls = []

        def first():
            calls.append(())
            return resolved(1)

        def add_one(value):
            calls.append((value,))
            return resolved(value + 1)

        future = waterfall([first, add_one, add_one])

        assert future.result() == 3
        assert calls == [(), (1,), (2,)]

    def test_rejection_stops_remaining_tasks(self):
        error = KeyError("missing")

        def unreachable(value):
            pytest.fail("task after rejection must not start")

        future = waterfall([lambda: resolved(1), lambda value: rejected(error), unreachable])

        assert future.reason() is error

    def test_cancel_cancels_running_task(self):
        future = waterfall([lambda: resolved(1), lambda value: Future()])
        future.cancel()

        assert isinstance(future.reason(), FutureCancelled)
