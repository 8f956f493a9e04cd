import gc

import pytest
from fiberflow import Deferred, Future, FutureCancelled, InvalidYield, coroutine, rejected, resolved
from fiberflow.core.coroutine import CoroutineState, CoroutineStatus


def _raising(error):
    def canceller(resolve, reject):
        raise error

    return canceller


def _fail(resolve, reject):
    raise RuntimeError("Failed", 42)


class TestFulfilled:
    def test_returns_fulfilled_future_if_function_returns_without_generator(self):
        future = coroutine(lambda: 42)

        assert future.result() == 42

    def test_returns_fulfilled_future_if_function_returns_immediately(self, event_loop):
        def routine():
            if False:
                yield
            return 42

        future = coroutine(routine)

        assert future.result() == 42
        assert not event_loop.has_pending_work()

    def test_returns_fulfilled_future_if_function_returns_after_yielding_future(self):
        def routine():
            value = yield resolved(42)
            return value

        assert coroutine(routine).result() == 42

    def test_passes_arguments(self):
        def routine(a, b=0):
            value = yield resolved(a)
            return value + b

        assert coroutine(routine, 40, b=2).result() == 42

    def test_returns_fulfilled_future_if_function_returns_after_yielding_rejected_future(self):
        def routine():
            try:
                yield rejected(OverflowError("Foo", 42))
            except OverflowError as e:
                return e.args[1]

        assert coroutine(routine).result() == 42

    def test_resumes_when_pending_future_is_fulfilled(self):
        deferred = Deferred()

        def routine():
            value = yield deferred.future
            return value * 2

        future = coroutine(routine)
        assert future.is_pending()

        deferred.resolve(21)
        assert future.result() == 42

    def test_settled_futures_do_not_grow_the_stack(self):
        def routine():
            total = 0
            for i in range(10000):
                total += yield resolved(i)
            return total

        assert coroutine(routine).result() == sum(range(10000))

    def test_resumes_from_loop_callbacks(self, event_loop):
        def routine():
            values = []
            for i in range(3):
                deferred = Deferred()
                event_loop.call_soon(deferred.resolve, i)
                values.append((yield deferred.future))
            return values

        future = coroutine(routine)
        event_loop.run()

        assert future.result() == [0, 1, 2]


class TestRejected:
    def test_returns_rejected_future_if_function_raises_without_generator(self):
        error = RuntimeError("Foo")

        def routine():
            raise error

        assert coroutine(routine).reason() is error

    def test_returns_rejected_future_if_function_raises_immediately(self):
        def routine():
            if False:
                yield
            raise RuntimeError("Foo")

        reason = coroutine(routine).reason()

        assert isinstance(reason, RuntimeError)
        assert reason.args == ("Foo",)

    def test_returns_rejected_future_if_function_raises_after_yielding_future(self):
        def routine():
            reason = yield resolved("Foo")
            raise RuntimeError(reason)

        assert coroutine(routine).reason().args == ("Foo",)

    def test_returns_rejected_future_if_function_raises_after_yielding_rejected_future(self):
        def routine():
            try:
                yield rejected(OverflowError("Foo"))
            except OverflowError as e:
                raise RuntimeError(e.args[0])

        reason = coroutine(routine).reason()

        assert isinstance(reason, RuntimeError)
        assert reason.args == ("Foo",)

    def test_rejection_propagates_when_not_caught(self):
        deferred = Deferred()
        error = KeyError("missing")

        def routine():
            yield deferred.future

        future = coroutine(routine)
        deferred.reject(error)

        assert future.reason() is error

    def test_returns_rejected_future_if_function_yields_invalid_value(self):
        def routine():
            yield 42

        reason = coroutine(routine).reason()

        assert isinstance(reason, InvalidYield)
        assert str(reason) == "Expected coroutine to yield Future, but got int"
        assert reason.item_type == "int"

    def test_does_not_advance_after_invalid_yield(self):
        steps = []

        def routine():
            yield "not a future"
            steps.append("advanced")

        coroutine(routine)

        assert steps == []

    def test_plain_rejection_value_is_thrown_wrapped(self):
        def routine():
            try:
                yield rejected(None)
            except Exception as e:
                return str(e)

        assert coroutine(routine).result() == "Future rejected with unexpected value of type NoneType"


class TestCancellation:
    def test_cancels_pending_future_when_result_is_cancelled(self):
        cancelled = 0

        def count(resolve, reject):
            nonlocal cancelled
            cancelled += 1

        def routine():
            yield Future(canceller=count)

        future = coroutine(routine)
        future.cancel()

        assert cancelled == 1

    def test_cancelled_future_rejects_result_with_cancellation_reason(self):
        def routine():
            yield Future()

        future = coroutine(routine)
        future.cancel()

        assert isinstance(future.reason(), FutureCancelled)

    def test_repeated_cancel_reaches_each_pending_future_once(self):
        cancelled = 0

        def count(resolve, reject):
            nonlocal cancelled
            cancelled += 1

        def routine():
            yield Future(canceller=count)

        future = coroutine(routine)
        future.cancel()
        future.cancel()

        assert cancelled == 1

    def test_cancel_also_reaches_future_yielded_after_recovery(self):
        def routine():
            first = Future(canceller=_raising(RuntimeError("First operation cancelled", 21)))
            try:
                yield first
            except RuntimeError:
                pass

            yield Future(canceller=_raising(RuntimeError("Second operation cancelled", 42)))

        future = coroutine(routine)
        future.cancel()

        reason = future.reason()
        assert isinstance(reason, RuntimeError)
        assert reason.args == ("Second operation cancelled", 42)

    def test_future_yielded_after_cancel_is_cancelled_once(self):
        cancelled = []

        def routine():
            try:
                yield Future()
            except FutureCancelled:
                pass
            return (yield Future(canceller=lambda resolve, reject: cancelled.append("later")))

        future = coroutine(routine)
        future.cancel()

        assert cancelled == ["later"]
        assert future.is_pending()

        future.cancel()
        assert cancelled == ["later"]

    def test_cancel_after_completion_is_noop(self):
        assert coroutine(lambda: "done").result() == "done"

        def routine():
            return (yield resolved("done"))

        future = coroutine(routine)
        future.cancel()

        assert future.result() == "done"


class TestState:
    def test_status_transitions(self):
        deferred = Deferred()

        def routine():
            return (yield deferred.future)

        generator = routine()
        state = CoroutineState(generator)
        assert state.status is CoroutineStatus.RUNNING_STEP

        state.advance()
        assert state.status is CoroutineStatus.AWAITING_FUTURE
        assert state.awaiting is deferred.future

        deferred.resolve("value")
        assert state.status is CoroutineStatus.FULFILLED
        assert state.awaiting is None
        assert state.future.result() == "value"

    def test_status_after_cancellation(self):
        def routine():
            yield Future()

        state = CoroutineState(routine())
        state.advance()
        state.future.cancel()

        assert state.status is CoroutineStatus.CANCELLED

    def test_status_after_rejection(self):
        def routine():
            yield rejected(ValueError())

        state = CoroutineState(routine())
        state.advance()

        assert state.status is CoroutineStatus.REJECTED


class TestGarbage:
    def test_no_garbage_when_generator_returns(self):
        gc.collect()
        gc.collect()

        def routine():
            if False:
                yield
            return 42

        future = coroutine(routine)
        del future

        assert gc.collect() == 0

    def test_no_garbage_after_yielding_pending_future(self):
        gc.collect()

        def routine():
            value = yield deferred.future
            return value

        deferred = Deferred()
        future = coroutine(routine)
        deferred.resolve(1)
        del future, deferred

        assert gc.collect() == 0

    def test_no_garbage_when_generator_throws_before_first_yield(self):
        gc.collect()

        def routine():
            if False:
                yield
            raise RuntimeError("Failed", 42)

        future = coroutine(routine)
        del future

        assert gc.collect() == 0

    def test_no_garbage_for_future_rejected_immediately(self):
        gc.collect()

        def routine():
            yield Future(_fail)

        future = coroutine(routine)
        del future

        assert gc.collect() == 0

    def test_no_garbage_for_future_rejected_on_cancellation(self):
        gc.collect()

        def routine():
            yield Future(canceller=_fail)

        future = coroutine(routine)
        future.cancel()
        del future

        assert gc.collect() == 0

    def test_no_garbage_when_generator_yields_invalid_value(self):
        gc.collect()

        def routine():
            yield 42

        future = coroutine(routine)
        del future

        assert gc.collect() == 0


@pytest.mark.parametrize("item", [None, "text", 1.5, object()])
def test_any_non_future_yield_is_invalid(item):
    def routine():
        yield item

    assert isinstance(coroutine(routine).reason(), InvalidYield)
