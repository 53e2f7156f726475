"""
Property-based tests for ModelCache dedup-on-load.

These tests verify that concurrent requests for a model kind share one
underlying load, that failures reach every waiting caller, and that a
later request retries after a failure.
"""

import asyncio
import gc
import threading
import time

import pytest
from hypothesis import given, settings
import hypothesis.strategies as st

from camera_control.errors import ModelLoadError
from camera_control.model_cache import ModelCache, ModelKind


class CountingLoader:
    """Async loader that blocks until released and counts its calls."""

    def __init__(self, fail_times: int = 0):
        self.calls = 0
        self.fail_times = fail_times
        self.release = None

    async def load(self):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        if self.calls <= self.fail_times:
            raise RuntimeError(f"network down (attempt {self.calls})")
        return {"model": "expression", "attempt": self.calls}


async def load_async_counting(loader_state):
    loader_state["calls"] += 1
    await asyncio.sleep(0.001)
    return object()


class TestDedupOnLoad:
    """
    **Property: Dedup-on-load**

    *For any* number N of concurrent ensure_loaded() calls for one kind,
    exactly one underlying load SHALL be issued and all N calls SHALL
    resolve to the same handle.
    """

    @settings(max_examples=30, deadline=None)
    @given(num_callers=st.integers(min_value=1, max_value=25))
    def test_concurrent_callers_share_one_load(self, num_callers):
        async def scenario():
            state = {"calls": 0}

            async def loader():
                return await load_async_counting(state)

            cache = ModelCache({ModelKind.EXPRESSION: loader})
            handles = await asyncio.gather(*[
                cache.ensure_loaded(ModelKind.EXPRESSION) for _ in range(num_callers)
            ])
            return state["calls"], handles, cache

        calls, handles, cache = asyncio.run(scenario())

        assert calls == 1
        assert cache.load_count(ModelKind.EXPRESSION) == 1
        assert all(h is handles[0] for h in handles)
        assert cache.is_loaded(ModelKind.EXPRESSION)

    def test_later_calls_return_cached_model(self):
        async def scenario():
            loader = CountingLoader()
            cache = ModelCache({ModelKind.GESTURE_CLASSIFIER: loader.load})
            first = await cache.ensure_loaded(ModelKind.GESTURE_CLASSIFIER)
            second = await cache.ensure_loaded(ModelKind.GESTURE_CLASSIFIER)
            return loader.calls, first, second

        calls, first, second = asyncio.run(scenario())
        assert calls == 1
        assert first is second

    def test_kinds_load_independently(self):
        async def scenario():
            expression = CountingLoader()
            classifier = CountingLoader()
            cache = ModelCache({
                ModelKind.EXPRESSION: expression.load,
                ModelKind.GESTURE_CLASSIFIER: classifier.load,
            })
            await asyncio.gather(
                cache.ensure_loaded(ModelKind.EXPRESSION),
                cache.ensure_loaded(ModelKind.GESTURE_CLASSIFIER),
                cache.ensure_loaded(ModelKind.EXPRESSION),
            )
            return expression.calls, classifier.calls

        assert asyncio.run(scenario()) == (1, 1)

    def test_blocking_loader_runs_in_executor(self):
        calls = []
        loop_thread = threading.get_ident()

        def blocking_loader():
            calls.append(threading.get_ident())
            time.sleep(0.02)
            return "handle"

        async def scenario():
            cache = ModelCache({ModelKind.GESTURE_FEATURE_EXTRACTOR: blocking_loader})
            return await asyncio.gather(*[
                cache.ensure_loaded(ModelKind.GESTURE_FEATURE_EXTRACTOR) for _ in range(5)
            ])

        handles = asyncio.run(scenario())
        assert handles == ["handle"] * 5
        assert len(calls) == 1
        assert calls[0] != loop_thread


class TestLoadFailure:
    """
    **Property: Failure surfaces to all waiters and clears pending state**
    """

    @settings(max_examples=20, deadline=None)
    @given(num_callers=st.integers(min_value=1, max_value=10))
    def test_all_waiters_get_same_failure(self, num_callers):
        async def scenario():
            loader = CountingLoader(fail_times=1)
            loader.release = asyncio.Event()
            cache = ModelCache({ModelKind.EXPRESSION: loader.load})

            waiters = [
                asyncio.ensure_future(cache.ensure_loaded(ModelKind.EXPRESSION))
                for _ in range(num_callers)
            ]
            await asyncio.sleep(0)
            assert cache.is_loading(ModelKind.EXPRESSION)
            loader.release.set()

            results = await asyncio.gather(*waiters, return_exceptions=True)
            return loader, cache, results

        loader, cache, results = asyncio.run(scenario())

        assert loader.calls == 1
        assert all(isinstance(r, ModelLoadError) for r in results)
        assert all(r is results[0] for r in results)
        assert results[0].kind is ModelKind.EXPRESSION
        assert not cache.is_loading(ModelKind.EXPRESSION)
        assert not cache.is_loaded(ModelKind.EXPRESSION)

    def test_retry_after_failure(self):
        async def scenario():
            loader = CountingLoader(fail_times=1)
            cache = ModelCache({ModelKind.EXPRESSION: loader.load})

            with pytest.raises(ModelLoadError):
                await cache.ensure_loaded(ModelKind.EXPRESSION)
            model = await cache.ensure_loaded(ModelKind.EXPRESSION)
            return loader.calls, model, cache

        calls, model, cache = asyncio.run(scenario())
        assert calls == 2
        assert model["attempt"] == 2
        assert cache.load_count(ModelKind.EXPRESSION) == 2

    def test_missing_loader_raises(self):
        async def scenario():
            cache = ModelCache({})
            assert not cache.has_loader(ModelKind.GESTURE_CLASSIFIER)
            with pytest.raises(ModelLoadError):
                await cache.ensure_loaded(ModelKind.GESTURE_CLASSIFIER)
            return cache

        cache = asyncio.run(scenario())
        assert cache.load_count(ModelKind.GESTURE_CLASSIFIER) == 0

    def test_loader_returning_none_is_a_failure(self):
        async def scenario():
            cache = ModelCache({ModelKind.EXPRESSION: lambda: None})
            with pytest.raises(ModelLoadError):
                await cache.ensure_loaded(ModelKind.EXPRESSION)
            return cache

        cache = asyncio.run(scenario())
        assert cache.get(ModelKind.EXPRESSION) is None

    def test_cancelled_caller_does_not_cancel_shared_load(self):
        async def scenario():
            loader = CountingLoader()
            loader.release = asyncio.Event()
            cache = ModelCache({ModelKind.EXPRESSION: loader.load})

            first = asyncio.ensure_future(cache.ensure_loaded(ModelKind.EXPRESSION))
            second = asyncio.ensure_future(cache.ensure_loaded(ModelKind.EXPRESSION))
            await asyncio.sleep(0)
            first.cancel()
            await asyncio.sleep(0)
            loader.release.set()

            model = await second
            return loader.calls, first.cancelled(), model

        calls, first_cancelled, model = asyncio.run(scenario())
        assert calls == 1
        assert first_cancelled
        assert model["attempt"] == 1

    def test_failure_with_no_waiters_left_is_not_reported_as_unhandled(self):
        async def scenario():
            contexts = []
            asyncio.get_running_loop().set_exception_handler(
                lambda loop, context: contexts.append(context)
            )
            loader = CountingLoader(fail_times=1)
            loader.release = asyncio.Event()
            cache = ModelCache({ModelKind.EXPRESSION: loader.load})

            waiter = asyncio.ensure_future(cache.ensure_loaded(ModelKind.EXPRESSION))
            await asyncio.sleep(0)
            waiter.cancel()
            await asyncio.sleep(0)
            loader.release.set()

            while cache.is_loading(ModelKind.EXPRESSION):
                await asyncio.sleep(0)
            for _ in range(3):
                await asyncio.sleep(0)
            gc.collect()
            return contexts, cache, waiter

        contexts, cache, waiter = asyncio.run(scenario())
        assert waiter.cancelled()
        assert not any("never retrieved" in c.get("message", "") for c in contexts)
        assert cache.load_count(ModelKind.EXPRESSION) == 1
        assert not cache.is_loaded(ModelKind.EXPRESSION)
