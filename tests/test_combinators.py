"""Tests for derived resource combinators and adapters."""

import asyncio
from contextlib import asynccontextmanager

import pytest

from rescope import (
    IO,
    AsyncEffectInSyncRuntimeError,
    AsyncioRuntime,
    Failed,
    FailureKind,
    InvalidProgramError,
    Resource,
    SyncRuntime,
    allocated_case,
    both,
    failure_kind,
    sequence,
    suppressed,
    traverse,
)


# ============================================================================
# both
# ============================================================================


class TestBoth:
    @pytest.mark.asyncio
    async def test_both_yields_pair_and_releases_after_use(self, runtime, log, tracked, logged):
        program = both(tracked("a"), tracked("b"))

        result = await runtime.run(
            program.use(lambda pair: logged(("used", pair)).as_(pair))
        )

        assert result == ("a", "b")
        assert log.index(("used", ("a", "b"))) == 2
        assert set(log[:2]) == {"acquire-a", "acquire-b"}
        assert set(log[3:]) == {"release-a", "release-b"}

    @pytest.mark.asyncio
    async def test_method_form_matches_function(self, runtime, log, tracked):
        result = await runtime.run(tracked("a").both(tracked("b")).use_value())

        assert result == ("a", "b")
        assert len(log) == 4

    @pytest.mark.asyncio
    async def test_asyncio_acquires_concurrently(self):
        active = 0
        peak = 0

        def make(name):
            async def acquire():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1
                return name

            async def release(_value):
                await asyncio.sleep(0)

            return Resource.from_awaitable(acquire, release)

        result = await AsyncioRuntime().run(both(make("a"), make("b")).use_value())

        assert result == ("a", "b")
        assert peak == 2

    @pytest.mark.asyncio
    async def test_failing_acquisition_releases_other_side(self, runtime, log, tracked):
        error = RuntimeError("b unavailable")
        program = both(tracked("a"), tracked("b", fail_acquire=error))

        outcome = await runtime.run_safe(program.use(IO.pure))

        assert outcome == Failed(error)
        assert log == ["acquire-a", "release-a"]
        assert failure_kind(error) is FailureKind.ACQUISITION

    @pytest.mark.asyncio
    async def test_both_acquisitions_failing_keeps_both_errors(self, runtime, tracked):
        first = RuntimeError("a unavailable")
        second = RuntimeError("b unavailable")
        program = both(
            tracked("a", fail_acquire=first),
            tracked("b", fail_acquire=second),
        )

        outcome = await runtime.run_safe(program.use(IO.pure))

        assert isinstance(outcome, Failed)
        reported = {outcome.error, *suppressed(outcome.error)}
        assert reported == {first, second}

    @pytest.mark.asyncio
    async def test_both_releases_failing_keeps_both_errors(self, runtime, log, tracked):
        first = OSError("a close failed")
        second = OSError("b close failed")
        program = both(
            tracked("a", fail_release=first),
            tracked("b", fail_release=second),
        )

        outcome = await runtime.run_safe(program.use(lambda _: IO.pure("done")))

        assert isinstance(outcome, Failed)
        reported = {outcome.error, *suppressed(outcome.error)}
        assert reported == {first, second}
        assert set(log[2:]) == {"release-a", "release-b"}

    @pytest.mark.asyncio
    async def test_body_failure_reaches_both_releases(self, runtime):
        outcomes = []
        error = ValueError("body failed")

        def recorded(name):
            return Resource.make_case(
                IO.pure(name),
                lambda _value, outcome: IO.delay(lambda: outcomes.append(outcome)),
            )

        program = both(recorded("a"), recorded("b"))
        result = await runtime.run_safe(program.use(lambda _: IO.raise_error(error)))

        assert result == Failed(error)
        assert outcomes == [Failed(error), Failed(error)]


# ============================================================================
# sequence / traverse
# ============================================================================


class TestSequence:
    @pytest.mark.asyncio
    async def test_sequence_collects_values_in_order(self, runtime, log, tracked):
        program = sequence([tracked("a"), tracked("b"), tracked("c")])

        result = await runtime.run(program.use_value())

        assert result == ["a", "b", "c"]
        assert log == [
            "acquire-a",
            "acquire-b",
            "acquire-c",
            "release-c",
            "release-b",
            "release-a",
        ]

    @pytest.mark.asyncio
    async def test_long_sequence(self, runtime):
        program = sequence(Resource.pure(i) for i in range(3_000))

        assert await runtime.run(program.use_value()) == list(range(3_000))

    @pytest.mark.asyncio
    async def test_sequence_of_nothing(self, runtime):
        assert await runtime.run(sequence([]).use_value()) == []

    @pytest.mark.asyncio
    async def test_sequence_is_reusable(self, runtime, log, tracked):
        program = sequence([tracked("a"), tracked("b")])

        await runtime.run(program.use_value())
        await runtime.run(program.use_value())

        assert log.count("release-a") == 2

    @pytest.mark.asyncio
    async def test_traverse_failure_releases_prefix(self, runtime, log, tracked):
        error = RuntimeError("no c")

        def build(name):
            return tracked(name, fail_acquire=error if name == "c" else None)

        outcome = await runtime.run_safe(traverse(["a", "b", "c", "d"], build).use_value())

        assert outcome == Failed(error)
        assert log == ["acquire-a", "acquire-b", "release-b", "release-a"]


# ============================================================================
# map / eval_map / eval_tap / on_finalize
# ============================================================================


class TestTransformations:
    @pytest.mark.asyncio
    async def test_map_keeps_release_of_original(self, runtime, log, tracked):
        result = await runtime.run(tracked("a").map(str.upper).use_value())

        assert result == "A"
        assert log == ["acquire-a", "release-a"]

    @pytest.mark.asyncio
    async def test_eval_map_runs_effect_after_acquisition(self, runtime, log, tracked, logged):
        program = tracked("a").eval_map(lambda value: logged("mapped").as_(value * 2))

        result = await runtime.run(program.use_value())

        assert result == "aa"
        assert log == ["acquire-a", "mapped", "release-a"]

    @pytest.mark.asyncio
    async def test_eval_map_failure_releases_original(self, runtime, log, tracked):
        error = ValueError("transform failed")
        program = tracked("a").eval_map(lambda _: IO.raise_error(error))

        outcome = await runtime.run_safe(program.use_value())

        assert outcome == Failed(error)
        assert log == ["acquire-a", "release-a"]

    @pytest.mark.asyncio
    async def test_eval_tap_keeps_value(self, runtime, log, tracked, logged):
        program = tracked("a").eval_tap(lambda value: logged(f"tap-{value}"))

        result = await runtime.run(program.use_value())

        assert result == "a"
        assert log == ["acquire-a", "tap-a", "release-a"]

    @pytest.mark.asyncio
    async def test_on_finalize_runs_after_release(self, runtime, log, tracked, logged):
        program = tracked("a").on_finalize(logged("finalized"))

        await runtime.run(program.use(lambda _: logged("used")))

        assert log == ["acquire-a", "used", "release-a", "finalized"]

    @pytest.mark.asyncio
    async def test_on_finalize_case_sees_body_failure(self, runtime, tracked):
        outcomes = []
        error = KeyError("missing")
        program = tracked("a").on_finalize_case(
            lambda outcome: IO.delay(lambda: outcomes.append(outcome))
        )

        await runtime.run_safe(program.use(lambda _: IO.raise_error(error)))

        assert outcomes == [Failed(error)]


# ============================================================================
# Adapters
# ============================================================================


class Connection:
    def __init__(self, log, fail=None):
        self.log = log
        self.fail = fail

    def close(self):
        self.log.append("closed")
        if self.fail is not None:
            raise self.fail


class Recording:
    """Context manager that records what its ``__exit__`` receives."""

    def __init__(self, log):
        self.log = log

    def __enter__(self):
        self.log.append("enter")
        return "managed"

    def __exit__(self, exc_type, exc, tb):
        self.log.append(("exit", exc))
        return True


class TestAdapters:
    @pytest.mark.asyncio
    async def test_from_closeable_calls_close(self, runtime, log):
        program = Resource.from_closeable(IO.delay(lambda: Connection(log)))

        await runtime.run(program.use(lambda conn: IO.delay(lambda: log.append("used"))))

        assert log == ["used", "closed"]

    @pytest.mark.asyncio
    async def test_from_closeable_close_failure_is_release_failure(self, runtime, log):
        error = OSError("socket reset")
        program = Resource.from_closeable(IO.delay(lambda: Connection(log, fail=error)))

        outcome = await runtime.run_safe(program.use_value())

        assert outcome == Failed(error)
        assert failure_kind(error) is FailureKind.RELEASE

    @pytest.mark.asyncio
    async def test_from_closeable_rejects_objects_without_close(self, runtime):
        program = Resource.from_closeable(IO.pure(42))

        outcome = await runtime.run_safe(program.use_value())

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, InvalidProgramError)

    @pytest.mark.asyncio
    async def test_from_context_manager_on_success(self, runtime, log):
        program = Resource.from_context_manager(lambda: Recording(log))

        result = await runtime.run(program.use_value())

        assert result == "managed"
        assert log == ["enter", ("exit", None)]

    @pytest.mark.asyncio
    async def test_from_context_manager_sees_body_error(self, runtime, log):
        error = ValueError("body failed")
        program = Resource.from_context_manager(lambda: Recording(log))

        outcome = await runtime.run_safe(program.use(lambda _: IO.raise_error(error)))

        # a truthy __exit__ does not swallow the failure
        assert outcome == Failed(error)
        assert log == ["enter", ("exit", error)]

    @pytest.mark.asyncio
    async def test_from_async_context_manager(self, log):
        @asynccontextmanager
        async def session():
            log.append("open")
            try:
                yield "session"
            finally:
                log.append("close")

        program = Resource.from_async_context_manager(session)

        result = await AsyncioRuntime().run(
            program.use(lambda value: IO.delay(lambda: log.append(f"use-{value}")).as_(value))
        )

        assert result == "session"
        assert log == ["open", "use-session", "close"]

    @pytest.mark.asyncio
    async def test_from_awaitable_releases_value(self, log):
        async def acquire():
            return "conn"

        async def release(value):
            log.append(f"release-{value}")

        result = await AsyncioRuntime().run(
            Resource.from_awaitable(acquire, release).use_value()
        )

        assert result == "conn"
        assert log == ["release-conn"]

    @pytest.mark.asyncio
    async def test_async_adapter_fails_on_sync_runtime(self, log):
        async def acquire():
            return "conn"

        async def release(value):
            log.append(f"release-{value}")

        program = Resource.from_awaitable(acquire, release)

        with pytest.raises(AsyncEffectInSyncRuntimeError):
            SyncRuntime().run(program.use_value())

        assert log == []


# ============================================================================
# allocated
# ============================================================================


class TestAllocated:
    @pytest.mark.asyncio
    async def test_allocated_hands_release_to_caller(self, runtime, log, tracked):
        value, release = await runtime.run(tracked("a").allocated())

        assert value == "a"
        assert log == ["acquire-a"]

        await runtime.run(release)

        assert log == ["acquire-a", "release-a"]

    @pytest.mark.asyncio
    async def test_allocated_case_passes_outcome(self, runtime):
        outcomes = []
        program = Resource.make_case(
            IO.pure("a"),
            lambda _value, outcome: IO.delay(lambda: outcomes.append(outcome)),
        )

        value, release = await runtime.run(allocated_case(program))
        error = RuntimeError("caller failed")
        await runtime.run(release(Failed(error)))

        assert value == "a"
        assert outcomes == [Failed(error)]

    @pytest.mark.asyncio
    async def test_allocated_releases_partial_acquisition(self, runtime, log, tracked):
        error = RuntimeError("b unavailable")
        program = tracked("a").flat_map(lambda _: tracked("b", fail_acquire=error))

        outcome = await runtime.run_safe(program.allocated())

        assert outcome == Failed(error)
        assert log == ["acquire-a", "release-a"]

    @pytest.mark.asyncio
    async def test_allocated_release_reports_failures(self, runtime, tracked):
        error = OSError("close failed")
        _value, release = await runtime.run(tracked("a", fail_release=error).allocated())

        outcome = await runtime.run_safe(release)

        assert outcome == Failed(error)
