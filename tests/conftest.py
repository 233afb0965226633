"""
Pytest configuration for rescope tests.

Provides a parameterized ``runtime`` fixture so the same test body runs on
both SyncRuntime and AsyncioRuntime, plus helpers that build resources
recording their acquire/release steps into a shared log.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import pytest

from rescope import IO, AsyncioRuntime, CancelToken, Outcome, Resource, SyncRuntime

T = TypeVar("T")


class Runtime(Protocol):
    """Protocol for runtime adapters."""

    runtime_type: str

    async def run(self, program: IO[T], token: CancelToken | None = None) -> T: ...

    async def run_safe(
        self, program: IO[T], token: CancelToken | None = None
    ) -> Outcome[T]: ...


class SyncRuntimeAdapter:
    """Adapter giving SyncRuntime the awaitable interface of AsyncioRuntime."""

    runtime_type = "sync"

    def __init__(self) -> None:
        self._runtime = SyncRuntime()

    async def run(self, program: IO[T], token: CancelToken | None = None) -> T:
        return self._runtime.run(program, token)

    async def run_safe(
        self, program: IO[T], token: CancelToken | None = None
    ) -> Outcome[T]:
        return self._runtime.run_safe(program, token)


class AsyncioRuntimeAdapter:
    """Wrapper for AsyncioRuntime that adds runtime_type."""

    runtime_type = "asyncio"

    def __init__(self) -> None:
        self._runtime = AsyncioRuntime()

    async def run(self, program: IO[T], token: CancelToken | None = None) -> T:
        return await self._runtime.run(program, token)

    async def run_safe(
        self, program: IO[T], token: CancelToken | None = None
    ) -> Outcome[T]:
        return await self._runtime.run_safe(program, token)


@pytest.fixture(params=["sync", "asyncio"])
def runtime(request: pytest.FixtureRequest) -> Runtime:
    """
    Parameterized fixture providing both runtime implementations.

    Each adapter has a ``runtime_type`` attribute ("sync" or "asyncio") that
    can be used to skip tests for specific implementations.
    """
    if request.param == "sync":
        return SyncRuntimeAdapter()
    return AsyncioRuntimeAdapter()


@pytest.fixture
def log() -> list[Any]:
    return []


@pytest.fixture
def logged(log: list[Any]) -> Callable[[Any], IO[None]]:
    """Build an IO that appends an entry to the shared log."""

    def make(entry: Any) -> IO[None]:
        return IO.delay(lambda: log.append(entry))

    return make


@pytest.fixture
def tracked(log: list[Any]) -> Callable[..., Resource[str]]:
    """
    Build a resource named ``name`` that logs ``acquire-<name>`` and
    ``release-<name>``, optionally failing its acquire or release step.
    """

    def make(
        name: str,
        *,
        fail_acquire: BaseException | None = None,
        fail_release: BaseException | None = None,
    ) -> Resource[str]:
        def acquire() -> str:
            if fail_acquire is not None:
                raise fail_acquire
            log.append(f"acquire-{name}")
            return name

        def release(value: str) -> IO[None]:
            def run() -> None:
                log.append(f"release-{value}")
                if fail_release is not None:
                    raise fail_release

            return IO.delay(run)

        return Resource.make(IO.delay(acquire), release)

    return make
