"""
IO program representation for the rescope system.

An ``IO[T]`` is an immutable description of a computation producing ``T``.
Nothing runs until a runtime interprets it (see ``rescope.runtimes``).
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from rescope._vendor import Err, Ok, Result

if TYPE_CHECKING:
    from rescope.outcome import Outcome

T = TypeVar("T")
U = TypeVar("U")


class IO(ABC, Generic[T]):
    """Base class for all IO nodes."""

    __slots__ = ()

    # =========================================================
    # Composition
    # =========================================================

    def map(self, f: Callable[[T], U]) -> IO[U]:
        """Map a function over this program's result."""

        if not callable(f):
            raise TypeError("mapper must be callable")
        return FlatMap(self, lambda value: Pure(f(value)))

    def flat_map(self, f: Callable[[T], IO[U]]) -> IO[U]:
        """Monadic bind operation."""

        if not callable(f):
            raise TypeError("binder must be callable returning an IO")
        return FlatMap(self, f)

    def then(self, next_io: IO[U]) -> IO[U]:
        """Sequence ``next_io`` after this program, discarding this result."""

        return FlatMap(self, lambda _: next_io)

    def as_(self, value: U) -> IO[U]:
        return self.map(lambda _: value)

    def void(self) -> IO[None]:
        return self.map(lambda _: None)

    # =========================================================
    # Errors
    # =========================================================

    def handle_error(self, handler: Callable[[BaseException], IO[T]]) -> IO[T]:
        """Recover from a failure with another program."""

        return HandleError(self, handler)

    def recover(self, f: Callable[[BaseException], T]) -> IO[T]:
        """Recover from a failure with a plain value."""

        return HandleError(self, lambda error: Pure(f(error)))

    def attempt(self) -> IO[Result[T]]:
        """Materialize failures as ``Err`` instead of propagating them."""

        return HandleError(self.map(Ok), lambda error: Pure(Err(error)))

    # =========================================================
    # Cancellation and finalization
    # =========================================================

    def uncancelable(self) -> IO[T]:
        """Defer cancellation requests until this program completes."""

        return Uncancelable(self)

    def guarantee_case(self, finalizer: Callable[[Outcome[T]], IO[None]]) -> IO[T]:
        """Run ``finalizer`` with the outcome of this program, however it ends."""

        return GuaranteeCase(self, finalizer)

    def guarantee(self, finalizer: IO[None]) -> IO[T]:
        return GuaranteeCase(self, lambda _: finalizer)

    # =========================================================
    # Constructors
    # =========================================================

    @staticmethod
    def pure(value: U) -> IO[U]:
        return Pure(value)

    @staticmethod
    def unit() -> IO[None]:
        return UNIT

    @staticmethod
    def delay(thunk: Callable[[], U]) -> IO[U]:
        """Run a plain callable when the program runs."""

        return Delay(thunk)

    @staticmethod
    def defer(factory: Callable[[], IO[U]]) -> IO[U]:
        """Build the program to run lazily, at run time."""

        return FlatMap(UNIT, lambda _: factory())

    @staticmethod
    def raise_error(error: BaseException) -> IO[Any]:
        return RaiseError(error)

    @staticmethod
    def from_awaitable(factory: Callable[[], Awaitable[U]]) -> IO[U]:
        """Await the awaitable returned by ``factory`` (asyncio runtime only)."""

        return Await(factory)

    @staticmethod
    def canceled() -> IO[None]:
        """Request cancellation of the fiber running this program."""

        return CancelSelf()

    @staticmethod
    def both(left: IO[T], right: IO[U]) -> IO[tuple[T, U]]:
        """Run both programs, concurrently where the runtime allows."""

        return Both(left, right)


@dataclass(frozen=True)
class Pure(IO[T]):
    value: T


@dataclass(frozen=True)
class Delay(IO[T]):
    thunk: Callable[[], T]


@dataclass(frozen=True)
class RaiseError(IO[Any]):
    error: BaseException


@dataclass(frozen=True)
class FlatMap(IO[T]):
    source: IO[Any]
    binder: Callable[[Any], IO[T]]


@dataclass(frozen=True)
class HandleError(IO[T]):
    source: IO[T]
    handler: Callable[[BaseException], IO[T]]


@dataclass(frozen=True)
class Uncancelable(IO[T]):
    source: IO[T]


@dataclass(frozen=True)
class GuaranteeCase(IO[T]):
    source: IO[T]
    finalizer: Callable[[Outcome[T]], IO[None]]


@dataclass(frozen=True)
class CancelSelf(IO[None]):
    pass


@dataclass(frozen=True)
class Await(IO[T]):
    factory: Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class Both(IO[tuple[Any, Any]]):
    left: IO[Any]
    right: IO[Any]


UNIT: IO[None] = Pure(None)


__all__ = [
    "IO",
    "UNIT",
    "Await",
    "Both",
    "CancelSelf",
    "Delay",
    "FlatMap",
    "GuaranteeCase",
    "HandleError",
    "Pure",
    "RaiseError",
    "Uncancelable",
]
