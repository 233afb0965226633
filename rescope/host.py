"""
Effect host contract consumed by the resource evaluator.

The evaluator in ``rescope.evaluator`` only ever talks to an ``EffectHost``.
Any effect system that can provide the six primitive capabilities below can
host resource programs; ``IOHost`` provides them with ``rescope.program.IO``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from rescope._vendor import Err, Ok, Result
from rescope.program import (
    IO,
    UNIT,
    Both,
    Delay,
    FlatMap,
    GuaranteeCase,
    HandleError,
    Pure,
    RaiseError,
    Uncancelable,
)

if TYPE_CHECKING:
    from rescope.outcome import Outcome

F = TypeVar("F")
A = TypeVar("A")
B = TypeVar("B")


class EffectHost(ABC, Generic[F]):
    """Capabilities a host effect type ``F`` must provide.

    Effects are opaque values of type ``F``. Two conventions are assumed:
    a binder passed to :meth:`flat_map` that raises an ``Exception`` fails the
    resulting effect, and cancellation is not a failure, so
    :meth:`handle_error` never observes it.
    """

    @abstractmethod
    def pure(self, value: A) -> F: ...

    @abstractmethod
    def flat_map(self, effect: F, binder: Callable[[Any], F]) -> F: ...

    @abstractmethod
    def raise_error(self, error: BaseException) -> F: ...

    @abstractmethod
    def handle_error(self, effect: F, handler: Callable[[BaseException], F]) -> F: ...

    @abstractmethod
    def uncancelable(self, effect: F) -> F:
        """Run ``effect`` with cancellation requests deferred until it completes."""

    @abstractmethod
    def guarantee_case(self, effect: F, finalizer: Callable[[Outcome[Any]], F]) -> F:
        """Run ``effect``, then always run ``finalizer`` with how it exited."""

    # =========================================================
    # Derived operations
    # =========================================================

    def unit(self) -> F:
        return self.pure(None)

    def map(self, effect: F, f: Callable[[Any], Any]) -> F:
        return self.flat_map(effect, lambda value: self.pure(f(value)))

    def defer(self, factory: Callable[[], F]) -> F:
        """Build an effect lazily each time it runs."""
        return self.flat_map(self.unit(), lambda _: factory())

    def delay(self, thunk: Callable[[], Any]) -> F:
        """Run a plain callable as an effect; its exceptions become failures."""
        return self.flat_map(self.unit(), lambda _: self.pure(thunk()))

    def attempt(self, effect: F) -> F:
        """Materialize failures as ``Err`` values."""
        return self.handle_error(
            self.map(effect, Ok),
            lambda error: self.pure(Err(error)),
        )

    def both(self, left: F, right: F) -> F:
        """Run two effects and pair their results. Sequential unless overridden."""
        return self.flat_map(left, lambda a: self.map(right, lambda b: (a, b)))

    def is_effect(self, value: Any) -> bool:
        """Whether ``value`` is an effect of this host; used for validation only."""
        return True


class IOHost(EffectHost[IO[Any]]):
    """``EffectHost`` whose effects are ``IO`` programs."""

    def pure(self, value: A) -> IO[A]:
        return Pure(value)

    def flat_map(self, effect: IO[A], binder: Callable[[A], IO[B]]) -> IO[B]:
        return FlatMap(effect, binder)

    def raise_error(self, error: BaseException) -> IO[Any]:
        return RaiseError(error)

    def handle_error(
        self,
        effect: IO[A],
        handler: Callable[[BaseException], IO[A]],
    ) -> IO[A]:
        return HandleError(effect, handler)

    def uncancelable(self, effect: IO[A]) -> IO[A]:
        return Uncancelable(effect)

    def guarantee_case(
        self,
        effect: IO[A],
        finalizer: Callable[[Outcome[A]], IO[None]],
    ) -> IO[A]:
        return GuaranteeCase(effect, finalizer)

    def unit(self) -> IO[None]:
        return UNIT

    def delay(self, thunk: Callable[[], A]) -> IO[A]:
        return Delay(thunk)

    def both(self, left: IO[A], right: IO[B]) -> IO[tuple[A, B]]:
        return Both(left, right)

    def attempt(self, effect: IO[A]) -> IO[Result[A]]:
        return effect.attempt()

    def is_effect(self, value: Any) -> bool:
        return isinstance(value, IO)


IO_HOST = IOHost()


__all__ = ["IO_HOST", "EffectHost", "IOHost"]
