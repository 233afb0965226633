"""
Resource class for the rescope system.

A ``Resource[A]`` is an immutable description of how to acquire an ``A``
together with the effect that releases it. Building or composing resources
performs no acquisition; that only happens inside ``use`` (see
``rescope.evaluator``).

Exactly three node types exist and the evaluator handles each of them:

``Allocate``
    Runs an acquire effect yielding ``(value, release)``. ``release`` is
    called as ``release(value, outcome)``.
``Bind``
    Acquires ``source`` then feeds its value to ``continuation`` to decide
    what to acquire next.
``Suspend``
    Runs an effect that yields the next ``Resource``.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager, AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from rescope.errors import InvalidProgramError
from rescope.host import IO_HOST, EffectHost
from rescope.outcome import Failed, Outcome
from rescope.program import IO
from rescope.utils import callable_name, capture_creation_site

T = TypeVar("T")
U = TypeVar("U")

Release = Callable[[Any, Outcome[Any]], Any]


@runtime_checkable
class Closeable(Protocol):
    def close(self) -> Any: ...


def _check_pair(pair: Any) -> tuple[Any, Release]:
    if not (isinstance(pair, tuple) and len(pair) == 2 and callable(pair[1])):
        raise InvalidProgramError(
            "an Allocate acquire effect must yield a (value, release) pair; "
            f"got {type(pair).__name__}"
        )
    return pair


def _noop_release(host: EffectHost[Any]) -> Release:
    return lambda _value, _outcome: host.unit()


class Resource(ABC, Generic[T]):
    """Base class for resource programs.

    Methods that need to build effects take a ``host`` keyword, defaulting to
    the ``IO`` host. Resources built for another host must be used with it.
    """

    __slots__ = ()

    # =========================================================
    # Constructors
    # =========================================================

    @staticmethod
    def allocate(acquire: Any, *, host: EffectHost[Any] = IO_HOST) -> Resource[Any]:
        """Build an ``Allocate`` node from an effect yielding ``(value, release)``.

        ``release`` takes the acquired value and returns the release effect.
        """

        def adapt(pair: Any) -> tuple[Any, Release]:
            value, release = _check_pair(pair)
            return value, lambda resource, _outcome: release(resource)

        return Allocate(host.map(acquire, adapt), created_at=capture_creation_site())

    @staticmethod
    def allocate_case(acquire: Any, *, host: EffectHost[Any] = IO_HOST) -> Resource[Any]:
        """Like :meth:`allocate`, but ``release`` also receives the exit outcome."""

        return Allocate(host.map(acquire, _check_pair), created_at=capture_creation_site())

    @staticmethod
    def make(
        acquire: Any,
        release: Callable[[Any], Any],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[Any]:
        """Bracket-style resource: ``acquire`` then ``release(value)``."""

        return Allocate(
            host.map(acquire, lambda value: (value, lambda resource, _outcome: release(resource))),
            created_at=capture_creation_site(),
        )

    @staticmethod
    def make_case(
        acquire: Any,
        release: Callable[[Any, Outcome[Any]], Any],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[Any]:
        """Bracket-style resource whose release sees how the resource was used."""

        return Allocate(
            host.map(acquire, lambda value: (value, release)),
            created_at=capture_creation_site(),
        )

    @staticmethod
    def suspend(effect: Any) -> Resource[Any]:
        """Defer building a resource until ``effect`` runs and yields it."""

        return Suspend(effect)

    @staticmethod
    def lift(effect: Any, *, host: EffectHost[Any] = IO_HOST) -> Resource[Any]:
        """A resource whose acquisition is ``effect`` and whose release is a no-op.

        ``effect`` stays cancellable: it runs as a ``Suspend`` step, not as an
        uncancelable acquisition.
        """

        site = capture_creation_site()
        noop = _noop_release(host)
        return Suspend(
            host.map(
                effect,
                lambda value: Allocate(host.pure((value, noop)), created_at=site),
            )
        )

    @staticmethod
    def pure(value: U, *, host: EffectHost[Any] = IO_HOST) -> Resource[U]:
        return Allocate(host.pure((value, _noop_release(host))))

    @staticmethod
    def unit(*, host: EffectHost[Any] = IO_HOST) -> Resource[None]:
        return Resource.pure(None, host=host)

    @staticmethod
    def from_closeable(acquire: Any, *, host: EffectHost[Any] = IO_HOST) -> Resource[Any]:
        """Release by calling ``close()`` on the acquired object.

        A failure raised by ``close()`` becomes a failure of the release effect.
        """

        def close(resource: Any) -> Any:
            if not isinstance(resource, Closeable):
                raise InvalidProgramError(
                    f"{type(resource).__name__} object has no close() method"
                )
            return host.delay(resource.close)

        return Allocate(
            host.map(acquire, lambda value: (value, lambda resource, _outcome: close(resource))),
            created_at=capture_creation_site(),
        )

    @staticmethod
    def from_context_manager(
        factory: Callable[[], AbstractContextManager[U]],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[U]:
        """Acquire with ``__enter__`` and release with ``__exit__``.

        ``__exit__`` receives the exception of a failed use, like a ``with``
        block would. A truthy return from ``__exit__`` does not swallow it.
        """

        def enter() -> tuple[Any, Release]:
            manager = factory()
            value = manager.__enter__()
            return value, lambda _resource, outcome: host.delay(
                lambda: manager.__exit__(*_exc_info(outcome))
            )

        return Allocate(host.delay(enter), created_at=capture_creation_site())

    @staticmethod
    def from_async_context_manager(
        factory: Callable[[], AbstractAsyncContextManager[U]],
    ) -> Resource[U]:
        """Acquire with ``__aenter__`` and release with ``__aexit__`` (``IO`` host only)."""

        async def enter() -> tuple[Any, Release]:
            manager = factory()
            value = await manager.__aenter__()

            def release(_resource: Any, outcome: Outcome[Any]) -> IO[Any]:
                return IO.from_awaitable(lambda: manager.__aexit__(*_exc_info(outcome)))

            return value, release

        return Allocate(IO.from_awaitable(enter), created_at=capture_creation_site())

    @staticmethod
    def from_awaitable(
        acquire: Callable[[], Awaitable[U]],
        release: Callable[[U], Awaitable[Any]],
    ) -> Resource[U]:
        """Bracket-style resource from coroutine functions (``IO`` host only)."""

        return Allocate(
            IO.from_awaitable(acquire).map(
                lambda value: (
                    value,
                    lambda resource, _outcome: IO.from_awaitable(lambda: release(resource)),
                )
            ),
            created_at=capture_creation_site(),
        )

    # =========================================================
    # Composition
    # =========================================================

    def flat_map(self, continuation: Callable[[T], Resource[U]]) -> Resource[U]:
        """Acquire this resource, then the one ``continuation`` builds from its value."""

        if not callable(continuation):
            raise TypeError("continuation must be callable returning a Resource")
        return Bind(self, continuation)

    bind = flat_map

    def map(self, f: Callable[[T], U], *, host: EffectHost[Any] = IO_HOST) -> Resource[U]:
        return Bind(self, lambda value: Resource.pure(f(value), host=host))

    def eval_map(
        self,
        transform: Callable[[T], Any],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[Any]:
        """Run ``transform(value)`` after acquisition; release still targets this resource."""

        return Bind(
            self,
            lambda value: Resource.lift(host.defer(lambda: transform(value)), host=host),
        )

    def eval_tap(
        self,
        effect: Callable[[T], Any],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[T]:
        """Run ``effect(value)`` for its side effects and keep the value."""

        return self.eval_map(
            lambda value: host.map(effect(value), lambda _: value),
            host=host,
        )

    def on_finalize_case(
        self,
        finalizer: Callable[[Outcome[Any]], Any],
        *,
        host: EffectHost[Any] = IO_HOST,
    ) -> Resource[T]:
        """Run ``finalizer`` after this resource has been released."""

        guard = Resource.make_case(
            host.unit(),
            lambda _value, outcome: finalizer(outcome),
            host=host,
        )
        return Bind(guard, lambda _: self)

    def on_finalize(self, finalizer: Any, *, host: EffectHost[Any] = IO_HOST) -> Resource[T]:
        return self.on_finalize_case(lambda _outcome: finalizer, host=host)

    def both(self, other: Resource[U], *, host: EffectHost[Any] = IO_HOST) -> Resource[tuple[T, U]]:
        from rescope.combinators import both

        return both(self, other, host=host)

    # =========================================================
    # Evaluation
    # =========================================================

    def use(self, body: Callable[[T], Any], *, host: EffectHost[Any] = IO_HOST) -> Any:
        """Acquire, run ``body`` with the value, then release everything."""

        from rescope.evaluator import use

        return use(self, body, host=host)

    def use_value(self, *, host: EffectHost[Any] = IO_HOST) -> Any:
        """Acquire and immediately release, returning the acquired value."""

        return self.use(host.pure, host=host)

    def allocated(self, *, host: EffectHost[Any] = IO_HOST) -> Any:
        """Acquire without releasing; yields ``(value, release_effect)``."""

        from rescope.evaluator import allocated

        return allocated(self, host=host)


@dataclass(frozen=True)
class Allocate(Resource[T]):
    acquire: Any
    created_at: str | None = field(default=None, compare=False)

    def __repr__(self) -> str:
        site = f" at {self.created_at}" if self.created_at else ""
        return f"Allocate({self.acquire!r}{site})"


@dataclass(frozen=True)
class Bind(Resource[T]):
    source: Resource[Any]
    continuation: Callable[[Any], Resource[T]]

    def __repr__(self) -> str:
        return f"Bind({self.source!r}, {callable_name(self.continuation)})"


@dataclass(frozen=True)
class Suspend(Resource[T]):
    effect: Any


def _exc_info(outcome: Outcome[Any]) -> tuple[Any, Any, Any]:
    match outcome:
        case Failed(error=error):
            return type(error), error, error.__traceback__
        case _:
            return None, None, None


__all__ = ["Allocate", "Bind", "Closeable", "Resource", "Suspend"]
