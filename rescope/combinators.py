"""
Derived resource combinators.

Everything here is built from ``Resource`` nodes and the evaluator's
``allocated_case``; no new evaluation semantics are introduced.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from rescope._vendor import Err, Ok, Result
from rescope.errors import add_suppressed
from rescope.evaluator import allocated_case
from rescope.host import IO_HOST, EffectHost
from rescope.outcome import Failed, Outcome
from rescope.resource import Resource

T = TypeVar("T")
U = TypeVar("U")


def _run_recorded(host: EffectHost[Any], effects: tuple[Any, Any]) -> Any:
    """Run two effects with ``host.both``, listing their results in completion order."""

    def build() -> Any:
        completed: list[Result[Any]] = []

        def record(result: Result[Any]) -> Any:
            completed.append(result)
            return host.pure(result)

        left, right = (host.flat_map(host.attempt(effect), record) for effect in effects)
        return host.map(host.both(left, right), lambda pair: (pair, completed))

    return host.defer(build)


def _failures(results: list[Result[Any]]) -> list[BaseException]:
    return [result.error for result in results if isinstance(result, Err)]


def _raise_all(host: EffectHost[Any], errors: list[BaseException]) -> Any:
    primary = errors[0]
    for error in errors[1:]:
        add_suppressed(primary, error)
    return host.raise_error(primary)


def both(
    left: Resource[T],
    right: Resource[U],
    *,
    host: EffectHost[Any] = IO_HOST,
) -> Resource[tuple[T, U]]:
    """Acquire two independent resources together and release them together.

    Both sides are acquired in one uncancelable step, concurrently when the
    host's ``both`` is concurrent. Their releases also run through
    ``host.both`` as a single finalizer. When both sides fail, every failure
    is kept; they are reported in the order they completed, which is not
    defined for sides that run concurrently.
    """

    def release_both(releases: tuple[Any, Any]) -> Callable[[Any, Outcome[Any]], Any]:
        def release(_value: Any, outcome: Outcome[Any]) -> Any:
            released = _run_recorded(host, (releases[0](outcome), releases[1](outcome)))

            def check(result: Any) -> Any:
                _pair, completed = result
                errors = _failures(completed)
                return _raise_all(host, errors) if errors else host.unit()

            return host.flat_map(released, check)

        return release

    def combine(result: Any) -> Any:
        (left_result, right_result), completed = result
        match (left_result, right_result):
            case (Ok(value=(left_value, left_release)), Ok(value=(right_value, right_release))):
                return host.pure(
                    ((left_value, right_value), release_both((left_release, right_release)))
                )
            case (Ok(value=(_, release)), Err(error=error)) | (
                Err(error=error),
                Ok(value=(_, release)),
            ):
                # the side that was acquired must not leak
                return host.flat_map(
                    host.attempt(release(Failed(error))),
                    lambda released: _raise_all(host, [error, *_failures([released])]),
                )
            case _:
                return _raise_all(host, _failures(completed))

    acquire = host.flat_map(
        _run_recorded(
            host,
            (allocated_case(left, host=host), allocated_case(right, host=host)),
        ),
        combine,
    )
    return Resource.allocate_case(acquire, host=host)


def _unchain(chain: Any) -> list[Any]:
    values = []
    while chain is not None:
        chain, value = chain
        values.append(value)
    values.reverse()
    return values


def sequence(
    resources: Iterable[Resource[T]],
    *,
    host: EffectHost[Any] = IO_HOST,
) -> Resource[list[T]]:
    """Acquire resources one after another, collecting their values in order."""

    # values accumulate as (previous, value) links, flattened once at the end
    result: Resource[Any] = Resource.pure(None, host=host)
    for resource in resources:
        result = result.flat_map(
            lambda chain, resource=resource: resource.map(
                lambda value, chain=chain: (chain, value),
                host=host,
            )
        )
    return result.map(_unchain, host=host)


def traverse(
    items: Iterable[U],
    func: Callable[[U], Resource[T]],
    *,
    host: EffectHost[Any] = IO_HOST,
) -> Resource[list[T]]:
    return sequence([func(item) for item in items], host=host)


__all__ = ["both", "sequence", "traverse"]
