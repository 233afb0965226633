"""
Generator do-notation for ``IO`` programs and ``Resource`` programs.

``@do`` turns a generator function yielding ``IO`` programs into a function
returning an ``IO``; ``@resource`` turns one yielding ``Resource`` programs
into a function returning a ``Resource``. Generators are single-use, so a new
generator is created every time the program runs, which keeps the resulting
programs reusable.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Generator
from functools import wraps
from typing import Any, ParamSpec, TypeAlias, TypeVar

from rescope._vendor import Ok, Result
from rescope.errors import InvalidProgramError
from rescope.program import IO, Pure
from rescope.resource import Resource
from rescope.utils import callable_name

P = ParamSpec("P")
T = TypeVar("T")

IOGenerator: TypeAlias = Generator[IO[Any], Any, T]
ResourceGenerator: TypeAlias = Generator[Resource[Any], Any, T]


def _advance(gen: IOGenerator[T], name: str, result: Result[Any] | None) -> IO[T]:
    try:
        if result is None:
            yielded = next(gen)
        elif isinstance(result, Ok):
            yielded = gen.send(result.value)
        else:
            yielded = gen.throw(result.unwrap_err())
    except StopIteration as stop_exc:
        return Pure(stop_exc.value)

    if not isinstance(yielded, IO):
        gen.close()
        raise InvalidProgramError(
            f"@do function {name} yielded {type(yielded).__name__}; expected an IO program"
        )
    return yielded.attempt().flat_map(lambda outcome: _advance(gen, name, outcome))


def do(func: Callable[P, IOGenerator[T]]) -> Callable[P, IO[T]]:
    """
    Decorator that converts a generator function into a function returning ``IO``.

    Each ``yield`` runs an ``IO`` program and evaluates to its result. A failed
    program is thrown back into the generator at the ``yield``, so ordinary
    ``try``/``except``/``finally`` blocks work around it. Cancellation is not
    thrown into the generator.

        @do
        def copy(src, dst):
            data = yield IO.delay(src.read)
            yield IO.delay(lambda: dst.write(data))
            return len(data)
    """

    name = callable_name(func)

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> IO[T]:
        def start() -> IO[T]:
            gen_or_value = func(*args, **kwargs)
            if not inspect.isgenerator(gen_or_value):
                return Pure(gen_or_value)
            return _advance(gen_or_value, name, None)

        return IO.defer(start)

    return wrapper


def _bind_next(gen: ResourceGenerator[T], name: str, value: Any, first: bool) -> Resource[T]:
    try:
        yielded = next(gen) if first else gen.send(value)
    except StopIteration as stop_exc:
        return Resource.pure(stop_exc.value)

    if not isinstance(yielded, Resource):
        gen.close()
        raise InvalidProgramError(
            f"@resource function {name} yielded {type(yielded).__name__}; expected a Resource"
        )
    return yielded.flat_map(lambda acquired: _bind_next(gen, name, acquired, False))


def resource(func: Callable[P, ResourceGenerator[T]]) -> Callable[P, Resource[T]]:
    """
    Decorator that converts a generator function into a function returning ``Resource``.

    Each ``yield`` acquires a ``Resource`` and evaluates to its value; the
    returned value is the value of the combined resource. Everything acquired
    is released in reverse order once the combined resource's ``use`` ends.

    Acquisition failures are not thrown into the generator; a ``try`` around
    a ``yield`` will not see them.

        @resource
        def session(url):
            conn = yield Resource.make(IO.delay(lambda: connect(url)), close_conn)
            cursor = yield Resource.from_closeable(IO.delay(conn.cursor))
            return conn, cursor

    Works with the default ``IO`` host only.
    """

    name = callable_name(func)

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> Resource[T]:
        def start() -> Resource[T]:
            gen_or_value = func(*args, **kwargs)
            if not inspect.isgenerator(gen_or_value):
                return Resource.pure(gen_or_value)
            return _bind_next(gen_or_value, name, None, True)

        return Resource.suspend(IO.delay(start))

    return wrapper


__all__ = ["IOGenerator", "ResourceGenerator", "do", "resource"]
