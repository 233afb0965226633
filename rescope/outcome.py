"""
Exit outcomes of a computation.

An ``Outcome`` tells how a fiber, a ``use`` body, or a finalized region
terminated. Finalizers receive it so a release can branch on how the
resource was used.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, NoReturn, TypeVar

from rescope._vendor import Err, Ok, Result

T = TypeVar("T")
U = TypeVar("U")


class Outcome(Generic[T]):
    """Closed sum type: ``Succeeded``, ``Failed`` or ``Canceled``."""

    __slots__ = ()

    def is_succeeded(self) -> bool:
        return isinstance(self, Succeeded)

    def is_failed(self) -> bool:
        return isinstance(self, Failed)

    def is_canceled(self) -> bool:
        return isinstance(self, Canceled)

    def fold(
        self,
        on_succeeded: Callable[[T], U],
        on_failed: Callable[[BaseException], U],
        on_canceled: Callable[[], U],
    ) -> U:
        """Collapse the outcome by dispatching on its variant."""

        match self:
            case Succeeded(value=value):
                return on_succeeded(value)
            case Failed(error=error):
                return on_failed(error)
            case Canceled():
                return on_canceled()
        raise TypeError(f"Unknown outcome: {self!r}")

    def to_result(self) -> Result[T]:
        """Convert to ``Result``; cancellation becomes ``Err(CanceledError())``."""

        from rescope.errors import CanceledError

        return self.fold(
            Ok,
            Err,
            lambda: Err(CanceledError("computation was canceled")),
        )


@dataclass(frozen=True)
class Succeeded(Outcome[T], Generic[T]):
    """The computation completed with ``value``."""

    value: T


@dataclass(frozen=True)
class Failed(Outcome[NoReturn]):
    """The computation raised ``error``."""

    error: BaseException


@dataclass(frozen=True)
class Canceled(Outcome[NoReturn]):
    """The computation observed a cancellation request."""


def describe(outcome: Outcome[Any]) -> str:
    """Short label used in log lines."""

    match outcome:
        case Succeeded():
            return "succeeded"
        case Failed(error=error):
            return f"failed({type(error).__name__})"
        case _:
            return "canceled"


__all__ = ["Canceled", "Failed", "Outcome", "Succeeded", "describe"]
