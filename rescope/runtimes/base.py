"""Shared runtime machinery."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rescope.cancel import CancelToken
from rescope.machine import Suspended, step
from rescope.outcome import Canceled, Failed, Outcome, Succeeded
from rescope.state import CANCEL, Control, Error, FiberState, Value

if TYPE_CHECKING:
    from rescope.program import IO


class RuntimeMixin:
    """Stepping shared by all runtime implementations.

    Does NOT define run() - each runtime defines its own signature.
    """

    def _new_fiber(
        self,
        program: IO[Any],
        token: CancelToken | None,
        mask: int = 0,
    ) -> FiberState:
        return FiberState.initial(program, token or CancelToken(), mask)

    def _step_until_suspended(self, state: FiberState) -> Outcome[Any] | Suspended:
        """Step the fiber until it terminates or needs the runtime."""
        while True:
            result = step(state)
            if result is not state:
                return result  # type: ignore[return-value]


def combine_both(first: Outcome[Any], second: Outcome[Any]) -> tuple[Outcome[Any], ...]:
    """Order the outcomes of the two sides of a ``Both`` by precedence.

    A failure wins over a cancellation, which wins over a success.
    """
    def rank(outcome: Outcome[Any]) -> int:
        match outcome:
            case Failed():
                return 0
            case Canceled():
                return 1
            case _:
                return 2

    return tuple(sorted((first, second), key=rank))


def control_of(outcome: Outcome[Any]) -> Control:
    """Turn a child fiber's outcome back into a control for its parent."""
    match outcome:
        case Failed(error=error):
            return Error(error)
        case Canceled():
            return CANCEL
        case Succeeded(value=value):
            return Value(value)
    raise TypeError(f"Unknown outcome: {outcome!r}")


__all__ = ["RuntimeMixin", "combine_both", "control_of"]
