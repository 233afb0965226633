"""
Single-step transition function of the fiber machine.

``step`` advances a ``FiberState`` by one transition. It never recurses, so
arbitrarily deep ``flat_map`` chains run in constant Python stack: nested
structure lives in ``state.kont`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from rescope.errors import InterpreterInvariantError
from rescope.frames import (
    BindFrame,
    GuaranteeFrame,
    HandleErrorFrame,
    UnmaskFrame,
)
from rescope.outcome import Canceled, Failed, Outcome, Succeeded
from rescope.program import (
    IO,
    Await,
    Both,
    CancelSelf,
    Delay,
    FlatMap,
    GuaranteeCase,
    HandleError,
    Pure,
    RaiseError,
    Uncancelable,
)
from rescope.state import CANCEL, Cancel, Error, Eval, FiberState, Value


@dataclass(frozen=True)
class Suspended:
    """The fiber needs its runtime to execute ``node`` and set the control."""

    node: Await[Any] | Both


StepResult = FiberState | Outcome[Any] | Suspended


def step(state: FiberState) -> StepResult:
    match state.control:
        case Eval(io=io):
            if state.cancel_observable:
                state.control = CANCEL
                return state
            return _eval(state, io)

        case Value(value=value):
            if not state.kont:
                return Succeeded(value)
            state.kont.pop().on_value(state, value)
            return state

        case Error(error=error):
            if not state.kont:
                return Failed(error)
            state.kont.pop().on_error(state, error)
            return state

        case Cancel():
            if not state.kont:
                return Canceled()
            state.kont.pop().on_cancel(state)
            return state

    raise InterpreterInvariantError(f"Unknown control: {state.control!r}")


def _eval(state: FiberState, io: IO[Any]) -> StepResult:
    match io:
        case Pure(value=value):
            state.control = Value(value)

        case Delay(thunk=thunk):
            try:
                state.control = Value(thunk())
            except Exception as exc:
                state.control = Error(exc)

        case RaiseError(error=error):
            state.control = Error(error)

        case FlatMap(source=source, binder=binder):
            state.kont.append(BindFrame(binder))
            state.control = Eval(source)

        case HandleError(source=source, handler=handler):
            state.kont.append(HandleErrorFrame(handler))
            state.control = Eval(source)

        case Uncancelable(source=source):
            state.mask += 1
            state.kont.append(UnmaskFrame())
            state.control = Eval(source)

        case GuaranteeCase(source=source, finalizer=finalizer):
            state.kont.append(GuaranteeFrame(finalizer))
            state.control = Eval(source)

        case CancelSelf():
            state.token.cancel()
            state.control = Value(None)

        case Await() | Both():
            return Suspended(io)

        case _:
            raise InterpreterInvariantError(f"Unknown IO node: {type(io).__name__}")

    return state


__all__ = ["StepResult", "Suspended", "step"]
