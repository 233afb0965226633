"""Continuation frame types for the fiber machine.

Each frame reacts to the control that reaches it when the sub-computation
below it finishes: ``on_value``, ``on_error`` or ``on_cancel``. A frame
sets ``state.control`` (and may push further frames); the default is to
let the control pass through unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from rescope.errors import InvalidProgramError, add_suppressed
from rescope.outcome import Canceled, Failed, Outcome, Succeeded
from rescope.program import IO, UNIT, FlatMap
from rescope.state import CANCEL, Cancel, Control, Error, Eval, FiberState, Value
from rescope.utils import callable_name

logger = logging.getLogger(__name__)


def _expect_io(result: Any, source: Callable[..., Any]) -> Control:
    if isinstance(result, IO):
        return Eval(result)
    return Error(
        InvalidProgramError(
            f"{callable_name(source)} must return an IO program; "
            f"got {type(result).__name__}"
        )
    )


class Frame:
    """Base frame: lets values, errors and cancellation pass through."""

    def on_value(self, state: FiberState, value: Any) -> None:
        pass

    def on_error(self, state: FiberState, error: BaseException) -> None:
        pass

    def on_cancel(self, state: FiberState) -> None:
        pass


@dataclass(frozen=True)
class BindFrame(Frame):
    """Feed a value to the continuation of a ``FlatMap``."""

    binder: Callable[[Any], IO[Any]]

    def on_value(self, state: FiberState, value: Any) -> None:
        try:
            result = self.binder(value)
        except Exception as exc:
            state.control = Error(exc)
            return
        state.control = _expect_io(result, self.binder)


@dataclass(frozen=True)
class HandleErrorFrame(Frame):
    """Recover from a failure with the handler's program."""

    handler: Callable[[BaseException], IO[Any]]

    def on_error(self, state: FiberState, error: BaseException) -> None:
        try:
            result = self.handler(error)
        except Exception as exc:
            state.control = Error(exc)
            return
        state.control = _expect_io(result, self.handler)


@dataclass(frozen=True)
class UnmaskFrame(Frame):
    """Close an uncancelable region."""

    def on_value(self, state: FiberState, value: Any) -> None:
        state.mask -= 1
        if state.cancel_observable:
            # a request that arrived while masked is honored right after
            state.control = CANCEL

    def on_error(self, state: FiberState, error: BaseException) -> None:
        state.mask -= 1

    def on_cancel(self, state: FiberState) -> None:
        state.mask -= 1


@dataclass(frozen=True)
class GuaranteeFrame(Frame):
    """Run a finalizer, masked, with the outcome of the guarded program."""

    finalizer: Callable[[Outcome[Any]], IO[None]]

    def on_value(self, state: FiberState, value: Any) -> None:
        self._finalize(state, Succeeded(value), Value(value))

    def on_error(self, state: FiberState, error: BaseException) -> None:
        self._finalize(state, Failed(error), Error(error))

    def on_cancel(self, state: FiberState) -> None:
        self._finalize(state, Canceled(), CANCEL)

    def _finalize(self, state: FiberState, outcome: Outcome[Any], saved: Control) -> None:
        finalizer = self.finalizer
        state.kont.append(RestoreFrame(saved))
        state.mask += 1
        state.kont.append(UnmaskFrame())
        state.control = Eval(FlatMap(UNIT, lambda _: finalizer(outcome)))


@dataclass(frozen=True)
class RestoreFrame(Frame):
    """Resume the control that was saved while a finalizer ran."""

    saved: Control

    def on_value(self, state: FiberState, value: Any) -> None:
        state.control = self.saved

    def on_error(self, state: FiberState, error: BaseException) -> None:
        match self.saved:
            case Error(error=original):
                add_suppressed(original, error)
                state.control = self.saved
            case Cancel():
                logger.warning(
                    "Finalizer failed while unwinding a cancellation",
                    exc_info=error,
                )
                state.control = CANCEL
            case _:
                state.control = Error(error)

    def on_cancel(self, state: FiberState) -> None:
        if isinstance(self.saved, Error):
            state.control = self.saved
        else:
            state.control = CANCEL


__all__ = [
    "BindFrame",
    "Frame",
    "GuaranteeFrame",
    "HandleErrorFrame",
    "RestoreFrame",
    "UnmaskFrame",
]
