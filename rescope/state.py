"""
Fiber state for the rescope machine.

A fiber is one sequential run of an ``IO`` program: the current control,
the stack of pending continuation frames, the depth of nested uncancelable
regions, and the token through which it is asked to cancel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeAlias

from rescope.cancel import CancelToken

if TYPE_CHECKING:
    from rescope.frames import Frame
    from rescope.program import IO


@dataclass(frozen=True)
class Eval:
    """Evaluate an IO node next."""

    io: IO[Any]


@dataclass(frozen=True)
class Value:
    """A value flows to the top frame."""

    value: Any


@dataclass(frozen=True)
class Error:
    """A failure unwinds to the nearest handling frame."""

    error: BaseException


@dataclass(frozen=True)
class Cancel:
    """Cancellation unwinds every frame, running guarantee finalizers."""


CANCEL = Cancel()

Control: TypeAlias = Eval | Value | Error | Cancel


@dataclass
class FiberState:
    control: Control
    token: CancelToken
    kont: list[Frame] = field(default_factory=list)
    mask: int = 0

    @classmethod
    def initial(cls, program: IO[Any], token: CancelToken, mask: int = 0) -> FiberState:
        return cls(control=Eval(program), token=token, mask=mask)

    @property
    def cancel_observable(self) -> bool:
        """True when a pending cancellation must be acted on now."""
        return self.mask == 0 and self.token.cancelled


__all__ = [
    "CANCEL",
    "Cancel",
    "Control",
    "Error",
    "Eval",
    "FiberState",
    "Value",
]
