"""SyncRuntime - Runtime for pure synchronous execution."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from rescope.cancel import CancelToken
from rescope.errors import AsyncEffectInSyncRuntimeError, CanceledError
from rescope.machine import Suspended
from rescope.outcome import Failed, Outcome, Succeeded
from rescope.program import Await, Both
from rescope.runtimes.base import RuntimeMixin, control_of
from rescope.state import Control, Error, Value

if TYPE_CHECKING:
    from rescope.program import IO

T = TypeVar("T")

logger = logging.getLogger(__name__)


class SyncRuntime(RuntimeMixin):
    """Run programs on the calling thread.

    Cancellation is cooperative: cancel the ``CancelToken`` passed to
    :meth:`run` (from the program itself or another thread) and the fiber
    stops at its next unmasked step.
    """

    def _run_fiber(
        self,
        program: IO[Any],
        token: CancelToken | None,
        mask: int = 0,
    ) -> Outcome[Any]:
        state = self._new_fiber(program, token, mask)
        while True:
            result = self._step_until_suspended(state)
            match result:
                case Suspended(node=Await()):
                    state.control = Error(
                        AsyncEffectInSyncRuntimeError(
                            "SyncRuntime cannot await. Use AsyncioRuntime."
                        )
                    )
                case Suspended(node=Both(left=left, right=right)):
                    state.control = self._run_both(left, right, state.token, state.mask)
                case _:
                    return result

    def _run_both(
        self,
        left: IO[Any],
        right: IO[Any],
        token: CancelToken,
        mask: int,
    ) -> Control:
        # sequential: the right side only starts once the left succeeded
        first = self._run_fiber(left, token, mask)
        if not isinstance(first, Succeeded):
            return control_of(first)
        second = self._run_fiber(right, token, mask)
        if not isinstance(second, Succeeded):
            return control_of(second)
        return Value((first.value, second.value))

    def run_safe(self, program: IO[T], token: CancelToken | None = None) -> Outcome[T]:
        """Run ``program`` and return how it ended instead of raising."""
        return self._run_fiber(program, token)

    def run(self, program: IO[T], token: CancelToken | None = None) -> T:
        match self.run_safe(program, token):
            case Succeeded(value=value):
                return value
            case Failed(error=error):
                raise error
            case _:
                logger.debug("Run observed cancellation")
                raise CanceledError("program was canceled")


__all__ = ["SyncRuntime"]
