"""AsyncioRuntime - Runtime for real async I/O execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from rescope.cancel import CancelToken
from rescope.errors import add_suppressed
from rescope.machine import Suspended
from rescope.outcome import Failed, Outcome, Succeeded
from rescope.program import Await, Both
from rescope.runtimes.base import RuntimeMixin, combine_both, control_of
from rescope.state import CANCEL, Control, Error, FiberState, Value

if TYPE_CHECKING:
    from rescope.program import IO

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def _drain(task: asyncio.Future[Any]) -> None:
    """Wait for ``task`` to finish, ignoring further cancellation requests."""
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue


class AsyncioRuntime(RuntimeMixin):
    """Run programs on the running asyncio event loop.

    Cancelling the task that awaits :meth:`run` cancels the program: an
    in-flight awaitable outside any uncancelable region is cancelled and the
    fiber unwinds; inside an uncancelable region the request is deferred
    until the region completes. Cancelling the ``CancelToken`` passed to
    :meth:`run` has the same effect.
    """

    async def _run_fiber(
        self,
        program: IO[Any],
        token: CancelToken | None,
        mask: int = 0,
    ) -> Outcome[Any]:
        state = self._new_fiber(program, token, mask)
        while True:
            result = self._step_until_suspended(state)
            match result:
                case Suspended(node=Await(factory=factory)):
                    state.control = await self._await(state, factory)
                case Suspended(node=Both(left=left, right=right)):
                    state.control = await self._run_both(state, left, right)
                case _:
                    return result

    async def _await(
        self,
        state: FiberState,
        factory: Callable[[], Awaitable[Any]],
    ) -> Control:
        try:
            task = asyncio.ensure_future(factory())
        except Exception as exc:
            return Error(exc)

        unregister: Callable[[], None] | None = None
        if state.mask == 0:
            loop = asyncio.get_running_loop()
            unregister = state.token.on_cancel(
                lambda: loop.call_soon_threadsafe(task.cancel)
            )
        try:
            while True:
                try:
                    value = await asyncio.shield(task)
                except asyncio.CancelledError:
                    if task.cancelled():
                        state.token.cancel()
                        return CANCEL
                    # the task running this fiber was cancelled
                    state.token.cancel()
                    if task.done():
                        break
                    if state.mask > 0:
                        logger.debug(
                            "Cancellation deferred until the uncancelable region completes"
                        )
                        continue
                    task.cancel()
                    await _drain(task)
                    return CANCEL
                except Exception as exc:
                    return Error(exc)
                else:
                    return Value(value)
            # completed in the same loop iteration as the cancellation request
            exc = task.exception()
            if exc is not None:
                return Error(exc)
            return Value(task.result())
        finally:
            if unregister is not None:
                unregister()

    async def _run_both(self, state: FiberState, left: IO[Any], right: IO[Any]) -> Control:
        tokens = (state.token.child(), state.token.child())
        tasks = [
            asyncio.ensure_future(self._run_fiber(program, token, state.mask))
            for program, token in zip((left, right), tokens)
        ]
        completed: list[Outcome[Any]] = []
        pending: set[asyncio.Future[Outcome[Any]]] = set(tasks)
        try:
            while pending:
                try:
                    done, pending = await asyncio.wait(
                        pending, return_when=asyncio.FIRST_COMPLETED
                    )
                except asyncio.CancelledError:
                    # children follow the parent token
                    state.token.cancel()
                    continue
                for task in done:
                    outcome = task.result()
                    completed.append(outcome)
                    if not isinstance(outcome, Succeeded):
                        for token in tokens:
                            token.cancel()
        finally:
            for token in tokens:
                token.detach()

        if all(isinstance(outcome, Succeeded) for outcome in completed):
            left_outcome, right_outcome = (task.result() for task in tasks)
            return Value((left_outcome.value, right_outcome.value))

        first, second = combine_both(*completed)
        if isinstance(first, Failed) and isinstance(second, Failed):
            add_suppressed(first.error, second.error)
        return control_of(first)

    async def run_safe(
        self,
        program: IO[T],
        token: CancelToken | None = None,
    ) -> Outcome[T]:
        """Run ``program`` and return how it ended instead of raising."""
        return await self._run_fiber(program, token)

    async def run(self, program: IO[T], token: CancelToken | None = None) -> T:
        """Run ``program``; a cancelled run raises ``asyncio.CancelledError``."""
        match await self.run_safe(program, token):
            case Succeeded(value=value):
                return value
            case Failed(error=error):
                raise error
            case _:
                logger.debug("Run observed cancellation")
                raise asyncio.CancelledError()


__all__ = ["AsyncioRuntime"]
