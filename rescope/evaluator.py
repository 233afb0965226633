"""
Evaluator for resource programs.

``use`` walks a ``Resource`` node by node, pushing one finalizer per
successful ``Allocate`` onto a stack owned by that single evaluation, runs
the body with the acquired value, then unwinds the stack in reverse
acquisition order. Unwinding never stops early; release failures are
collected and attached to the primary failure.

The walk keeps pending ``Bind`` continuations in an explicit list, and every
step is handed back to the host as a ``flat_map`` continuation, so chains of
any length are evaluated without growing the Python stack (given a host
whose ``flat_map`` is stack-safe, as ``IOHost`` is).
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from rescope.errors import (
    FailureKind,
    InvalidProgramError,
    add_suppressed,
    claim_failure,
    tag_failure,
)
from rescope.host import IO_HOST, EffectHost
from rescope.outcome import Canceled, Outcome, Succeeded, describe
from rescope.resource import Allocate, Bind, Resource, Suspend
from rescope.utils import callable_name

F = TypeVar("F")

logger = logging.getLogger(__name__)

# evaluations are numbered in start order; see claim_failure
_serials = itertools.count(1)


@dataclass(frozen=True)
class _Finalizer:
    release: Callable[[Outcome[Any]], Any]
    created_at: str | None = None


@dataclass(frozen=True)
class _ReleaseFailure:
    error: BaseException
    created_at: str | None = None


def _expect_resource(value: Any, source: Any) -> Resource[Any]:
    if isinstance(value, Resource):
        return value
    raise InvalidProgramError(
        f"{callable_name(source)} must produce a Resource; got {type(value).__name__}"
    )


def _check_program(program: Any) -> None:
    if not isinstance(program, Resource):
        raise InvalidProgramError(
            f"expected a Resource to evaluate; got {type(program).__name__}"
        )


class _Evaluation(Generic[F]):
    """State of one evaluation: the host and the finalizer stack it owns."""

    def __init__(self, host: EffectHost[F]) -> None:
        self.host = host
        self.serial = next(_serials)
        # most recently acquired last
        self.finalizers: list[_Finalizer] = []

    def tag(self, error: BaseException, kind: FailureKind) -> BaseException:
        """Claim ``error`` for this evaluation and record the phase it came from."""
        return tag_failure(claim_failure(error, self.serial), kind)

    # =========================================================
    # Acquisition
    # =========================================================

    def acquire(self, program: Resource[Any]) -> F:
        """Effect that acquires every resource in ``program``, yielding the final value."""
        host = self.host
        continuations: list[Callable[[Any], Resource[Any]]] = []

        def interpret(node: Resource[Any]) -> F:
            while True:
                match node:
                    case Bind(source=source, continuation=continuation):
                        continuations.append(continuation)
                        node = source
                    case Allocate():
                        return host.flat_map(self._allocate(node), resume)
                    case Suspend(effect=effect):
                        return host.flat_map(
                            effect,
                            lambda produced: interpret(_expect_resource(produced, effect)),
                        )
                    case _:
                        raise InvalidProgramError(
                            f"Unknown resource node: {type(node).__name__}"
                        )

        def resume(value: Any) -> F:
            if not continuations:
                return host.pure(value)
            continuation = continuations.pop()
            return interpret(_expect_resource(continuation(value), continuation))

        acquisition = host.defer(lambda: interpret(program))
        return host.handle_error(
            acquisition,
            lambda error: host.raise_error(self.tag(error, FailureKind.ACQUISITION)),
        )

    def _allocate(self, node: Allocate[Any]) -> F:
        host = self.host

        def push(pair: Any) -> F:
            value, release = pair
            self.finalizers.append(
                _Finalizer(lambda outcome: release(value, outcome), node.created_at)
            )
            logger.debug(
                "Acquired resource %d%s",
                len(self.finalizers),
                f" created at {node.created_at}" if node.created_at else "",
            )
            return host.pure(value)

        # the push happens inside the masked region so an acquired value is
        # never left without its finalizer
        return host.uncancelable(host.flat_map(node.acquire, push))

    # =========================================================
    # Release
    # =========================================================

    def unwind(self, outcome: Outcome[Any], failures: list[_ReleaseFailure]) -> F:
        """Run every pending finalizer, newest first, collecting failures."""
        host = self.host
        if self.finalizers:
            logger.debug(
                "Releasing %d resource(s) after use %s",
                len(self.finalizers),
                describe(outcome),
            )

        def record(finalizer: _Finalizer, error: BaseException) -> F:
            self.tag(error, FailureKind.RELEASE)
            failures.append(_ReleaseFailure(error, finalizer.created_at))
            logger.debug("Release failed: %r", error)
            return host.unit()

        def release_next(_: Any = None) -> F:
            if not self.finalizers:
                return host.unit()
            finalizer = self.finalizers.pop()
            released = host.handle_error(
                host.defer(lambda: finalizer.release(outcome)),
                lambda error: record(finalizer, error),
            )
            return host.flat_map(released, release_next)

        return host.defer(release_next)

    def raise_release_failures(self, failures: list[_ReleaseFailure]) -> F:
        if not failures:
            return self.host.unit()
        primary = failures[0].error
        for failure in failures[1:]:
            add_suppressed(primary, failure.error, site=failure.created_at)
        return self.host.raise_error(primary)


def _attach(error: BaseException, failures: list[_ReleaseFailure]) -> BaseException:
    for failure in failures:
        add_suppressed(error, failure.error, site=failure.created_at)
    return error


def _log_lost(outcome: Outcome[Any], failures: list[_ReleaseFailure]) -> None:
    if not isinstance(outcome, Canceled):
        return
    for failure in failures:
        logger.warning(
            "Release failed while unwinding a canceled use%s",
            f" (resource created at {failure.created_at})" if failure.created_at else "",
            exc_info=failure.error,
        )


def _report_lost(host: EffectHost[F], effect: F, failures: list[_ReleaseFailure]) -> F:
    # a cancellation observed after the releases ran leaves their
    # failures with no exception to attach to
    return host.guarantee_case(
        effect,
        lambda outcome: host.delay(lambda: _log_lost(outcome, failures)),
    )


def use(
    program: Resource[Any],
    body: Callable[[Any], F],
    *,
    host: EffectHost[F] = IO_HOST,
) -> F:
    """Acquire ``program``, run ``body`` with its value, release in reverse order.

    The result fails with the body's error when the body fails, with release
    failures attached as suppressed causes; when only releases fail, the
    first one is the primary error. A cancellation during the body still
    runs every release before it is observed, and release failures it
    leaves behind are logged at WARNING.

    Only ``Exception`` subclasses are failures. A ``BaseException`` such as
    ``KeyboardInterrupt`` or ``SystemExit`` raised by user code propagates
    out of the runtime immediately and no release runs, unlike a ``with``
    block.
    """
    _check_program(program)

    def evaluate() -> F:
        evaluation = _Evaluation(host)
        failures: list[_ReleaseFailure] = []

        def run_body(value: Any) -> F:
            return host.handle_error(
                host.defer(lambda: body(value)),
                lambda error: host.raise_error(evaluation.tag(error, FailureKind.USE)),
            )

        guarded = host.guarantee_case(
            host.flat_map(evaluation.acquire(program), run_body),
            lambda outcome: evaluation.unwind(outcome, failures),
        )
        result = host.flat_map(
            host.handle_error(
                guarded,
                lambda error: host.raise_error(_attach(error, failures)),
            ),
            lambda value: host.map(
                evaluation.raise_release_failures(failures),
                lambda _: value,
            ),
        )
        return _report_lost(host, result, failures)

    return host.defer(evaluate)


def allocated_case(
    program: Resource[Any],
    *,
    host: EffectHost[F] = IO_HOST,
) -> F:
    """Acquire ``program`` and yield ``(value, release)`` without releasing.

    ``release(outcome)`` is the effect that unwinds every finalizer of this
    acquisition; the caller owns it. If acquisition fails or is cancelled
    part-way, what was acquired so far is released before the failure
    surfaces.

    A cancellation observed after this effect completes but before the
    caller has bound the pair loses ``release``; run it inside
    ``uncancelable`` when that matters.
    """
    _check_program(program)

    def evaluate() -> F:
        evaluation = _Evaluation(host)
        failures: list[_ReleaseFailure] = []

        def on_exit(outcome: Outcome[Any]) -> F:
            if isinstance(outcome, Succeeded):
                return host.unit()
            return evaluation.unwind(outcome, failures)

        def release(outcome: Outcome[Any]) -> F:
            release_failures: list[_ReleaseFailure] = []
            return host.flat_map(
                evaluation.unwind(outcome, release_failures),
                lambda _: evaluation.raise_release_failures(release_failures),
            )

        guarded = host.guarantee_case(evaluation.acquire(program), on_exit)
        result = host.map(
            host.handle_error(
                guarded,
                lambda error: host.raise_error(_attach(error, failures)),
            ),
            lambda value: (value, release),
        )
        return _report_lost(host, result, failures)

    return host.defer(evaluate)


def allocated(program: Resource[Any], *, host: EffectHost[F] = IO_HOST) -> F:
    """Like :func:`allocated_case`, with a release effect that reports success."""

    return host.map(
        allocated_case(program, host=host),
        lambda pair: (pair[0], pair[1](Succeeded(None))),
    )


__all__ = ["allocated", "allocated_case", "use"]
