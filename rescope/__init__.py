"""
rescope - Composable scoped resource management for Python.

A ``Resource`` describes how to acquire a value and how to release it.
Resources compose lazily; nothing is acquired until ``use`` runs the
program, which releases everything in reverse acquisition order even when
acquisition, the body, or another release fails or is cancelled.

Example:
    >>> from rescope import IO, Resource, SyncRuntime
    >>>
    >>> log = []
    >>> outer = Resource.make(IO.pure("outer"), lambda _: IO.delay(lambda: log.append("release-outer")))
    >>> inner = Resource.make(IO.pure("inner"), lambda _: IO.delay(lambda: log.append("release-inner")))
    >>> program = outer.flat_map(lambda _: inner)
    >>> SyncRuntime().run(program.use(lambda value: IO.delay(lambda: log.append("used"))))
    >>> log
    ['used', 'release-inner', 'release-outer']
"""

# Vendored types
from rescope._vendor import Err, Ok, Result

from rescope.cancel import CancelToken
from rescope.combinators import both, sequence, traverse
from rescope.do import do, resource
from rescope.errors import (
    AsyncEffectInSyncRuntimeError,
    CanceledError,
    FailureKind,
    InterpreterInvariantError,
    InvalidProgramError,
    ResourceError,
    add_suppressed,
    failure_kind,
    suppressed,
)
from rescope.evaluator import allocated, allocated_case, use
from rescope.host import IO_HOST, EffectHost, IOHost
from rescope.outcome import Canceled, Failed, Outcome, Succeeded
from rescope.program import IO
from rescope.resource import Allocate, Bind, Resource, Suspend
from rescope.runtimes import AsyncioRuntime, SyncRuntime

__version__ = "0.1.0"

__all__ = [
    "IO",
    "IO_HOST",
    "Allocate",
    "AsyncEffectInSyncRuntimeError",
    "AsyncioRuntime",
    "Bind",
    "CancelToken",
    "Canceled",
    "CanceledError",
    "EffectHost",
    "Err",
    "Failed",
    "FailureKind",
    "IOHost",
    "InterpreterInvariantError",
    "InvalidProgramError",
    "Ok",
    "Outcome",
    "Resource",
    "ResourceError",
    "Result",
    "Succeeded",
    "Suspend",
    "SyncRuntime",
    "add_suppressed",
    "allocated",
    "allocated_case",
    "both",
    "do",
    "failure_kind",
    "resource",
    "sequence",
    "suppressed",
    "traverse",
    "use",
]
