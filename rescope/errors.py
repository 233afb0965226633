"""
Error types and failure bookkeeping for resource evaluation.

Exceptions raised by user acquire, use and release steps are surfaced with
their identity preserved. The evaluator tags each one with the phase it came
from and attaches secondary failures to the primary one instead of wrapping.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Phase in which a failure was observed."""

    ACQUISITION = "acquisition"
    USE = "use"
    RELEASE = "release"


_KIND_ATTR = "__rescope_failure_kind__"
_SUPPRESSED_ATTR = "__suppressed__"
_NOTES_ATTR = "__rescope_notes__"
_OWNER_ATTR = "__rescope_owner__"


def tag_failure(error: BaseException, kind: FailureKind) -> BaseException:
    """Record ``kind`` on ``error`` unless an inner evaluation already did."""

    error.__dict__.setdefault(_KIND_ATTR, kind)
    return error


def failure_kind(error: BaseException) -> FailureKind | None:
    """Return the phase ``error`` was raised in, or ``None`` if untagged."""

    return getattr(error, _KIND_ATTR, None)


def add_suppressed(
    primary: BaseException,
    secondary: BaseException,
    *,
    site: str | None = None,
) -> BaseException:
    """Attach ``secondary`` to ``primary`` as a suppressed cause."""

    if secondary is primary:
        return primary
    existing: list[BaseException] = primary.__dict__.setdefault(_SUPPRESSED_ATTR, [])
    if any(item is secondary for item in existing):
        return primary
    existing.append(secondary)
    note = f"Suppressed {type(secondary).__name__}: {secondary}"
    if site:
        note += f" (resource created at {site})"
    # frozen dataclass exceptions reject setattr
    primary.__dict__.setdefault("__notes__", [])
    primary.add_note(note)
    primary.__dict__.setdefault(_NOTES_ATTR, []).append(note)
    return primary


def suppressed(error: BaseException) -> tuple[BaseException, ...]:
    """Return the secondary causes recorded on ``error``, oldest first."""

    return tuple(error.__dict__.get(_SUPPRESSED_ATTR, ()))


def claim_failure(error: BaseException, serial: int) -> BaseException:
    """Make ``error`` the property of the evaluation numbered ``serial``.

    Evaluations are numbered in the order they start. A nested evaluation
    starts after its parent, so an error decorated by a higher number is
    still propagating out of a child and keeps its bookkeeping. An error
    decorated by an evaluation that started earlier was raised again by
    user code; the kind tag, suppressed causes and notes added back then
    are cleared before this evaluation records its own.
    """

    owner = error.__dict__.get(_OWNER_ATTR)
    if owner is not None and owner >= serial:
        return error
    if owner is not None:
        _forget(error)
    error.__dict__[_OWNER_ATTR] = serial
    return error


def _forget(error: BaseException) -> None:
    state = error.__dict__
    state.pop(_KIND_ATTR, None)
    state.pop(_SUPPRESSED_ATTR, None)
    added = state.pop(_NOTES_ATTR, [])
    notes = state.get("__notes__")
    if not notes:
        return
    for note in added:
        try:
            notes.remove(note)
        except ValueError:
            pass
    if not notes:
        del state["__notes__"]


def merge_failures(errors: list[BaseException]) -> BaseException:
    """Make the first error primary and attach the rest to it."""

    if not errors:
        raise ValueError("merge_failures requires at least one error")
    primary = errors[0]
    for other in errors[1:]:
        add_suppressed(primary, other)
    return primary


class ResourceError(Exception):
    """Base class for errors raised by rescope itself."""


class InvalidProgramError(ResourceError, TypeError):
    """A constructor or continuation produced a value of the wrong type."""


class InterpreterInvariantError(ResourceError):
    """The fiber machine reached a state it should never reach."""


class AsyncEffectInSyncRuntimeError(ResourceError):
    """An ``Await`` node was run by ``SyncRuntime``."""


class CanceledError(ResourceError):
    """Raised by ``SyncRuntime.run`` when the run observed cancellation."""


__all__ = [
    "AsyncEffectInSyncRuntimeError",
    "CanceledError",
    "FailureKind",
    "InterpreterInvariantError",
    "InvalidProgramError",
    "ResourceError",
    "add_suppressed",
    "claim_failure",
    "failure_kind",
    "merge_failures",
    "suppressed",
    "tag_failure",
]
