"""Runtimes that interpret ``IO`` programs."""

from rescope.runtimes.asyncio_runtime import AsyncioRuntime
from rescope.runtimes.base import RuntimeMixin
from rescope.runtimes.sync import SyncRuntime

__all__ = ["AsyncioRuntime", "RuntimeMixin", "SyncRuntime"]
