"""
Utility functions for the rescope library.
"""

import os
import sys
from typing import Any, Optional


def _is_rescope_internal(path: str) -> bool:
    normalized = path.replace("\\", "/").lower()
    return "/rescope/" in normalized and "/tests/" not in normalized


# Environment variable to control debug mode
DEBUG_RESOURCES = os.environ.get("RESCOPE_DEBUG", "").lower() in ("1", "true", "yes")


def capture_creation_site(skip_frames: int = 2) -> Optional[str]:
    """
    Describe where a resource node was built, as ``file:line in function``.

    Only captured when ``RESCOPE_DEBUG`` is enabled; walking frames on every
    constructor call is too slow to do unconditionally.
    """
    if not DEBUG_RESOURCES:
        return None
    try:
        frame = sys._getframe(skip_frames)
    except ValueError:
        return None
    while frame is not None and _is_rescope_internal(frame.f_code.co_filename):
        frame = frame.f_back
    if frame is None:
        return None
    return f"{frame.f_code.co_filename}:{frame.f_lineno} in {frame.f_code.co_name}"


def callable_name(func: Any) -> str:
    """Best-effort readable name for a callable, used in log lines."""
    name = getattr(func, "__qualname__", None) or getattr(func, "__name__", None)
    if name is None:
        return type(func).__name__
    return name
