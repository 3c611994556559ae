"""Capture the current call stack as a list of frames."""

from __future__ import annotations

import inspect
from dataclasses import dataclass

__all__ = ["StackFrame", "get_stack_trace"]

_STACK_LENGTH = 64


@dataclass(frozen=True)
class StackFrame:
    """One frame of a captured call stack."""

    filename: str
    lineno: int
    function: str


def get_stack_trace(max_depth: int, skip_count: int = 0) -> list[StackFrame]:
    """Return up to ``max_depth`` caller frames, innermost first.

    The frame of this function itself is always skipped, plus ``skip_count``
    more. At most 64 frames are examined.
    """
    frames: list[StackFrame] = []
    frame = inspect.currentframe()
    try:
        while frame is not None and len(frames) < _STACK_LENGTH:
            frames.append(
                StackFrame(frame.f_code.co_filename, frame.f_lineno, frame.f_code.co_name)
            )
            frame = frame.f_back
    finally:
        del frame
    skip = skip_count + 1
    count = max(0, min(len(frames) - skip, max_depth))
    return frames[skip:skip + count]