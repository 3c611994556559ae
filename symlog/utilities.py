"""Process-wide helpers: program name, user name, crash reason, stack dumps."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Mapping

from symlog.stacktrace import StackFrame, get_stack_trace

__all__ = [
    "CheckFailedError",
    "CrashReason",
    "FileDescriptor",
    "const_basename",
    "program_invocation_short_name",
    "is_logging_initialized",
    "init_logging_utilities",
    "shutdown_logging_utilities",
    "get_main_thread_pid",
    "pid_has_changed",
    "my_user_name",
    "set_crash_reason",
    "get_crash_reason",
    "dump_stack_trace",
    "get_stack_trace_text",
]

_MAX_DUMP_DEPTH = 32
_INVALID_HANDLE = -1


class CheckFailedError(AssertionError):
    """Raised when an internal consistency check fails."""


def _check(condition: bool, message: str) -> None:
    if not condition:
        raise CheckFailedError(f"Check failed: {message}")


@dataclass
class CrashReason:
    """Where and why the process crashed, with the stack at that moment."""

    filename: str | None = None
    line_number: int = 0
    message: str | None = None
    stack: list[StackFrame] = field(default_factory=list)
    depth: int = 0


def const_basename(filepath: str) -> str:
    """Return the part of ``filepath`` after the last path separator."""
    index = filepath.rfind("/")
    if index < 0 and sys.platform == "win32":
        index = filepath.rfind("\\")
    return filepath[index + 1:]


_program_short_name: str | None = None


def is_logging_initialized() -> bool:
    """Report whether :func:`init_logging_utilities` has been called."""
    return _program_short_name is not None


def program_invocation_short_name() -> str:
    """Return the short name of the running program."""
    if _program_short_name is not None:
        return _program_short_name
    if sys.argv and sys.argv[0]:
        return const_basename(sys.argv[0])
    return "UNKNOWN"


def init_logging_utilities(argv0: str) -> None:
    """Record the program name; calling it twice is an error."""
    global _program_short_name
    _check(not is_logging_initialized(), "init_logging_utilities() was called twice!")
    _program_short_name = const_basename(argv0)


def shutdown_logging_utilities() -> None:
    """Forget the program name; calling it before initialization is an error."""
    global _program_short_name
    _check(
        is_logging_initialized(),
        "shutdown_logging_utilities() was called without calling "
        "init_logging_utilities() first!",
    )
    _program_short_name = None
    try:
        import syslog
    except ImportError:
        return
    syslog.closelog()


_main_thread_pid = os.getpid()


def get_main_thread_pid() -> int:
    """Return the process id recorded at start-up or at the last fork check."""
    return _main_thread_pid


def pid_has_changed() -> bool:
    """Report whether the process id changed since last seen, and record it."""
    global _main_thread_pid
    pid = os.getpid()
    if pid == _main_thread_pid:
        return False
    _main_thread_pid = pid
    return True


def _lookup_user_name(environ: Mapping[str, str]) -> str:
    key = "USERNAME" if sys.platform == "win32" else "USER"
    user = environ.get(key)
    if user is not None:
        return user
    name = ""
    if hasattr(os, "geteuid"):
        uid = os.geteuid()
        try:
            import pwd

            name = pwd.getpwuid(uid).pw_name
        except (ImportError, KeyError):
            name = f"uid{uid}"
    return name or "invalid-user"


_user_name = _lookup_user_name(os.environ)


def my_user_name() -> str:
    """Return the name of the user running the program."""
    return _user_name


_crash_reason: CrashReason | None = None
_crash_lock = threading.Lock()


def set_crash_reason(reason: CrashReason) -> None:
    """Record ``reason`` unless a crash reason has already been recorded."""
    global _crash_reason
    with _crash_lock:
        if _crash_reason is None:
            _crash_reason = reason


def get_crash_reason() -> CrashReason | None:
    """Return the first recorded crash reason, if any."""
    return _crash_reason


def _write_to_stderr(text: str) -> None:
    try:
        sys.stderr.write(text)
        sys.stderr.flush()
    except (OSError, ValueError):
        pass


def dump_stack_trace(
    skip_count: int = 0,
    writer: Callable[[str], object] | None = None,
    symbolize_stacktrace: bool = True,
) -> None:
    """Write the caller's stack, one frame per line, innermost first.

    ``skip_count`` more frames above the caller are left out.
    """
    write = writer or _write_to_stderr
    for frame in get_stack_trace(_MAX_DUMP_DEPTH, skip_count + 1):
        location = f"{frame.filename}:{frame.lineno}"
        if symbolize_stacktrace:
            write(f"    @ {location}  {frame.function}\n")
        else:
            write(f"    @ {location}\n")


def get_stack_trace_text() -> str:
    """Return the caller's stack as text, in the form of :func:`dump_stack_trace`."""
    parts: list[str] = []
    dump_stack_trace(1, parts.append)
    return "".join(parts)


class FileDescriptor:
    """Owns an OS file descriptor and closes it when done."""

    def __init__(self, fd: int | None = None) -> None:
        self._fd = _INVALID_HANDLE if fd is None else fd

    @property
    def fd(self) -> int:
        return self._fd

    def __bool__(self) -> bool:
        return self._fd != _INVALID_HANDLE

    def __eq__(self, other: object) -> bool:
        if other is None:
            return not self
        if isinstance(other, int):
            return self._fd == other
        if isinstance(other, FileDescriptor):
            return self._fd == other._fd
        return NotImplemented

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return f"FileDescriptor({self._fd})"

    def release(self) -> int:
        """Give up ownership and return the descriptor without closing it."""
        fd, self._fd = self._fd, _INVALID_HANDLE
        return fd

    def _safe_close(self) -> None:
        if self:
            try:
                os.close(self.release())
            except OSError:
                pass

    def reset(self, fd: int | None = None) -> None:
        """Close the held descriptor, if any, and take ownership of ``fd``."""
        self._safe_close()
        self._fd = _INVALID_HANDLE if fd is None else fd

    def close(self) -> None:
        """Close the held descriptor; raises :class:`OSError` if that fails."""
        os.close(self.release())

    def __enter__(self) -> FileDescriptor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._safe_close()

    def __del__(self) -> None:
        self._safe_close()