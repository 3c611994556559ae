"""Per-module verbosity, stack traces, ELF symbolization and process utilities for logging."""

__version__ = "0.8.0"
__all__ = ["vmodule", "stacktrace", "elf", "symbolize", "utilities"]