# symlog

Building blocks for a logging system. There are no external dependencies.

## Modules

### `symlog.vmodule`: per-module verbosity

`VModuleRegistry(vmodule, default_level)` takes a `--vmodule`-style spec such as
`"parser=2,net*=1"`. The spec is parsed the first time a call site is resolved.

- `vlog_is_on(site_flag, fname, verbose_level)` reports whether a verbose call site
  is enabled. The site's level is cached in its `SiteFlag`.
- `init_vlog_site(...)` always resolves the level afresh.
- `set_vlog_level(module_pattern, log_level)` changes a level at run time. It
  returns the level the pattern had before, or the default level if the pattern
  was not yet known. Cached sites that the new pattern matches are redirected
  to it.

Helper functions:

- `safe_fnmatch(pattern, string)` matches with the `*` and `?` wildcards only.
- `module_base_name(fname)` gives the module name of a path. It removes the
  directory, everything from the first `.`, and a trailing `-inl`. For example,
  `src/foo-inl.h` gives `foo`.

```python
from symlog.vmodule import SiteFlag, VModuleRegistry

registry = VModuleRegistry("parser=2,net*=1", default_level=0)
site = SiteFlag()
if registry.vlog_is_on(site, "src/parser.cc", 2):
    print("verbose parser logging enabled")

previous = registry.set_vlog_level("parser", 0)   # previous == 2
```

### `symlog.stacktrace`: call stacks

`get_stack_trace(max_depth, skip_count=0)` returns the caller's Python stack,
innermost first, as a list of `StackFrame(filename, lineno, function)` entries.

- The function's own frame is always left out.
- `skip_count` leaves out that many further frames.
- At most 64 frames are examined.

### `symlog.elf`: ELF symbol tables

A small reader for 32- and 64-bit ELF files in either byte order. It works on
binary file objects.

- Parsers: `ElfHeader.parse`, `SectionHeader.parse`, `ElfSymbol.parse`. They raise
  `ElfFormatError` on bad data.
- Readers:
  - `read_from_offset`
  - `read_elf_header`
  - `file_get_elf_type`, which returns `None` for a file that is not ELF
- Section lookup: `get_section_header_by_type` and `get_section_header_by_name`.
  Names of 64 bytes or more, terminator included, are never found.
- Symbol lookup:
  - `find_symbol(stream, pc, symbol_offset, strtab, symtab)` returns the name of
    the symbol whose address range holds `pc`.
  - `get_symbol_from_object_file(stream, pc, base_address)` tries the regular
    symbol table first, then the dynamic one.

### `symlog.symbolize`: addresses to names

`symbolize(pc, options=SymbolizeOptions.NONE)` finds the readable, executable
mapping that holds `pc` in `/proc/self/maps`, then looks the address up in that
object file. The result is one of the following:

- the symbol name, when the symbol is found;
- `(path+0xoffset)`, when the object file is known but the symbol is not found,
  or the file cannot be opened;
- `None` otherwise.

`install_symbolize_callback` and `install_symbolize_open_object_file_callback`
set the callbacks that `symbolize` uses.

`Symbolizer(demangler, symbolize_callback, open_object_file_callback)` does the
same job with explicit settings:

- `demangler(name)` rewrites a found name. A result of `None` keeps the original
  name.
- `symbolize_callback(stream, pc, relocation)` returns text that is put in front
  of the name. While it is set, no `(path+0xoffset)` fallback is given.
- `open_object_file_callback(pc)` returns an `ObjectFileInfo` and replaces the
  lookup in the process maps.

`SymbolizeOptions` is accepted but does not change the output.

Lower-level helpers:

- `parse_maps_line`, which returns a `MapsEntry`;
- `iter_maps`;
- `open_object_file_containing_pc(pc, maps_path, mem_path)`;
- `get_hex`;
- `itoa_r(value, base, padding)`.

### `symlog.utilities`: process helpers

- `init_logging_utilities(argv0)` records the program's short name.
  - Calling it twice raises `CheckFailedError`.
  - `shutdown_logging_utilities()` undoes it. Calling it first raises the same
    error.
  - `is_logging_initialized()` reports whether it has been called.
- `program_invocation_short_name()` returns the recorded short name. Without
  one, it falls back to the base name of `sys.argv[0]`, or `"UNKNOWN"`.
- `my_user_name()` returns the user name. It comes from `$USER` (`%USERNAME%` on
  Windows), then the password database, then `uid<N>`, and finally
  `"invalid-user"`.
- `get_main_thread_pid()` returns the recorded process id. `pid_has_changed()`
  reports a change, for example after a fork, and records the new id.
- `set_crash_reason(reason)` keeps only the first `CrashReason` it is given.
  `get_crash_reason()` returns it.
- `dump_stack_trace(skip_count, writer, symbolize_stacktrace)` writes one line per
  frame, `    @ file:line  function`. It writes to stderr unless `writer` is
  given. With `symbolize_stacktrace=False` the function name is left out.
- `get_stack_trace_text()` returns the caller's stack in the same form.
- `const_basename(path)` returns the part after the last `/` (also `\` on
  Windows).
- `FileDescriptor(fd)` owns an OS file descriptor:
  - It is false when empty.
  - It has `release()`, `reset(fd)` and `close()`.
  - As a context manager, it closes the descriptor on exit.

```python
from symlog.utilities import init_logging_utilities, get_stack_trace_text

init_logging_utilities("/usr/bin/myapp")
print(get_stack_trace_text())
```

## What this package does not do

- It has no log-writing front end. There are no logging calls with severities,
  no log files or sinks, no command-line flag handling and no failure signal
  handler.
- It ships no demangler. `symbolize` returns names as they appear in the symbol
  table, unless a `Symbolizer` is given a `demangler`.
- Address lookup through `/proc/self/maps` and `/proc/self/mem` works only on
  Linux.

## Tests

The tests are in `tests/` and use pytest, which the `test` extra installs.