"""Resolve program counters to symbol names using process maps and ELF tables."""

from __future__ import annotations

import enum
import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator

from symlog.elf import (
    ELFCLASS32,
    ELFCLASS64,
    ET_DYN,
    ET_EXEC,
    ElfFormatError,
    ElfHeader,
    file_get_elf_type,
    get_symbol_from_object_file,
    read_from_offset,
)

__all__ = [
    "SymbolizeOptions",
    "MapsEntry",
    "ObjectFileInfo",
    "Symbolizer",
    "get_hex",
    "itoa_r",
    "parse_maps_line",
    "iter_maps",
    "open_object_file_containing_pc",
    "install_symbolize_callback",
    "install_symbolize_open_object_file_callback",
    "symbolize",
]

_UINT64_MASK = (1 << 64) - 1
_HEX_DIGITS = "0123456789abcdefABCDEF"
_DIGITS = "0123456789abcdef"
_PT_LOAD = 1
_PHDR_FORMATS = {ELFCLASS32: "IIIIIIII", ELFCLASS64: "IIQQQQQQ"}

DEFAULT_MAPS_PATH = "/proc/self/maps"
DEFAULT_MEM_PATH = "/proc/self/mem"


class SymbolizeOptions(enum.IntFlag):
    """Options controlling symbolized output."""

    NONE = 0
    NO_LINE_NUMBERS = 1


def get_hex(text: str) -> tuple[int, int]:
    """Parse leading hex digits of ``text``; return the value and the index after them."""
    value = 0
    index = 0
    for index, ch in enumerate(text):
        if ch not in _HEX_DIGITS:
            break
        value = ((value << 4) | int(ch, 16)) & _UINT64_MASK
    else:
        index = len(text)
    return value, index


def itoa_r(value: int, base: int = 10, padding: int = 0) -> str:
    """Format an unsigned integer in ``base`` (2 to 16), zero-padded to ``padding`` digits."""
    if base < 2 or base > 16:
        raise ValueError(f"base must be between 2 and 16, not {base}")
    if value < 0:
        raise ValueError("value must not be negative")
    digits: list[str] = []
    while True:
        digits.append(_DIGITS[value % base])
        value //= base
        if padding > 0:
            padding -= 1
        if value == 0 and padding == 0:
            break
    return "".join(reversed(digits))


@dataclass(frozen=True)
class MapsEntry:
    """One line of a process memory map."""

    start: int
    end: int
    flags: str
    offset: int
    pathname: str

    @property
    def readable(self) -> bool:
        return self.flags[0] == "r"

    @property
    def executable(self) -> bool:
        return self.flags[2] == "x"

    def __contains__(self, pc: object) -> bool:
        return isinstance(pc, int) and self.start <= pc < self.end


def parse_maps_line(line: str) -> MapsEntry:
    """Parse a line such as ``08048000-0804c000 r-xp 00000000 08:01 2142121 /bin/cat``."""
    start, pos = get_hex(line)
    if pos == len(line) or line[pos] != "-":
        raise ValueError(f"malformed maps line: {line!r}")
    pos += 1

    end, used = get_hex(line[pos:])
    pos += used
    if pos == len(line) or line[pos] != " ":
        raise ValueError(f"malformed maps line: {line!r}")
    pos += 1

    space = line.find(" ", pos)
    if space < 0 or space - pos < 4:
        raise ValueError(f"malformed maps line: {line!r}")
    flags = line[pos:space]
    pos = space + 1

    offset, used = get_hex(line[pos:])
    pos += used
    if pos == len(line) or line[pos] != " ":
        raise ValueError(f"malformed maps line: {line!r}")
    pos += 1

    # The path follows the device and inode fields: the first non-space
    # character after at least two spaces.
    num_spaces = 0
    while pos < len(line):
        if line[pos] == " ":
            num_spaces += 1
        elif num_spaces >= 2:
            break
        pos += 1
    return MapsEntry(start, end, flags, offset, line[pos:])


def iter_maps(path: str | os.PathLike[str] = DEFAULT_MAPS_PATH) -> Iterator[MapsEntry]:
    """Yield the entries of a maps file; a final line without a newline is ignored."""
    with open(path, "rb") as maps:
        data = maps.read()
    *lines, _incomplete = data.split(b"\n")
    for raw in lines:
        yield parse_maps_line(os.fsdecode(raw))


@dataclass
class ObjectFileInfo:
    """An object file found to contain a program counter."""

    file_name: str
    start_address: int
    base_address: int
    stream: BinaryIO | None = None

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None

    def __enter__(self) -> ObjectFileInfo:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _program_header(mem: BinaryIO, header: ElfHeader, address: int) -> tuple[int, int, int] | None:
    fmt = ("<" if header.little_endian else ">") + _PHDR_FORMATS[header.elf_class]
    size = struct.calcsize(fmt)
    data = read_from_offset(mem, size, address)
    if len(data) != size:
        return None
    fields = struct.unpack(fmt, data)
    if header.elf_class == ELFCLASS32:
        p_type, p_offset, p_vaddr = fields[0], fields[1], fields[2]
    else:
        p_type, p_offset, p_vaddr = fields[0], fields[2], fields[3]
    return p_type, p_offset, p_vaddr


def _base_address(mem: BinaryIO, start: int, previous: int) -> int:
    """Work out a module's load base from the ELF headers mapped at ``start``."""
    try:
        header = ElfHeader.parse(read_from_offset(mem, ElfHeader.size(ELFCLASS64), start))
    except (OSError, OverflowError, ElfFormatError):
        return previous
    if header.e_type == ET_EXEC:
        return 0
    if header.e_type != ET_DYN:
        return previous
    phdr_size = struct.calcsize("<" + _PHDR_FORMATS[header.elf_class])
    for index in range(header.e_phnum):
        try:
            phdr = _program_header(mem, header, start + header.e_phoff + index * phdr_size)
        except (OSError, OverflowError):
            phdr = None
        if phdr is not None and phdr[0] == _PT_LOAD and phdr[1] == 0:
            return (start - phdr[2]) & _UINT64_MASK
    return start


def open_object_file_containing_pc(
    pc: int,
    maps_path: str | os.PathLike[str] = DEFAULT_MAPS_PATH,
    mem_path: str | os.PathLike[str] = DEFAULT_MEM_PATH,
) -> ObjectFileInfo | None:
    """Find the executable mapping holding ``pc`` and open its object file.

    Returns ``None`` if no such mapping is found or the map is malformed. If
    the mapping is found but its file cannot be opened, the result carries
    the file name with no stream.
    """
    try:
        mem = open(mem_path, "rb", buffering=0)
    except OSError:
        return None
    base_address = 0
    with mem:
        try:
            for entry in iter_maps(maps_path):
                if entry.readable:
                    base_address = _base_address(mem, entry.start, base_address)
                if pc not in entry:
                    continue
                if not (entry.readable and entry.executable):
                    continue
                if not entry.pathname:
                    return None
                try:
                    stream: BinaryIO | None = open(entry.pathname, "rb")
                except OSError:
                    stream = None
                return ObjectFileInfo(entry.pathname, entry.start, base_address, stream)
        except (OSError, ValueError):
            return None
    return None


SymbolizeCallback = Callable[[BinaryIO, int, int], "str | None"]
OpenObjectFileCallback = Callable[[int], "ObjectFileInfo | None"]
Demangler = Callable[[str], "str | None"]


class Symbolizer:
    """Turns program counters into (demangled) symbol names.

    ``symbolize_callback(stream, pc, relocation)`` may return text placed
    before the symbol name. ``open_object_file_callback(pc)`` replaces the
    lookup of the object file in the process maps; the symbolizer closes any
    stream it returns.
    """

    def __init__(
        self,
        demangler: Demangler | None = None,
        symbolize_callback: SymbolizeCallback | None = None,
        open_object_file_callback: OpenObjectFileCallback | None = None,
    ) -> None:
        self.demangler = demangler
        self.symbolize_callback = symbolize_callback
        self.open_object_file_callback = open_object_file_callback

    def _demangle(self, name: str) -> str:
        if self.demangler is None:
            return name
        return self.demangler(name) or name

    @staticmethod
    def _file_and_offset(info: ObjectFileInfo, pc: int) -> str:
        offset = itoa_r((pc - info.base_address) & _UINT64_MASK, 16)
        return f"({info.file_name}+0x{offset})"

    def symbolize(self, pc: int, options: SymbolizeOptions = SymbolizeOptions.NONE) -> str | None:
        """Return the symbol containing ``pc``, ``(file+0xoffset)``, or ``None``."""
        opener = self.open_object_file_callback or open_object_file_containing_pc
        info = opener(pc)
        if info is None:
            return None
        with info:
            if info.stream is None:
                return self._file_and_offset(info, pc) if info.file_name else None
            elf_type = file_get_elf_type(info.stream)
            if elf_type is None:
                return None
            prefix = ""
            if self.symbolize_callback is not None:
                relocation = info.start_address if elf_type == ET_DYN else 0
                prefix = self.symbolize_callback(info.stream, pc, relocation) or ""
            name = get_symbol_from_object_file(info.stream, pc, info.base_address)
            if name is None:
                if info.file_name and self.symbolize_callback is None:
                    return self._file_and_offset(info, pc)
                return None
            return prefix + self._demangle(name)


_installed: dict[str, Callable | None] = {"symbolize": None, "open_object_file": None}


def _install(slot: str, callback: Callable | None) -> None:
    if callback is not None and not callable(callback):
        raise TypeError(f"callback must be callable or None, not {type(callback).__name__}")
    _installed[slot] = callback


def install_symbolize_callback(callback: SymbolizeCallback | None) -> None:
    """Install the callback used by :func:`symbolize` to prefix symbol names."""
    _install("symbolize", callback)


def install_symbolize_open_object_file_callback(callback: OpenObjectFileCallback | None) -> None:
    """Install the callback used by :func:`symbolize` to locate object files."""
    _install("open_object_file", callback)


def symbolize(pc: int, options: SymbolizeOptions = SymbolizeOptions.NONE) -> str | None:
    """Symbolize ``pc`` with the installed callbacks."""
    symbolizer = Symbolizer(None, _installed["symbolize"], _installed["open_object_file"])
    return symbolizer.symbolize(pc, options)