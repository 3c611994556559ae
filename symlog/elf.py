"""A small reader for ELF section headers and symbol tables."""

from __future__ import annotations

import functools
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO

__all__ = [
    "ElfFormatError",
    "ElfHeader",
    "SectionHeader",
    "ElfSymbol",
    "read_from_offset",
    "read_elf_header",
    "file_get_elf_type",
    "get_section_header_by_type",
    "get_section_header_by_name",
    "find_symbol",
    "get_symbol_from_object_file",
    "ELFMAG",
    "ELFCLASS32",
    "ELFCLASS64",
    "ELFDATA2LSB",
    "ELFDATA2MSB",
    "ET_NONE",
    "ET_REL",
    "ET_EXEC",
    "ET_DYN",
    "ET_CORE",
    "SHT_NULL",
    "SHT_PROGBITS",
    "SHT_SYMTAB",
    "SHT_STRTAB",
    "SHT_DYNSYM",
    "MAX_SECTION_NAME_LEN",
    "MAX_SYMBOL_NAME_LEN",
]

_log = logging.getLogger(__name__)

ELFMAG = b"\x7fELF"
ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2

ET_NONE = 0
ET_REL = 1
ET_EXEC = 2
ET_DYN = 3
ET_CORE = 4

SHT_NULL = 0
SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_DYNSYM = 11

# Section names longer than this (terminator included) are never looked up.
MAX_SECTION_NAME_LEN = 64
# Longest symbol name, terminator included, that a lookup will return.
MAX_SYMBOL_NAME_LEN = 4096

_UINT64_MASK = (1 << 64) - 1
_IDENT_SIZE = 16
_SECTION_BATCH = 16
_SYMBOL_BATCH = 32

_EHDR = "ehdr"
_SHDR = "shdr"
_SYM = "sym"

_FORMATS = {
    _EHDR: {ELFCLASS32: "HHIIIIIHHHHHH", ELFCLASS64: "HHIQQQIHHHHHH"},
    _SHDR: {ELFCLASS32: "IIIIIIIIII", ELFCLASS64: "IIQQQQIIQQ"},
    _SYM: {ELFCLASS32: "IIIBBH", ELFCLASS64: "IBBHQQ"},
}


class ElfFormatError(ValueError):
    """Raised when data is not a well-formed ELF structure."""


def _check_class(elf_class: int) -> None:
    if elf_class not in (ELFCLASS32, ELFCLASS64):
        raise ElfFormatError(f"unknown ELF class {elf_class}")


@functools.lru_cache(maxsize=None)
def _layout(kind: str, elf_class: int, little_endian: bool) -> struct.Struct:
    """The compiled struct layout of one ELF record kind, class and byte order."""
    _check_class(elf_class)
    order = "<" if little_endian else ">"
    return struct.Struct(order + _FORMATS[kind][elf_class])


@dataclass(frozen=True)
class ElfHeader:
    """The ELF file header."""

    elf_class: int
    little_endian: bool
    e_type: int
    e_machine: int
    e_version: int
    e_entry: int
    e_phoff: int
    e_shoff: int
    e_flags: int
    e_ehsize: int
    e_phentsize: int
    e_phnum: int
    e_shentsize: int
    e_shnum: int
    e_shstrndx: int

    @staticmethod
    def size(elf_class: int) -> int:
        """Size in bytes of the header for ``elf_class``."""
        return _IDENT_SIZE + _layout(_EHDR, elf_class, True).size

    @classmethod
    def parse(cls, data: bytes) -> ElfHeader:
        """Decode a header from the start of ``data``."""
        if len(data) < _IDENT_SIZE:
            raise ElfFormatError("data too short for an ELF identification")
        if data[:4] != ELFMAG:
            raise ElfFormatError("bad ELF magic")
        elf_class = data[4]
        _check_class(elf_class)
        encoding = data[5]
        if encoding not in (ELFDATA2LSB, ELFDATA2MSB):
            raise ElfFormatError(f"unknown ELF data encoding {encoding}")
        little = encoding == ELFDATA2LSB
        layout = _layout(_EHDR, elf_class, little)
        end = _IDENT_SIZE + layout.size
        if len(data) < end:
            raise ElfFormatError("data too short for an ELF header")
        return cls(elf_class, little, *layout.unpack(data[_IDENT_SIZE:end]))

    @property
    def section_header_size(self) -> int:
        return SectionHeader.size(self.elf_class)


@dataclass(frozen=True)
class SectionHeader:
    """One entry of the section header table."""

    sh_name: int
    sh_type: int
    sh_flags: int
    sh_addr: int
    sh_offset: int
    sh_size: int
    sh_link: int
    sh_info: int
    sh_addralign: int
    sh_entsize: int

    @staticmethod
    def size(elf_class: int) -> int:
        """Size in bytes of a section header for ``elf_class``."""
        return _layout(_SHDR, elf_class, True).size

    @classmethod
    def parse(cls, data: bytes, elf_class: int, little_endian: bool) -> SectionHeader:
        """Decode a section header from the start of ``data``."""
        layout = _layout(_SHDR, elf_class, little_endian)
        if len(data) < layout.size:
            raise ElfFormatError("data too short for a section header")
        (name, sh_type, flags, addr, offset, sh_size,
         link, info, align, entsize) = layout.unpack(data[:layout.size])
        return cls(name, sh_type, flags, addr, offset, sh_size, link, info, align, entsize)


@dataclass(frozen=True)
class ElfSymbol:
    """One entry of a symbol table."""

    st_name: int
    st_value: int
    st_size: int
    st_info: int
    st_other: int
    st_shndx: int

    @staticmethod
    def size(elf_class: int) -> int:
        """Size in bytes of a symbol entry for ``elf_class``."""
        return _layout(_SYM, elf_class, True).size

    @classmethod
    def parse(cls, data: bytes, elf_class: int, little_endian: bool) -> ElfSymbol:
        """Decode a symbol from the start of ``data``."""
        layout = _layout(_SYM, elf_class, little_endian)
        if len(data) < layout.size:
            raise ElfFormatError("data too short for a symbol")
        fields = layout.unpack(data[:layout.size])
        if elf_class == ELFCLASS32:
            name, value, sym_size, info, other, shndx = fields
        else:
            name, info, other, shndx, value, sym_size = fields
        return cls(name, value, sym_size, info, other, shndx)


def read_from_offset(stream: BinaryIO, count: int, offset: int) -> bytes:
    """Read up to ``count`` bytes at ``offset``; fewer only if the end is reached."""
    if count < 0 or offset < 0:
        raise ValueError("count and offset must not be negative")
    stream.seek(offset)
    chunks: list[bytes] = []
    remaining = count
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_exact(stream: BinaryIO, count: int, offset: int) -> bytes | None:
    data = read_from_offset(stream, count, offset)
    return data if len(data) == count else None


def read_elf_header(stream: BinaryIO) -> ElfHeader:
    """Read and decode the ELF header at the start of ``stream``."""
    return ElfHeader.parse(read_from_offset(stream, ElfHeader.size(ELFCLASS64), 0))


def file_get_elf_type(stream: BinaryIO) -> int | None:
    """Return ``e_type`` if ``stream`` holds an ELF file, otherwise ``None``."""
    try:
        return read_elf_header(stream).e_type
    except ElfFormatError:
        return None


def get_section_header_by_type(
    stream: BinaryIO, header: ElfHeader, sh_type: int
) -> SectionHeader | None:
    """Return the first section header of type ``sh_type``, or ``None``."""
    entry_size = header.section_header_size
    index = 0
    while index < header.e_shnum:
        batch = min(_SECTION_BATCH, header.e_shnum - index)
        data = read_from_offset(
            stream, batch * entry_size, header.e_shoff + index * entry_size
        )
        complete = len(data) // entry_size
        if complete == 0:
            break
        for start in range(0, complete * entry_size, entry_size):
            section = SectionHeader.parse(
                data[start:start + entry_size], header.elf_class, header.little_endian
            )
            if section.sh_type == sh_type:
                return section
        index += complete
    return None


def get_section_header_by_name(stream: BinaryIO, name: str) -> SectionHeader | None:
    """Return the section header called ``name``, or ``None`` if there is none."""
    try:
        header = read_elf_header(stream)
    except ElfFormatError:
        return None
    wanted = name.encode() + b"\0"
    entry_size = header.section_header_size

    shstrtab_data = _read_exact(
        stream, entry_size, header.e_shoff + header.e_shentsize * header.e_shstrndx
    )
    if shstrtab_data is None:
        return None
    shstrtab = SectionHeader.parse(shstrtab_data, header.elf_class, header.little_endian)

    for index in range(header.e_shnum):
        data = _read_exact(stream, entry_size, header.e_shoff + header.e_shentsize * index)
        if data is None:
            return None
        section = SectionHeader.parse(data, header.elf_class, header.little_endian)
        if len(wanted) > MAX_SECTION_NAME_LEN:
            _log.warning(
                "Section name '%s' is too long (%d); "
                "section will not be found (even if present).",
                name,
                len(wanted),
            )
            return None
        candidate = read_from_offset(
            stream, len(wanted), shstrtab.sh_offset + section.sh_name
        )
        if len(candidate) != len(wanted):
            continue
        if candidate == wanted:
            return section
    return None


def _read_symbol_name(stream: BinaryIO, offset: int) -> str | None:
    data = read_from_offset(stream, MAX_SYMBOL_NAME_LEN, offset)
    end = data.find(b"\0")
    if not data or end < 0:
        return None
    return data[:end].decode("utf-8", errors="replace")


def _symbol_layout(stream: BinaryIO, symtab: SectionHeader) -> tuple[int, bool]:
    """Class and byte order of the symbols: from the file header if there is one."""
    try:
        header = read_elf_header(stream)
    except ElfFormatError:
        pass
    else:
        return header.elf_class, header.little_endian
    if symtab.sh_entsize == ElfSymbol.size(ELFCLASS32):
        return ELFCLASS32, True
    return ELFCLASS64, True


def find_symbol(
    stream: BinaryIO,
    pc: int,
    symbol_offset: int,
    strtab: SectionHeader | None,
    symtab: SectionHeader | None,
) -> str | None:
    """Return the name of the symbol in ``symtab`` whose range holds ``pc``."""
    if symtab is None or strtab is None or symtab.sh_entsize == 0:
        return None
    elf_class, little_endian = _symbol_layout(stream, symtab)
    sym_size = ElfSymbol.size(elf_class)
    num_symbols = symtab.sh_size // symtab.sh_entsize
    index = 0
    while index < num_symbols:
        batch = min(_SYMBOL_BATCH, num_symbols - index)
        data = read_from_offset(
            stream, batch * sym_size, symtab.sh_offset + index * symtab.sh_entsize
        )
        complete = len(data) // sym_size
        if complete == 0:
            break
        for start in range(0, complete * sym_size, sym_size):
            symbol = ElfSymbol.parse(data[start:start + sym_size], elf_class, little_endian)
            start_address = (symbol.st_value + symbol_offset) & _UINT64_MASK
            end_address = (start_address + symbol.st_size) & _UINT64_MASK
            if (
                symbol.st_value != 0
                and symbol.st_shndx != 0
                and start_address <= pc < end_address
            ):
                return _read_symbol_name(stream, strtab.sh_offset + symbol.st_name)
        index += complete
    return None


def get_symbol_from_object_file(
    stream: BinaryIO, pc: int, base_address: int
) -> str | None:
    """Look ``pc`` up in the regular, then the dynamic symbol table."""
    try:
        header = read_elf_header(stream)
    except ElfFormatError:
        return None
    entry_size = header.section_header_size
    for table_type in (SHT_SYMTAB, SHT_DYNSYM):
        symtab = get_section_header_by_type(stream, header, table_type)
        if symtab is None:
            continue
        data = _read_exact(stream, entry_size, header.e_shoff + symtab.sh_link * entry_size)
        if data is None:
            return None
        strtab = SectionHeader.parse(data, header.elf_class, header.little_endian)
        name = find_symbol(stream, pc, base_address, strtab, symtab)
        if name is not None:
            return name
    return None