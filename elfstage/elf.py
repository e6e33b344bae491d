"""Reading 64-bit ELF images: headers, sections, dynamic symbols and relocations."""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

__all__ = [
    "ElfError",
    "ProgramHeader",
    "SectionHeader",
    "Symbol",
    "Relocation",
    "GotEntry",
    "DynamicData",
    "ElfData",
    "parse_elf",
    "read_elf",
    "find_section_header",
    "relocation_type_name",
    "symbol_type_name",
    "ET_EXEC",
    "ET_DYN",
    "PT_LOAD",
    "DT_NEEDED",
    "DT_FLAGS_1",
    "DF_1_PIE",
    "R_X86_64_COPY",
    "R_X86_64_GLOB_DAT",
    "R_X86_64_JUMP_SLOT",
    "R_X86_64_RELATIVE",
    "FUNCTION_RELOCATION_HEADER",
    "VARIABLE_RELOCATION_HEADER",
]

ET_EXEC = 2
ET_DYN = 3
PT_LOAD = 1
DT_NEEDED = 1
DT_FLAGS_1 = 0x6FFFFFFB
DF_1_PIE = 0x08000000

R_X86_64_COPY = 5
R_X86_64_GLOB_DAT = 6
R_X86_64_JUMP_SLOT = 7
R_X86_64_RELATIVE = 8

RELOCATION_SYMBOL_SHIFT_LENGTH = 32
FUNCTION_RELOCATION_HEADER = ".rela.plt"
VARIABLE_RELOCATION_HEADER = ".rela.dyn"

_ELF_MAGIC = b"\x7fELF"

_EHDR = struct.Struct("<16sHHIQQQIHHHHHH")
_PHDR = struct.Struct("<IIQQQQQQ")
_SHDR = struct.Struct("<IIQQQQIIQQ")
_SYM = struct.Struct("<IBBHQQ")
_RELA = struct.Struct("<QQq")
_DYN = struct.Struct("<qQ")
_WORD = struct.Struct("<Q")

_RELOCATION_TYPE_NAMES = {
    R_X86_64_COPY: "R_X86_64_COPY",
    R_X86_64_GLOB_DAT: "R_X86_64_GLOB_DAT",
    R_X86_64_JUMP_SLOT: "R_X86_64_JUMP_SLOT",
    R_X86_64_RELATIVE: "R_X86_64_RELATIVE",
}

_SYMBOL_TYPE_NAMES = {
    0: "STT_NOTYPE",
    1: "STT_OBJECT",
    2: "STT_FUNC",
}


class ElfError(ValueError):
    """Raised when an image is malformed or uses unsupported features."""


def relocation_type_name(type_: int) -> str:
    """Name of an x86-64 relocation type, or ``"Unknown"``."""
    return _RELOCATION_TYPE_NAMES.get(type_, "Unknown")


def symbol_type_name(type_: int) -> str:
    """Name of a symbol type, or ``"Unknown"``."""
    return _SYMBOL_TYPE_NAMES.get(type_, "Unknown")


@dataclass(frozen=True)
class ProgramHeader:
    type: int
    flags: int
    offset: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    align: int


@dataclass(frozen=True)
class SectionHeader:
    name: str
    type: int
    addr: int
    offset: int
    size: int
    entry_size: int


@dataclass(frozen=True)
class Symbol:
    name: str
    value: int
    size: int
    type: int
    binding: int

    @property
    def type_name(self) -> str:
        return symbol_type_name(self.type)


@dataclass(frozen=True)
class Relocation:
    offset: int
    type: int
    symbol: Symbol
    addend: int = 0

    @property
    def type_name(self) -> str:
        return relocation_type_name(self.type)


@dataclass
class GotEntry:
    index: int
    value: int
    is_library_virtual_base_address: bool = False
    is_loader_callback: bool = False
    is_variable: bool = False
    lib_dynamic_offset: int = 0


@dataclass
class DynamicData:
    symbols: list[Symbol] = field(default_factory=list)
    got_entries: list[GotEntry] = field(default_factory=list)
    func_relocations: list[Relocation] = field(default_factory=list)
    var_relocations: list[Relocation] = field(default_factory=list)
    shared_libraries: list[str] = field(default_factory=list)
    is_pie: bool = False


@dataclass
class ElfData:
    """Everything the loader needs from an image."""

    ident: bytes
    type: int
    machine: int
    entry: int
    program_headers: list[ProgramHeader]
    section_headers: list[SectionHeader]
    dynamic_data: DynamicData | None
    word_size: int
    endianness: str
    version: int
    os_abi: int
    is_pie: bool


def _read(data: bytes, offset: int, size: int) -> bytes:
    if offset < 0 or size < 0 or offset + size > len(data):
        raise ElfError("read failed")
    return data[offset : offset + size]


def _cstring(table: bytes, offset: int) -> str:
    if offset >= len(table):
        raise ElfError(f"string offset {offset:#x} outside string table")
    end = table.find(b"\0", offset)
    if end == -1:
        end = len(table)
    return table[offset:end].decode("utf-8", errors="replace")


def _unpack_array(raw: bytes, layout: struct.Struct, count: int) -> Iterator[tuple]:
    needed = layout.size * count
    if needed > len(raw):
        raise ElfError("read failed")
    return layout.iter_unpack(raw[:needed])


def _section_records(
    data: bytes, header: SectionHeader, layout: struct.Struct
) -> Iterator[tuple]:
    if header.entry_size == 0:
        raise ElfError(f"section {header.name!r} has zero entry size")
    count = header.size // header.entry_size
    raw = _read(data, header.offset, header.size)
    return _unpack_array(raw, layout, count)


def find_section_header(
    section_headers: Iterable[SectionHeader], name: str
) -> SectionHeader | None:
    """First section header with the given name, or ``None``."""
    return next((header for header in section_headers if header.name == name), None)


def _parse_section_headers(data: bytes, shoff: int, shnum: int, shentsize: int,
                           shstrndx: int) -> list[SectionHeader]:
    raw = _read(data, shoff, shnum * shentsize)
    records = list(_unpack_array(raw, _SHDR, shnum))
    if shnum == 0:
        return []
    if shstrndx >= shnum:
        raise ElfError(f"section name table index {shstrndx} out of range")
    strtab_record = records[shstrndx]
    shstr_table = _read(data, strtab_record[4], strtab_record[5])
    return [
        SectionHeader(
            name=_cstring(shstr_table, sh_name),
            type=sh_type,
            addr=sh_addr,
            offset=sh_offset,
            size=sh_size,
            entry_size=sh_entsize,
        )
        for (sh_name, sh_type, _flags, sh_addr, sh_offset, sh_size,
             _link, _info, _align, sh_entsize) in records
    ]


def _got_values(data: bytes, header: SectionHeader) -> list[int]:
    if header.entry_size == 0:
        raise ElfError(f"section {header.name!r} has zero entry size")
    count = header.size // header.entry_size
    raw = _read(data, header.offset, header.size)
    return [value for (value,) in _unpack_array(raw, _WORD, count)]


def _symbol_at(symbols: Sequence[Symbol], index: int) -> Symbol:
    try:
        return symbols[index]
    except IndexError:
        raise ElfError(f"relocation symbol index {index} out of range") from None


def _parse_dynamic_data(
    data: bytes, section_headers: Sequence[SectionHeader]
) -> DynamicData | None:
    dynsym = find_section_header(section_headers, ".dynsym")
    dynstr = find_section_header(section_headers, ".dynstr")
    dynamic = find_section_header(section_headers, ".dynamic")
    if dynsym is None:
        return None
    if dynstr is None:
        raise ElfError("Could not find .dynstr section header")
    if dynamic is None:
        raise ElfError("Could not find .dynamic section header")

    strings = _read(data, dynstr.offset, dynstr.size)
    symbols = [
        Symbol(
            name=_cstring(strings, st_name),
            value=st_value,
            size=st_size,
            type=st_info & 0x0F,
            binding=st_info >> 4,
        )
        for st_name, st_info, _other, _shndx, st_value, st_size
        in _section_records(data, dynsym, _SYM)
    ]

    got_entries: list[GotEntry] = []
    got = find_section_header(section_headers, ".got")
    if got is not None:
        got_entries.extend(
            GotEntry(index=got.addr + i * got.entry_size, value=value)
            for i, value in enumerate(_got_values(data, got))
        )

    got_plt = find_section_header(section_headers, ".got.plt")
    if got_plt is not None:
        values = _got_values(data, got_plt)
        if len(values) < 3:
            raise ElfError(
                f"unsupported GOT length {len(values):x}, "
                "unknown loader callback location"
            )
        got_entries.extend(
            GotEntry(
                index=got_plt.addr + i * got_plt.entry_size,
                value=value,
                is_library_virtual_base_address=i == 1,
                is_loader_callback=i == 2,
            )
            for i, value in enumerate(values)
        )

    func_relocations: list[Relocation] = []
    func_header = find_section_header(section_headers, FUNCTION_RELOCATION_HEADER)
    if func_header is not None:
        for r_offset, r_info, r_addend in _section_records(data, func_header, _RELA):
            type_ = r_info & 0xFF
            if type_ != R_X86_64_JUMP_SLOT:
                raise ElfError(
                    f"Unsupported 64 bit function relocation type {type_}"
                )
            if r_addend > 0:
                raise ElfError("Unsupported 64 bit function relocation addend")
            symbol = _symbol_at(symbols, r_info >> RELOCATION_SYMBOL_SHIFT_LENGTH)
            func_relocations.append(
                Relocation(offset=r_offset, type=type_, symbol=symbol)
            )

    var_relocations: list[Relocation] = []
    var_header = find_section_header(section_headers, VARIABLE_RELOCATION_HEADER)
    if var_header is not None:
        for r_offset, r_info, r_addend in _section_records(data, var_header, _RELA):
            symbol = _symbol_at(symbols, r_info >> RELOCATION_SYMBOL_SHIFT_LENGTH)
            var_relocations.append(
                Relocation(
                    offset=r_offset,
                    type=r_info & 0xFF,
                    symbol=symbol,
                    addend=r_addend,
                )
            )

    shared_libraries: list[str] = []
    is_pie = False
    for d_tag, d_val in _section_records(data, dynamic, _DYN):
        if d_tag == DT_FLAGS_1 and d_val & DF_1_PIE:
            is_pie = True
        if d_tag == DT_NEEDED:
            shared_libraries.append(_cstring(strings, d_val))

    return DynamicData(
        symbols=symbols,
        got_entries=got_entries,
        func_relocations=func_relocations,
        var_relocations=var_relocations,
        shared_libraries=shared_libraries,
        is_pie=is_pie,
    )


def parse_elf(data: bytes) -> ElfData:
    """Parse a little-endian 64-bit ELF image held in memory."""
    data = bytes(data)
    header = _read(data, 0, _EHDR.size)
    (ident, e_type, e_machine, _version, e_entry, e_phoff, e_shoff, _flags,
     _ehsize, e_phentsize, e_phnum, e_shentsize, e_shnum,
     e_shstrndx) = _EHDR.unpack(header)
    if ident[:4] != _ELF_MAGIC:
        raise ElfError("Invalid ELF header")

    program_headers: list[ProgramHeader] = []
    if e_phoff > 0:
        raw = _read(data, e_phoff, e_phnum * e_phentsize)
        program_headers = [
            ProgramHeader(*record) for record in _unpack_array(raw, _PHDR, e_phnum)
        ]

    section_headers = _parse_section_headers(
        data, e_shoff, e_shnum, e_shentsize, e_shstrndx
    )
    dynamic_data = _parse_dynamic_data(data, section_headers)

    is_pie = dynamic_data.is_pie if dynamic_data is not None else False
    if is_pie and e_type != ET_DYN:
        raise ElfError("Unexpected non-dynamic PIE")

    return ElfData(
        ident=ident,
        type=e_type,
        machine=e_machine,
        entry=e_entry,
        program_headers=program_headers,
        section_headers=section_headers,
        dynamic_data=dynamic_data,
        word_size=32 if ident[4] == 1 else 64,
        endianness="little" if ident[5] == 1 else "big",
        version=ident[6],
        os_abi=ident[7],
        is_pie=is_pie,
    )


def read_elf(path: str | os.PathLike[str]) -> ElfData:
    """Read and parse the ELF image at ``path``."""
    with open(path, "rb") as handle:
        return parse_elf(handle.read())