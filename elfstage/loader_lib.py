"""Runtime views of relocations, symbols, GOT entries and memory regions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from elfstage.elf import PT_LOAD, DynamicData, ElfData, ProgramHeader
from elfstage.formatting import LogLevel, log_message
from elfstage.memory_map import MemoryRegion

__all__ = [
    "LoaderError",
    "RuntimeGotEntry",
    "RuntimeRelocation",
    "RuntimeSymbol",
    "RuntimeObject",
    "find_runtime_relocation",
    "find_runtime_symbol",
    "find_got_entry",
    "get_function_relocations",
    "find_symbols",
    "get_runtime_got",
    "get_memory_regions",
]

_REGION_EXTENSION = 0x1000


class LoaderError(RuntimeError):
    """Raised when an image cannot be prepared for running."""


@dataclass
class RuntimeGotEntry:
    """A GOT slot at its runtime address and the value it will hold."""

    index: int
    value: int
    # Non-zero if the entry holds the library's runtime offset.
    lib_dynamic_offset: int = 0


@dataclass
class RuntimeRelocation:
    """A relocation with its offset and value moved to runtime addresses."""

    offset: int
    type: int
    name: str
    value: int = 0
    addend: int = 0
    lib_dyn_offset: int = 0


@dataclass(frozen=True)
class RuntimeSymbol:
    """A dynamic symbol at its runtime address."""

    value: int
    name: str
    size: int = 0


@dataclass
class RuntimeObject:
    """An executable or shared library placed in memory."""

    name: str
    dynamic_offset: int
    elf_data: ElfData
    memory_regions: list[MemoryRegion] = field(default_factory=list)
    runtime_func_relocations: list[RuntimeRelocation] = field(default_factory=list)
    bss: int | None = None
    bss_len: int = 0
    runtime_symbols: list[RuntimeSymbol] = field(default_factory=list)


def find_runtime_relocation(
    relocations: Iterable[RuntimeRelocation], offset: int
) -> RuntimeRelocation | None:
    """First relocation at ``offset``, or ``None``."""
    return next((reloc for reloc in relocations if reloc.offset == offset), None)


def find_runtime_symbol(
    name: str, symbols: Iterable[RuntimeSymbol], ignore_val: int = 0
) -> RuntimeSymbol | None:
    """First defined symbol called ``name`` whose value is not ``ignore_val``.

    Symbols with a value of zero are undefined and never match.
    """
    for symbol in symbols:
        if symbol.value == 0 or symbol.value == ignore_val:
            continue
        if symbol.name == name:
            return symbol
    return None


def find_got_entry(
    entries: Iterable[RuntimeGotEntry], offset: int
) -> RuntimeGotEntry | None:
    """The GOT entry stored at ``offset``, or ``None``."""
    return next((entry for entry in entries if entry.index == offset), None)


def get_function_relocations(
    dyn_data: DynamicData, dyn_offset: int
) -> list[RuntimeRelocation]:
    """Function relocations moved by ``dyn_offset``.

    Undefined symbols keep a value of zero.
    """
    return [
        RuntimeRelocation(
            offset=dyn_offset + reloc.offset,
            type=reloc.type,
            name=reloc.symbol.name,
            value=0 if reloc.symbol.value == 0 else dyn_offset + reloc.symbol.value,
            lib_dyn_offset=dyn_offset,
        )
        for reloc in dyn_data.func_relocations
    ]


def find_symbols(dyn_data: DynamicData, lib_dyn_offset: int) -> list[RuntimeSymbol]:
    """Dynamic symbols moved by ``lib_dyn_offset``; undefined ones stay zero."""
    return [
        RuntimeSymbol(
            value=0 if symbol.value == 0 else lib_dyn_offset + symbol.value,
            name=symbol.name,
            size=symbol.size,
        )
        for symbol in dyn_data.symbols
    ]


def get_runtime_got(
    dyn_data: DynamicData,
    lib_dyn_offset: int,
    callback_address: int,
    lib_offset_slot: int,
) -> list[RuntimeGotEntry]:
    """Runtime GOT entries for an object loaded at ``lib_dyn_offset``.

    The loader callback slot receives ``callback_address``; the library base
    slot receives ``lib_offset_slot``, the address where the object's offset
    is kept. Other non-zero values are moved by the offset.
    """
    entries = []
    for got_entry in dyn_data.got_entries:
        lib_dynamic_offset = 0
        if got_entry.is_loader_callback:
            value = callback_address
        elif got_entry.is_library_virtual_base_address:
            value = lib_offset_slot
            lib_dynamic_offset = lib_dyn_offset
        elif got_entry.value == 0:
            value = 0
        else:
            value = lib_dyn_offset + got_entry.value
        entries.append(
            RuntimeGotEntry(
                index=lib_dyn_offset + got_entry.index,
                value=value,
                lib_dynamic_offset=lib_dynamic_offset,
            )
        )
    return entries


def get_memory_regions(program_headers: Sequence[ProgramHeader]) -> list[MemoryRegion]:
    """Aligned memory regions for the loadable segments."""
    regions = []
    for number, header in enumerate(program_headers, start=1):
        if header.type != PT_LOAD:
            continue
        if header.align == 0:
            raise LoaderError(f"PH {number}: zero alignment is unsupported")
        if header.filesz == 0 and header.offset != 0:
            log_message(
                LogLevel.WARNING,
                "PH %zd: zero filesize w/ non-zero offset may not be unsupported\n",
                number,
            )
        if header.memsz != header.filesz:
            log_message(LogLevel.DEBUG, "PH filesize != memsize\n")

        align = header.align
        file_offset = header.offset // align * align
        start = header.vaddr // align * align
        end = start + header.memsz // align * align + align
        if header.vaddr + header.memsz > end:
            log_message(
                LogLevel.TRACE, "Memory region %zx extended due to offset\n", start
            )
            end += _REGION_EXTENSION

        regions.append(
            MemoryRegion(
                start=start,
                end=end,
                is_direct_file_map=header.filesz > 0,
                file_offset=file_offset,
                permissions=header.flags,
            )
        )
    return regions