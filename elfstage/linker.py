"""Linking an executable against its shared libraries at chosen load addresses.

The result describes the loaded process image: where each object lives, the
memory words the loader writes, the copy relocations it performs and the
ranges it clears. Lazy function binding is resolved on demand.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import Sequence

from elfstage.elf import (
    ET_EXEC,
    R_X86_64_COPY,
    R_X86_64_GLOB_DAT,
    R_X86_64_RELATIVE,
    DynamicData,
    ElfData,
    ElfError,
    find_section_header,
    read_elf,
)
from elfstage.formatting import LogLevel, log_message, strerror
from elfstage.loader_lib import (
    LoaderError,
    RuntimeGotEntry,
    RuntimeObject,
    RuntimeRelocation,
    RuntimeSymbol,
    find_got_entry,
    find_runtime_symbol,
    find_symbols,
    get_function_relocations,
    get_memory_regions,
    get_runtime_got,
)
from elfstage.memory_map import reserve_region_space, reserved_length

__all__ = [
    "LinkedImage",
    "link_image",
    "resolve_function",
    "main",
    "DEFAULT_LOAD_BASE",
    "DEFAULT_CALLBACK_ADDRESS",
    "DEFAULT_OFFSET_TABLE_ADDRESS",
]

DEFAULT_LOAD_BASE = 0x7F0000000000
"""Where the command places the first relocatable object."""

DEFAULT_CALLBACK_ADDRESS = 0x7D7D0000
"""Nominal address of the lazy-binding callback used by the command."""

DEFAULT_OFFSET_TABLE_ADDRESS = 0x7D7E0000
"""Nominal address of the table of per-object load offsets."""

_WORD_MASK = (1 << 64) - 1
_WORD_SIZE = 8
_PAGE_SIZE = 0x1000
_OFFSET_TABLE_SLOTS = 100
_SUPPORTED_VARIABLE_TYPES = (R_X86_64_COPY, R_X86_64_GLOB_DAT, R_X86_64_RELATIVE)


@dataclass
class LinkedImage:
    """An executable and its libraries, placed and linked."""

    executable: RuntimeObject
    entry: int
    offset_table_address: int
    libraries: list[RuntimeObject] = field(default_factory=list)
    runtime_symbols: list[RuntimeSymbol] = field(default_factory=list)
    var_relocations: list[RuntimeRelocation] = field(default_factory=list)
    got_entries: list[RuntimeGotEntry] = field(default_factory=list)
    writes: dict[int, int] = field(default_factory=dict)
    """Memory words to store, keyed by address."""
    copies: list[tuple[int, int, int]] = field(default_factory=list)
    """``(destination, source, size)`` copies for copy relocations."""
    zeroed: list[tuple[int, int]] = field(default_factory=list)
    """``(address, length)`` ranges cleared before running."""


def _bss(elf: ElfData, base: int) -> tuple[int | None, int]:
    header = find_section_header(elf.section_headers, ".bss")
    if header is None:
        return None, 0
    return base + header.addr, header.size


def _place_library(name: str, elf: ElfData, base: int) -> RuntimeObject:
    dyn = elf.dynamic_data
    if dyn is None:
        raise LoaderError(f"Expected shared library '{name}' to have dynamic data")
    regions = reserve_region_space(get_memory_regions(elf.program_headers), base)
    log_message(LogLevel.INFO, "Mapping '%s' memory regions at %zx\n", name, base)
    bss, bss_len = _bss(elf, base)
    return RuntimeObject(
        name=name,
        dynamic_offset=base,
        elf_data=elf,
        memory_regions=regions,
        runtime_func_relocations=get_function_relocations(dyn, base),
        bss=bss,
        bss_len=bss_len,
        runtime_symbols=find_symbols(dyn, base),
    )


def _variable_relocations(
    dyn: DynamicData, base: int, libraries: Sequence[RuntimeObject]
) -> list[RuntimeRelocation]:
    relocations = [
        RuntimeRelocation(
            offset=base + reloc.offset,
            type=reloc.type,
            name=reloc.symbol.name,
            value=base + reloc.symbol.value,
            addend=reloc.addend,
            lib_dyn_offset=base,
        )
        for reloc in dyn.var_relocations
    ]
    for lib in libraries:
        lib_base = lib.dynamic_offset
        lib_dyn = lib.elf_data.dynamic_data
        assert lib_dyn is not None
        relocations.extend(
            RuntimeRelocation(
                offset=lib_base + reloc.offset,
                type=reloc.type,
                name=reloc.symbol.name,
                value=0 if reloc.symbol.value == 0 else lib_base + reloc.symbol.value,
                addend=reloc.addend,
                lib_dyn_offset=lib_base,
            )
            for reloc in lib_dyn.var_relocations
        )
    return relocations


def _link_dynamic(
    image: LinkedImage,
    dyn: DynamicData,
    libraries: Sequence[tuple[str, ElfData, int]],
    callback_address: int,
) -> None:
    if len(libraries) + 1 > _OFFSET_TABLE_SLOTS:
        raise LoaderError(
            f"{len(libraries)} libraries exceed the offset table of "
            f"{_OFFSET_TABLE_SLOTS} slots"
        )
    base = image.executable.dynamic_offset

    image.libraries = [
        _place_library(name, elf, lib_base) for name, elf, lib_base in libraries
    ]
    for lib in image.libraries:
        image.runtime_symbols.extend(lib.runtime_symbols)

    relocations = _variable_relocations(dyn, base, image.libraries)
    for reloc in relocations:
        if reloc.type not in _SUPPORTED_VARIABLE_TYPES:
            raise LoaderError(
                f"Unsupported 64 bit variable relocation type {reloc.type}"
            )
        if reloc.type == R_X86_64_RELATIVE:
            reloc.value += reloc.addend
            continue
        symbol = find_runtime_symbol(reloc.name, image.runtime_symbols, 0)
        if symbol is None:
            raise LoaderError(f"runtime variable relocation '{reloc.name}' not found")
        reloc.value = symbol.value
    image.var_relocations = relocations

    table = image.offset_table_address
    got = get_runtime_got(dyn, base, callback_address, table)
    for slot, lib in enumerate(image.libraries, start=1):
        lib_dyn = lib.elf_data.dynamic_data
        assert lib_dyn is not None
        got.extend(
            get_runtime_got(
                lib_dyn, lib.dynamic_offset, callback_address, table + slot * _WORD_SIZE
            )
        )

    for reloc in relocations:
        if reloc.type != R_X86_64_GLOB_DAT:
            continue
        entry = find_got_entry(got, reloc.offset)
        if entry is None:
            raise LoaderError(f"Variable got entry {reloc.offset:x} not found")
        entry.value = reloc.value
    image.got_entries = got

    for lib in image.libraries:
        if lib.bss is not None:
            log_message(LogLevel.INFO, "initializing '%s' .bss\n", lib.name)
            image.zeroed.append((lib.bss, lib.bss_len))

    log_message(LogLevel.INFO, "GOT entries: %zd\n", len(got))
    for entry in got:
        image.writes[entry.index] = entry.value & _WORD_MASK
        if entry.lib_dynamic_offset > 0:
            image.writes[entry.value] = entry.lib_dynamic_offset & _WORD_MASK

    for reloc in relocations:
        if reloc.type == R_X86_64_RELATIVE:
            image.writes[reloc.offset] = reloc.value & _WORD_MASK
        elif reloc.type == R_X86_64_COPY:
            symbol = find_runtime_symbol(reloc.name, image.runtime_symbols, reloc.offset)
            if symbol is None:
                raise LoaderError(f"runtime symbol '{reloc.name}' not found")
            image.copies.append((reloc.offset, symbol.value, symbol.size))


def link_image(
    executable: tuple[str, ElfData],
    libraries: Sequence[tuple[str, ElfData, int]],
    reserved_base: int,
    callback_address: int,
    offset_table_address: int,
) -> LinkedImage:
    """Place and link an executable with its libraries.

    ``executable`` is a ``(name, elf)`` pair; it is moved to
    ``reserved_base`` only if it is position independent. ``libraries`` are
    ``(name, elf, base)`` triples. Lazy-binding GOT slots receive
    ``callback_address``; each object's load offset is kept in a word of the
    table at ``offset_table_address``, the executable's first.
    """
    name, elf = executable
    if elf.type != ET_EXEC and not elf.is_pie:
        raise LoaderError(f"Program type '{elf.type}' not supported")

    base = reserved_base if elf.is_pie else 0
    regions = get_memory_regions(elf.program_headers)
    if elf.is_pie:
        regions = reserve_region_space(regions, base)
    bss, bss_len = _bss(elf, base)

    exe = RuntimeObject(
        name=name,
        dynamic_offset=base,
        elf_data=elf,
        memory_regions=regions,
        bss=bss,
        bss_len=bss_len,
    )
    image = LinkedImage(
        executable=exe,
        entry=base + elf.entry,
        offset_table_address=offset_table_address,
    )
    if bss is not None:
        image.zeroed.append((bss, bss_len))

    dyn = elf.dynamic_data
    if dyn is None:
        return image

    exe.runtime_func_relocations = get_function_relocations(dyn, base)
    exe.runtime_symbols = find_symbols(dyn, 0)
    image.runtime_symbols = list(exe.runtime_symbols)
    _link_dynamic(image, dyn, libraries, callback_address)
    return image


def resolve_function(image: LinkedImage, lib_dyn_offset: int, relocation_index: int) -> int:
    """Bind a lazily linked function and return its address.

    ``lib_dyn_offset`` is the load offset of the object whose PLT asked, and
    ``relocation_index`` the index of its function relocation. The GOT slot
    is updated in ``image.writes``.
    """
    relocation: RuntimeRelocation | None = None
    if lib_dyn_offset == image.executable.dynamic_offset:
        relocations = image.executable.runtime_func_relocations
        if not 0 <= relocation_index < len(relocations):
            raise LoaderError(
                f"relocation index {relocation_index} is not less than {len(relocations)}"
            )
        relocation = relocations[relocation_index]
    else:
        for lib in image.libraries:
            if lib.dynamic_offset != lib_dyn_offset:
                continue
            relocations = lib.runtime_func_relocations
            if not 0 <= relocation_index < len(relocations):
                raise LoaderError(
                    f"relocation index {relocation_index} is not less than "
                    f"{len(relocations)}"
                )
            relocation = relocations[relocation_index]
    if relocation is None:
        raise LoaderError(f"no object loaded at offset {lib_dyn_offset:x}")

    symbol = find_runtime_symbol(relocation.name, image.runtime_symbols, 0)
    if symbol is None:
        raise LoaderError(f"couldn't find runtime symbol '{relocation.name}'")
    image.writes[relocation.offset] = symbol.value
    log_message(LogLevel.TRACE, "%zx: %s\n", symbol.value, relocation.name)
    return symbol.value


def _page_round(length: int) -> int:
    return max(-(-length // _PAGE_SIZE) * _PAGE_SIZE, _PAGE_SIZE)


def _load(filename: str) -> LinkedImage:
    try:
        elf = read_elf(filename)
    except OSError as exc:
        code = exc.errno or 0
        raise LoaderError(f"file error {code} for {filename}, {strerror(code)}") from exc
    if elf.type != ET_EXEC and not elf.is_pie:
        raise LoaderError(f"Program type '{elf.type}' not supported")

    next_base = DEFAULT_LOAD_BASE
    reserved_base = 0
    if elf.is_pie:
        reserved_base = next_base
        next_base += _page_round(reserved_length(get_memory_regions(elf.program_headers)))

    libraries: list[tuple[str, ElfData, int]] = []
    if elf.dynamic_data is not None:
        for lib_name in elf.dynamic_data.shared_libraries:
            try:
                lib_elf = read_elf(lib_name)
            except OSError as exc:
                raise LoaderError(f"failed opening shared lib '{lib_name}'") from exc
            libraries.append((lib_name, lib_elf, next_base))
            next_base += _page_round(
                reserved_length(get_memory_regions(lib_elf.program_headers))
            )

    return link_image(
        (filename, elf),
        libraries,
        reserved_base,
        DEFAULT_CALLBACK_ADDRESS,
        DEFAULT_OFFSET_TABLE_ADDRESS,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Lay out and link an executable, then report the resulting image."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Filename required", file=sys.stderr)
        return 1

    filename = args[0]
    try:
        image = _load(filename)
    except (LoaderError, ElfError) as exc:
        print(exc, file=sys.stderr)
        return 1

    exe = image.executable
    print(f"Mapping '{filename}' memory regions at {exe.dynamic_offset:x}")
    for region in exe.memory_regions:
        print(
            f"region {region.start:x}:{region.end:x} offset {region.file_offset:x} "
            f"permissions {region.permissions}"
        )
    for lib in image.libraries:
        print(f"library '{lib.name}' at {lib.dynamic_offset:x}")
    print(f"GOT entries: {len(image.got_entries)}")
    print(f"inferior_entry: {image.entry:x}")
    return 0