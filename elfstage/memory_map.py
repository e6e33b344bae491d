"""Memory regions for a loaded image, a bump arena and mapping flags."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

__all__ = [
    "PROT_READ",
    "PROT_WRITE",
    "PROT_EXEC",
    "MAP_PRIVATE",
    "MAP_ANONYMOUS",
    "MAP_FIXED",
    "MAP_FIXED_NOREPLACE",
    "LOADER_BUFFER_LEN",
    "POINTER_SIZE",
    "MemoryRegion",
    "Arena",
    "reserved_length",
    "reserve_region_space",
    "map_flags",
]

PROT_READ = 0x1
PROT_WRITE = 0x2
PROT_EXEC = 0x4
MAP_PRIVATE = 0x02
MAP_ANONYMOUS = 0x20
MAP_FIXED = 0x10
MAP_FIXED_NOREPLACE = 0x100000

LOADER_BUFFER_LEN = 0x210000
POINTER_SIZE = 8

# Segment permission bits as stored in program headers.
_SEGMENT_EXEC = 1
_SEGMENT_WRITE = 2
_SEGMENT_READ = 4


@dataclass
class MemoryRegion:
    """An address range to map, optionally backed by a file."""

    start: int
    end: int
    is_direct_file_map: bool = False
    file_offset: int = 0
    file_size: int = 0
    permissions: int = 0

    @property
    def length(self) -> int:
        return self.end - self.start

    def protection(self) -> int:
        """Convert segment permission bits to page protection bits."""
        prot = 0
        if self.permissions & _SEGMENT_READ:
            prot |= PROT_READ
        if self.permissions & _SEGMENT_WRITE:
            prot |= PROT_WRITE
        if self.permissions & _SEGMENT_EXEC:
            prot |= PROT_EXEC
        return prot


class Arena:
    """Bump allocator handing out pointer-aligned offsets into a fixed buffer."""

    def __init__(self, capacity: int = LOADER_BUFFER_LEN) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self.capacity = capacity
        self.used = 0

    def allocate(self, n: int) -> int:
        """Reserve ``n`` bytes and return their offset.

        Sizes are rounded up to the pointer size. Raises ``MemoryError``
        when the buffer would be exceeded.
        """
        if n < 0:
            raise ValueError("size must not be negative")
        remainder = n % POINTER_SIZE
        aligned = n if remainder == 0 else n + POINTER_SIZE - remainder
        if self.used + aligned > self.capacity:
            raise MemoryError("size exceeded")
        offset = self.used
        self.used += aligned
        return offset


def reserved_length(regions: Iterable[MemoryRegion]) -> int:
    """Total number of bytes spanned by the regions."""
    return sum(region.length for region in regions)


def reserve_region_space(
    regions: Iterable[MemoryRegion], base: int
) -> list[MemoryRegion]:
    """Return copies of the regions relocated to start at ``base``."""
    return [
        replace(region, start=region.start + base, end=region.end + base)
        for region in regions
    ]


def map_flags(region: MemoryRegion, kernel_release: str) -> int:
    """Mapping flags for a region on a kernel with the given release string.

    Kernels whose release starts at ``5`` or above also get
    ``MAP_FIXED_NOREPLACE``.
    """
    flags = MAP_PRIVATE | MAP_FIXED
    if not region.is_direct_file_map:
        flags |= MAP_ANONYMOUS
    if kernel_release[:1] >= "5":
        flags |= MAP_FIXED_NOREPLACE
    return flags