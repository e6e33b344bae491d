"""Windows-flavoured runtime helpers: handles, command lines and memory queries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "StandardHandle",
    "MemoryBasicInformation",
    "MAX_ARGUMENTS",
    "PAGE_EXECUTE_READWRITE",
    "PAGE_SIZE",
    "STDOUT_FD",
    "STDERR_FD",
    "split_command_line",
    "handle_to_fd",
    "fd_to_handle",
    "protection_from_windows",
    "query_region",
]

MAX_ARGUMENTS = 100
"""Largest number of command-line arguments that can be split out."""

PAGE_EXECUTE_READWRITE = 0x40
PAGE_SIZE = 0x1000

STDOUT_FD = 1
STDERR_FD = 2

_PROT_READ_WRITE_EXEC = 7


class StandardHandle(IntEnum):
    """Pseudo handles for the standard output streams."""

    STDOUT = -11
    STDERR = -12


_HANDLE_TO_FD = {
    StandardHandle.STDOUT: STDOUT_FD,
    StandardHandle.STDERR: STDERR_FD,
}
_FD_TO_HANDLE = {fd: handle for handle, fd in _HANDLE_TO_FD.items()}


@dataclass(frozen=True)
class MemoryBasicInformation:
    """Description of a memory region as reported by a region query."""

    base_address: int
    allocation_base: int = 0
    allocation_protect: int = 0
    partition_id: int = 0
    region_size: int = 0
    state: int = 0
    protect: int = 0
    type: int = 0


def split_command_line(command_line: str) -> list[str]:
    """Split a command line on single spaces into its arguments.

    Consecutive spaces produce empty arguments. More than ``MAX_ARGUMENTS``
    arguments raise ``ValueError``.
    """
    parts = command_line.split(" ")
    if len(parts) > MAX_ARGUMENTS:
        raise ValueError(
            f"command line has {len(parts)} arguments, at most {MAX_ARGUMENTS} allowed"
        )
    return parts


def handle_to_fd(handle: int) -> int:
    """Map a standard pseudo handle to its file descriptor."""
    try:
        return _HANDLE_TO_FD[StandardHandle(handle)]
    except ValueError:
        raise ValueError(f"unsupported handle {handle}") from None


def fd_to_handle(fd: int) -> StandardHandle:
    """Map a standard output file descriptor to its pseudo handle."""
    try:
        return _FD_TO_HANDLE[fd]
    except KeyError:
        raise ValueError(f"unsupported file descriptor {fd}") from None


def protection_from_windows(new_protect: int) -> int:
    """Translate a page protection constant to read/write/exec bits.

    Only ``PAGE_EXECUTE_READWRITE`` is supported.
    """
    if new_protect != PAGE_EXECUTE_READWRITE:
        raise ValueError(f"unsupported protection {new_protect:#x}")
    return _PROT_READ_WRITE_EXEC


def query_region(address: int) -> MemoryBasicInformation:
    """Describe the region at a page-aligned address.

    The description is nominal: it reports the given address as the base
    with a region size of one.
    """
    if address % PAGE_SIZE != 0:
        raise ValueError(f"address {address:#x} is not page aligned")
    return MemoryBasicInformation(base_address=address, region_size=0x01)