import pytest

from elfstage.memory_map import (
    LOADER_BUFFER_LEN,
    MAP_ANONYMOUS,
    MAP_FIXED,
    MAP_FIXED_NOREPLACE,
    MAP_PRIVATE,
    POINTER_SIZE,
    PROT_EXEC,
    PROT_READ,
    PROT_WRITE,
    Arena,
    MemoryRegion,
    map_flags,
    reserve_region_space,
    reserved_length,
)


@pytest.mark.parametrize(
    "permissions, expected",
    [
        (0, 0),
        (4, PROT_READ),
        (5, PROT_READ | PROT_EXEC),
        (6, PROT_READ | PROT_WRITE),
        (7, PROT_READ | PROT_WRITE | PROT_EXEC),
        (1, PROT_EXEC),
    ],
)
def test_protection(permissions, expected):
    region = MemoryRegion(start=0, end=0x1000, permissions=permissions)
    assert region.protection() == expected


def test_arena_default_capacity():
    assert Arena().capacity == LOADER_BUFFER_LEN


def test_arena_offsets_aligned():
    arena = Arena(4096)
    offsets = [arena.allocate(n) for n in (1, 3, 8, 13, 0, 7)]
    assert offsets[0] == 0
    assert all(offset % POINTER_SIZE == 0 for offset in offsets)
    assert offsets == sorted(offsets)


def test_arena_rounds_up():
    arena = Arena(64)
    arena.allocate(1)
    assert arena.allocate(1) == POINTER_SIZE


def test_arena_exact_fill():
    arena = Arena(32)
    assert arena.allocate(32) == 0
    with pytest.raises(MemoryError):
        arena.allocate(1)


def test_arena_overflow():
    arena = Arena(16)
    with pytest.raises(MemoryError):
        arena.allocate(17)


def test_arena_negative():
    with pytest.raises(ValueError):
        Arena(16).allocate(-1)


def test_reserved_length():
    regions = [MemoryRegion(0, 0x1000), MemoryRegion(0x1000, 0x3000)]
    assert reserved_length(regions) == 0x3000


def test_reserved_length_empty():
    assert reserved_length([]) == 0


def test_reserve_region_space_shifts():
    regions = [
        MemoryRegion(0, 0x1000, True, 0, 0, 5),
        MemoryRegion(0x2000, 0x4000, False, 0, 0, 6),
    ]
    base = 0x7F0000000000
    moved = reserve_region_space(regions, base)
    assert [r.start - base for r in moved] == [r.start for r in regions]
    assert [r.end - base for r in moved] == [r.end for r in regions]
    assert [r.permissions for r in moved] == [5, 6]
    assert reserved_length(moved) == reserved_length(regions)
    assert regions[0].start == 0


def test_map_flags_file_backed_new_kernel():
    region = MemoryRegion(0, 0x1000, is_direct_file_map=True)
    assert map_flags(region, "5.15.0") == MAP_PRIVATE | MAP_FIXED | MAP_FIXED_NOREPLACE


def test_map_flags_anonymous_old_kernel():
    region = MemoryRegion(0, 0x1000, is_direct_file_map=False)
    assert map_flags(region, "4.19.0") == MAP_PRIVATE | MAP_FIXED | MAP_ANONYMOUS


def test_map_flags_empty_release():
    region = MemoryRegion(0, 0x1000, is_direct_file_map=True)
    assert map_flags(region, "") == MAP_PRIVATE | MAP_FIXED


def test_map_flags_newer_kernel():
    region = MemoryRegion(0, 0x1000)
    assert map_flags(region, "6.1.0") == (
        MAP_PRIVATE | MAP_FIXED | MAP_ANONYMOUS | MAP_FIXED_NOREPLACE
    )