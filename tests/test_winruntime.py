import pytest

from elfstage.winruntime import (
    MAX_ARGUMENTS,
    PAGE_EXECUTE_READWRITE,
    PAGE_SIZE,
    StandardHandle,
    fd_to_handle,
    handle_to_fd,
    protection_from_windows,
    query_region,
    split_command_line,
)


def test_split_simple():
    assert split_command_line("prog.exe one two") == ["prog.exe", "one", "two"]


def test_split_single_argument():
    assert split_command_line("prog.exe") == ["prog.exe"]


def test_split_keeps_empty_arguments():
    assert split_command_line("a  b") == ["a", "", "b"]


def test_split_trailing_space():
    assert split_command_line("a ") == ["a", ""]


def test_split_join_round_trip():
    line = "x.exe --flag value  end"
    assert " ".join(split_command_line(line)) == line


def test_split_at_limit():
    line = " ".join(["a"] * MAX_ARGUMENTS)
    assert len(split_command_line(line)) == MAX_ARGUMENTS


def test_split_over_limit():
    line = " ".join(["a"] * (MAX_ARGUMENTS + 1))
    with pytest.raises(ValueError):
        split_command_line(line)


def test_handle_to_fd_values():
    assert handle_to_fd(-11) == 1
    assert handle_to_fd(-12) == 2


@pytest.mark.parametrize("handle", list(StandardHandle))
def test_handle_round_trip(handle):
    assert fd_to_handle(handle_to_fd(handle)) == handle


@pytest.mark.parametrize("handle", [-1, 0, -10, 5])
def test_handle_to_fd_rejects(handle):
    with pytest.raises(ValueError):
        handle_to_fd(handle)


@pytest.mark.parametrize("fd", [0, 3, -1])
def test_fd_to_handle_rejects(fd):
    with pytest.raises(ValueError):
        fd_to_handle(fd)


def test_protection_rwx():
    assert protection_from_windows(PAGE_EXECUTE_READWRITE) == 7


@pytest.mark.parametrize("value", [0x01, 0x04, 0x20])
def test_protection_unsupported(value):
    with pytest.raises(ValueError):
        protection_from_windows(value)


def test_query_region_aligned():
    info = query_region(PAGE_SIZE * 3)
    assert info.base_address == PAGE_SIZE * 3
    assert info.region_size == 1
    assert info.protect == 0


def test_query_region_unaligned():
    with pytest.raises(ValueError):
        query_region(PAGE_SIZE + 8)