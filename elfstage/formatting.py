"""Minimal printf-style formatting, error strings and levelled logging."""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import Any

__all__ = [
    "Errno",
    "LogLevel",
    "LOG_LEVEL",
    "format_printf",
    "strerror",
    "int_pow",
    "log_message",
]

_HEX_DIGITS = "0123456789abcdef"
_WORD_MASK = (1 << 64) - 1
_HALF_WORD_MASK = (1 << 32) - 1


class Errno(IntEnum):
    """Error numbers the runtime knows how to describe."""

    EPERM = 1
    ENOENT = 2
    EAGAIN = 11
    EACCES = 13
    EEXIST = 17
    EINVAL = 22
    ERANGE = 34


_ERROR_MESSAGES = {
    Errno.EPERM: "Operation not permitted",
    Errno.ENOENT: "No such file or directory",
    Errno.EAGAIN: "Resource temporarily unavailable",
    Errno.EACCES: "Permission denied",
    Errno.EEXIST: "File exists",
    Errno.EINVAL: "Invalid argument",
    Errno.ERANGE: "Math result not representable",
}


class LogLevel(IntEnum):
    """Severity of a log message; higher is more severe."""

    TRACE = 1
    DEBUG = 2
    INFO = 3
    WARNING = 4
    ERROR = 5
    CRITICAL = 6


LOG_LEVEL = LogLevel.WARNING
"""Messages below this level are dropped."""


def strerror(err_number: int) -> str:
    """Describe an error number, or return ``"Unknown"``."""
    try:
        return _ERROR_MESSAGES[Errno(err_number)]
    except ValueError:
        return "Unknown"


def int_pow(x: float, y: float) -> float:
    """Raise ``x`` to the whole part of ``y`` by repeated multiplication.

    A non-positive exponent yields 1.
    """
    product = 1.0
    for _ in range(max(int(y), 0)):
        product *= x
    return product


def _as_unsigned(value: Any, large: bool) -> int:
    number = int(value)
    return number & (_WORD_MASK if large else _HALF_WORD_MASK)


def _hex(number: int) -> str:
    digits = []
    while True:
        number, digit = divmod(number, 16)
        digits.append(_HEX_DIGITS[digit])
        if number == 0:
            break
    return "".join(reversed(digits))


def _char(value: Any) -> str:
    if isinstance(value, str):
        if not value:
            raise ValueError("%c needs a single character")
        return value[0]
    if isinstance(value, (bytes, bytearray)):
        if not value:
            raise ValueError("%c needs a single character")
        return chr(value[0])
    return chr(int(value) & 0xFF)


def _tokens(fmt: str):
    """Yield ``(literal, None, False)`` and ``(None, conversion, large)`` items."""
    last = 0
    i = 0
    length = len(fmt)
    while i < length:
        if fmt[i] != "%":
            i += 1
            continue
        yield fmt[last:i], None, False
        i += 1
        large = False
        if i < length and fmt[i] == "z":
            large = True
            i += 1
        if i >= length:
            # A dangling conversion prints nothing and ends the format.
            return
        yield None, fmt[i], large
        i += 1
        last = i
    yield fmt[last:], None, False


def format_printf(fmt: str, *args: Any) -> str:
    """Render ``fmt`` with the runtime's small printf dialect.

    Supported conversions are ``%s``, ``%c``, ``%x``, ``%p`` and ``%d``;
    a ``z`` prefix selects 64-bit rather than 32-bit integers. Numbers are
    printed unsigned. Any other conversion prints ``<unknown>`` without
    consuming an argument.
    """
    values = iter(args)

    def next_arg(conversion: str) -> Any:
        try:
            return next(values)
        except StopIteration:
            raise ValueError(
                f"not enough arguments for %{conversion} in {fmt!r}"
            ) from None

    parts: list[str] = []
    for literal, conversion, large in _tokens(fmt):
        if conversion is None:
            parts.append(literal)
        elif conversion == "s":
            value = next_arg(conversion)
            parts.append("(null)" if value is None else str(value))
        elif conversion == "c":
            parts.append(_char(next_arg(conversion)))
        elif conversion in ("x", "p"):
            parts.append(_hex(_as_unsigned(next_arg(conversion), large)))
        elif conversion == "d":
            parts.append(str(_as_unsigned(next_arg(conversion), large)))
        else:
            parts.append("<unknown>")
    return "".join(parts)


def log_message(level: LogLevel | int, fmt: str, *args: Any) -> bool:
    """Write a prefixed message to stderr if ``level`` reaches ``LOG_LEVEL``.

    Returns whether the message was written.
    """
    level = LogLevel(level)
    if level < LOG_LEVEL:
        return False
    sys.stderr.write(f"{level.name}: {format_printf(fmt, *args)}")
    return True