import pytest

from elfstage.formatting import (
    LOG_LEVEL,
    Errno,
    LogLevel,
    format_printf,
    int_pow,
    log_message,
    strerror,
)


def test_plain_text_passes_through():
    assert format_printf("hello world\n") == "hello world\n"


def test_empty_format():
    assert format_printf("") == ""


def test_string_conversion():
    assert format_printf("name: %s!", "loader") == "name: loader!"


def test_null_string_prints_placeholder():
    assert format_printf("%s", None) == "(null)"


def test_char_conversion_from_int_and_str():
    assert format_printf("[%c]", ord("q")) == "[q]"
    assert format_printf("[%c]", "z") == "[z]"


@pytest.mark.parametrize("value", [0, 1, 15, 16, 0xDEADBEEF, 0x7D7D0000])
def test_hex_round_trip(value):
    out = format_printf("%x", value)
    assert int(out, 16) == value
    assert out == out.lower()


def test_hex_has_no_leading_zeros():
    out = format_printf("%zx", 0x1000)
    assert out == "1000"


def test_zero_prints_single_digit():
    assert format_printf("%x", 0) == "0"
    assert format_printf("%d", 0) == "0"


def test_pointer_uses_hex():
    assert format_printf("%p", 0xABC) == "abc"


@pytest.mark.parametrize("value", [1, 9, 10, 42, 123456, 4294967295])
def test_decimal_round_trip(value):
    assert int(format_printf("%d", value)) == value


def test_large_values_truncated_without_z():
    big = (1 << 40) + 5
    assert int(format_printf("%d", big)) == 5
    assert int(format_printf("%zd", big)) == big
    assert int(format_printf("%x", big), 16) == 5
    assert int(format_printf("%zx", big), 16) == big


def test_negative_printed_unsigned():
    assert int(format_printf("%d", -1)) == (1 << 32) - 1
    assert int(format_printf("%zx", -1), 16) == (1 << 64) - 1


def test_unknown_conversion_consumes_no_argument():
    assert format_printf("%q%s", "x") == "<unknown>x"


def test_percent_percent_is_unknown():
    assert format_printf("100%%") == "100<unknown>"


def test_trailing_percent_prints_nothing():
    assert format_printf("abc%") == "abc"


def test_mixed_format():
    out = format_printf(
        "mapping address: %zx:%zx, permissions: %zd\n", 0x1000, 0x2000, 5
    )
    assert out == "mapping address: 1000:2000, permissions: 5\n"


def test_missing_argument_raises():
    with pytest.raises(ValueError):
        format_printf("%s and %s", "one")


@pytest.mark.parametrize(
    "err, message",
    [
        (Errno.EPERM, "Operation not permitted"),
        (Errno.ENOENT, "No such file or directory"),
        (Errno.EAGAIN, "Resource temporarily unavailable"),
        (Errno.EACCES, "Permission denied"),
        (Errno.EEXIST, "File exists"),
        (Errno.EINVAL, "Invalid argument"),
        (Errno.ERANGE, "Math result not representable"),
    ],
)
def test_strerror_known(err, message):
    assert strerror(err) == message
    assert strerror(int(err)) == message


@pytest.mark.parametrize("err", [0, 3, 999, -2])
def test_strerror_unknown(err):
    assert strerror(err) == "Unknown"


def test_strerror_accepts_system_numbers():
    assert strerror(2) == "No such file or directory"
    assert strerror(13) == "Permission denied"


def test_int_pow_matches_builtin_for_whole_exponents():
    for base in (2, 10, 16):
        for exp in range(0, 8):
            assert int_pow(base, exp) == base**exp


def test_int_pow_truncates_exponent():
    assert int_pow(3, 2.9) == 9


def test_int_pow_non_positive_exponent_is_one():
    assert int_pow(7, 0) == 1
    assert int_pow(7, -3) == 1


def test_log_message_threshold_per_level(capsys):
    written = {level: log_message(level, "x\n") for level in LogLevel}
    assert written == {
        LogLevel.TRACE: False,
        LogLevel.DEBUG: False,
        LogLevel.INFO: False,
        LogLevel.WARNING: True,
        LogLevel.ERROR: True,
        LogLevel.CRITICAL: True,
    }
    assert capsys.readouterr().err == "WARNING: x\nERROR: x\nCRITICAL: x\n"


def test_log_message_written_at_or_above_threshold(capsys):
    assert log_message(LogLevel.ERROR, "failed %s\n", "x") is True
    assert capsys.readouterr().err == "ERROR: failed x\n"


def test_log_message_at_threshold(capsys):
    assert log_message(LOG_LEVEL, "warn\n") is True
    assert capsys.readouterr().err == f"{LOG_LEVEL.name}: warn\n"


def test_log_message_below_threshold_dropped(capsys):
    assert log_message(LogLevel.DEBUG, "noise %d\n", 1) is False
    assert capsys.readouterr().err == ""


def test_log_message_goes_to_stderr(capsys):
    assert log_message(LogLevel.CRITICAL, "boom\n") is True
    captured = capsys.readouterr()
    assert captured.err == "CRITICAL: boom\n"
    assert captured.out == ""


def test_log_message_rejects_bad_level():
    with pytest.raises(ValueError):
        log_message(99, "x")