import pytest

from bonzid.util import clamp, parse_leading_int


@pytest.mark.parametrize(
    "text, expected",
    [
        ("12", 12),
        ("  -7", -7),
        ("+3", 3),
        ("17abc", 17),
        ("0", 0),
        ("0x1f", 31),
        ("0X1F", 31),
        ("-0x10", -16),
        ("0x1fzz", 31),
    ],
)
def test_parse_leading_int(text, expected) -> None:
    assert parse_leading_int(text) == expected


@pytest.mark.parametrize("value", ["", "abc", "0x", "0xg", "-", None, True, 1.5])
def test_parse_leading_int_rejects(value) -> None:
    assert parse_leading_int(value) is None


def test_parse_leading_int_passes_ints_through() -> None:
    assert parse_leading_int(42) == 42


def test_clamp() -> None:
    assert clamp(5, 10, 20) == 10
    assert clamp(25, 10, 20) == 20
    assert clamp(15, 10, 20) == 15
