import pytest

from walletwatch.utils.units import format_units, negate, parse_units, round_display


@pytest.mark.parametrize("raw,decimals,expected", [
    (1_500_000_000_000_000_000, 18, "1.5"),
    (2 * 10 ** 18, 18, "2.0"),
    (0, 18, "0.0"),
    (1, 18, "0.000000000000000001"),
    (-1_500_000_000_000_000_000, 18, "-1.5"),
    (1_234_567, 6, "1.234567"),
    (5, 0, "5.0"),
])
def test_format_units(raw, decimals, expected):
    assert format_units(raw, decimals) == expected


def test_parse_units():
    assert parse_units("1.5") == 1_500_000_000_000_000_000
    assert parse_units("1000", 6) == 1_000_000_000
    assert parse_units(0) == 0


def test_parse_units_rejects_excess_precision():
    with pytest.raises(ValueError):
        parse_units("0.1234567", 6)


def test_parse_units_rejects_garbage():
    with pytest.raises(ValueError):
        parse_units("abc")


def test_negate():
    assert negate("1.5") == "-1.5"
    assert negate("-1.5") == "1.5"
    assert negate("0.0") == "0.0"


def test_round_display():
    assert round_display("1000.123456") == "1000.1235"
    assert round_display("1000") == "1000.0"
    assert round_display("0.5") == "0.5"
