from decimal import Decimal

import pytest

from currency import format_number, format_peso, parse_amount


@pytest.mark.parametrize(
    "raw, cents",
    [
        ("1,234.50", 123_450),
        ("₱ 500", 50_000),
        ("PHP 99.99", 9_999),
        ("0.005", 1),
        (42, 4_200),
        (Decimal("12.3"), 1_230),
    ],
)
def test_parse_amount(raw, cents: int) -> None:
    assert parse_amount(raw) == cents


@pytest.mark.parametrize("raw", ["", "abc", "1.2.3", "NaN", "Infinity"])
def test_parse_amount_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_format_peso() -> None:
    assert format_peso(123_450) == "₱1,234.50"
    assert format_peso(0) == "₱0.00"
    assert format_peso(-2_500) == "-₱25.00"


def test_format_number_drops_zero_centavos() -> None:
    assert format_number(500_000) == "5,000"
    assert format_number(123_450) == "1,234.50"
