from decimal import Decimal

import pytest

from tally.utils.helpers import loads_decimal, parse_amount


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("$8.97", Decimal("8.97")),
        ("12,99", Decimal("12.99")),
        ("0,45 €", Decimal("0.45")),
        ("1,234.56", Decimal("1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("1,234", Decimal("1234")),
        ("42", Decimal("42")),
    ],
)
def test_parse_amount_formats(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_amount_rejects_non_numeric():
    assert parse_amount("") is None
    assert parse_amount(None) is None
    assert parse_amount("n/a") is None


def test_loads_decimal_keeps_money_exact():
    assert loads_decimal('{"total": 0.1}')["total"] == Decimal("0.1")
