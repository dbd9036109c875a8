from decimal import Decimal

from tally.models.schemas import LineItem
from tally.services.reconciliation import combine_confidence, compute_total, total_discrepancy, totals_agree


def _items(*rows):
    return [LineItem(name=n, unit_price=Decimal(p), quantity=q) for n, p, q in rows]


def test_compute_total_milk_and_bread():
    items = _items(("Milk", "3.99", 1), ("Bread", "2.49", 2))
    total = compute_total(items)
    assert total == Decimal("8.97")
    assert total_discrepancy(Decimal("8.97"), total) == Decimal("0")


def test_compute_total_empty_is_zero():
    assert compute_total([]) == Decimal("0")


def test_compute_total_is_exact_over_many_additions():
    items = _items(*[("Gum", "0.10", 1)] * 1000)
    assert compute_total(items) == Decimal("100.00")


def test_untemised_tax_is_reported_as_discrepancy():
    items = _items(("Groceries", "25.53", 1))
    assert total_discrepancy(Decimal("27.32"), compute_total(items)) == Decimal("1.79")


def test_discrepancy_absent_without_declared_total():
    assert total_discrepancy(None, Decimal("4.00")) is None


def test_totals_agree_within_five_percent():
    assert totals_agree(Decimal("100.00"), Decimal("96.00"))
    assert not totals_agree(Decimal("100.00"), Decimal("94.00"))
    assert not totals_agree(None, Decimal("1.00"))
    assert totals_agree(Decimal("0"), Decimal("0"))


def test_combine_confidence_skips_stages_that_did_not_run():
    assert combine_confidence([None, 0.8]) == 0.8
    assert combine_confidence([0.0, 0.8]) == 0.4


def test_combine_confidence_empty_defaults_to_zero():
    assert combine_confidence([]) == 0.0
    assert combine_confidence([None, None]) == 0.0


def test_combine_confidence_is_clamped():
    for values in ([1.5], [-0.5], [2.0, 3.0], [0.2, None, 0.9]):
        assert 0.0 <= combine_confidence(values) <= 1.0
