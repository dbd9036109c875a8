"""Arithmetic reconciliation and confidence combination.

All money arithmetic is exact ``Decimal``. A mismatch between the
declared total and the sum of line items is reported as a discrepancy
on the receipt; it is never raised as an error.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from tally.models.schemas import LineItem

DEFAULT_TOLERANCE = Decimal("0.05")


def compute_total(items: Iterable[LineItem]) -> Decimal:
    """Sum of ``unit_price * quantity``; ``0`` when there are no items."""
    return sum((item.unit_price * item.quantity for item in items), Decimal("0"))


def total_discrepancy(declared: Optional[Decimal], computed: Decimal) -> Optional[Decimal]:
    """Absolute difference between declared and computed totals, or None if nothing was declared."""
    if declared is None:
        return None
    return abs(declared - computed)


def totals_agree(declared: Optional[Decimal], computed: Decimal, tolerance: Decimal = DEFAULT_TOLERANCE) -> bool:
    """True when the computed total is within ``tolerance`` (relative) of the declared one.

    Receipts often carry tax or discounts that are not itemised, hence a
    relative rather than exact comparison.
    """
    if declared is None:
        return False
    if declared == 0:
        return computed == 0
    return abs(declared - computed) / declared <= tolerance


def combine_confidence(values: Iterable[Optional[float]]) -> float:
    """Mean of the confidences actually produced, clamped to ``[0, 1]``.

    ``None`` marks a stage that did not run and is left out. An empty
    input yields ``0.0``.
    """
    produced = [float(v) for v in values if v is not None]
    if not produced:
        return 0.0
    return max(0.0, min(1.0, sum(produced) / len(produced)))
