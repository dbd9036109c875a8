from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add backend folder to sys.path so `import tally...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from tally.models.schemas import ExtractionResult, LineItem  # noqa: E402

from fakes import make_image_bytes  # noqa: E402


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def milk_and_bread() -> ExtractionResult:
    return ExtractionResult(
        merchant_name="Corner Market",
        purchase_date="2026-10-01",
        line_items=(
            LineItem(name="Milk", unit_price=Decimal("3.99"), quantity=1),
            LineItem(name="Bread", unit_price=Decimal("2.49"), quantity=2),
        ),
        declared_total=Decimal("8.97"),
        provider_confidence=0.9,
        provider="static",
    )
