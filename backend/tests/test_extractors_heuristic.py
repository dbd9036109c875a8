from decimal import Decimal

import pytest

from tally.models.schemas import RawImage
from tally.services.extractors.heuristic import (
    HeuristicExtractor,
    detect_store,
    extract_date_text,
    extract_items,
    extract_total,
    parse_item_line,
)
from tally.utils.image_processing import normalize_image

from fakes import make_image_bytes

RECEIPT = """WALMART SUPERCENTER
Store #1234
Date: 10/01/2026 14:32
2 x Bread 2.49
Milk $3.99
SUBTOTAL 8.97
TAX 0.00
TOTAL $8.97
VISA 8.97
Thank you for shopping"""


def _image():
    return normalize_image(RawImage(data=make_image_bytes(), mime_type="image/png"))


def test_detects_known_store_in_header():
    assert detect_store(RECEIPT) == "Walmart"
    assert detect_store("Joe's Diner\nCoffee 2.00") is None


def test_store_only_matched_in_first_ten_lines():
    text = "\n".join(["Corner Shop"] + ["line"] * 10 + ["Costco"])
    assert detect_store(text) is None


def test_extracts_items_with_quantity_and_skips_summary_lines():
    items = [item for item, _ in extract_items(RECEIPT)]
    assert [(i.name, i.unit_price, i.quantity) for i in items] == [
        ("Bread", Decimal("2.49"), 2),
        ("Milk", Decimal("3.99"), 1),
    ]


def test_total_ignores_subtotal_and_scans_from_bottom():
    assert extract_total(RECEIPT) == Decimal("8.97")
    assert extract_total("Subtotal 5.00\nItem 5.00") is None


def test_date_prefers_lines_with_indicator():
    text = "Order 12/12/2025\nDate: 10/01/2026"
    assert extract_date_text(text) == "10/01/2026"


def test_european_price_format():
    item, _ = parse_item_line("Semmel 0,45 €")
    assert item.name == "Semmel"
    assert item.unit_price == Decimal("0.45")


def test_line_without_price_is_not_an_item():
    assert parse_item_line("Have a nice day") is None


def test_currency_symbol_raises_line_confidence():
    _, with_symbol = parse_item_line("Coffee Beans $12.99")
    _, without_symbol = parse_item_line("Coffee Beans 12.99")
    assert with_symbol > without_symbol


@pytest.mark.asyncio
async def test_parse_builds_result_from_text():
    result = await HeuristicExtractor().parse(_image(), RECEIPT)
    assert result.provider == "heuristic"
    assert result.merchant_name == "Walmart"
    assert result.purchase_date == "10/01/2026"
    assert result.declared_total == Decimal("8.97")
    assert len(result.line_items) == 2
    assert 0.0 < result.provider_confidence <= 1.0


@pytest.mark.asyncio
async def test_parse_empty_text_is_empty_result():
    result = await HeuristicExtractor().parse(_image(), "")
    assert result.is_empty
    assert result.provider_confidence == 0.0
    assert result.line_items == ()


def test_european_total_with_thousands_separator():
    assert extract_total("Zwischensumme 1.200,00\nSUMME 1.234,56") == Decimal("1234.56")
    assert extract_total("TOTAL $1,234.56") == Decimal("1234.56")


def test_european_item_price_with_thousands_separator():
    item, _ = parse_item_line("Waschmaschine 1.299,00 €")
    assert item.name == "Waschmaschine"
    assert item.unit_price == Decimal("1299.00")
