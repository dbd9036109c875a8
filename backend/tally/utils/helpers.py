"""Miscellaneous helper functions."""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def parse_amount(value: str | None) -> Optional[Decimal]:
    """Parse a monetary amount from a receipt string into a ``Decimal``.

    Accepts currency symbols and both US (``"1,234.56"``) and European
    (``"1.234,56"``, ``"12,99"``) separators. The last separator is the
    decimal point unless exactly three digits follow it, in which case it
    groups thousands (``"1,234"``). Returns ``None`` if nothing numeric
    remains.
    """
    if not value:
        return None
    cleaned = value.replace("$", "").replace("€", "").replace(" ", "").strip()
    last = max(cleaned.rfind(","), cleaned.rfind("."))
    if last >= 0:
        whole = cleaned[:last].replace(",", "").replace(".", "")
        frac = cleaned[last + 1:]
        cleaned = whole + frac if len(frac) == 3 else f"{whole}.{frac}"
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def loads_decimal(raw: str) -> Any:
    """Decode JSON keeping every non-integer number as ``Decimal``."""
    return json.loads(raw, parse_float=Decimal)
