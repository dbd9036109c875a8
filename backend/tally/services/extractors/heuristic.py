"""Deterministic line-scanning extractor.

Used when no model provider is configured. Works on OCR text only and
never touches the network: the merchant is matched against a list of
known chains in the receipt header, item lines are recognised by a
trailing price, the declared total is the last line carrying a total
keyword, and the purchase date is the first date-shaped token
(preferring lines that announce a date).

Confidence is the mean of the per-line scores, so a receipt on which
nothing could be recognised scores 0.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import List, Optional, Tuple

from tally.models.schemas import ExtractionResult, LineItem, NormalizedImage
from tally.utils.helpers import parse_amount
from .base import ReceiptExtractor

logger = logging.getLogger(__name__)

HEADER_LINES = 10
MAX_AMOUNT = Decimal("10000")

KNOWN_STORES: List[Tuple[str, List[str]]] = [
    ("Walmart", [r"wal\s*mart", r"neighborhood\s*market"]),
    ("Target", [r"target"]),
    ("Costco", [r"costco"]),
    ("Kroger", [r"kroger"]),
    ("Safeway", [r"safeway"]),
    ("Whole Foods", [r"whole\s*foods", r"\bwfm\b"]),
    ("Trader Joe's", [r"trader\s*joe", r"\btj's"]),
    ("CVS", [r"\bcvs\b"]),
    ("Walgreens", [r"walgreens"]),
    ("Rite Aid", [r"rite\s*aid"]),
    ("Home Depot", [r"home\s*depot"]),
    ("Lowe's", [r"\blowe'?s\b"]),
    ("Best Buy", [r"best\s*buy"]),
    ("Apple Store", [r"apple\s*(store|retail)"]),
    ("Macy's", [r"\bmacy'?s\b"]),
    ("Nordstrom", [r"nordstrom"]),
    ("Kohl's", [r"\bkohl'?s\b"]),
    ("Sam's Club", [r"sam'?s\s*club"]),
    ("BJ's", [r"\bbj'?s\b"]),
    ("Amazon", [r"amazon"]),
    ("7-Eleven", [r"7\s*-?\s*eleven"]),
    ("Starbucks", [r"starbucks"]),
]
_STORE_RE = [(name, [re.compile(p, re.IGNORECASE) for p in pats]) for name, pats in KNOWN_STORES]

SKIP_PREFIXES = (
    "total", "subtotal", "sub total", "summe", "zwischensumme", "tax", "mwst", "mehrwertsteuer", "ust",
    "payment", "bezahl", "change", "cash", "card", "karte", "visa", "mastercard", "debit", "credit",
    "thank you", "danke", "please", "bitte", "store", "customer", "kunde", "cashier", "kassa",
    "register", "transaction", "transaktion", "receipt", "rechnung", "beleg", "date", "datum",
    "time", "uhr", "zeit", "balance", "amount due", "discount", "savings",
)
_SKIP_RE = [
    re.compile(r"^[-=*_]+$"),
    re.compile(r"^\d{1,4}[-./]\d{1,2}[-./]\d{2,4}"),
    re.compile(r"uid.*nummer", re.IGNORECASE),
]

# First match wins; each yields the price text in group 1.
_PRICE_RE = [
    re.compile(r"\$\s*(\d{1,4}(?:,\d{3})*\.\d{2})\s*[A-Z]?\s*$"),
    re.compile(r"(\d{1,4}\.\d{2})\s*(?:ea|each)?\s*[A-Z]?\s*$", re.IGNORECASE),
    re.compile(r"(\d{1,3}(?:\.\d{3})+,\d{2}|\d{1,4},\d{2})\s*€?\s*[A-Z]?\s*$"),
    re.compile(r"€\s*(\d{1,4}[,.]\d{2})"),
    re.compile(r"\$\s*(\d{1,4}\.\d{2})"),
]

_QUANTITY_RE = [
    re.compile(r"^(\d{1,2})\s*[@x×]\s*", re.IGNORECASE),
    re.compile(r"qty:?\s*(\d{1,2})", re.IGNORECASE),
    re.compile(r"menge:?\s*(\d{1,2})", re.IGNORECASE),
    re.compile(r"anzahl:?\s*(\d{1,2})", re.IGNORECASE),
]

_TOTAL_RE = re.compile(r"(grand\s*total|total\s*amount|amount\s*due|balance\s*due|\btotal\b|\bsumme\b)", re.IGNORECASE)
_SUBTOTAL_RE = re.compile(r"sub\s*-?\s*total|zwischensumme", re.IGNORECASE)
_TOTAL_AMOUNT_RE = re.compile(r"(\d{1,3}(?:[.,]\d{3})+[.,]\d{2}|\d{1,4}[.,]\d{2})")

_DATE_INDICATOR_RE = re.compile(r"(purchase|sale|trans(action)?)?\s*(date|datum)\s*:?", re.IGNORECASE)
_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"
_DATE_RE = [
    re.compile(r"\b(\d{4}-\d{1,2}-\d{1,2})\b"),
    re.compile(r"\b(\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4})\b"),
    re.compile(rf"\b({_MONTHS}\s+\d{{1,2}},?\s+\d{{4}})\b", re.IGNORECASE),
    re.compile(rf"\b(\d{{1,2}}\s+{_MONTHS}\s+\d{{4}})\b", re.IGNORECASE),
]

_ARTICLE_NO_RE = re.compile(r"^(\d{2,}-\d+|[a-z]{2,}-\d+)\s+", re.IGNORECASE)
_ODD_CHARS_RE = re.compile(r"[^a-zäöüß0-9\s$€.,@×x'&/-]", re.IGNORECASE)
_CURRENCY_PRICE_RE = re.compile(r"[$€]\s*\d+[.,]?\d{2}")


def detect_store(text: str) -> Optional[str]:
    """Match a known chain name in the receipt header."""
    header = "\n".join(text.splitlines()[:HEADER_LINES])
    for name, patterns in _STORE_RE:
        if any(p.search(header) for p in patterns):
            return name
    return None


def _should_skip(line: str) -> bool:
    lowered = line.lower()
    if lowered.startswith(SKIP_PREFIXES):
        return True
    return any(p.search(line) for p in _SKIP_RE)


def _line_confidence(line: str, name: str, price: Decimal) -> float:
    score = 0.5
    if _CURRENCY_PRICE_RE.search(line):
        score += 0.2
    if 5 <= len(name) <= 50:
        score += 0.1
    if Decimal("0.5") <= price <= Decimal("500"):
        score += 0.1
    if _ODD_CHARS_RE.search(line):
        score -= 0.1
    return max(0.0, min(1.0, round(score, 2)))


def parse_item_line(line: str) -> Optional[Tuple[LineItem, float]]:
    """Parse one receipt line into a ``LineItem`` and its confidence, or None."""
    for pattern in _PRICE_RE:
        match = pattern.search(line)
        if not match:
            continue
        price = parse_amount(match.group(1))
        if price is None or not (0 < price < MAX_AMOUNT):
            continue
        break
    else:
        return None

    quantity = 1
    for pattern in _QUANTITY_RE:
        qmatch = pattern.search(line)
        if qmatch:
            q = int(qmatch.group(1))
            if 0 < q < 100:
                quantity = q
                break

    name = line[: match.start()]
    name = _ARTICLE_NO_RE.sub("", name.strip())
    name = _QUANTITY_RE[0].sub("", name)
    for pattern in _QUANTITY_RE[1:]:
        name = pattern.sub("", name)
    name = re.sub(r"\s+", " ", name).strip(" .:-$€")
    if len(name) < 2:
        return None
    return LineItem(name=name, unit_price=price, quantity=quantity), _line_confidence(line, name, price)


def extract_items(text: str) -> List[Tuple[LineItem, float]]:
    items = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or _should_skip(line):
            continue
        parsed = parse_item_line(line)
        if parsed:
            items.append(parsed)
    return items


def extract_total(text: str) -> Optional[Decimal]:
    """Return the amount on the last total line; subtotals are ignored."""
    for raw in reversed(text.splitlines()):
        line = raw.strip()
        if not line or _SUBTOTAL_RE.search(line) or not _TOTAL_RE.search(line):
            continue
        match = _TOTAL_AMOUNT_RE.search(line)
        if not match:
            continue
        total = parse_amount(match.group(1))
        if total is not None and 0 < total < MAX_AMOUNT:
            return total
    return None


def extract_date_text(text: str) -> Optional[str]:
    """Return the raw date token, preferring lines that announce a date."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    preferred = [line for line in lines if _DATE_INDICATOR_RE.search(line)]
    for line in preferred + lines:
        for pattern in _DATE_RE:
            match = pattern.search(line)
            if match:
                return match.group(1)
    return None


class HeuristicExtractor(ReceiptExtractor):
    """Regex-based fallback used when no model provider is configured."""

    name = "heuristic"
    requires_text = True

    def describe(self) -> str:
        return "Heuristic line scanner (no model)"

    async def parse(self, image: NormalizedImage, text: Optional[str] = None) -> ExtractionResult:
        if not text or not text.strip():
            logger.info("[extraction] provider=heuristic no OCR text")
            return ExtractionResult.empty(self.name)

        scored = extract_items(text)
        confidence = sum(c for _, c in scored) / len(scored) if scored else 0.0
        result = ExtractionResult(
            merchant_name=detect_store(text),
            purchase_date=extract_date_text(text),
            line_items=tuple(item for item, _ in scored),
            declared_total=extract_total(text),
            provider_confidence=max(0.0, min(1.0, confidence)),
            provider=self.name,
        )
        logger.info(
            "[extraction] provider=heuristic items=%d total=%s confidence=%.2f",
            len(result.line_items), result.declared_total, result.provider_confidence,
        )
        return result
