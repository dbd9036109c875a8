"""Purchase-date parsing and plausibility checks.

A receipt date is accepted only when it parses to a real calendar date,
is not later than the reference day and is at most ``max_age_days``
before it. Exactly ``max_age_days`` ago is still accepted.

Parsing uses ``dateutil``. ``dayfirst`` decides how ambiguous numeric
dates such as ``03/04/2025`` are read; ISO dates are unaffected.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from dateutil import parser as date_parser

from tally.core.config import settings
from tally.core.errors import DateOutOfRangeError

logger = logging.getLogger(__name__)


def _parse(text: str, dayfirst: bool, year: int) -> dt.date:
    # Fixed default so missing components never borrow from the wall clock.
    return date_parser.parse(text, dayfirst=dayfirst, default=dt.datetime(year, 1, 1)).date()


def validate_purchase_date(
    expr: Optional[str],
    *,
    today: dt.date,
    max_age_days: Optional[int] = None,
    dayfirst: Optional[bool] = None,
) -> dt.date:
    """Parse ``expr`` and check it against the accepted window.

    :raises DateOutOfRangeError: when the value is missing, unparseable, in
        the future or older than ``max_age_days``
    """
    max_age = settings.DATE_MAX_AGE_DAYS if max_age_days is None else max_age_days
    first = settings.DATE_DAYFIRST if dayfirst is None else dayfirst
    if expr is None or not str(expr).strip():
        raise DateOutOfRangeError("No purchase date")
    text = str(expr).strip()
    try:
        value = _parse(text, first, today.year)
    except (ValueError, OverflowError) as exc:
        raise DateOutOfRangeError(f"Unparseable purchase date {text!r}: {exc}") from exc
    if value > today:
        # A date printed without a year means its most recent past occurrence.
        try:
            earlier = _parse(text, first, today.year - 1)
        except (ValueError, OverflowError):
            earlier = value
        if earlier.year != value.year:
            value = earlier
    if value > today:
        raise DateOutOfRangeError(f"Purchase date {value.isoformat()} is in the future")
    age = (today - value).days
    if age > max_age:
        raise DateOutOfRangeError(f"Purchase date {value.isoformat()} is {age} days old (limit {max_age})")
    return value


def parse_purchase_date(
    expr: Optional[str],
    *,
    today: dt.date,
    max_age_days: Optional[int] = None,
    dayfirst: Optional[bool] = None,
) -> Optional[dt.date]:
    """Like ``validate_purchase_date`` but returns None instead of raising."""
    try:
        return validate_purchase_date(expr, today=today, max_age_days=max_age_days, dayfirst=dayfirst)
    except DateOutOfRangeError as exc:
        logger.info("[dates] rejected: %s", exc)
        return None
