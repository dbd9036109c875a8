import datetime as dt

import pytest

from tally.core.errors import DateOutOfRangeError
from tally.services.date_validator import parse_purchase_date, validate_purchase_date

TODAY = dt.date(2026, 10, 19)


def test_exactly_365_days_ago_is_accepted():
    d = TODAY - dt.timedelta(days=365)
    assert parse_purchase_date(d.isoformat(), today=TODAY) == d


def test_366_days_ago_is_rejected():
    d = TODAY - dt.timedelta(days=366)
    assert parse_purchase_date(d.isoformat(), today=TODAY) is None


def test_tomorrow_is_rejected():
    d = TODAY + dt.timedelta(days=1)
    assert parse_purchase_date(d.isoformat(), today=TODAY) is None


def test_today_is_accepted():
    assert parse_purchase_date("2026-10-19", today=TODAY) == TODAY


def test_invalid_calendar_date_is_rejected():
    assert parse_purchase_date("2026-13-01", today=TODAY) is None
    assert parse_purchase_date("2026-02-30", today=TODAY) is None


def test_garbage_and_blank_are_rejected():
    assert parse_purchase_date("not a date", today=TODAY) is None
    assert parse_purchase_date("", today=TODAY) is None
    assert parse_purchase_date(None, today=TODAY) is None


def test_common_receipt_formats():
    assert parse_purchase_date("10/01/2026", today=TODAY) == dt.date(2026, 10, 1)
    assert parse_purchase_date("Oct 1, 2026", today=TODAY) == dt.date(2026, 10, 1)
    assert parse_purchase_date("01.10.2026", today=TODAY, dayfirst=True) == dt.date(2026, 10, 1)


def test_validate_raises_typed_soft_error():
    with pytest.raises(DateOutOfRangeError) as info:
        validate_purchase_date("2030-01-01", today=TODAY)
    assert info.value.is_fatal is False


def test_date_without_year_falls_back_to_last_year():
    assert parse_purchase_date("Dec 25", today=TODAY) == dt.date(2025, 12, 25)
    assert parse_purchase_date("Oct 1", today=TODAY) == dt.date(2026, 10, 1)
    assert parse_purchase_date("2026-12-25", today=TODAY) is None
