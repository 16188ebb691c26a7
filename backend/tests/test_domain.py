from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from betchat.core.errors import InvalidAmount
from betchat.domain import (
    MAX_AMOUNT_MINOR,
    EventStatus,
    Outcome,
    derive_status,
    format_amount,
    from_minor,
    to_minor,
)

START = datetime(2026, 5, 1, 18, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=2)


def test_to_minor_accepts_decimal_int_and_string():
    """Verify that major amounts convert to integer minor units."""
    assert to_minor(Decimal("250.50")) == 25_050
    assert to_minor(100) == 10_000
    assert to_minor("0.01") == 1


@pytest.mark.parametrize("value", [1.5, True, "abc", "1.005", "NaN", "1e30", "-1e30", "1e999999999"])
def test_to_minor_rejects_unsafe_values(value):
    """Verify that floats, booleans, junk and sub-minor precision are rejected."""
    with pytest.raises(InvalidAmount):
        to_minor(value)


def test_to_minor_upper_bound():
    """Verify the largest accepted amount and the first rejected one."""
    largest = from_minor(MAX_AMOUNT_MINOR)
    assert to_minor(largest) == MAX_AMOUNT_MINOR
    with pytest.raises(InvalidAmount):
        to_minor(largest + Decimal("0.01"))


def test_from_minor_and_format_amount():
    """Verify that minor units render as major amounts with the currency symbol."""
    assert from_minor(66_667) == Decimal("666.67")
    assert format_amount(10_000, "₦") == "₦100"
    assert format_amount(123_456, "₦") == "₦1,234.56"


def test_outcome_helpers():
    """Verify the mapping between predictions and outcomes."""
    assert Outcome.from_prediction(True) is Outcome.YES
    assert Outcome.NO.prediction is False
    assert Outcome.YES.opposite is Outcome.NO


def test_derive_status_follows_the_event_window():
    """Verify that status is derived from the clock and the event window."""
    assert derive_status(start_time=START, end_time=END, cancelled_at=None, now=START - timedelta(seconds=1)) == EventStatus.SCHEDULED
    assert derive_status(start_time=START, end_time=END, cancelled_at=None, now=START) == EventStatus.LIVE
    assert derive_status(start_time=START, end_time=END, cancelled_at=None, now=END) == EventStatus.LIVE
    assert derive_status(start_time=START, end_time=END, cancelled_at=None, now=END + timedelta(seconds=1)) == EventStatus.ENDED


def test_cancellation_overrides_the_window():
    """Verify that a cancelled event stays cancelled regardless of time."""
    status = derive_status(start_time=START, end_time=END, cancelled_at=START, now=START + timedelta(minutes=5))
    assert status == EventStatus.CANCELLED


def test_naive_datetimes_are_treated_as_utc():
    """Verify that naive timestamps read back from SQLite compare as UTC."""
    naive_start = START.replace(tzinfo=None)
    naive_end = END.replace(tzinfo=None)
    status = derive_status(start_time=naive_start, end_time=naive_end, cancelled_at=None, now=START + timedelta(minutes=1))
    assert status == EventStatus.LIVE
