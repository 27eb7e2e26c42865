"""Tests for UTC / Eastern calendar-day bucketing.

Feature: ar-reconciliation, Property 6: Timezone Bucketing
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from arledger.services.date_index import (
    DayBucket,
    TimezoneDateIndexer,
    TimezoneName,
)
from arledger.services.snapshot import EntryType, LedgerEntry, TimestampError


def _entry(ref: str, ts: str, type: EntryType = EntryType.VOIDED_PAYMENT, amount: str = "-100", id: str = "") -> LedgerEntry:
    return LedgerEntry(
        id=id or f"{ref}-{ts}",
        reference_number=ref,
        type=type,
        amount=Decimal(amount),
        application_date=datetime.fromisoformat(ts.replace("Z", "+00:00")),
    )


@pytest.fixture
def indexer() -> TimezoneDateIndexer:
    return TimezoneDateIndexer("America/New_York")


class TestIndex:
    def test_spring_forward_instant(self, indexer):
        """04:30Z on the DST transition day is still 23:30 EST the evening before."""
        bucket = indexer.index("2025-03-09T04:30:00Z")
        assert bucket.date_utc == date(2025, 3, 9)
        assert bucket.date_et == date(2025, 3, 8)
        assert bucket.hour_utc == 4
        assert bucket.crosses_midnight

    def test_after_spring_forward_uses_edt(self, indexer):
        # 07:30Z is 03:30 EDT, not 02:30 EST
        bucket = indexer.index("2025-03-09T07:30:00Z")
        assert bucket.date_et == date(2025, 3, 9)
        assert not bucket.crosses_midnight

    def test_summer_offset_is_four_hours(self, indexer):
        # 04:30Z in July is 00:30 EDT; a fixed -05:00 would give the previous day
        bucket = indexer.index("2025-07-01T04:30:00Z")
        assert bucket.date_et == date(2025, 7, 1)
        assert bucket.date_utc == date(2025, 7, 1)

    def test_fall_back_boundary(self, indexer):
        # Before the switch back, EDT: 03:30Z is 23:30 on Nov 1
        assert indexer.index("2025-11-02T03:30:00Z").date_et == date(2025, 11, 1)
        # After it, EST: 04:30Z on Nov 3 is 23:30 on Nov 2
        assert indexer.index("2025-11-03T04:30:00Z").date_et == date(2025, 11, 2)

    def test_offset_input_is_normalized(self, indexer):
        bucket = indexer.index("2025-03-08T23:30:00-05:00")
        assert bucket == DayBucket(date_utc=date(2025, 3, 9), date_et=date(2025, 3, 8), hour_utc=4)

    def test_naive_timestamp_rejected(self, indexer):
        with pytest.raises(TimestampError):
            indexer.index("2025-03-09T04:30:00")

    def test_malformed_timestamp_rejected(self, indexer):
        with pytest.raises(TimestampError):
            indexer.index("not a date")

    def test_for_timezone(self):
        bucket = DayBucket(date_utc=date(2025, 3, 9), date_et=date(2025, 3, 8), hour_utc=4)
        assert bucket.for_timezone(TimezoneName.UTC) == date(2025, 3, 9)
        assert bucket.for_timezone(TimezoneName.ET) == date(2025, 3, 8)


class TestSearch:
    def test_same_entry_lands_on_different_days(self, indexer):
        late = _entry("PMT1", "2025-03-09T04:30:00Z")
        afternoon = _entry("PMT2", "2025-03-08T20:00:00Z")

        et = indexer.search([late, afternoon], date(2025, 3, 8), TimezoneName.ET)
        utc = indexer.search([late, afternoon], date(2025, 3, 8), TimezoneName.UTC)

        assert [item.entry.reference_number for item in et] == ["PMT2", "PMT1"]
        assert [item.entry.reference_number for item in utc] == ["PMT2"]

    def test_results_ordered_by_instant_then_reference(self, indexer):
        entries = [
            _entry("B", "2025-06-01T15:00:00Z"),
            _entry("A", "2025-06-01T15:00:00Z"),
            _entry("C", "2025-06-01T12:00:00Z"),
        ]
        result = indexer.search(entries, date(2025, 6, 1), TimezoneName.UTC)
        assert [item.entry.reference_number for item in result] == ["C", "A", "B"]

    def test_entry_without_timestamp_rejected(self, indexer):
        undated = LedgerEntry(reference_number="X", type=EntryType.PAYMENT, amount=Decimal("1"))
        with pytest.raises(TimestampError):
            indexer.search([undated], date(2025, 6, 1), TimezoneName.UTC)


class TestSearchWindow:
    def test_window_covers_both_timezones(self, indexer):
        start, end = indexer.search_window(date(2025, 3, 8))
        assert start == datetime(2025, 3, 8, 0, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 3, 9, 5, 0, tzinfo=timezone.utc)

    def test_window_in_summer(self, indexer):
        start, end = indexer.search_window(date(2025, 7, 1))
        assert start == datetime(2025, 7, 1, 0, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 7, 2, 4, 0, tzinfo=timezone.utc)


class TestStraddles:
    def test_pair_straddles_utc_only(self, indexer):
        original = _entry("PMT1", "2025-03-08T20:00:00Z", type=EntryType.PAYMENT, amount="100")
        reversal = _entry("PMT1", "2025-03-09T04:30:00Z")
        assert indexer.straddles_day_boundary([original, reversal]) == {
            TimezoneName.UTC: True,
            TimezoneName.ET: False,
        }

    def test_undated_entries_ignored(self, indexer):
        undated = LedgerEntry(reference_number="PMT1", type=EntryType.PAYMENT, amount=Decimal("1"))
        dated = _entry("PMT1", "2025-03-08T20:00:00Z")
        assert indexer.straddles_day_boundary([undated, dated]) == {
            TimezoneName.UTC: False,
            TimezoneName.ET: False,
        }


class TestBucketingProperties:
    """
    Feature: ar-reconciliation, Property 6: Timezone Bucketing

    The UTC bucket is always the UTC calendar day, the Eastern bucket is
    never ahead of it and at most one day behind, and the result does
    not depend on which offset the timestamp was written in.
    """

    @given(
        instant=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2040, 12, 31),
            timezones=st.just(timezone.utc),
        ),
        offset_minutes=st.integers(min_value=-12 * 60, max_value=14 * 60),
    )
    @hyp_settings(max_examples=50, deadline=None)
    def test_buckets_are_offset_independent(self, instant, offset_minutes):
        indexer = TimezoneDateIndexer("America/New_York")
        shifted = instant.astimezone(timezone(timedelta(minutes=offset_minutes)))

        bucket = indexer.index(instant)

        assert indexer.index(shifted) == bucket
        assert bucket.date_utc == instant.date()
        assert bucket.hour_utc == instant.hour
        assert timedelta(0) <= bucket.date_utc - bucket.date_et <= timedelta(days=1)
