"""Calendar-day bucketing of ledger timestamps under UTC and Eastern time.

Payments are stored with a UTC offset, but reviewers think in the local
business day. An entry applied at 23:30 Eastern lands on the next UTC day,
so a "what was voided on March 8th" search gives different answers
depending on which clock you ask. This module derives both buckets for
any timestamp so those midnight-boundary discrepancies can be seen.

The Eastern offset always comes from the tz database for the exact
instant (EST or EDT); a fixed -05:00 is never assumed. Buckets are
computed on every call and never cached.
"""

import logging
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict

from arledger.core.config import settings
from arledger.services.snapshot import LedgerEntry, TimestampError, parse_timestamp

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")

__all__ = [
    "DayBucket",
    "IndexedEntry",
    "TimestampError",
    "TimezoneDateIndexer",
    "TimezoneName",
    "parse_timestamp",
]


class TimezoneName(str, Enum):
    """Timezones a date search can be run under."""

    UTC = "UTC"
    ET = "ET"


class DayBucket(BaseModel):
    """Calendar placement of one instant."""

    model_config = ConfigDict(frozen=True)

    date_utc: date
    date_et: date
    hour_utc: int

    @property
    def crosses_midnight(self) -> bool:
        """True when the UTC and Eastern calendar days disagree."""
        return self.date_utc != self.date_et

    def for_timezone(self, tz: TimezoneName) -> date:
        return self.date_utc if tz is TimezoneName.UTC else self.date_et


class IndexedEntry(BaseModel):
    """A ledger entry with its day buckets attached."""

    model_config = ConfigDict(frozen=True)

    entry: LedgerEntry
    bucket: DayBucket


class TimezoneDateIndexer:
    """Derives UTC and local calendar days for ledger timestamps.

    Args:
        local_timezone: IANA zone used for the "ET" bucket. Defaults to
            ``settings.local_timezone`` (America/New_York).
    """

    def __init__(self, local_timezone: Optional[str] = None):
        self.local_zone = ZoneInfo(local_timezone or settings.local_timezone)

    def index(self, value: Any) -> DayBucket:
        """Bucket a single timestamp.

        Raises:
            TimestampError: If the timestamp has no resolvable offset
        """
        ts = parse_timestamp(value)
        as_utc = ts.astimezone(UTC)
        as_local = ts.astimezone(self.local_zone)
        return DayBucket(
            date_utc=as_utc.date(),
            date_et=as_local.date(),
            hour_utc=as_utc.hour,
        )

    def index_entries(self, entries: Iterable[LedgerEntry]) -> List[IndexedEntry]:
        """Attach buckets to entries, preserving input order."""
        return [
            IndexedEntry(entry=entry, bucket=self.index(entry.application_date))
            for entry in entries
        ]

    def search(
        self,
        entries: Iterable[LedgerEntry],
        target_date: date,
        tz: TimezoneName,
    ) -> List[IndexedEntry]:
        """Entries whose bucket under ``tz`` equals ``target_date``.

        Results are ordered by application instant, then reference number.

        Raises:
            TimestampError: If any entry has no usable application_date
        """
        indexed = self.index_entries(entries)
        matches = [item for item in indexed if item.bucket.for_timezone(tz) == target_date]
        matches.sort(
            key=lambda item: (
                item.entry.application_date.astimezone(UTC),
                item.entry.reference_number,
                item.entry.id,
            )
        )
        logger.debug(
            f"Date search {target_date.isoformat()} ({tz.value}): "
            f"{len(matches)} of {len(indexed)} entries matched"
        )
        return matches

    def search_window(self, target_date: date) -> Tuple[datetime, datetime]:
        """Half-open UTC window covering ``target_date`` under either timezone.

        Used to narrow the ledger source query; the exact bucket match is
        still done by :meth:`search`.
        """
        next_day = target_date + timedelta(days=1)
        starts = [
            datetime.combine(target_date, time.min, tzinfo=UTC),
            datetime.combine(target_date, time.min, tzinfo=self.local_zone).astimezone(UTC),
        ]
        ends = [
            datetime.combine(next_day, time.min, tzinfo=UTC),
            datetime.combine(next_day, time.min, tzinfo=self.local_zone).astimezone(UTC),
        ]
        return min(starts), max(ends)

    def straddles_day_boundary(
        self,
        entries: Iterable[LedgerEntry],
    ) -> Dict[TimezoneName, bool]:
        """Whether a group of entries spans more than one day per timezone.

        A pair that shows ``{UTC: True, ET: False}`` was voided on the same
        local business day but looks like a cross-day reversal in UTC.
        """
        buckets = [
            self.index(entry.application_date)
            for entry in entries
            if entry.application_date is not None
        ]
        return {
            TimezoneName.UTC: len({b.date_utc for b in buckets}) > 1,
            TimezoneName.ET: len({b.date_et for b in buckets}) > 1,
        }

